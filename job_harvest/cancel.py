"""
Cooperative cancellation for extraction runs.

Every wait inside the engine goes through a CancelToken so a caller's
cancel() is observed within one polling tick.
"""

import asyncio
import contextlib
from typing import Any, Awaitable

from .errors import ExtractionCancelled


class CancelToken:
    """Caller-owned cancellation flag backed by an asyncio.Event."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExtractionCancelled("extraction cancelled by caller")

    async def sleep(self, seconds: float) -> None:
        """Sleep for `seconds`, waking early (and raising) on cancellation."""
        self.raise_if_cancelled()
        if seconds <= 0:
            await asyncio.sleep(0)
            self.raise_if_cancelled()
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def guard(self, awaitable: Awaitable[Any]) -> Any:
        """Await `awaitable` unless the token is cancelled first."""
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await task
        raise ExtractionCancelled("extraction cancelled by caller")
