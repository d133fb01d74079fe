import asyncio
import time

import pytest

from job_harvest.cancel import CancelToken
from job_harvest.errors import ExtractionCancelled


def test_sleep_completes_when_not_cancelled():
    token = CancelToken()
    asyncio.run(token.sleep(0.01))
    assert not token.cancelled


def test_sleep_wakes_early_on_cancel():
    async def scenario():
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)
        await token.sleep(10)

    started = time.monotonic()
    with pytest.raises(ExtractionCancelled):
        asyncio.run(scenario())
    assert time.monotonic() - started < 1.0


def test_guard_returns_result():
    async def answer():
        return 42

    async def scenario():
        return await CancelToken().guard(answer())

    assert asyncio.run(scenario()) == 42


def test_guard_abandons_slow_awaitable_on_cancel():
    finished = []

    async def slow():
        await asyncio.sleep(10)
        finished.append(True)

    async def scenario():
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)
        await token.guard(slow())

    with pytest.raises(ExtractionCancelled):
        asyncio.run(scenario())
    assert finished == []


def test_guard_refuses_to_start_when_already_cancelled():
    async def scenario():
        token = CancelToken()
        token.cancel()
        await token.guard(asyncio.sleep(1))

    with pytest.raises(ExtractionCancelled):
        asyncio.run(scenario())
