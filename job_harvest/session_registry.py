"""
Session registry - per-account browser sessions and their locks.

Passed into the orchestrator explicitly; one instance per process is the
usual setup, but nothing here is global.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .browser_host import BrowserHost
from .models import StrategyOutcome

logger = logging.getLogger(__name__)


@dataclass
class ExtractionSession:
    """One account's live browser session."""

    account_id: str
    host: BrowserHost
    job_list_url: Optional[str] = None
    platform: str = "boss"
    attempted_strategies: List[StrategyOutcome] = field(default_factory=list)


class SessionRegistry:
    """Maps account ids to sessions, with one asyncio.Lock per account."""

    def __init__(self) -> None:
        self._sessions: Dict[str, ExtractionSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def register(self, account_id: str, host: BrowserHost, job_list_url: Optional[str] = None,
                 platform: str = "boss") -> ExtractionSession:
        if account_id in self._sessions:
            logger.warning("Replacing existing session for account %s", account_id)
        session = ExtractionSession(
            account_id=account_id,
            host=host,
            job_list_url=job_list_url or None,
            platform=platform,
        )
        self._sessions[account_id] = session
        return session

    def unregister(self, account_id: str) -> None:
        self._sessions.pop(account_id, None)

    def get(self, account_id: str) -> Optional[ExtractionSession]:
        return self._sessions.get(account_id)

    def lock_for(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    def account_ids(self) -> List[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)
