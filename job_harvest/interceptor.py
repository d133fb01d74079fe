"""
Response Interceptor - passively captures job-list API responses.

The browser host hands every network response to on_response_received();
candidate URLs are decompressed, parsed and mapped into JobRecords that
accumulate per session until a strategy collects them.
"""

from __future__ import annotations

import asyncio
import gzip
import json
import logging
import zlib
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import brotli

from .cancel import CancelToken
from .models import JobRecord, SourceStrategy
from .normalize import records_from_items

logger = logging.getLogger(__name__)

KNOWN_ENDPOINTS = (
    "/wapi/zpboss/job/list",
    "/wapi/zpgeek/job/list",
    "/job/list",
    "/job/manage",
)
EXCLUDED_FRAGMENTS = ("/stat", "/count", "/summary", "/init", "/config")

# Envelope keys, tried in order
ENVELOPE_ROOTS = ("zpData", "data")
ENVELOPE_LISTS = ("jobList", "list", "data")


def is_job_list_url(url: str, extra_endpoints: Iterable[str] = ()) -> bool:
    """Return True when a response URL looks like a job-list API call."""
    lowered = (url or "").lower()
    if not lowered:
        return False
    if any(fragment in lowered for fragment in EXCLUDED_FRAGMENTS):
        return False
    endpoints = KNOWN_ENDPOINTS + tuple(e.lower() for e in extra_endpoints if e)
    if any(endpoint in lowered for endpoint in endpoints):
        return True
    # Loose match; also rejects statType=, stats and similar
    return "job" in lowered and "list" in lowered and "stat" not in lowered


def decode_body(raw: bytes, content_encoding: Optional[str] = None) -> str:
    """
    Decompress and decode a response body.

    Dispatches on Content-Encoding (gzip, deflate, br). Unknown or absent
    encodings are decoded as UTF-8; a failing decoder falls back to a naive
    UTF-8 decode so the response is never discarded.
    """
    if not raw:
        return ""
    encoding = (content_encoding or "").strip().lower()
    try:
        if "br" in encoding:
            data = brotli.decompress(raw)
        elif "gzip" in encoding:
            data = gzip.decompress(raw)
        elif "deflate" in encoding:
            data = _inflate(raw)
        else:
            data = raw
        return data.decode("utf-8", errors="replace")
    except Exception as exc:
        logger.debug("Decompression failed (encoding=%s): %s", encoding or "none", exc)
        return raw.decode("utf-8", errors="replace")


def _inflate(raw: bytes) -> bytes:
    try:
        return zlib.decompress(raw)
    except zlib.error:
        # Raw deflate stream without zlib header
        return zlib.decompress(raw, -zlib.MAX_WBITS)


def find_job_array(payload: Any) -> List[Any]:
    """Locate the job array inside any of the known response envelopes."""
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []

    for root_key in ENVELOPE_ROOTS:
        root = payload.get(root_key)
        if isinstance(root, list):
            return root
        if isinstance(root, dict):
            for list_key in ENVELOPE_LISTS:
                items = root.get(list_key)
                if isinstance(items, list):
                    return items

    for list_key in ("list", "jobList"):
        items = payload.get(list_key)
        if isinstance(items, list):
            return items
    return []


def parse_job_response(text: str, url_template: Optional[str] = None) -> List[JobRecord]:
    """Parse a decoded response body into records; malformed payloads yield []."""
    if not text or not text.strip():
        return []
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.debug("Ignoring non-JSON job-list response: %s", exc)
        return []
    return records_from_items(find_job_array(payload), SourceStrategy.INTERCEPTION, url_template=url_template)


@dataclass
class _ListenerState:
    records: List[JobRecord] = field(default_factory=list)
    arrived: asyncio.Event = field(default_factory=asyncio.Event)
    responses_seen: int = 0


class ResponseInterceptor:
    """Accumulates job records from intercepted responses, per session."""

    def __init__(self, extra_endpoints: Iterable[str] = (), url_template: Optional[str] = None):
        self.extra_endpoints = tuple(extra_endpoints or ())
        self.url_template = url_template
        self._sessions: Dict[str, _ListenerState] = {}

    @classmethod
    def from_config(cls, config) -> "ResponseInterceptor":
        return cls(
            extra_endpoints=config.get_extra_endpoints(),
            url_template=config.get_job_url_template() or None,
        )

    def start_listening(self, session_id: str) -> None:
        if session_id in self._sessions:
            return
        self._sessions[session_id] = _ListenerState()
        logger.debug("Interceptor listening for session %s", session_id)

    def stop_listening(self, session_id: str) -> None:
        state = self._sessions.pop(session_id, None)
        if state is not None:
            logger.debug(
                "Interceptor stopped for session %s (%s responses, %s records)",
                session_id, state.responses_seen, len(state.records),
            )

    def is_listening(self, session_id: str) -> bool:
        return session_id in self._sessions

    def matches(self, url: str) -> bool:
        return is_job_list_url(url, self.extra_endpoints)

    def on_response_received(
        self,
        session_id: str,
        url: str,
        raw: bytes,
        content_encoding: Optional[str] = None,
    ) -> int:
        """Feed one network response; returns the number of records added."""
        state = self._sessions.get(session_id)
        if state is None or not self.matches(url):
            return 0

        state.responses_seen += 1
        try:
            records = parse_job_response(decode_body(raw, content_encoding), self.url_template)
        except Exception as exc:
            logger.warning("Failed to parse intercepted response %s: %s", url, exc)
            return 0

        if records:
            state.records.extend(records)
            state.arrived.set()
            logger.info("Intercepted %s job records from %s", len(records), url)
        return len(records)

    def get_records(self, session_id: str) -> List[JobRecord]:
        state = self._sessions.get(session_id)
        return list(state.records) if state else []

    def clear(self, session_id: str) -> None:
        """Drop accumulated records (e.g. before navigating to a fresh page)."""
        state = self._sessions.get(session_id)
        if state is None:
            return
        state.records.clear()
        state.arrived.clear()

    async def wait_for_records(
        self,
        session_id: str,
        timeout: float = 15.0,
        cancel: Optional[CancelToken] = None,
    ) -> List[JobRecord]:
        """
        Wait up to `timeout` seconds for the first batch of records.

        Returns as soon as any records have accumulated; on timeout returns
        whatever exists (possibly empty) instead of raising.
        """
        state = self._sessions.get(session_id)
        if state is None:
            logger.debug("wait_for_records on session %s that is not listening", session_id)
            return []
        if state.records:
            return list(state.records)

        waiter = asyncio.wait_for(state.arrived.wait(), timeout=max(timeout, 0.0))
        try:
            if cancel is not None:
                await cancel.guard(waiter)
            else:
                await waiter
        except asyncio.TimeoutError:
            logger.info(
                "No job-list response within %.1fs for session %s (%s candidate responses)",
                timeout, session_id, state.responses_seen,
            )
        return list(state.records)
