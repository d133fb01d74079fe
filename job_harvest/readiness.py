"""
Readiness Classifier - decides when a listing page is safe to read.

Polls the host with a probe script and classifies the page as loading,
login-required, blocked (challenge page), list-ready or empty.
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple

from .browser_host import BrowserHost, evaluate_within
from .cancel import CancelToken
from .models import PageState, ReadinessReport

logger = logging.getLogger(__name__)

MIN_PROBE_SECONDS = 0.05

LOGIN_URL_MARKERS = ("/login", "/passport", "/signin")
LOGIN_TEXT_MARKERS = ("请登录", "登录后查看", "扫码登录", "please log in", "sign in to continue")
EMPTY_TEXT_MARKERS = ("暂无", "没有职位", "no jobs", "no positions")

CHALLENGE_TITLE_MARKERS = (
    "just a moment...",
    "attention required! | cloudflare",
    "please wait...",
    "checking your browser",
    "安全验证",
)
CHALLENGE_URL_MARKERS = ("__cf_chl", "/cdn-cgi/", "challenges.cloudflare.com", "cf-challenge", "/verify")
CHALLENGE_TEXT_MARKERS = (
    "verify you are human",
    "security verification",
    "checking your browser before accessing",
    "请完成安全验证",
)

PROBE_SCRIPT = """
(() => {
    const visible = (el) => !!el && (el.offsetParent !== null || el.getClientRects().length > 0);
    const any = (selector) => Array.from(document.querySelectorAll(selector)).some(visible);
    const body = document.body ? (document.body.innerText || '') : '';
    return JSON.stringify({
        readyState: document.readyState,
        url: location.href,
        title: document.title || '',
        loading: any('.loading, .spinner, [class*="loading"], [class*="skeleton"]'),
        hasList: !!document.querySelector('.job-list, .position-list, .job-card, [class*="job-list"], table'),
        loginVisible: any('.login-btn, .btn-login, [class*="login-dialog"], form[action*="login"]'),
        challenge: !!document.querySelector(
            "#cf-challenge-running, form#challenge-form, iframe[src*='challenges.cloudflare.com'], " +
            ".cf-turnstile, iframe[src*='hcaptcha'], iframe[src*='recaptcha'], [data-sitekey]"
        ),
        bodyLength: body.length,
        bodyText: body.slice(0, 3000)
    });
})()
"""


def _contains_any(text: str, markers) -> Optional[str]:
    for marker in markers:
        if marker in text:
            return marker
    return None


def classify_probe(probe: Dict[str, Any], min_body_chars: int = 100) -> Tuple[PageState, str]:
    """Map one probe snapshot to a page state and a short reason."""
    url = str(probe.get("url") or "").lower()
    title = str(probe.get("title") or "").lower()
    body = str(probe.get("bodyText") or "").lower()

    marker = _contains_any(url, LOGIN_URL_MARKERS)
    if marker:
        return PageState.LOGIN_REQUIRED, f"url:{marker}"

    marker = _contains_any(title, CHALLENGE_TITLE_MARKERS)
    if marker:
        return PageState.BLOCKED, f"title:{marker}"
    marker = _contains_any(url, CHALLENGE_URL_MARKERS)
    if marker:
        return PageState.BLOCKED, f"url:{marker}"
    if probe.get("challenge"):
        return PageState.BLOCKED, "selector:challenge"
    marker = _contains_any(body, LOGIN_TEXT_MARKERS)
    if marker:
        return PageState.LOGIN_REQUIRED, f"body:{marker}"
    marker = _contains_any(body, CHALLENGE_TEXT_MARKERS)
    if marker:
        return PageState.BLOCKED, f"body:{marker}"
    if probe.get("loginVisible") and not probe.get("hasList"):
        return PageState.LOGIN_REQUIRED, "selector:login"

    if probe.get("readyState") != "complete" or probe.get("loading"):
        return PageState.LOADING, f"readyState:{probe.get('readyState')}"

    marker = _contains_any(body, EMPTY_TEXT_MARKERS)
    if probe.get("hasList"):
        return PageState.LIST_READY, "selector:list"
    if marker:
        return PageState.EMPTY_STATE, f"body:{marker}"
    if int(probe.get("bodyLength") or 0) >= min_body_chars:
        return PageState.LIST_READY, "body:content"
    return PageState.LOADING, "body:short"


class ReadinessClassifier:
    """Polls a host until the page reaches a terminal readiness state."""

    def __init__(self, config, status_analyzer=None):
        self.config = config
        self.poll_interval = config.get_readiness_poll_interval_ms() / 1000.0
        self.min_body_chars = config.get_min_body_chars()
        self.ai_fallback = config.is_readiness_ai_fallback_enabled()
        self.script_timeout = config.get_script_timeout()
        self.status_analyzer = status_analyzer

    async def poll_until_ready(
        self,
        host: BrowserHost,
        timeout_ms: Optional[int],
        cancel: CancelToken,
    ) -> ReadinessReport:
        if timeout_ms is None:
            timeout_ms = self.config.get_readiness_timeout_ms()
        started = time.monotonic()
        deadline = started + timeout_ms / 1000.0
        state, detail = PageState.UNKNOWN, ""
        polls = 0

        while True:
            cancel.raise_if_cancelled()
            polls += 1
            # A probe may not outlive the overall deadline
            budget = max(min(self.script_timeout, deadline - time.monotonic()), MIN_PROBE_SECONDS)
            result = await evaluate_within(host, PROBE_SCRIPT, budget, cancel)
            probe = result.json()
            if isinstance(probe, dict):
                state, detail = classify_probe(probe, self.min_body_chars)
            else:
                detail = f"probe failed: {result.message}" if not result.success else "probe unreadable"
                logger.debug("Readiness probe %s: %s", polls, detail)

            if state.is_terminal:
                elapsed = int((time.monotonic() - started) * 1000)
                logger.info("Page %s after %s polls (%s)", state.value, polls, detail)
                return ReadinessReport(
                    ready=state in (PageState.LIST_READY, PageState.EMPTY_STATE),
                    state=state,
                    polls=polls,
                    elapsed_ms=elapsed,
                    detail=detail,
                )

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await cancel.sleep(min(self.poll_interval, remaining))

        elapsed = int((time.monotonic() - started) * 1000)
        logger.warning("Readiness timed out after %sms (last state %s)", elapsed, state.value)
        report = ReadinessReport(ready=False, state=state, polls=polls, elapsed_ms=elapsed, detail=detail)
        if self.ai_fallback and self.status_analyzer is not None and self.status_analyzer.enabled:
            report = await self._ask_ai(host, report, cancel)
        return report

    async def _ask_ai(self, host: BrowserHost, report: ReadinessReport, cancel: CancelToken) -> ReadinessReport:
        """Let the AI text analyzer classify a page the probe could not."""
        html = await evaluate_within(host, "document.documentElement.outerHTML", self.script_timeout, cancel)
        if not html.success or not html.value:
            return report
        status = await self.status_analyzer.analyze_page_status(str(html.value), host.current_url, cancel)
        if status.need_login:
            state = PageState.LOGIN_REQUIRED
        elif status.is_job_list and status.has_jobs:
            state = PageState.LIST_READY
        elif status.is_job_list:
            state = PageState.EMPTY_STATE
        else:
            return report
        logger.info("AI page status fallback classified page as %s", state.value)
        return report.model_copy(update={"state": state, "detail": f"ai:{status.page_type}"})
