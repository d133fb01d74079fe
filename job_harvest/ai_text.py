"""
AI Text Analyzer - extracts job records, page status and detail-page
fields from page HTML with an LLM.

Failures (missing key, HTTP errors, timeouts, unparseable replies) never
raise: the analyzer returns an empty result and keeps the cause in
`last_error`. Only cancellation propagates.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from .ai_client import EndpointSettings, OpenAICompatClient
from .cancel import CancelToken
from .errors import ExtractionCancelled
from .llm_json import as_bool, get_case_insensitive, parse_json_array, parse_json_object
from .models import JobDetail, JobRecord, PageStatus, SourceStrategy
from .normalize import records_from_items

logger = logging.getLogger(__name__)

PLATFORM_NAMES = {
    "boss": "BOSS直聘",
    "zhilian": "智联招聘",
    "job51": "前程无忧",
    "liepin": "猎聘",
}

SYSTEM_PROMPT = (
    "You are a precise data extraction assistant for recruiting websites. "
    "Reply with JSON only, no commentary."
)

LIST_PROMPT = """Extract every job posting from this {platform} job management page HTML.

Return a JSON array. Each element must have these fields:
- platformJobId: the platform job id if visible, else ""
- title: job title (required)
- salaryText: salary as shown, e.g. "15-25K·13薪"
- location: city or district
- experienceRequired: experience requirement
- educationRequired: education requirement
- pageUrl: link to the job detail page if present, else ""
- isOpen: true if the job is currently open/recruiting
- statusText: the status label as shown

If there are no jobs, return [].

HTML:
{html}"""

STATUS_PROMPT = """Classify this {platform} page.

Return a JSON object with fields:
- loaded: true if the page finished loading
- needLogin: true if the page asks the user to log in
- isJobList: true if this is a job list / job management page
- hasJobs: true if at least one job posting is visible
- pageType: one of "job_list", "login", "empty", "error", "other"

URL: {url}

HTML:
{html}"""

DETAIL_PROMPT = """Read this {platform} job detail page HTML.

Return a JSON object with fields:
- description: the job description text
- requirements: the candidate requirements text
- address: the work address
- tags: list of skill or keyword tags shown on the page
- benefits: list of benefits (insurance, bonus, ...)
- companyName: the hiring company

Use "" or [] for anything not on the page.

HTML:
{html}"""

OPEN_PROMPT = """Is the job shown in this HTML fragment currently open for applications?
Answer with exactly one word: YES, NO or UNKNOWN.

HTML:
{html}"""

MAX_OPEN_CHECK_CHARS = 1000

_SCRIPT_STYLE_PATTERN = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_COMMENT_PATTERN = re.compile(r"<!--.*?-->", re.DOTALL)
_WHITESPACE_PATTERN = re.compile(r"\s+")
TRUNCATION_SUFFIX = "...[truncated]"


def truncate_html(html: str, max_chars: int) -> str:
    """Strip script/style/comments, collapse whitespace, cap length."""
    cleaned = _SCRIPT_STYLE_PATTERN.sub("", html or "")
    cleaned = _COMMENT_PATTERN.sub("", cleaned)
    cleaned = _WHITESPACE_PATTERN.sub(" ", cleaned).strip()
    if len(cleaned) <= max_chars:
        return cleaned
    return cleaned[:max_chars] + TRUNCATION_SUFFIX


def platform_name(platform_hint: Optional[str]) -> str:
    hint = (platform_hint or "").strip()
    return PLATFORM_NAMES.get(hint.lower(), hint or "recruiting site")


class AITextAnalyzer:
    """Turns page HTML into JobRecords or a PageStatus via an LLM."""

    def __init__(self, client: OpenAICompatClient, pacer=None, enabled: bool = True,
                 max_list_chars: int = 8000, max_status_chars: int = 3000):
        self.client = client
        self.pacer = pacer
        self.enabled = enabled
        self.max_list_chars = max_list_chars
        self.max_status_chars = max_status_chars
        self.last_error: Optional[str] = None

    @classmethod
    def from_config(cls, config, pacer=None, transport=None) -> "AITextAnalyzer":
        settings = EndpointSettings.from_config(config, "ai_text")
        return cls(
            OpenAICompatClient(settings, transport=transport),
            pacer=pacer,
            enabled=config.is_ai_enabled("ai_text"),
            max_list_chars=config.get_max_list_chars(),
            max_status_chars=config.get_max_status_chars(),
        )

    def _fail(self, what: str, exc: Exception) -> None:
        self.last_error = f"{type(exc).__name__}: {exc}"
        logger.warning(
            "AI %s failed (provider=%s, model=%s): %s",
            what, self.client.settings.provider, self.client.settings.model, exc,
        )

    def _check_ready(self) -> bool:
        if not self.enabled:
            self.last_error = "ai_text_disabled"
            return False
        if not self.client.is_configured():
            self.last_error = f"missing_api_key:{self.client.settings.api_key_env}"
            logger.warning("AI text analysis skipped: %s is not set", self.client.settings.api_key_env)
            return False
        return True

    async def analyze_list_page(
        self,
        html: str,
        platform_hint: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> List[JobRecord]:
        """Extract job records from list-page HTML; [] on any failure."""
        cancel = cancel or CancelToken()
        self.last_error = None
        if not self._check_ready():
            return []

        prompt = LIST_PROMPT.format(
            platform=platform_name(platform_hint),
            html=truncate_html(html, self.max_list_chars),
        )
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        try:
            if self.pacer is not None:
                await cancel.sleep(self.pacer.reading_delay())
            reply = await cancel.guard(self.client.chat(messages))
            items = parse_json_array(reply)
        except ExtractionCancelled:
            raise
        except Exception as exc:
            self._fail("list analysis", exc)
            return []

        records = records_from_items(items, SourceStrategy.AI_TEXT)
        logger.info("AI text analysis extracted %s records", len(records))
        if not records:
            self.last_error = "no_records"
        return records

    async def analyze_page_status(
        self,
        html: str,
        url: str = "",
        cancel: Optional[CancelToken] = None,
    ) -> PageStatus:
        """Classify a page (login wall, job list, empty); default PageStatus on failure."""
        cancel = cancel or CancelToken()
        self.last_error = None
        if not self._check_ready():
            return PageStatus()

        prompt = STATUS_PROMPT.format(
            platform="recruiting",
            url=url or "unknown",
            html=truncate_html(html, self.max_status_chars),
        )
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        try:
            reply = await cancel.guard(self.client.chat(messages))
            payload = parse_json_object(reply)
        except ExtractionCancelled:
            raise
        except Exception as exc:
            self._fail("page status", exc)
            return PageStatus()

        return PageStatus(
            loaded=as_bool(get_case_insensitive(payload, "loaded")),
            need_login=as_bool(get_case_insensitive(payload, "needLogin")),
            is_job_list=as_bool(get_case_insensitive(payload, "isJobList")),
            has_jobs=as_bool(get_case_insensitive(payload, "hasJobs")),
            page_type=str(get_case_insensitive(payload, "pageType", default="unknown")),
        )

    async def analyze_detail_page(
        self,
        html: str,
        platform_hint: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[JobDetail]:
        """Read description, requirements, tags and benefits from a detail page; None on failure."""
        cancel = cancel or CancelToken()
        self.last_error = None
        if not self._check_ready():
            return None

        prompt = DETAIL_PROMPT.format(
            platform=platform_name(platform_hint),
            html=truncate_html(html, self.max_list_chars),
        )
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        try:
            if self.pacer is not None:
                await cancel.sleep(self.pacer.reading_delay())
            reply = await cancel.guard(self.client.chat(messages))
            payload = parse_json_object(reply)
        except ExtractionCancelled:
            raise
        except Exception as exc:
            self._fail("detail analysis", exc)
            return None

        return JobDetail(
            description=_text(get_case_insensitive(payload, "description")),
            requirements=_text(get_case_insensitive(payload, "requirements")),
            address=_text(get_case_insensitive(payload, "address")),
            tags=_text_list(get_case_insensitive(payload, "tags")),
            benefits=_text_list(get_case_insensitive(payload, "benefits")),
            company_name=_text(get_case_insensitive(payload, "companyName")),
        )

    async def is_job_open(self, element_html: str, cancel: Optional[CancelToken] = None) -> bool:
        """Ask whether a job card is open. Anything but a clear YES counts as not open."""
        cancel = cancel or CancelToken()
        self.last_error = None
        if not self._check_ready():
            return False

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": OPEN_PROMPT.format(html=truncate_html(element_html, MAX_OPEN_CHECK_CHARS))},
        ]
        try:
            reply = await cancel.guard(self.client.chat(messages))
        except ExtractionCancelled:
            raise
        except Exception as exc:
            self._fail("open check", exc)
            return False

        answer = reply.strip().strip("`\"'.").upper()
        return answer == "YES"


def _text(value) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def _text_list(value) -> List[str]:
    if isinstance(value, str):
        value = re.split(r"[,，、/|]", value)
    if not isinstance(value, list):
        return []
    return [_text(item) for item in value if _text(item)]
