"""
Extraction strategies tried by the orchestrator, cheapest and most reliable
first: intercepted API responses, DOM heuristics, AI text, AI vision.

Each strategy returns (records, error). The orchestrator wraps every call,
so an exception here is contained and recorded as a zero-record attempt.
"""

import logging
from typing import List, Optional, Tuple

from .ai_text import AITextAnalyzer
from .ai_vision import AIVisionAnalyzer
from .browser_host import evaluate_within
from .cancel import CancelToken
from .dom_extractor import DomExtractor
from .interceptor import ResponseInterceptor
from .models import JobRecord, SourceStrategy, VisualJobCard
from .normalize import classify_open, parse_salary
from .session_registry import ExtractionSession

logger = logging.getLogger(__name__)

StrategyResult = Tuple[List[JobRecord], Optional[str]]

OUTER_HTML_SCRIPT = "document.documentElement.outerHTML"


class ExtractionStrategy:
    """Interface: a named way of turning a session into job records."""

    name: SourceStrategy

    async def attempt(self, session: ExtractionSession, cancel: CancelToken) -> StrategyResult:
        raise NotImplementedError


class InterceptionStrategy(ExtractionStrategy):
    name = SourceStrategy.INTERCEPTION

    def __init__(self, interceptor: ResponseInterceptor, timeout_seconds: float = 15.0):
        self.interceptor = interceptor
        self.timeout_seconds = timeout_seconds

    async def attempt(self, session: ExtractionSession, cancel: CancelToken) -> StrategyResult:
        if not self.interceptor.is_listening(session.account_id):
            return [], "interceptor_not_listening"
        records = await self.interceptor.wait_for_records(
            session.account_id, timeout=self.timeout_seconds, cancel=cancel,
        )
        return records, None if records else "no_intercepted_responses"


class DomStrategy(ExtractionStrategy):
    name = SourceStrategy.DOM

    def __init__(self, extractor: DomExtractor):
        self.extractor = extractor

    async def attempt(self, session: ExtractionSession, cancel: CancelToken) -> StrategyResult:
        records = await self.extractor.extract(session.host, session.platform, cancel)
        return records, self.extractor.last_error


class AiTextStrategy(ExtractionStrategy):
    name = SourceStrategy.AI_TEXT

    def __init__(self, analyzer: AITextAnalyzer, script_timeout: float = 10.0):
        self.analyzer = analyzer
        self.script_timeout = script_timeout

    async def attempt(self, session: ExtractionSession, cancel: CancelToken) -> StrategyResult:
        if not self.analyzer.enabled:
            return [], "ai_text_disabled"
        html = await evaluate_within(session.host, OUTER_HTML_SCRIPT, self.script_timeout, cancel)
        if not html.success or not html.value:
            return [], f"html_unavailable: {html.message}"
        records = await self.analyzer.analyze_list_page(str(html.value), session.platform, cancel)
        return records, self.analyzer.last_error


def record_from_card(card: VisualJobCard) -> JobRecord:
    salary_min, salary_max, salary_months = parse_salary(card.salary_text)
    return JobRecord(
        title=card.title,
        salary_text=card.salary_text,
        salary_min=salary_min,
        salary_max=salary_max,
        salary_months=salary_months,
        location=card.location,
        experience_required=card.experience,
        education_required=card.education,
        is_open=classify_open(""),
        source_strategy=SourceStrategy.AI_VISION,
    )


class AiVisionStrategy(ExtractionStrategy):
    name = SourceStrategy.AI_VISION

    def __init__(self, analyzer: AIVisionAnalyzer):
        self.analyzer = analyzer

    async def attempt(self, session: ExtractionSession, cancel: CancelToken) -> StrategyResult:
        if not self.analyzer.enabled:
            return [], "ai_vision_disabled"
        png = await cancel.guard(session.host.capture_screenshot())
        analysis = await self.analyzer.analyze_screenshot(png, cancel)
        if analysis.error:
            return [], analysis.error
        if analysis.need_login:
            return [], "vision_detected_login"
        records = [record_from_card(card) for card in analysis.job_cards if card.title]
        return records, None if records else "no_records"


def default_strategies(
    interceptor: ResponseInterceptor,
    dom_extractor: DomExtractor,
    text_analyzer: AITextAnalyzer,
    vision_analyzer: AIVisionAnalyzer,
    interception_timeout: float = 15.0,
    script_timeout: float = 10.0,
) -> List[ExtractionStrategy]:
    """The fixed priority order of the cascade."""
    return [
        InterceptionStrategy(interceptor, interception_timeout),
        DomStrategy(dom_extractor),
        AiTextStrategy(text_analyzer, script_timeout),
        AiVisionStrategy(vision_analyzer),
    ]
