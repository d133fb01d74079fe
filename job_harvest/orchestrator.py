"""
Extraction Orchestrator - runs the strategy cascade for one account.

    idle -> settling -> checking_readiness -> {need_login | blocked | attempting} -> done

Only this module decides the final status. Strategies are wrapped so that
their failures become zero-record outcomes; session loss and caller
cancellation end the run early with diagnostics attached.
"""

import asyncio
import logging
import time
from typing import Iterable, List, Optional, Tuple

from .ai_text import AITextAnalyzer
from .ai_vision import AIVisionAnalyzer
from .browser_host import evaluate_within
from .cancel import CancelToken
from .diagnostics import ExtractionDiagnostics
from .dom_extractor import DomExtractor
from .errors import ExtractionCancelled, SessionUnavailable
from .interceptor import ResponseInterceptor
from .models import (
    ExtractionResult,
    ExtractionStatus,
    JobRecord,
    PageState,
    ReadinessReport,
    StrategyOutcome,
)
from .normalize import apply_job_detail, finalize_records
from .pacing import HumanPacer
from .readiness import ReadinessClassifier
from .session_registry import ExtractionSession, SessionRegistry
from .strategies import OUTER_HTML_SCRIPT, ExtractionStrategy, default_strategies

logger = logging.getLogger(__name__)


class ExtractionOrchestrator:
    """Sequences pacing, readiness and the strategy cascade per account."""

    def __init__(
        self,
        registry: SessionRegistry,
        strategies: List[ExtractionStrategy],
        pacer: HumanPacer,
        readiness: ReadinessClassifier,
        interceptor: Optional[ResponseInterceptor] = None,
        readiness_timeout_ms: int = 20000,
        detail_analyzer: Optional[AITextAnalyzer] = None,
        script_timeout: float = 10.0,
    ):
        self.registry = registry
        self.strategies = list(strategies)
        self.pacer = pacer
        self.readiness = readiness
        self.interceptor = interceptor
        self.readiness_timeout_ms = readiness_timeout_ms
        self.detail_analyzer = detail_analyzer
        self.script_timeout = script_timeout

    @classmethod
    def from_config(cls, config, registry: SessionRegistry,
                    interceptor: Optional[ResponseInterceptor] = None,
                    transport=None, rng=None) -> "ExtractionOrchestrator":
        """Wire the default components from a ConfigLoader."""
        interceptor = interceptor or ResponseInterceptor.from_config(config)
        pacer = HumanPacer(config, rng=rng)
        text_analyzer = AITextAnalyzer.from_config(config, pacer=pacer, transport=transport)
        vision_analyzer = AIVisionAnalyzer.from_config(config, transport=transport)
        strategies = default_strategies(
            interceptor,
            DomExtractor.from_config(config),
            text_analyzer,
            vision_analyzer,
            interception_timeout=config.get_interception_timeout_ms() / 1000.0,
            script_timeout=config.get_script_timeout(),
        )
        return cls(
            registry,
            strategies,
            pacer,
            ReadinessClassifier(config, status_analyzer=text_analyzer),
            interceptor=interceptor,
            readiness_timeout_ms=config.get_readiness_timeout_ms(),
            detail_analyzer=text_analyzer,
            script_timeout=config.get_script_timeout(),
        )

    async def extract_jobs(self, account_id: str, cancel: Optional[CancelToken] = None) -> ExtractionResult:
        """Run one extraction for an account. Never raises; the status says what happened."""
        cancel = cancel or CancelToken()
        diagnostics = ExtractionDiagnostics(account_id=account_id)
        lock = self.registry.lock_for(account_id)

        if lock.locked():
            logger.info("Account %s busy; waiting for the running extraction", account_id)
            diagnostics.record_event("lock_wait")
        try:
            await cancel.guard(lock.acquire())
        except ExtractionCancelled:
            return self._finish(diagnostics, ExtractionStatus.CANCELLED, reason="cancelled")

        try:
            return await self._run(account_id, cancel, diagnostics)
        finally:
            lock.release()

    async def extract_many(self, account_ids: Iterable[str],
                           cancel: Optional[CancelToken] = None) -> List[ExtractionResult]:
        """Run extractions for several accounts concurrently."""
        cancel = cancel or CancelToken()
        return list(await asyncio.gather(*(self.extract_jobs(a, cancel) for a in account_ids)))

    async def read_job_detail(self, account_id: str, record: JobRecord,
                              cancel: Optional[CancelToken] = None) -> JobRecord:
        """
        Open a record's detail page and merge what the AI analyzer reads there.

        Any failure leaves the record unchanged; only cancellation raises.
        Holds the account lock, so it never overlaps an extraction.
        """
        cancel = cancel or CancelToken()
        if not record.page_url or self.detail_analyzer is None:
            return record

        lock = self.registry.lock_for(account_id)
        await cancel.guard(lock.acquire())
        try:
            session = self.registry.get(account_id)
            if session is None:
                raise SessionUnavailable(f"no session registered for account {account_id}")
            session.host.ensure_alive()
            await cancel.guard(session.host.navigate(record.page_url))
            await cancel.sleep(self.pacer.settle_delay())

            html = await evaluate_within(session.host, OUTER_HTML_SCRIPT, self.script_timeout, cancel)
            if not html.success or not isinstance(html.value, str):
                logger.warning("Could not read detail page %s: %s", record.page_url, html.message)
                return record

            detail = await self.detail_analyzer.analyze_detail_page(html.value, session.platform, cancel)
            if detail is None:
                logger.warning("Detail analysis for %s gave nothing: %s",
                               record.page_url, self.detail_analyzer.last_error)
                return record
            return apply_job_detail(record, detail)
        except ExtractionCancelled:
            raise
        except Exception as exc:
            logger.warning("Failed to read detail page %s for account %s: %s",
                           record.page_url, account_id, exc)
            return record
        finally:
            lock.release()

    async def _run(self, account_id: str, cancel: CancelToken,
                   diagnostics: ExtractionDiagnostics) -> ExtractionResult:
        outcomes: List[StrategyOutcome] = []
        try:
            session = self.registry.get(account_id)
            if session is None:
                raise SessionUnavailable(f"no session registered for account {account_id}")
            session.host.ensure_alive()
            session.attempted_strategies = outcomes

            if session.job_list_url:
                diagnostics.enter_phase("navigating")
                if self.interceptor is not None:
                    self.interceptor.clear(account_id)
                await cancel.guard(session.host.navigate(session.job_list_url))

            diagnostics.enter_phase("settling")
            delay = self.pacer.settle_delay()
            diagnostics.set_gauge("settle_delay_ms", int(delay * 1000))
            await cancel.sleep(delay)

            diagnostics.enter_phase("checking_readiness")
            readiness = await self.readiness.poll_until_ready(session.host, self.readiness_timeout_ms, cancel)
            self._record_readiness(diagnostics, readiness)
            if readiness.state == PageState.LOGIN_REQUIRED:
                logger.warning("Account %s needs login (%s)", account_id, readiness.detail)
                return self._finish(diagnostics, ExtractionStatus.NEED_LOGIN, reason="login_required")
            if readiness.state == PageState.BLOCKED:
                logger.warning("Account %s hit an anti-automation challenge (%s)", account_id, readiness.detail)
                return self._finish(diagnostics, ExtractionStatus.BLOCKED, reason=readiness.detail or "blocked")

            diagnostics.enter_phase("scrolling")
            scroll = await self.pacer.scroll_sequence(session.host, cancel)
            diagnostics.set_gauge("scrolls", scroll.scrolls)
            diagnostics.set_gauge("candidates_found", scroll.candidates_found)
            diagnostics.set_gauge("reloaded", scroll.reloaded)

            diagnostics.enter_phase("attempting")
            return await self._cascade(session, readiness, outcomes, cancel, diagnostics)

        except ExtractionCancelled:
            logger.info("Extraction for account %s cancelled during %s", account_id, diagnostics.phase)
            return self._finish(diagnostics, ExtractionStatus.CANCELLED, outcomes=outcomes, reason="cancelled")
        except SessionUnavailable as exc:
            logger.error("Session unavailable for account %s: %s", account_id, exc)
            return self._finish(diagnostics, ExtractionStatus.ERROR, outcomes=outcomes,
                                reason=f"session_unavailable: {exc}")
        except Exception as exc:
            logger.error("Extraction for account %s failed during %s: %s",
                         account_id, diagnostics.phase, exc, exc_info=True)
            return self._finish(diagnostics, ExtractionStatus.ERROR, outcomes=outcomes,
                                reason=f"{type(exc).__name__}: {exc}")

    async def _cascade(self, session: ExtractionSession, readiness: ReadinessReport,
                       outcomes: List[StrategyOutcome], cancel: CancelToken,
                       diagnostics: ExtractionDiagnostics) -> ExtractionResult:
        reason = "no_strategies"
        for strategy in self.strategies:
            cancel.raise_if_cancelled()
            session.host.ensure_alive()
            outcome, records = await self._attempt(strategy, session, cancel)
            outcomes.append(outcome)
            diagnostics.record_strategy(outcome)
            if records:
                jobs = finalize_records(records)
                status = ExtractionStatus.SUCCESS if readiness.ready else ExtractionStatus.PARTIAL_SUCCESS
                logger.info(
                    "Account %s: %s jobs via %s (%s)",
                    session.account_id, len(jobs), outcome.strategy.value, status.value,
                )
                return self._finish(diagnostics, status, jobs=jobs, outcomes=outcomes)
            reason = outcome.error or "no_records"

        logger.warning("Account %s: every strategy came back empty (last: %s)", session.account_id, reason)
        return self._finish(diagnostics, ExtractionStatus.ERROR, outcomes=outcomes, reason=reason)

    async def _attempt(self, strategy: ExtractionStrategy, session: ExtractionSession,
                       cancel: CancelToken) -> Tuple[StrategyOutcome, List[JobRecord]]:
        """Run one strategy; any failure other than cancellation or session loss becomes zero records."""
        started = time.monotonic()
        try:
            records, error = await cancel.guard(strategy.attempt(session, cancel))
            records = list(records or [])
        except (ExtractionCancelled, SessionUnavailable):
            raise
        except Exception as exc:
            logger.warning("Strategy %s failed for account %s: %s",
                           strategy.name.value, session.account_id, exc, exc_info=True)
            records, error = [], f"{type(exc).__name__}: {exc}"

        outcome = StrategyOutcome(
            strategy=strategy.name,
            record_count=len(records),
            elapsed_ms=int((time.monotonic() - started) * 1000),
            error=None if records else (error or "no_records"),
        )
        logger.debug("Strategy %s -> %s records (%s)", strategy.name.value, len(records), outcome.error)
        return outcome, records

    def _record_readiness(self, diagnostics: ExtractionDiagnostics, readiness: ReadinessReport) -> None:
        diagnostics.set_gauge("page_state", readiness.state.value)
        diagnostics.set_gauge("ready", readiness.ready)
        diagnostics.set_gauge("readiness_polls", readiness.polls)
        diagnostics.set_gauge("readiness_elapsed_ms", readiness.elapsed_ms)
        if readiness.detail:
            diagnostics.set_gauge("readiness_detail", readiness.detail)

    def _finish(self, diagnostics: ExtractionDiagnostics, status: ExtractionStatus,
                jobs: Optional[List[JobRecord]] = None,
                outcomes: Optional[List[StrategyOutcome]] = None,
                reason: Optional[str] = None) -> ExtractionResult:
        jobs = jobs or []
        outcomes = list(outcomes or [])
        diagnostics.set_gauge("ended_in_phase", diagnostics.phase)
        diagnostics.enter_phase("done")
        diagnostics.inc("jobs", len(jobs))
        diagnostics.finish()
        return ExtractionResult(
            account_id=diagnostics.account_id,
            status=status,
            jobs=jobs,
            outcomes=outcomes,
            reason=reason,
            diagnostics=diagnostics.to_dict(),
        )
