"""
Human pacing - randomized delays and scroll sequences.

Every delay is drawn from a configured range so no two runs share a timing
fingerprint. All waits go through the CancelToken.
"""

import logging
import random
from typing import Optional, Tuple

from .browser_host import BrowserHost, evaluate_within
from .cancel import CancelToken
from .errors import ExtractionCancelled, SessionUnavailable
from .models import ScrollReport

logger = logging.getLogger(__name__)

CANDIDATE_SELECTOR = (
    '.job-card, .position-item, [class*="job-card"], [class*="position-item"], '
    '.job-item, [data-job-id], tr[class*="job"], .job-list-item, '
    'a[href*="/job/"], a[href*="/web/job/"]'
)

COUNT_CANDIDATES_SCRIPT = """
(() => {
    const nodes = document.querySelectorAll('%s');
    let visible = 0;
    nodes.forEach((n) => { if (n.offsetParent !== null || n.getClientRects().length) visible++; });
    return visible;
})()
""" % CANDIDATE_SELECTOR.replace("'", "\\'")

SCROLL_TO_TOP_SCRIPT = "window.scrollTo({top: 0, behavior: 'smooth'})"

HESITATION_RANGE_MS = (200, 800)


class HumanPacer:
    """Produces human-like delays and drives scroll sequences on a host."""

    def __init__(self, config, rng: Optional[random.Random] = None):
        self.config = config
        self.rng = rng or random.Random()
        self.settle_range = config.get_pacing_range_ms('settle', 500, 1500)
        self.reading_range = config.get_pacing_range_ms('reading', 500, 1500)
        self.scroll_pause_range = config.get_pacing_range_ms('scroll_pause', 600, 1200)
        self.scroll_distance_range = config.get_scroll_distance_range()
        self.scroll_count = config.get_scroll_count()
        self.top_pause_ms = config.get_top_pause_ms()
        self.nudge_distance = config.get_nudge_distance()
        self.reload_on_empty = config.is_reload_on_empty_enabled()
        self.reload_wait_ms = config.get_reload_wait_ms()
        self.hesitation_chance = config.get_hesitation_chance()
        self.script_timeout = config.get_script_timeout()

    def _uniform_seconds(self, range_ms: Tuple[float, float]) -> float:
        low, high = range_ms
        return self.rng.uniform(low, high) / 1000.0

    def settle_delay(self) -> float:
        """Seconds to wait after a navigation before touching the page."""
        return self._uniform_seconds(self.settle_range)

    def reading_delay(self) -> float:
        """Seconds a human would spend reading before an AI-assisted step."""
        return self._uniform_seconds(self.reading_range)

    def scroll_pause(self) -> float:
        pause = self._uniform_seconds(self.scroll_pause_range)
        if self.hesitation_chance > 0 and self.rng.random() < self.hesitation_chance:
            pause += self._uniform_seconds(HESITATION_RANGE_MS)
        return pause

    def scroll_distance(self) -> int:
        low, high = self.scroll_distance_range
        return self.rng.randint(int(low), int(high))

    async def _run(self, host: BrowserHost, script: str, cancel: CancelToken) -> bool:
        result = await evaluate_within(host, script, self.script_timeout, cancel)
        if not result.success:
            logger.debug("Pacing script failed (non-critical): %s", result.message)
        return result.success

    async def _scroll_pass(self, host: BrowserHost, cancel: CancelToken) -> int:
        scrolls = 0
        for _ in range(self.scroll_count):
            cancel.raise_if_cancelled()
            await self._run(host, "window.scrollBy(0, %d)" % self.scroll_distance(), cancel)
            scrolls += 1
            await cancel.sleep(self.scroll_pause())

        await self._run(host, SCROLL_TO_TOP_SCRIPT, cancel)
        await cancel.sleep(self.top_pause_ms / 1000.0)
        await self._run(host, "window.scrollBy(0, %d)" % self.nudge_distance, cancel)
        await cancel.sleep(self.scroll_pause())
        return scrolls

    async def count_candidates(self, host: BrowserHost, cancel: Optional[CancelToken] = None) -> int:
        """Count visible elements that look like job cards."""
        result = await evaluate_within(host, COUNT_CANDIDATES_SCRIPT, self.script_timeout, cancel or CancelToken())
        if not result.success:
            logger.debug("Candidate probe failed: %s", result.message)
            return 0
        try:
            return int(result.value or 0)
        except (TypeError, ValueError):
            return 0

    async def scroll_sequence(self, host: BrowserHost, cancel: CancelToken) -> ScrollReport:
        """
        Scroll like a reader to trigger lazy loading.

        When no job candidates are visible afterwards, reload the page once
        and repeat the sequence once. No further retries.
        """
        report = ScrollReport()
        report.scrolls += await self._scroll_pass(host, cancel)
        report.candidates_found = await self.count_candidates(host, cancel)
        if report.candidates_found > 0 or not self.reload_on_empty:
            logger.debug("Scroll sequence found %s candidates", report.candidates_found)
            return report

        url = host.current_url
        if not url:
            return report

        logger.info("No job candidates visible; reloading %s once", url)
        try:
            await cancel.guard(host.navigate(url))
        except (ExtractionCancelled, SessionUnavailable):
            raise
        except Exception as exc:
            logger.warning("Reload failed: %s", exc)
            return report
        report.reloaded = True
        await cancel.sleep(self.reload_wait_ms / 1000.0)
        report.scrolls += await self._scroll_pass(host, cancel)
        report.candidates_found = await self.count_candidates(host, cancel)
        logger.debug("After reload: %s candidates", report.candidates_found)
        return report
