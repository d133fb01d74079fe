"""
DOM Extractor - reads job cards straight from the rendered page.

One in-page script tries selector groups in priority order (job-card
classes, data attributes, table rows) and probes each matched element for
its fields. When no group matches, the page text is split on the status
marker and each segment is mined with regexes.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from .browser_host import BrowserHost, evaluate_within
from .cancel import CancelToken
from .models import JobRecord, SourceStrategy
from .normalize import classify_open, parse_salary, records_from_items

logger = logging.getLogger(__name__)

EXTRACT_SCRIPT = r"""
(() => {
    const groups = [
        {name: 'job_cards', selector: '.job-card, .job-card-wrapper, .position-item, .job-item, .job-list-item, [class*="job-card"], [class*="position-item"]'},
        {name: 'data_attributes', selector: '[data-job-id], [data-jobid], [data-encrypt-id], [data-id][class*="job"]'},
        {name: 'table_rows', selector: 'tr[class*="job"], .position-row, table tbody tr'}
    ];
    const fields = {
        title: ['.job-name', '.job-title', '.position-name', '[class*="job-name"]', '[class*="job-title"]', '[class*="title"]', 'a[href*="/job"]', 'h3', 'h4'],
        salaryText: ['.salary', '.job-salary', '[class*="salary"]', '.red'],
        location: ['.job-area', '.job-location', '.city', '[class*="area"]', '[class*="city"]', '[class*="location"]'],
        experience: ['.job-experience', '[class*="experience"]', '[class*="exp"]'],
        education: ['.job-degree', '.job-education', '[class*="degree"]', '[class*="edu"]'],
        statusText: ['.job-status', '.status', '[class*="status"]', '[class*="state"]']
    };
    const textOf = (root, selectors) => {
        for (const s of selectors) {
            const el = root.querySelector(s);
            const t = el && el.innerText ? el.innerText.trim() : '';
            if (t) return t.split('\n')[0].trim();
        }
        return '';
    };
    for (const g of groups) {
        const nodes = Array.from(document.querySelectorAll(g.selector));
        if (!nodes.length) continue;
        const items = nodes.map((n) => {
            const link = n.matches('a[href]') ? n : n.querySelector('a[href]');
            const item = {
                platformJobId: n.getAttribute('data-job-id') || n.getAttribute('data-jobid') ||
                    n.getAttribute('data-encrypt-id') || n.getAttribute('data-id') || '',
                pageUrl: link ? link.href : ''
            };
            for (const [key, selectors] of Object.entries(fields)) item[key] = textOf(n, selectors);
            if (!item.title && g.name === 'table_rows') {
                const cell = n.querySelector('td');
                item.title = cell && cell.innerText ? cell.innerText.trim().split('\n')[0] : '';
            }
            return item;
        });
        return JSON.stringify({group: g.name, items: items});
    }
    return JSON.stringify({group: null, items: [], text: document.body ? document.body.innerText : ''});
})()
"""

TITLE_PATTERN = re.compile(
    r"([A-Za-z一-龥]+(?:工程师|经理|主管|专员|开发|运营|产品|测试|设计师|[A-Za-z]+))"
)
SALARY_TEXT_PATTERN = re.compile(
    r"\d+(?:\.\d+)?\s*-\s*\d+(?:\.\d+)?\s*[Kk万](?:\s*[·・]\s*\d+\s*薪)?"
)
MAX_TITLE_LINE = 40


def _pick_title(lines: List[str]) -> str:
    for line in lines:
        if SALARY_TEXT_PATTERN.search(line):
            continue
        match = TITLE_PATTERN.search(line)
        if match:
            return line if len(line) <= MAX_TITLE_LINE else match.group(1)
    return ""


def segment_page_text(text: str, marker: str = "开放中", max_chars: int = 500) -> List[JobRecord]:
    """
    Split page text on a status marker and mine each preceding segment.

    Only the last `max_chars` characters of a segment are considered, so
    headers and navigation before the first card are ignored.
    """
    if not text or not marker or marker not in text:
        return []

    records: List[JobRecord] = []
    for segment in text.split(marker)[:-1]:
        tail = segment[-max_chars:]
        lines = [line.strip() for line in tail.splitlines() if line.strip()]
        title = _pick_title(lines)
        if not title:
            continue
        salary_match = SALARY_TEXT_PATTERN.search(tail)
        salary_text = salary_match.group(0).replace(" ", "") if salary_match else ""
        salary_min, salary_max, salary_months = parse_salary(salary_text)
        records.append(JobRecord(
            title=title,
            salary_text=salary_text,
            salary_min=salary_min,
            salary_max=salary_max,
            salary_months=salary_months,
            status_text=marker,
            is_open=classify_open(marker),
            source_strategy=SourceStrategy.DOM,
        ))
    return records


class DomExtractor:
    """Extracts job records from the live DOM of a listing page."""

    def __init__(self, status_marker: str = "开放中", segment_max_chars: int = 500,
                 script_timeout: float = 10.0):
        self.status_marker = status_marker
        self.segment_max_chars = segment_max_chars
        self.script_timeout = script_timeout
        self.last_group: Optional[str] = None
        self.last_error: Optional[str] = None

    @classmethod
    def from_config(cls, config) -> "DomExtractor":
        return cls(
            status_marker=config.get_status_marker(),
            segment_max_chars=config.get_segment_max_chars(),
            script_timeout=config.get_script_timeout(),
        )

    def parse_snapshot(self, snapshot: Dict[str, Any]) -> List[JobRecord]:
        """Turn the extraction script's output into records."""
        self.last_group = snapshot.get("group")
        if self.last_group:
            items = snapshot.get("items") or []
            records = records_from_items(items, SourceStrategy.DOM)
            logger.info(
                "DOM group '%s' matched %s elements, %s with titles",
                self.last_group, len(items), len(records),
            )
            return records

        records = segment_page_text(
            str(snapshot.get("text") or ""),
            marker=self.status_marker,
            max_chars=self.segment_max_chars,
        )
        self.last_group = "text_segments" if records else None
        logger.info("DOM selectors matched nothing; text segmentation found %s records", len(records))
        return records

    async def extract(self, host: BrowserHost, platform: Optional[str] = None,
                      cancel: Optional[CancelToken] = None) -> List[JobRecord]:
        self.last_error = None
        self.last_group = None
        result = await evaluate_within(host, EXTRACT_SCRIPT, self.script_timeout, cancel or CancelToken())
        if not result.success:
            self.last_error = f"script_failed: {result.message}"
            logger.warning("DOM extraction script failed on %s page: %s", platform or "unknown", result.message)
            return []
        snapshot = result.json()
        if not isinstance(snapshot, dict):
            self.last_error = "script_unreadable"
            return []
        records = self.parse_snapshot(snapshot)
        if not records:
            self.last_error = "no_records"
        return records
