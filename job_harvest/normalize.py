"""
Record normalization shared by every extraction strategy.

- salary text parsing into (min, max, months) in thousands
- open/closed status classification
- alias-based mapping of raw dicts into JobRecord
- in-run de-duplication and synthetic ids
- detail-page enrichment and tech keyword tagging
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .models import JobDetail, JobRecord, SourceStrategy

logger = logging.getLogger(__name__)

SALARY_RANGE_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*[-~～至]\s*(\d+(?:\.\d+)?)\s*([Kk千万]?)")
SALARY_MONTHS_PATTERN = re.compile(r"(\d+)\s*薪")

OPEN_KEYWORDS = ("开放", "招聘中", "在线", "发布中", "open", "hiring", "active")
CLOSED_KEYWORDS = (
    "关闭", "下线", "暂停", "审核", "草稿", "过期",
    "close", "offline", "paused", "expired", "draft",
)
CLOSED_CODES = ("0", "false")

# Ordered alias lists: first non-empty key wins.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "platform_job_id": ("encryptJobId", "jobId", "platformJobId", "id", "encryptId"),
    "title": ("jobName", "positionName", "title", "name"),
    "salary_text": ("salaryDesc", "salaryText", "salary", "salaryRange"),
    "location": ("cityName", "city", "location", "locationName", "areaDistrict"),
    "experience_required": (
        "jobExperience", "experienceRequired", "experience", "workYear", "experienceName",
    ),
    "education_required": (
        "jobDegree", "educationRequired", "degree", "education", "degreeName",
    ),
    "status_text": ("jobStatusDesc", "statusText", "jobStatus", "status"),
    "company_name": ("brandName", "companyName", "company"),
    "page_url": ("pageUrl", "jobUrl", "url", "link", "href"),
}
LABEL_KEYS = ("jobLabels", "labels", "skills")
OPEN_FLAG_KEYS = ("isOpen", "is_open", "open")

TECH_KEYWORDS = (
    "Java", "Python", "C#", "JavaScript", "TypeScript", "Go", "Rust",
    "React", "Vue", "Angular", "Node.js", ".NET", "Spring",
    "MySQL", "PostgreSQL", "MongoDB", "Redis", "Elasticsearch",
    "Docker", "Kubernetes", "AWS", "Azure", "Linux",
)
MAX_KEYWORDS = 20


def parse_salary(text: Optional[str]) -> Tuple[Optional[int], Optional[int], Optional[int]]:
    """
    Parse salary text into (min, max, months), amounts in thousands per month.

    "15-25K·13薪" -> (15, 25, 13); "1.5-2万" -> (15, 20, None);
    "8000-12000元" -> (8, 12, None); "面议" -> (None, None, None).
    """
    if not text:
        return None, None, None

    months = None
    months_match = SALARY_MONTHS_PATTERN.search(text)
    if months_match:
        months = int(months_match.group(1))

    match = SALARY_RANGE_PATTERN.search(text)
    if not match:
        return None, None, months

    low, high, unit = float(match.group(1)), float(match.group(2)), match.group(3)
    if not unit and "万" in text:
        unit = "万"
    return _to_thousands(low, unit), _to_thousands(high, unit), months


def _to_thousands(value: float, unit: str) -> int:
    if unit == "万":
        return int(round(value * 10))
    if unit or value < 1000:
        return int(round(value))
    return int(round(value / 1000))


def classify_open(status_text: Optional[str]) -> bool:
    """
    Decide whether a posting is open from its status text.

    Empty or ambiguous text is treated as open unless an explicit negative
    keyword is present.
    """
    text = (status_text or "").strip().lower()
    if not text:
        return True
    if text in CLOSED_CODES:
        return False
    for keyword in CLOSED_KEYWORDS:
        if keyword in text:
            return False
    return True


def _stringify(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _first_value(item: Dict[str, Any], keys: Sequence[str]) -> str:
    for key in keys:
        text = _stringify(item.get(key))
        if text:
            return text
    return ""


def _labels(item: Dict[str, Any]) -> List[str]:
    for key in LABEL_KEYS:
        raw = item.get(key)
        if isinstance(raw, list):
            return [_stringify(label) for label in raw if _stringify(label)]
        if isinstance(raw, str) and raw.strip():
            return [part.strip() for part in re.split(r"[,，/|]", raw) if part.strip()]
    return []


def _open_flag(item: Dict[str, Any], status_text: str) -> bool:
    for key in OPEN_FLAG_KEYS:
        raw = item.get(key)
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, str) and raw.strip().lower() in ("true", "false"):
            return raw.strip().lower() == "true"
    return classify_open(status_text)


def record_from_mapping(
    item: Dict[str, Any],
    source: SourceStrategy,
    url_template: Optional[str] = None,
) -> Optional[JobRecord]:
    """Map a raw dict (API payload, DOM probe, or model reply) into a JobRecord.

    Returns None when no title can be found.
    """
    if not isinstance(item, dict):
        return None

    values = {field: _first_value(item, keys) for field, keys in FIELD_ALIASES.items()}
    title = values["title"]
    if not title:
        return None

    job_id = values["platform_job_id"]
    page_url = values["page_url"] or None
    if not page_url and job_id and url_template:
        page_url = url_template.format(id=job_id)

    salary_min, salary_max, salary_months = parse_salary(values["salary_text"])
    status_text = values["status_text"]

    return JobRecord(
        platform_job_id=job_id,
        title=title,
        salary_text=values["salary_text"],
        salary_min=salary_min,
        salary_max=salary_max,
        salary_months=salary_months,
        location=values["location"],
        experience_required=values["experience_required"],
        education_required=values["education_required"],
        company_name=values["company_name"],
        labels=_labels(item),
        status_text=status_text,
        is_open=_open_flag(item, status_text),
        page_url=page_url,
        source_strategy=source,
    )


def records_from_items(
    items: Iterable[Any],
    source: SourceStrategy,
    url_template: Optional[str] = None,
) -> List[JobRecord]:
    records: List[JobRecord] = []
    skipped = 0
    for item in items:
        record = record_from_mapping(item, source, url_template=url_template)
        if record is None:
            skipped += 1
            continue
        records.append(record)
    if skipped:
        logger.debug("Skipped %s %s items without a title", skipped, source.value)
    return records


def _normalize_part(value: Optional[str]) -> str:
    return " ".join((value or "").split()).lower()


def content_key(record: JobRecord) -> str:
    """Build a stable key from the record content (title, salary, location)."""
    return "|".join(
        _normalize_part(part)
        for part in (record.title, record.salary_text, record.location)
    )


def synthetic_id(record: JobRecord) -> str:
    digest = hashlib.sha256(content_key(record).encode("utf-8")).hexdigest()
    return f"syn_{digest[:16]}"


def dedupe_key(record: JobRecord) -> str:
    if record.platform_job_id:
        return f"id|{record.platform_job_id}"
    return f"content|{content_key(record)}"


def dedupe_records(records: Iterable[JobRecord]) -> List[JobRecord]:
    """Drop later duplicates; the first occurrence wins."""
    seen = set()
    unique: List[JobRecord] = []
    for record in records:
        key = dedupe_key(record)
        if key in seen:
            continue
        seen.add(key)
        unique.append(record)
    return unique


def finalize_records(records: Iterable[JobRecord]) -> List[JobRecord]:
    """Enforce the title invariant, de-duplicate, and assign synthetic ids."""
    titled = [record for record in records if record.title and record.title.strip()]
    unique = dedupe_records(titled)
    finalized: List[JobRecord] = []
    for record in unique:
        if not record.platform_job_id:
            record = record.model_copy(update={"platform_job_id": synthetic_id(record)})
        finalized.append(record)
    return finalized


def extract_keywords(description: str, requirements: str, tags: Iterable[str] = (),
                     limit: int = MAX_KEYWORDS) -> List[str]:
    """Tags first, then any known tech keyword mentioned in the text (case-insensitive)."""
    keywords: List[str] = []
    seen = set()
    text = f"{description or ''} {requirements or ''}".lower()
    candidates = [tag.strip() for tag in tags if tag and tag.strip()]
    candidates += [word for word in TECH_KEYWORDS if word.lower() in text]
    for word in candidates:
        if word.lower() in seen:
            continue
        seen.add(word.lower())
        keywords.append(word)
        if len(keywords) >= limit:
            break
    return keywords


def apply_job_detail(record: JobRecord, detail: JobDetail) -> JobRecord:
    """Merge detail-page fields into a record.

    Non-empty detail text overwrites, tags are unioned into labels, and
    keywords are recomputed from the merged record.
    """
    update: Dict[str, Any] = {}
    for field in ("description", "requirements", "address"):
        value = (getattr(detail, field) or "").strip()
        if value:
            update[field] = value
    if detail.company_name.strip() and not record.company_name:
        update["company_name"] = detail.company_name.strip()

    labels = list(record.labels)
    labels += [tag.strip() for tag in detail.tags if tag.strip() and tag.strip() not in labels]
    update["labels"] = labels
    if detail.benefits:
        update["benefits"] = [b.strip() for b in detail.benefits if b.strip()]

    merged = record.model_copy(update=update)
    keywords = extract_keywords(merged.description, merged.requirements, merged.labels)
    return merged.model_copy(update={"keywords": keywords})
