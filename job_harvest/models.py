"""
Data models for job-harvest
Defines job records, page states and extraction results
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field


class SourceStrategy(str, Enum):
    """Which extraction strategy produced a record"""

    INTERCEPTION = "interception"
    DOM = "dom"
    AI_TEXT = "ai_text"
    AI_VISION = "ai_vision"


class ExtractionStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    NEED_LOGIN = "need_login"
    BLOCKED = "blocked"
    ERROR = "error"
    CANCELLED = "cancelled"


class PageState(str, Enum):
    UNKNOWN = "unknown"
    LOADING = "loading"
    LOGIN_REQUIRED = "login_required"
    BLOCKED = "blocked"
    LIST_READY = "list_ready"
    EMPTY_STATE = "empty_state"

    @property
    def is_terminal(self) -> bool:
        return self not in (PageState.UNKNOWN, PageState.LOADING)


class JobRecord(BaseModel):
    """Represents a single job posting extracted from a listing page"""

    platform_job_id: str = ""
    title: str
    salary_text: str = ""
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    salary_months: Optional[int] = None
    location: str = ""
    experience_required: str = ""
    education_required: str = ""
    company_name: str = ""
    labels: List[str] = Field(default_factory=list)
    status_text: str = ""
    is_open: bool = True
    page_url: Optional[str] = None

    # Filled in from the detail page, when read
    description: str = ""
    requirements: str = ""
    address: str = ""
    benefits: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)

    # Provenance
    source_strategy: SourceStrategy
    fetched_at: datetime = Field(default_factory=datetime.now)

    def __str__(self) -> str:
        salary = self.salary_text or "n/a"
        return f"{self.title} [{salary}] ({self.location or 'unknown'})"


class StrategyOutcome(BaseModel):
    """Diagnostic entry for one strategy attempt"""

    strategy: SourceStrategy
    record_count: int = 0
    elapsed_ms: int = 0
    error: Optional[str] = None


class ReadinessReport(BaseModel):
    ready: bool
    state: PageState
    polls: int = 0
    elapsed_ms: int = 0
    detail: str = ""


class ScrollReport(BaseModel):
    scrolls: int = 0
    candidates_found: int = 0
    reloaded: bool = False


class PageStatus(BaseModel):
    """Page classification returned by the AI text analyzer"""

    loaded: bool = False
    need_login: bool = False
    is_job_list: bool = False
    has_jobs: bool = False
    page_type: str = "unknown"


class JobDetail(BaseModel):
    """Detail-page fields read by the AI text analyzer"""

    description: str = ""
    requirements: str = ""
    address: str = ""
    tags: List[str] = Field(default_factory=list)
    benefits: List[str] = Field(default_factory=list)
    company_name: str = ""


class VisualJobCard(BaseModel):
    title: str = ""
    salary_text: str = ""
    location: str = ""
    experience: str = ""
    education: str = ""


class ScreenAnalysis(BaseModel):
    """Screenshot classification returned by the AI vision analyzer"""

    need_login: bool = False
    is_job_list_page: bool = False
    is_loading: bool = False
    job_cards: List[VisualJobCard] = Field(default_factory=list)
    error: Optional[str] = None


class ExtractionResult(BaseModel):
    """Immutable result of one extract_jobs call"""

    model_config = ConfigDict(frozen=True)

    account_id: str
    status: ExtractionStatus
    jobs: List[JobRecord] = Field(default_factory=list)
    outcomes: List[StrategyOutcome] = Field(default_factory=list)
    reason: Optional[str] = None
    diagnostics: Dict[str, Any] = Field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.account_id}: {self.status.value} ({len(self.jobs)} jobs)"
