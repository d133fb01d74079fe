"""
job-harvest - multi-strategy job record extraction from recruiting pages.
"""

from .cancel import CancelToken
from .models import ExtractionResult, ExtractionStatus, JobRecord, SourceStrategy
from .orchestrator import ExtractionOrchestrator
from .session_registry import SessionRegistry

__all__ = [
    "CancelToken",
    "ExtractionOrchestrator",
    "ExtractionResult",
    "ExtractionStatus",
    "JobRecord",
    "SessionRegistry",
    "SourceStrategy",
]

__version__ = "0.1.0"
