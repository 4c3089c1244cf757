"""
Core package initialization.
"""

from citescan.core.config import Settings, get_settings, settings
from citescan.core.models import (
    APIResponse,
    CandidateSource,
    FailureKind,
    JobStatus,
    JobStatusView,
    PipelineStep,
    RetryState,
    ScanCreated,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "settings",
    # Enums
    "JobStatus",
    "FailureKind",
    "PipelineStep",
    "CandidateSource",
    # Models
    "JobStatusView",
    "RetryState",
    "ScanCreated",
    "APIResponse",
]
