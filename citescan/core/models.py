"""
Core models and types for the CiteScan engine.

Enums shared by the ORM, the pipeline and the API, plus the
outward-facing job status schema consumed by polling clients.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Enums (used by db/models.py and the pipeline)
# =============================================================================


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.FAILED)


TERMINAL_STATUSES = (JobStatus.COMPLETE.value, JobStatus.FAILED.value)


class FailureKind(str, Enum):
    """Failure classification consumed by the retry policy."""

    TRANSIENT = "transient"  # Collaborator timeout, rate limit, malformed response
    PERMANENT = "permanent"  # Validation / unreachable input, never retried
    UNKNOWN = "unknown"  # Unexpected, retried like transient


class PipelineStep(int, Enum):
    """Closed, ordered list of pipeline stages."""

    CRAWL = 0
    ANALYZE = 1
    DISCOVER = 2
    FINALIZE = 3

    @property
    def key(self) -> str:
        """Key of this step in the job's output bag."""
        return self.name.lower()

    @property
    def label(self) -> str:
        return STEP_LABELS[self]

    @property
    def band(self) -> tuple[int, int]:
        """(start, end) progress percentage owned by this step."""
        return STEP_PROGRESS_BANDS[self]

    @property
    def next_step(self) -> "PipelineStep | None":
        members = list(PipelineStep)
        if self.value + 1 < len(members):
            return members[self.value + 1]
        return None

    @property
    def is_last(self) -> bool:
        return self.next_step is None


STEP_LABELS = {
    PipelineStep.CRAWL: "Crawling website",
    PipelineStep.ANALYZE: "Analyzing topics",
    PipelineStep.DISCOVER: "Discovering off-site content",
    PipelineStep.FINALIZE: "Finalizing report",
}

STEP_PROGRESS_BANDS = {
    PipelineStep.CRAWL: (0, 15),
    PipelineStep.ANALYZE: (15, 55),
    PipelineStep.DISCOVER: (55, 80),
    PipelineStep.FINALIZE: (80, 100),
}


class CandidateSource(str, Enum):
    """Where an off-site candidate URL came from, strongest first."""

    MANUAL = "manual"
    SEARCH = "search"
    LINK = "link"


# =============================================================================
# Base Models
# =============================================================================


class BaseSchema(BaseModel):
    """Base schema with common configuration."""
    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# Job status read interface
# =============================================================================


class RetryState(BaseSchema):
    attempt: int = 0
    next_retry_at: datetime | None = None


class JobStatusView(BaseSchema):
    """Shape a polling client consumes every few seconds."""

    job_id: int
    scan_id: int
    status: JobStatus
    current_step: str | None = None
    current_step_index: int = Field(0, ge=0)
    substep_label: str | None = None
    progress: int = Field(0, ge=0, le=100)
    retry_state: RetryState = Field(default_factory=RetryState)
    last_error: str | None = None


class ScanCreated(BaseSchema):
    scan_id: int
    job_id: int
    status: JobStatus = JobStatus.PENDING


# =============================================================================
# API Response Models
# =============================================================================


class APIResponse(BaseSchema):
    success: bool = True
    message: str | None = None
    data: Any = None
    meta: dict[str, Any] | None = None
