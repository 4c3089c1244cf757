"""
Step executor contract.

A step receives a StepContext snapshot of its job and returns exactly one
of StepSuccess, StepRetryable or StepFatal. execute() is the only entry
point the pipeline controller uses; it turns anything raised by run() into
a result so no exception crosses the controller boundary.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

import structlog

from citescan.core.config import Settings
from citescan.core.exceptions import CiteScanError
from citescan.core.models import FailureKind, PipelineStep
from citescan.core.timeutils import Clock, utc_now
from citescan.db.models import ProjectModel
from citescan.jobs.outputs import StepOutput
from citescan.jobs.progress import StepProgress
from citescan.services.ai.interface import AnalysisService
from citescan.services.notifications import NotificationService
from citescan.services.search_engine import SearchService
from citescan.services.web_crawler import CrawlService

logger = structlog.get_logger()


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class StepSuccess:
    output: StepOutput


@dataclass(frozen=True)
class StepRetryable:
    kind: FailureKind
    message: str


@dataclass(frozen=True)
class StepFatal:
    message: str


StepResult = StepSuccess | StepRetryable | StepFatal


# =============================================================================
# Context
# =============================================================================


@dataclass
class Collaborators:
    crawler: CrawlService
    analyzer: AnalysisService
    search: SearchService
    notifier: NotificationService


@dataclass
class StepContext:
    """Everything a step may read. Steps never touch the record store."""

    job_id: int
    scan_id: int
    project: ProjectModel
    outputs: dict[str, Any]
    step_attempt: int
    progress: StepProgress
    collaborators: Collaborators
    settings: Settings
    clock: Clock = utc_now


# =============================================================================
# Base step
# =============================================================================


class BaseStep(ABC):
    """Base class for all pipeline step executors."""

    step: ClassVar[PipelineStep]
    label: str = "Base Step"
    description: str = "Performing base step..."

    # Exceptions that fail the job at once instead of going through retries
    fatal_errors: tuple[type[Exception], ...] = ()

    def __init__(self):
        self.log = logger.bind(step=self.label)

    @abstractmethod
    async def run(self, ctx: StepContext) -> StepOutput:
        """Logic for the step goes here. Raise to fail the attempt."""
        pass

    async def execute(self, ctx: StepContext) -> StepResult:
        """Wrapper around run() that maps exceptions onto step results."""
        log = self.log.bind(job_id=ctx.job_id, step_attempt=ctx.step_attempt)
        log.info("Starting step")
        await ctx.progress.update(self.description, 0.0)

        try:
            output = await self.run(ctx)
        except self.fatal_errors as e:
            log.warning("Step failed permanently", error=str(e))
            return StepFatal(str(e))
        except CiteScanError as e:
            log.warning("Step failed", error=str(e), code=e.code, kind=e.failure_kind.value)
            return StepRetryable(e.failure_kind, f"{self.label}: {e.message}")
        except Exception as e:
            log.exception("Step raised unexpectedly", error=str(e))
            return StepRetryable(FailureKind.UNKNOWN, f"{self.label}: {type(e).__name__}: {e}")

        log.info("Step completed")
        return StepSuccess(output)

    async def after_commit(self, ctx: StepContext, output: StepOutput) -> None:
        """Runs once the step's output is durably committed."""
        return None
