"""
Progress Reporter.

Persists substep labels and percentages with a monotonic guard in the
UPDATE itself, so a retried step that restarts from a lower internal point
never lowers what a polling client already saw.
"""

import structlog

from citescan.core.models import PipelineStep
from citescan.db.store import JobStore

logger = structlog.get_logger()


class ProgressReporter:
    def __init__(self, store: JobStore):
        self.store = store

    async def report(
        self,
        job_id: int,
        step_index: int,
        substep_label: str,
        percentage: int,
        token: str | None = None,
    ) -> bool:
        """Write the substep if percentage >= the stored value. Returns whether it was written."""
        percentage = max(0, min(100, int(percentage)))
        written = await self.store.update_progress(
            job_id, step_index, substep_label, percentage, token=token
        )
        if not written:
            logger.debug(
                "Progress update skipped",
                job_id=job_id,
                step_index=step_index,
                percentage=percentage,
            )
        return written

    def for_step(self, job_id: int, step: PipelineStep, token: str | None = None) -> "StepProgress":
        return StepProgress(self, job_id, step, token)


class StepProgress:
    """Progress handle scoped to one step's percentage band."""

    def __init__(
        self,
        reporter: ProgressReporter,
        job_id: int,
        step: PipelineStep,
        token: str | None = None,
    ):
        self.reporter = reporter
        self.job_id = job_id
        self.step = step
        self.token = token

    def percentage(self, fraction: float) -> int:
        start, end = self.step.band
        fraction = max(0.0, min(1.0, fraction))
        # Stay strictly inside the band; reaching `end` is the controller's job.
        return min(end - 1, start + int(fraction * (end - start)))

    async def update(self, label: str, fraction: float = 0.0) -> bool:
        return await self.reporter.report(
            self.job_id,
            self.step.value,
            label,
            self.percentage(fraction),
            token=self.token,
        )
