"""
Pipeline Controller.

Advances one claimed job by exactly one step per invocation:

    load job -> terminal? no-op
             -> token mismatch? no-op (lock lost)
             -> still processing? stale reclaim, charged as a transient timeout
             -> mark processing -> run step under STEP_TIMEOUT_SECONDS
             -> success: persist output, advance (or complete after Finalize)
                retryable: retry policy decides retry / backoff / give up
                fatal: failed at once, attempt count unchanged
             -> release lock

Every write is fenced on the lock token and status = processing. A fenced
write that matches no row means the job was cancelled out of band or its
lock was reclaimed; it is logged and the invocation ends.
"""

import asyncio
from enum import Enum

import structlog

from citescan.core.config import Settings, settings as default_settings
from citescan.core.logging import emit_job_event, enrich_event, finalize_job_event, init_job_event
from citescan.core.models import FailureKind, JobStatus, PipelineStep
from citescan.core.timeutils import Clock, utc_now
from citescan.db.database import DatabaseError
from citescan.db.models import ScanJobModel
from citescan.db.store import JobStore
from citescan.jobs.lock import LockManager
from citescan.jobs.outputs import FinalizeOutput, merge_step_output
from citescan.jobs.progress import ProgressReporter
from citescan.jobs.retry_policy import decide
from citescan.jobs.steps import (
    STEP_EXECUTORS,
    BaseStep,
    Collaborators,
    StepContext,
    StepFatal,
    StepResult,
    StepRetryable,
    StepSuccess,
)
from citescan.services.notifications import TEMPLATE_SCAN_FAILED

logger = structlog.get_logger()


class Outcome(str, Enum):
    """What one controller invocation did to its job."""

    NOT_FOUND = "not_found"
    SKIPPED = "skipped"  # Job already terminal
    LOCK_LOST = "lock_lost"
    OUT_OF_BAND = "out_of_band"  # Fenced write matched nothing
    ADVANCED = "advanced"
    COMPLETE = "complete"
    RETRY = "retry"
    FAILED = "failed"


class PipelineController:
    def __init__(
        self,
        store: JobStore,
        lock_manager: LockManager,
        reporter: ProgressReporter,
        collaborators: Collaborators,
        settings: Settings | None = None,
        clock: Clock = utc_now,
        executors: dict[PipelineStep, BaseStep] | None = None,
    ):
        self.store = store
        self.lock_manager = lock_manager
        self.reporter = reporter
        self.collaborators = collaborators
        self.settings = settings or default_settings
        self._clock = clock
        self.executors = executors or STEP_EXECUTORS
        self.log = logger.bind(component="PipelineController")

    @property
    def step_timeout(self) -> float:
        return float(self.settings.step_timeout_seconds)

    async def process(self, job_id: int, token: str, tick_id: str | None = None) -> Outcome:
        """Advance the job by one step. The lock is released on every path."""
        init_job_event(job_id, tick_id)
        error: Exception | None = None
        try:
            outcome = await self._process(job_id, token)
            enrich_event(outcome=outcome.value)
            return outcome
        except Exception as e:
            error = e
            enrich_event(outcome="error")
            raise
        finally:
            await self._release(job_id, token)
            emit_job_event(finalize_job_event(error))

    async def _process(self, job_id: int, token: str) -> Outcome:
        job = await self.store.get_job_with_project(job_id)
        if job is None:
            self.log.warning("Job not found", job_id=job_id)
            return Outcome.NOT_FOUND

        step = PipelineStep(job.current_step_index)
        status = JobStatus(job.status)
        enrich_event(
            scan_id=job.scan_id,
            step=step.key,
            status_before=status.value,
            attempt_count=job.attempt_count,
            progress_before=job.progress,
        )

        if status.is_terminal:
            return Outcome.SKIPPED
        if job.lock_token != token:
            self.log.warning("Lock lost before dispatch", job_id=job_id, step=step.key)
            return Outcome.LOCK_LOST

        ctx = self._context(job, step, token)

        if status is JobStatus.PROCESSING:
            # The previous holder died or ran out of time mid-step.
            self.log.warning("Reclaiming abandoned job", job_id=job_id, step=step.key)
            enrich_event(reclaimed=True)
            result = StepRetryable(
                FailureKind.TRANSIENT,
                f"{step.label}: step did not finish before its lock expired",
            )
            return await self._handle_retryable(job, token, step, ctx, result)

        if not await self.store.mark_processing(job.id, job.scan_id, token, step.label):
            self.log.warning("Job changed before dispatch", job_id=job_id, step=step.key)
            return Outcome.OUT_OF_BAND

        executor = self.executors[step]
        try:
            result = await asyncio.wait_for(executor.execute(ctx), timeout=self.step_timeout)
        except TimeoutError:
            result = StepRetryable(
                FailureKind.TRANSIENT,
                f"{step.label}: timed out after {int(self.step_timeout)}s",
            )

        return await self._dispose(job, token, step, executor, ctx, result)

    def _context(self, job: ScanJobModel, step: PipelineStep, token: str) -> StepContext:
        return StepContext(
            job_id=job.id,
            scan_id=job.scan_id,
            project=job.scan.project,
            outputs=dict(job.step_outputs or {}),
            step_attempt=job.step_attempt_count + 1,
            progress=self.reporter.for_step(job.id, step, token),
            collaborators=self.collaborators,
            settings=self.settings,
            clock=self._clock,
        )

    # =========================================================================
    # Dispositions
    # =========================================================================

    async def _dispose(
        self,
        job: ScanJobModel,
        token: str,
        step: PipelineStep,
        executor: BaseStep,
        ctx: StepContext,
        result: StepResult,
    ) -> Outcome:
        if isinstance(result, StepSuccess):
            return await self._handle_success(job, token, step, executor, ctx, result.output)
        if isinstance(result, StepRetryable):
            return await self._handle_retryable(job, token, step, ctx, result)
        if isinstance(result, StepFatal):
            return await self._handle_fatal(job, token, step, ctx, result.message)
        raise TypeError(f"Unknown step result: {result!r}")

    async def _handle_success(self, job, token, step, executor, ctx, output) -> Outcome:
        outputs = merge_step_output(job.step_outputs, step, output)

        if step.is_last:
            if not isinstance(output, FinalizeOutput):
                raise TypeError(f"{step.key} must produce a FinalizeOutput")
            written = await self.store.complete_job(job.id, job.scan_id, token, outputs, output)
            outcome = Outcome.COMPLETE
        else:
            written = await self.store.advance_step(job.id, job.scan_id, token, step, outputs, output)
            outcome = Outcome.ADVANCED

        if not written:
            return self._out_of_band(job, step, "success")

        enrich_event(progress_after=100 if step.is_last else step.band[1])
        await executor.after_commit(ctx, output)
        return outcome

    async def _handle_retryable(self, job, token, step, ctx, result: StepRetryable) -> Outcome:
        attempts = job.attempt_count + 1
        decision = decide(attempts, result.kind)
        enrich_event(
            failure={"kind": result.kind.value, "message": result.message[:500]},
            retry={"attempt": attempts, "action": decision.action.value},
        )

        if decision.is_give_up:
            if not await self.store.fail_job(job.id, job.scan_id, token, result.message, attempt_count=attempts):
                return self._out_of_band(job, step, "give_up")
            await self._notify_failure(ctx, result.message)
            return Outcome.FAILED

        next_retry_at = self._clock() + decision.delay if decision.delay else None
        if decision.delay:
            enrich_event(**{"retry.delay_seconds": int(decision.delay.total_seconds())})
        if not await self.store.schedule_retry(job.id, token, attempts, next_retry_at, result.message):
            return self._out_of_band(job, step, "retry")
        return Outcome.RETRY

    async def _handle_fatal(self, job, token, step, ctx, message: str) -> Outcome:
        enrich_event(failure={"kind": "fatal", "message": message[:500]})
        if not await self.store.fail_job(job.id, job.scan_id, token, message):
            return self._out_of_band(job, step, "fatal")
        await self._notify_failure(ctx, message)
        return Outcome.FAILED

    def _out_of_band(self, job: ScanJobModel, step: PipelineStep, disposition: str) -> Outcome:
        self.log.warning(
            "Fenced write ignored: job cancelled or lock reclaimed",
            job_id=job.id,
            step=step.key,
            disposition=disposition,
        )
        return Outcome.OUT_OF_BAND

    async def _notify_failure(self, ctx: StepContext, message: str) -> None:
        recipient = ctx.project.notify_email
        if not recipient:
            return
        await self.collaborators.notifier.send(
            recipient,
            TEMPLATE_SCAN_FAILED,
            {"project": ctx.project.name, "scan_id": ctx.scan_id, "error": message},
        )

    async def _release(self, job_id: int, token: str) -> None:
        try:
            await self.lock_manager.release(job_id, token)
        except DatabaseError as e:
            # The lock goes stale and a later tick reclaims the job.
            self.log.error("Lock release failed", job_id=job_id, error=e.message)
