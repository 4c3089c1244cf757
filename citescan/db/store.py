"""
Record Store Adapter.

Typed read/write access to project, scan and job rows. No business logic:
every mutation of a job is a single conditional UPDATE so concurrent
pollers only ever race on the database, never in memory. Writes made on
behalf of a running step are fenced on the lock token and on
status = processing; a fenced write that matches no row returns False and
the caller decides what that means.
"""

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from citescan.core.exceptions import ResourceNotFoundError
from citescan.core.models import TERMINAL_STATUSES, JobStatus, PipelineStep
from citescan.core.timeutils import Clock, utc_now
from citescan.db.database import get_db_session
from citescan.db.models import (
    ArtifactVersionModel,
    ClusterModel,
    HubPageModel,
    OffsiteContentModel,
    ProjectModel,
    ScanJobModel,
    ScanModel,
)
from citescan.jobs.outputs import AnalyzeOutput, DiscoverOutput, FinalizeOutput, StepOutput

logger = structlog.get_logger()


class JobStore:
    """Async adapter over the relational record store."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        clock: Clock = utc_now,
    ):
        self._session_maker = session_maker
        self._clock = clock
        self.log = logger.bind(component="JobStore")

    def session(self):
        return get_db_session(self._session_maker)

    # =========================================================================
    # Creation & reads
    # =========================================================================

    async def create_project(
        self,
        name: str,
        domain: str,
        manual_urls: list[str] | None = None,
        notify_email: str | None = None,
    ) -> ProjectModel:
        async with self.session() as db:
            project = ProjectModel(
                name=name,
                domain=domain,
                manual_urls=manual_urls or [],
                notify_email=notify_email,
            )
            db.add(project)
            await db.commit()
            await db.refresh(project)
            return project

    async def create_scan(self, project_id: int) -> tuple[ScanModel, ScanJobModel]:
        """Create a scan and its pending job in one transaction."""
        async with self.session() as db:
            project = await db.get(ProjectModel, project_id)
            if project is None:
                raise ResourceNotFoundError(f"Project {project_id} not found")

            scan = ScanModel(project_id=project_id, status=JobStatus.PENDING.value)
            db.add(scan)
            await db.flush()

            job = ScanJobModel(
                scan_id=scan.id,
                status=JobStatus.PENDING.value,
                current_step_index=PipelineStep.CRAWL.value,
                substep_label="Queued",
                progress=0,
                attempt_count=0,
                step_attempt_count=0,
                step_outputs={},
            )
            db.add(job)
            await db.commit()
            await db.refresh(scan)
            await db.refresh(job)
            self.log.info("Scan created", scan_id=scan.id, job_id=job.id, project_id=project_id)
            return scan, job

    async def get_job(self, job_id: int) -> ScanJobModel | None:
        async with self.session() as db:
            return await db.get(ScanJobModel, job_id)

    async def get_job_with_project(self, job_id: int) -> ScanJobModel | None:
        """Load a job with its scan and project eagerly attached."""
        async with self.session() as db:
            result = await db.execute(
                select(ScanJobModel)
                .where(ScanJobModel.id == job_id)
                .options(selectinload(ScanJobModel.scan).selectinload(ScanModel.project))
            )
            return result.scalar_one_or_none()

    async def get_scan(self, scan_id: int) -> ScanModel | None:
        async with self.session() as db:
            result = await db.execute(
                select(ScanModel)
                .where(ScanModel.id == scan_id)
                .options(
                    selectinload(ScanModel.job),
                    selectinload(ScanModel.clusters).selectinload(ClusterModel.hub_page),
                    selectinload(ScanModel.clusters).selectinload(ClusterModel.offsite_items),
                    selectinload(ScanModel.artifacts),
                )
            )
            return result.scalar_one_or_none()

    async def find_eligible_job_ids(self, stale_before: datetime, limit: int) -> list[int]:
        """Jobs a poller may claim right now, oldest first."""
        now = self._clock()
        lock_free = or_(
            ScanJobModel.lock_token.is_(None),
            ScanJobModel.locked_at.is_(None),
            ScanJobModel.locked_at < stale_before,
        )
        due_pending = and_(
            ScanJobModel.status == JobStatus.PENDING.value,
            or_(ScanJobModel.next_retry_at.is_(None), ScanJobModel.next_retry_at <= now),
        )
        abandoned = ScanJobModel.status == JobStatus.PROCESSING.value

        async with self.session() as db:
            result = await db.execute(
                select(ScanJobModel.id)
                .where(or_(due_pending, abandoned), lock_free)
                .order_by(ScanJobModel.created_at.asc(), ScanJobModel.id.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # =========================================================================
    # Lock compare-and-set
    # =========================================================================

    async def try_lock(self, job_id: int, token: str, stale_before: datetime) -> bool:
        async with self.session() as db:
            result = await db.execute(
                update(ScanJobModel)
                .where(
                    ScanJobModel.id == job_id,
                    ScanJobModel.status.not_in(TERMINAL_STATUSES),
                    or_(
                        ScanJobModel.lock_token.is_(None),
                        ScanJobModel.locked_at.is_(None),
                        ScanJobModel.locked_at < stale_before,
                    ),
                )
                .values(lock_token=token, locked_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1

    async def unlock(self, job_id: int, token: str) -> bool:
        async with self.session() as db:
            result = await db.execute(
                update(ScanJobModel)
                .where(ScanJobModel.id == job_id, ScanJobModel.lock_token == token)
                .values(lock_token=None, locked_at=None)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1

    # =========================================================================
    # Progress
    # =========================================================================

    async def update_progress(
        self,
        job_id: int,
        step_index: int,
        label: str,
        percentage: int,
        token: str | None = None,
    ) -> bool:
        """Write label and percentage only if it does not lower progress."""
        conditions = [
            ScanJobModel.id == job_id,
            ScanJobModel.current_step_index == step_index,
            ScanJobModel.status == JobStatus.PROCESSING.value,
            ScanJobModel.progress <= percentage,
        ]
        if token is not None:
            conditions.append(ScanJobModel.lock_token == token)

        async with self.session() as db:
            result = await db.execute(
                update(ScanJobModel)
                .where(*conditions)
                .values(substep_label=label[:255], progress=percentage)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1

    # =========================================================================
    # Step dispositions (all fenced on token + processing)
    # =========================================================================

    def _held(self, job_id: int, token: str, status: JobStatus = JobStatus.PROCESSING):
        return (
            ScanJobModel.id == job_id,
            ScanJobModel.lock_token == token,
            ScanJobModel.status == status.value,
        )

    async def mark_processing(self, job_id: int, scan_id: int, token: str, label: str) -> bool:
        now = self._clock()
        async with self.session() as db:
            result = await db.execute(
                update(ScanJobModel)
                .where(*self._held(job_id, token, JobStatus.PENDING))
                .values(
                    status=JobStatus.PROCESSING.value,
                    substep_label=label,
                    started_at=func.coalesce(ScanJobModel.started_at, now),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                return False

            await db.execute(
                update(ScanModel)
                .where(ScanModel.id == scan_id, ScanModel.status.not_in(TERMINAL_STATUSES))
                .values(
                    status=JobStatus.PROCESSING.value,
                    started_at=func.coalesce(ScanModel.started_at, now),
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return True

    async def advance_step(
        self,
        job_id: int,
        scan_id: int,
        token: str,
        step: PipelineStep,
        outputs: dict[str, Any],
        output: StepOutput,
    ) -> bool:
        """Persist a successful non-final step and move to the next index."""
        next_step = step.next_step
        if next_step is None:
            raise ValueError("advance_step cannot be used for the final step; use complete_job")

        band_end = step.band[1]
        async with self.session() as db:
            result = await db.execute(
                update(ScanJobModel)
                .where(
                    *self._held(job_id, token),
                    ScanJobModel.current_step_index == step.value,
                )
                .values(
                    status=JobStatus.PENDING.value,
                    current_step_index=next_step.value,
                    substep_label=f"{step.label}: done",
                    progress=case(
                        (ScanJobModel.progress > band_end, ScanJobModel.progress),
                        else_=band_end,
                    ),
                    step_outputs=outputs,
                    step_attempt_count=0,
                    next_retry_at=None,
                    last_error=None,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                return False

            await self._write_projection(db, scan_id, output)
            await db.commit()
            return True

    async def complete_job(
        self,
        job_id: int,
        scan_id: int,
        token: str,
        outputs: dict[str, Any],
        output: FinalizeOutput,
    ) -> bool:
        """Terminal success: job, scan and a new artifact version in one transaction."""
        now = self._clock()
        async with self.session() as db:
            result = await db.execute(
                update(ScanJobModel)
                .where(
                    *self._held(job_id, token),
                    ScanJobModel.current_step_index == PipelineStep.FINALIZE.value,
                )
                .values(
                    status=JobStatus.COMPLETE.value,
                    substep_label="Complete",
                    progress=100,
                    step_outputs=outputs,
                    step_attempt_count=0,
                    next_retry_at=None,
                    last_error=None,
                    completed_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                return False

            await db.execute(
                update(ScanModel)
                .where(ScanModel.id == scan_id)
                .values(
                    status=JobStatus.COMPLETE.value,
                    summary_artifact=output.summary_markdown,
                    audit_report=output.report.model_dump(mode="json"),
                    overall_score=output.report.overall_score,
                    error_message=None,
                    completed_at=now,
                )
                .execution_options(synchronize_session=False)
            )

            latest = await db.scalar(
                select(func.max(ArtifactVersionModel.version)).where(
                    ArtifactVersionModel.scan_id == scan_id
                )
            )
            db.add(
                ArtifactVersionModel(
                    scan_id=scan_id,
                    version=(latest or 0) + 1,
                    summary_markdown=output.summary_markdown,
                    audit_report=output.report.model_dump(mode="json"),
                )
            )
            await db.commit()
            return True

    async def schedule_retry(
        self,
        job_id: int,
        token: str,
        attempt_count: int,
        next_retry_at: datetime | None,
        error: str,
    ) -> bool:
        """Charge one attempt and put the job back in the queue at the same step."""
        async with self.session() as db:
            result = await db.execute(
                update(ScanJobModel)
                .where(*self._held(job_id, token))
                .values(
                    status=JobStatus.PENDING.value,
                    attempt_count=attempt_count,
                    step_attempt_count=ScanJobModel.step_attempt_count + 1,
                    next_retry_at=next_retry_at,
                    last_error=error,
                    substep_label="Waiting to retry",
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1

    async def fail_job(
        self,
        job_id: int,
        scan_id: int,
        token: str,
        error: str,
        attempt_count: int | None = None,
    ) -> bool:
        """Terminal failure. attempt_count=None leaves the stored count untouched."""
        now = self._clock()
        values: dict[str, Any] = {
            "status": JobStatus.FAILED.value,
            "last_error": error,
            "next_retry_at": None,
            "substep_label": "Failed",
            "completed_at": now,
        }
        if attempt_count is not None:
            values["attempt_count"] = attempt_count

        async with self.session() as db:
            result = await db.execute(
                update(ScanJobModel)
                .where(*self._held(job_id, token))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                return False

            await self._fail_scan(db, scan_id, error, now)
            await db.commit()
            return True

    async def cancel_job(self, job_id: int, reason: str = "Cancelled by user") -> bool:
        """Out-of-band cancel: any non-terminal job becomes failed."""
        now = self._clock()
        async with self.session() as db:
            job = await db.get(ScanJobModel, job_id)
            if job is None:
                raise ResourceNotFoundError(f"Job {job_id} not found")

            result = await db.execute(
                update(ScanJobModel)
                .where(
                    ScanJobModel.id == job_id,
                    ScanJobModel.status.not_in(TERMINAL_STATUSES),
                )
                .values(
                    status=JobStatus.FAILED.value,
                    last_error=reason,
                    next_retry_at=None,
                    substep_label="Cancelled",
                    completed_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                return False

            await self._fail_scan(db, job.scan_id, reason, now)
            await db.commit()
            return True

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _fail_scan(self, db: AsyncSession, scan_id: int, error: str, now: datetime) -> None:
        await db.execute(
            update(ScanModel)
            .where(ScanModel.id == scan_id, ScanModel.status.not_in(TERMINAL_STATUSES))
            .values(status=JobStatus.FAILED.value, error_message=error, completed_at=now)
            .execution_options(synchronize_session=False)
        )

    async def _write_projection(
        self, db: AsyncSession, scan_id: int, output: StepOutput
    ) -> None:
        """Mirror a step's output into its relational tables."""
        if isinstance(output, AnalyzeOutput):
            for cluster in output.clusters:
                row = ClusterModel(
                    scan_id=scan_id,
                    topic=cluster.topic,
                    keywords=cluster.keywords,
                    priority=cluster.priority,
                    page_urls=cluster.page_urls,
                )
                row.hub_page = HubPageModel(
                    url=cluster.hub.url,
                    title=cluster.hub.title,
                    relevance=cluster.hub.relevance,
                    scores={k: v.model_dump() for k, v in cluster.hub.scores.items()},
                    total_score=cluster.hub.total,
                )
                db.add(row)

        elif isinstance(output, DiscoverOutput):
            result = await db.execute(
                select(ClusterModel.id, ClusterModel.topic).where(ClusterModel.scan_id == scan_id)
            )
            cluster_ids = {topic: cid for cid, topic in result.all()}
            for item in output.items:
                cluster_id = cluster_ids.get(item.cluster_topic)
                if cluster_id is None:
                    self.log.warning(
                        "Off-site item for unknown cluster",
                        scan_id=scan_id,
                        topic=item.cluster_topic,
                    )
                    continue
                db.add(
                    OffsiteContentModel(
                        cluster_id=cluster_id,
                        url=item.url,
                        title=item.title,
                        platform=item.platform,
                        source=item.source.value,
                        scores=item.scores.model_dump(),
                        total_score=item.total,
                    )
                )
