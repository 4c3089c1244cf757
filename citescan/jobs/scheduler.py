"""
Scheduler/Poller.

One tick = one periodic trigger (arq cron, the HTTP cron endpoint, or
`python -m citescan.jobs.scheduler`). A tick selects eligible jobs, claims
each through the lock manager and hands it to the pipeline controller,
with bounded fan-out and a hard wall-clock ceiling for the whole tick.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from citescan.core.config import Settings, settings as default_settings
from citescan.core.logging import configure_logging
from citescan.core.timeutils import Clock, utc_now
from citescan.db.database import DatabaseError
from citescan.db.store import JobStore
from citescan.jobs.lock import LockManager
from citescan.jobs.pipeline import Outcome, PipelineController
from citescan.jobs.progress import ProgressReporter
from citescan.jobs.steps import Collaborators
from citescan.services.ai import OpenAIAnalysisService
from citescan.services.notifications import get_notification_service
from citescan.services.search_engine import DdgsSearchService
from citescan.services.web_crawler import HttpCrawlService

logger = structlog.get_logger()


@dataclass
class TickResult:
    tick_id: str
    eligible: list[int] = field(default_factory=list)
    outcomes: dict[int, str] = field(default_factory=dict)
    skipped: list[int] = field(default_factory=list)  # Lock held elsewhere
    errored: list[int] = field(default_factory=list)
    timed_out: list[int] = field(default_factory=list)
    deferred: list[int] = field(default_factory=list)  # Not enough tick budget left
    abandoned: bool = False

    def as_dict(self) -> dict:
        return {
            "tick_id": self.tick_id,
            "eligible": len(self.eligible),
            "processed": len(self.outcomes),
            "outcomes": {str(k): v for k, v in self.outcomes.items()},
            "skipped": self.skipped,
            "errored": self.errored,
            "timed_out": self.timed_out,
            "deferred": self.deferred,
            "abandoned": self.abandoned,
        }


class Scheduler:
    def __init__(
        self,
        store: JobStore,
        lock_manager: LockManager,
        controller: PipelineController,
        settings: Settings | None = None,
    ):
        self.store = store
        self.lock_manager = lock_manager
        self.controller = controller
        self.settings = settings or default_settings

    async def run_tick(self) -> TickResult:
        result = TickResult(tick_id=uuid.uuid4().hex[:8])
        log = logger.bind(tick_id=result.tick_id)

        try:
            result.eligible = await self.store.find_eligible_job_ids(
                self.lock_manager.stale_before(), self.settings.poll_batch_size
            )
        except DatabaseError as e:
            # Nothing was claimed, so no job is charged an attempt.
            log.error("Eligibility query failed, abandoning tick", error=e.message)
            result.abandoned = True
            return result

        if not result.eligible:
            log.debug("No eligible jobs")
            return result

        log.info("Tick started", eligible=len(result.eligible))
        semaphore = asyncio.Semaphore(max(1, self.settings.poll_fan_out))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.invocation_timeout_seconds

        async def handle(job_id: int) -> Outcome | None:
            async with semaphore:
                # A step started now must be able to finish before the ceiling.
                remaining = deadline - loop.time()
                if remaining < self.settings.step_timeout_seconds:
                    log.info("Deferring job to next tick", job_id=job_id, remaining_seconds=round(remaining, 2))
                    result.deferred.append(job_id)
                    return None
                token = await self.lock_manager.acquire(job_id)
                if token is None:
                    return None
                return await self.controller.process(job_id, token, tick_id=result.tick_id)

        tasks = {asyncio.create_task(handle(job_id)): job_id for job_id in result.eligible}
        done, pending = await asyncio.wait(tasks, timeout=self.settings.invocation_timeout_seconds)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            result.timed_out = sorted(tasks[t] for t in pending)
            log.warning("Invocation ceiling reached, cancelled running jobs", job_ids=result.timed_out)

        for task in done:
            job_id = tasks[task]
            error = task.exception()
            if error is not None:
                log.error("Job invocation failed", job_id=job_id, error=str(error), error_type=type(error).__name__)
                result.errored.append(job_id)
            elif job_id in result.deferred:
                continue
            elif task.result() is None:
                result.skipped.append(job_id)
            else:
                result.outcomes[job_id] = task.result().value

        log.info(
            "Tick finished",
            processed=len(result.outcomes),
            skipped=len(result.skipped),
            errored=len(result.errored),
            timed_out=len(result.timed_out),
            deferred=len(result.deferred),
        )
        return result


# =============================================================================
# Wiring
# =============================================================================


def build_collaborators() -> Collaborators:
    """Default production collaborators."""
    return Collaborators(
        crawler=HttpCrawlService(),
        analyzer=OpenAIAnalysisService(),
        search=DdgsSearchService(),
        notifier=get_notification_service(),
    )


def build_scheduler(
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    settings: Settings | None = None,
    collaborators: Collaborators | None = None,
    clock: Clock = utc_now,
) -> Scheduler:
    settings = settings or default_settings
    store = JobStore(session_maker, clock=clock)
    lock_manager = LockManager(
        store, timedelta(seconds=settings.lock_stale_after_seconds), clock=clock
    )
    controller = PipelineController(
        store,
        lock_manager,
        ProgressReporter(store),
        collaborators or build_collaborators(),
        settings=settings,
        clock=clock,
    )
    return Scheduler(store, lock_manager, controller, settings=settings)


async def run_once() -> TickResult:
    from citescan.db import close_db, init_db

    await init_db()
    try:
        return await build_scheduler().run_tick()
    finally:
        await close_db()


def main() -> None:
    configure_logging(
        json_logs=not default_settings.debug,
        log_level="DEBUG" if default_settings.debug else "INFO",
    )
    result = asyncio.run(run_once())
    logger.info("Tick result", **result.as_dict())


if __name__ == "__main__":
    main()
