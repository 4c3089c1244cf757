"""
Lock Manager.

Claims exclusive, time-bounded ownership of a job for one worker
invocation. The lock lives in the job row as (token, locked_at); claiming
and releasing are compare-and-set updates, so pollers in separate
processes can race safely. A lock older than the maximum single-step
execution time is stale and may be reclaimed without a release.
"""

import uuid
from datetime import datetime, timedelta

import structlog

from citescan.core.timeutils import Clock, ensure_utc, utc_now
from citescan.db.models import ScanJobModel
from citescan.db.store import JobStore

logger = structlog.get_logger()


def is_stale(job: ScanJobModel, max_step_duration: timedelta, now: datetime) -> bool:
    """True if the job has no lock or its lock is older than max_step_duration."""
    locked_at = ensure_utc(job.locked_at)
    if job.lock_token is None or locked_at is None:
        return True
    return now - locked_at > max_step_duration


class LockManager:
    def __init__(
        self,
        store: JobStore,
        max_step_duration: timedelta,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.max_step_duration = max_step_duration
        self._clock = clock
        self.log = logger.bind(component="LockManager")

    def stale_before(self) -> datetime:
        """Locks acquired before this instant are reclaimable."""
        return self._clock() - self.max_step_duration

    def is_stale(self, job: ScanJobModel) -> bool:
        return is_stale(job, self.max_step_duration, self._clock())

    async def acquire(self, job_id: int) -> str | None:
        """Claim the job. Returns the new token, or None if someone else holds it."""
        token = uuid.uuid4().hex
        if await self.store.try_lock(job_id, token, self.stale_before()):
            self.log.debug("Lock acquired", job_id=job_id, token=token[:8])
            return token

        self.log.debug("Job already locked", job_id=job_id)
        return None

    async def release(self, job_id: int, token: str) -> bool:
        """Release the lock if we still hold it. A mismatch is logged and ignored."""
        if await self.store.unlock(job_id, token):
            self.log.debug("Lock released", job_id=job_id, token=token[:8])
            return True

        self.log.warning(
            "Lock release skipped: token no longer holds the job",
            job_id=job_id,
            token=token[:8],
        )
        return False
