"""
FastAPI dependencies. Tests override these through app.dependency_overrides.
"""

from citescan.db.store import JobStore
from citescan.jobs.scheduler import Scheduler, build_scheduler


def get_store() -> JobStore:
    return JobStore()


def get_scheduler() -> Scheduler:
    return build_scheduler()
