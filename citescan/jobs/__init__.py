"""
Jobs layer: the resumable scan pipeline and the arq cron trigger.

The pipeline is driven by polling only. WorkerSettings registers a single
cron job that runs one scheduler tick every POLL_INTERVAL_SECONDS; each tick
claims eligible scan jobs and advances each by exactly one step.
"""

import structlog
from arq import cron
from arq.connections import RedisSettings

from citescan.core.config import settings
from citescan.core.logging import configure_logging

logger = structlog.get_logger()


async def poll_scan_jobs(ctx: dict) -> dict:
    """arq cron entry point: run one scheduler tick."""
    # Lazy import: the store imports citescan.jobs.outputs
    from citescan.jobs.scheduler import build_scheduler

    result = await build_scheduler().run_tick()
    return result.as_dict()


async def startup(ctx):
    """Initialize the worker context."""
    from citescan.db import init_db

    configure_logging(json_logs=not settings.debug, log_level="DEBUG" if settings.debug else "INFO")
    logger.info("Starting up worker...")
    await init_db()
    logger.info("Worker startup complete.")


async def shutdown(ctx):
    """Cleanup the worker context."""
    from citescan.db import close_db

    logger.info("Shutting down worker...")
    await close_db()
    logger.info("Worker shutdown complete.")


def cron_schedule(interval_seconds: int) -> dict[str, set[int]]:
    """arq cron fields for a fixed interval that divides a minute or an hour."""
    if interval_seconds < 60:
        return {"second": set(range(0, 60, max(1, interval_seconds)))}
    minutes = max(1, interval_seconds // 60)
    return {"minute": set(range(0, 60, minutes)), "second": {0}}


class WorkerSettings:
    """ARQ worker settings."""

    functions = [poll_scan_jobs]
    cron_jobs = [
        cron(
            poll_scan_jobs,
            **cron_schedule(settings.poll_interval_seconds),
            run_at_startup=True,
            unique=True,
            timeout=settings.invocation_timeout_seconds + 30,
        ),
    ]
    redis_settings = RedisSettings.from_dsn(str(settings.redis_url))
    on_startup = startup
    on_shutdown = shutdown
    handle_signals = False

    # One tick at a time per worker; fan-out happens inside the tick.
    max_jobs = 1
