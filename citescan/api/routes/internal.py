"""
Internal endpoints for serverless cron platforms.

POST /api/internal/tick runs one scheduler tick. It is guarded by the
X-Cron-Secret header and disabled when CRON_SECRET is not configured.
"""

import secrets
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, status

from citescan.api.deps import get_scheduler
from citescan.core.config import settings
from citescan.jobs.scheduler import Scheduler

logger = structlog.get_logger()
router = APIRouter()


def verify_cron_secret(x_cron_secret: Annotated[str | None, Header()] = None) -> None:
    if not settings.cron_secret:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    if not x_cron_secret or not secrets.compare_digest(x_cron_secret, settings.cron_secret):
        logger.warning("Rejected cron tick with bad secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron secret")


@router.post("/tick", dependencies=[Depends(verify_cron_secret)])
async def run_tick(scheduler: Annotated[Scheduler, Depends(get_scheduler)]) -> dict:
    result = await scheduler.run_tick()
    return result.as_dict()
