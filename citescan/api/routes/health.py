"""
Health check endpoints.
"""

from fastapi import APIRouter

from citescan.db.database import check_database_health

router = APIRouter()


@router.get("/api/health")
async def health_check() -> dict:
    """Basic health check."""
    return {"status": "healthy"}


@router.get("/api/ready")
async def readiness_check() -> dict:
    """Readiness check - includes database connectivity."""
    database_ok = await check_database_health()
    return {
        "status": "ready" if database_ok else "degraded",
        "database": "connected" if database_ok else "unavailable",
    }
