"""
Scans API - start a scan for a project and read its results.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from citescan.api.deps import get_store
from citescan.core.exceptions import ResourceNotFoundError
from citescan.core.models import ScanCreated
from citescan.db.store import JobStore

router = APIRouter()


@router.post(
    "/projects/{project_id}/scans",
    response_model=ScanCreated,
    status_code=status.HTTP_201_CREATED,
)
async def create_scan(
    project_id: int,
    store: Annotated[JobStore, Depends(get_store)],
) -> ScanCreated:
    """Create a scan and its pending job; the next poll tick picks it up."""
    scan, job = await store.create_scan(project_id)
    return ScanCreated(scan_id=scan.id, job_id=job.id, status=job.status)


@router.get("/scans/{scan_id}")
async def get_scan(
    scan_id: int,
    store: Annotated[JobStore, Depends(get_store)],
) -> dict:
    scan = await store.get_scan(scan_id)
    if scan is None:
        raise ResourceNotFoundError(f"Scan {scan_id} not found")

    return {
        "id": scan.id,
        "project_id": scan.project_id,
        "status": scan.status,
        "job_id": scan.job.id if scan.job else None,
        "overall_score": scan.overall_score,
        "error_message": scan.error_message,
        "started_at": scan.started_at,
        "completed_at": scan.completed_at,
        "summary_artifact": scan.summary_artifact,
        "audit_report": scan.audit_report,
        "clusters": [
            {
                "topic": cluster.topic,
                "priority": cluster.priority,
                "hub_url": cluster.hub_page.url if cluster.hub_page else None,
                "hub_score": cluster.hub_page.total_score if cluster.hub_page else None,
                "offsite": [
                    {"url": item.url, "platform": item.platform, "total_score": item.total_score}
                    for item in cluster.offsite_items
                ],
            }
            for cluster in scan.clusters
        ],
        "artifact_versions": [artifact.version for artifact in scan.artifacts],
    }
