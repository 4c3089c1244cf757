"""
Database package initialization.
"""

from citescan.db.database import (
    Base,
    DatabaseError,
    async_session_maker,
    close_db,
    create_engine,
    create_session_maker,
    engine,
    get_db_session,
    init_db,
)
from citescan.db.models import (
    ArtifactVersionModel,
    ClusterModel,
    HubPageModel,
    OffsiteContentModel,
    ProjectModel,
    ScanJobModel,
    ScanModel,
)
from citescan.db.store import JobStore

__all__ = [
    # Database
    "Base",
    "engine",
    "async_session_maker",
    "create_engine",
    "create_session_maker",
    "get_db_session",
    "init_db",
    "close_db",
    "DatabaseError",
    # Models
    "ProjectModel",
    "ScanModel",
    "ScanJobModel",
    "ClusterModel",
    "HubPageModel",
    "OffsiteContentModel",
    "ArtifactVersionModel",
    # Store
    "JobStore",
]
