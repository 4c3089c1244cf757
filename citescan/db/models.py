"""
SQLAlchemy ORM models for the CiteScan engine.

Organized into sections:
- Project & Scan Tables
- Job Table (the engine's only shared mutable row)
- Result Tables (clusters, hub pages, off-site content, artifact versions)
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from citescan.core.models import JobStatus, PipelineStep
from citescan.db.database import Base


class TimestampMixin:
    """Mixin for created_at and updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )


# ==============================================================================
# Project & Scan Tables
# ==============================================================================


class ProjectModel(Base, TimestampMixin):
    """A tenant's website under analysis."""

    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)  # Business name
    domain: Mapped[str] = mapped_column(String(255), nullable=False)
    manual_urls: Mapped[list | None] = mapped_column(JSON)  # Operator-supplied off-site URLs
    notify_email: Mapped[str | None] = mapped_column(String(255))

    scans: Mapped[list["ScanModel"]] = relationship(back_populates="project")


class ScanModel(Base, TimestampMixin):
    """One analysis run for a project."""

    __tablename__ = "scans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), index=True
    )
    status: Mapped[str] = mapped_column(String(20), default=JobStatus.PENDING.value, index=True)

    # Terminal fields, written only by Finalize or the failure disposition
    summary_artifact: Mapped[str | None] = mapped_column(Text)
    audit_report: Mapped[dict | None] = mapped_column(JSON)
    overall_score: Mapped[int | None] = mapped_column(Integer)
    error_message: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    project: Mapped["ProjectModel"] = relationship(back_populates="scans")
    job: Mapped["ScanJobModel"] = relationship(back_populates="scan", uselist=False)
    clusters: Mapped[list["ClusterModel"]] = relationship(
        back_populates="scan", cascade="all, delete-orphan"
    )
    artifacts: Mapped[list["ArtifactVersionModel"]] = relationship(
        back_populates="scan", cascade="all, delete-orphan"
    )


# ==============================================================================
# Job Table
# ==============================================================================


class ScanJobModel(Base, TimestampMixin):
    """Durable, resumable processing state for one scan."""

    __tablename__ = "scan_jobs"
    __table_args__ = (
        Index("idx_scan_jobs_eligible", "status", "next_retry_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    scan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("scans.id", ondelete="CASCADE"), unique=True
    )

    status: Mapped[str] = mapped_column(String(20), default=JobStatus.PENDING.value)
    current_step_index: Mapped[int] = mapped_column(Integer, default=PipelineStep.CRAWL.value)
    substep_label: Mapped[str | None] = mapped_column(String(255))
    progress: Mapped[int] = mapped_column(Integer, default=0)

    # Retry bookkeeping
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)  # Lifetime, drives the policy
    step_attempt_count: Mapped[int] = mapped_column(Integer, default=0)  # Reset on step advance
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_error: Mapped[str | None] = mapped_column(Text)

    # {"crawl": {"version": 1, ...}, "analyze": {...}, ...}
    step_outputs: Mapped[dict | None] = mapped_column(JSON)

    # Lock (compare-and-set only)
    lock_token: Mapped[str | None] = mapped_column(String(64))
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    scan: Mapped["ScanModel"] = relationship(back_populates="job")


# ==============================================================================
# Result Tables
# ==============================================================================


class ClusterModel(Base, TimestampMixin):
    """Business-priority topic derived by Analyze."""

    __tablename__ = "clusters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    scan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("scans.id", ondelete="CASCADE"), index=True
    )
    topic: Mapped[str] = mapped_column(String(255), nullable=False)
    keywords: Mapped[list | None] = mapped_column(JSON)
    priority: Mapped[int] = mapped_column(Integer, default=0)  # 1 = highest
    page_urls: Mapped[list | None] = mapped_column(JSON)

    scan: Mapped["ScanModel"] = relationship(back_populates="clusters")
    hub_page: Mapped["HubPageModel | None"] = relationship(
        back_populates="cluster", uselist=False, cascade="all, delete-orphan"
    )
    offsite_items: Mapped[list["OffsiteContentModel"]] = relationship(
        back_populates="cluster", cascade="all, delete-orphan"
    )


class HubPageModel(Base, TimestampMixin):
    """The page chosen to represent a cluster, with its four-dimension score."""

    __tablename__ = "hub_pages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cluster_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clusters.id", ondelete="CASCADE"), unique=True
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(String(500))
    relevance: Mapped[float] = mapped_column(Float, default=0.0)
    scores: Mapped[dict | None] = mapped_column(JSON)  # {dimension: {score, issues, recommendations}}
    total_score: Mapped[int] = mapped_column(Integer, default=0)

    cluster: Mapped["ClusterModel"] = relationship(back_populates="hub_page")


class OffsiteContentModel(Base, TimestampMixin):
    """Off-site URL retained for a cluster by Discover."""

    __tablename__ = "offsite_content"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cluster_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clusters.id", ondelete="CASCADE"), index=True
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(String(500))
    platform: Mapped[str | None] = mapped_column(String(100))
    source: Mapped[str] = mapped_column(String(20), nullable=False)  # manual | search | link
    scores: Mapped[dict | None] = mapped_column(JSON)
    total_score: Mapped[int] = mapped_column(Integer, default=0)

    cluster: Mapped["ClusterModel"] = relationship(back_populates="offsite_items")


class ArtifactVersionModel(Base):
    """Immutable snapshot of an emitted summary artifact and audit report."""

    __tablename__ = "artifact_versions"
    __table_args__ = (
        UniqueConstraint("scan_id", "version", name="uq_artifact_scan_version"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    scan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("scans.id", ondelete="CASCADE"), index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    summary_markdown: Mapped[str] = mapped_column(Text, nullable=False)
    audit_report: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    scan: Mapped["ScanModel"] = relationship(back_populates="artifacts")
