from datetime import datetime
from typing import Optional, List
from sqlalchemy import Boolean, CheckConstraint, DateTime, Enum as SQLEnum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from enum import Enum

from .base import BaseModel, JSONType


class JobStatus(str, Enum):
    NEW = "new"
    IN_PROGRESS = "in-progress"
    SUCCESSFUL = "successful"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.SUCCESSFUL, JobStatus.PARTIAL, JobStatus.FAILED})


class ScrapingJob(BaseModel):
    __tablename__ = "scraping_jobs"

    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(
            JobStatus,
            name="job_status",
            native_enum=False,
            length=20,
            values_callable=lambda enum: [member.value for member in enum]
        ),
        nullable=False,
        default=JobStatus.NEW,
        index=True
    )

    # Request
    sources_requested: Mapped[List[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list
    )

    articles_per_source: Mapped[int] = mapped_column(
        Integer,
        nullable=False
    )

    # Execution timing
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    # Aggregates; storage-actual counts written at finalisation
    total_articles_scraped: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0
    )

    total_errors: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0
    )

    # {source_name: {source_id, status, extracted, saved, duplicates, capped, errors, ...}}
    source_summary: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True
    )

    reconciliation_passed: Mapped[Optional[bool]] = mapped_column(
        Boolean,
        nullable=True
    )

    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True
    )

    correlation_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True
    )

    celery_task_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True
    )

    __table_args__ = (
        CheckConstraint("articles_per_source > 0", name="articles_per_source_positive"),
        CheckConstraint("total_articles_scraped >= 0", name="total_articles_non_negative"),
        CheckConstraint("total_errors >= 0", name="total_errors_non_negative"),
        CheckConstraint(
            "(completed_at IS NULL AND status IN ('new', 'in-progress')) "
            "OR (completed_at IS NOT NULL AND status IN ('successful', 'partial', 'failed'))",
            name="completed_at_status_consistency"
        ),
        CheckConstraint(
            "(started_at IS NULL OR completed_at IS NULL OR completed_at >= started_at)",
            name="completion_after_start"
        ),
        Index("idx_scraping_jobs_status_created_at", "status", "created_at"),
    )

    @property
    def is_finished(self) -> bool:
        return JobStatus(self.status).is_terminal

    @property
    def duration_seconds(self) -> Optional[int]:
        if self.started_at and self.completed_at:
            return int((self.completed_at - self.started_at).total_seconds())
        return None

    def __repr__(self) -> str:
        return (
            f"<ScrapingJob("
            f"id={self.id}, "
            f"status={JobStatus(self.status).value}, "
            f"sources={len(self.sources_requested or [])}, "
            f"articles_per_source={self.articles_per_source}"
            f")>"
        )
