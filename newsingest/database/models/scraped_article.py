from datetime import datetime
from typing import Optional
import uuid
from sqlalchemy import (
    CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class ScrapedArticle(Base):
    """A persisted article. Rows are append-only: inserted once, never updated."""

    __tablename__ = "scraped_content"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    source_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sources.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    source_url: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        unique=True
    )

    title: Mapped[str] = mapped_column(
        String(500),
        nullable=False
    )

    content: Mapped[str] = mapped_column(
        Text,
        nullable=False
    )

    author: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True
    )

    publication_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    content_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True
    )

    language: Mapped[Optional[str]] = mapped_column(
        String(16),
        nullable=True
    )

    # Provenance
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("scraping_jobs.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    tracking_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True
    )

    extraction_strategy: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True
    )

    content_length: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("source_id", "source_url", name="uq_scraped_content_source_url"),
        CheckConstraint("length(trim(title)) > 0", name="scraped_title_not_empty"),
        CheckConstraint("content_hash IS NULL OR length(content_hash) = 64", name="scraped_valid_content_hash"),
        Index("idx_scraped_content_job_source", "job_id", "source_id"),
        Index("idx_scraped_content_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ScrapedArticle(id={self.id}, source_id={self.source_id}, url='{self.source_url[:60]}')>"
