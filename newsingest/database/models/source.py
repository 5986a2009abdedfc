from typing import Optional
from sqlalchemy import Boolean, CheckConstraint, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel


class Source(BaseModel):
    """A news source from the source registry; read-only to the engine."""

    __tablename__ = "sources"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True
    )

    domain: Mapped[str] = mapped_column(
        String(255),
        nullable=False
    )

    rss_url: Mapped[str] = mapped_column(
        Text,
        nullable=False
    )

    # Politeness configuration
    delay_between_requests: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1000
    )

    timeout_ms: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=30000
    )

    user_agent: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True
    )

    respect_robots_txt: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True
    )

    # Candidates queued per requested article; falls back to CANDIDATE_MULTIPLIER
    candidate_multiplier: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True
    )

    __table_args__ = (
        CheckConstraint("length(trim(name)) > 0", name="source_name_not_empty"),
        CheckConstraint("delay_between_requests >= 0", name="source_delay_non_negative"),
        CheckConstraint("timeout_ms > 0", name="source_timeout_positive"),
        CheckConstraint(
            "candidate_multiplier IS NULL OR candidate_multiplier >= 1",
            name="source_candidate_multiplier_min"
        ),
        Index("idx_sources_is_active", "is_active"),
        Index("idx_sources_domain", "domain"),
    )

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def delay_seconds(self) -> float:
        return self.delay_between_requests / 1000.0

    def __repr__(self) -> str:
        return f"<Source(id={self.id}, name='{self.name}', domain='{self.domain}')>"
