from datetime import datetime
from typing import Optional
import uuid
from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONType, utcnow


class LogLevel:
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    ALL = (INFO, WARNING, ERROR)


class ScrapingLog(Base):
    """One immutable event of the structured event log.

    The integer primary key is the append order; consumers tail the log with
    ``id > last_seen_id``.
    """

    __tablename__ = "scraping_logs"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True
    )

    job_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True
    )

    source_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True
    )

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow
    )

    level: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=LogLevel.INFO
    )

    event_type: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True
    )

    event_name: Mapped[Optional[str]] = mapped_column(
        String(80),
        nullable=True
    )

    tracking_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True
    )

    message: Mapped[str] = mapped_column(
        Text,
        nullable=False
    )

    additional_data: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True
    )

    __table_args__ = (
        Index("idx_scraping_logs_job_id_id", "job_id", "id"),
        Index("idx_scraping_logs_job_event", "job_id", "event_type", "event_name"),
        Index("idx_scraping_logs_tracking_id", "tracking_id"),
        Index("idx_scraping_logs_level", "level"),
    )

    @property
    def payload(self) -> dict:
        data = dict(self.additional_data or {})
        if self.event_type:
            data.setdefault("event_type", self.event_type)
        if self.event_name:
            data.setdefault("event_name", self.event_name)
        if self.tracking_id:
            data.setdefault("tracking_id", self.tracking_id)
        if self.source_id:
            data.setdefault("source_id", str(self.source_id))
        return data

    def __repr__(self) -> str:
        return f"<ScrapingLog(id={self.id}, level={self.level}, event={self.event_type}/{self.event_name})>"
