"""Tests for the structured event logger."""

import uuid
from unittest.mock import AsyncMock, Mock

from newsingest.core.tracking.event_logger import (
    ArticleEvent,
    EventType,
    LogEntry,
    Phase,
    ScrapingEventLogger,
)


class TestScrapingEventLogger:
    async def test_log_appends_row(self, event_logger, log_repo):
        # Arrange
        job_id, source_id = uuid.uuid4(), uuid.uuid4()

        # Act
        log_id = await event_logger.source_event(
            job_id, source_id, "source_started", "Starting Alpha", feed_url="https://alpha.example/rss.xml"
        )

        # Assert
        rows = await log_repo.list_for_job(job_id)
        assert len(rows) == 1
        row = rows[0]
        assert row.id == log_id
        assert row.level == "info"
        assert row.event_type == "source_lifecycle"
        assert row.event_name == "source_started"
        assert row.source_id == source_id
        assert row.additional_data == {"feed_url": "https://alpha.example/rss.xml"}

    async def test_payload_values_are_made_json_safe(self, event_logger, log_repo):
        job_id = uuid.uuid4()
        other = uuid.uuid4()

        await event_logger.phase(job_id, Phase.EXTRACTION, sources=[other], flags={"tuple": (1, 2)})

        row = (await log_repo.list_for_job(job_id))[0]
        assert row.event_type == EventType.PHASE_TRANSITION.value
        assert row.event_name == "extraction"
        assert row.additional_data["phase"] == "extraction"
        assert row.additional_data["sources"] == [str(other)]
        assert row.additional_data["flags"] == {"tuple": [1, 2]}

    async def test_append_order_is_preserved(self, event_logger, log_repo):
        job_id = uuid.uuid4()

        for name in ("job_started", "job_completed"):
            await event_logger.job_event(job_id, name, name)
        await event_logger.log_many([
            LogEntry(message="a", job_id=job_id, event_type="article_lifecycle", event_name="article_persisted"),
            LogEntry(message="b", job_id=job_id, event_type="article_lifecycle", event_name="article_skipped"),
        ])

        rows = await log_repo.list_for_job(job_id)
        assert [row.message for row in rows] == ["job_started", "job_completed", "a", "b"]
        assert [row.id for row in rows] == sorted(row.id for row in rows)

    async def test_write_failure_is_not_raised(self):
        """Test a failing log store never breaks the caller."""
        # Arrange
        log_repo = Mock()
        log_repo.append = AsyncMock(side_effect=RuntimeError("disk full"))
        log_repo.append_many = AsyncMock(side_effect=RuntimeError("disk full"))
        event_logger = ScrapingEventLogger(log_repo, correlation_id="abc")

        # Act
        log_id = await event_logger.job_event(uuid.uuid4(), "job_started", "Job started")
        written = await event_logger.log_many([LogEntry(message="x")])

        # Assert
        assert log_id is None
        assert written == 0

    def test_article_entry(self):
        job_id, source_id = uuid.uuid4(), uuid.uuid4()

        entry = ScrapingEventLogger.article_entry(
            job_id, source_id, "t-1", ArticleEvent.SKIPPED, "Skipped", reason="capped"
        )

        row = entry.to_row()
        assert row["event_type"] == "article_lifecycle"
        assert row["event_name"] == "article_skipped"
        assert row["tracking_id"] == "t-1"
        assert row["additional_data"] == {"reason": "capped"}

    async def test_http_error(self, event_logger, log_repo):
        job_id = uuid.uuid4()

        await event_logger.http_error(job_id, uuid.uuid4(), "t-1", "https://alpha.example/x", 503, "unavailable")

        row = (await log_repo.list_for_job(job_id))[0]
        assert row.level == "warning"
        assert row.payload["status_code"] == 503
        assert row.payload["tracking_id"] == "t-1"
