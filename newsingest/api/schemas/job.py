"""Pydantic schemas for the scraper API.

Example:
    ```python
    from newsingest.api.schemas.job import TriggerJobRequest

    # Raises pydantic.ValidationError for an empty list or a bad count
    request = TriggerJobRequest(sources=["example-news"], articles_per_source=10)
    ```
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from newsingest.shared.config import get_settings


class TriggerJobRequest(BaseModel):
    """Schema for triggering a scraping job."""

    sources: List[str] = Field(
        ...,
        min_length=1,
        description="Names of the sources to scrape",
        examples=[["example-news", "daily-wire"]]
    )

    articles_per_source: int = Field(
        ...,
        ge=1,
        description="Maximum number of articles to persist per source",
        examples=[10]
    )

    @field_validator("sources")
    @classmethod
    def validate_sources(cls, v: List[str]) -> List[str]:
        names = [name.strip() for name in v]
        if any(not name for name in names):
            raise ValueError("Source names cannot be empty")
        if len(set(names)) != len(names):
            raise ValueError("Source names must be unique")
        max_sources = get_settings().MAX_SOURCES_PER_JOB
        if len(names) > max_sources:
            raise ValueError(f"At most {max_sources} sources per job")
        return names

    @field_validator("articles_per_source")
    @classmethod
    def validate_articles_per_source(cls, v: int) -> int:
        max_articles = get_settings().MAX_ARTICLES_PER_SOURCE
        if v > max_articles:
            raise ValueError(f"articles_per_source cannot exceed {max_articles}")
        return v


class TriggerJobResponse(BaseModel):
    job_id: UUID
    status: str
    correlation_id: Optional[str] = None


class JobSummaryResponse(BaseModel):
    """One row of the job list."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: str
    sources_requested: List[str]
    articles_per_source: int
    total_articles_scraped: int
    total_errors: int
    reconciliation_passed: Optional[bool] = None
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def status_value(cls, v: Any) -> str:
        return getattr(v, "value", v)


class JobListResponse(BaseModel):
    jobs: List[JobSummaryResponse]
    total: int


class JobStatusResponse(BaseModel):
    """Status of one job; counts come from storage and the event log, not memory."""

    job_id: UUID
    status: str
    sources_requested: List[str]
    articles_per_source: int
    per_source_counts: Dict[str, int]
    error_counts: Dict[str, int]
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    reconciliation_passed: Optional[bool] = None
    error_message: Optional[str] = None
    source_summary: Dict[str, Any] = Field(default_factory=dict)


class LogEntryResponse(BaseModel):
    id: int
    timestamp: datetime
    level: str
    message: str
    payload: Dict[str, Any]


class JobLogsResponse(BaseModel):
    job_id: UUID
    entries: List[LogEntryResponse]
    next_after_id: Optional[int] = Field(
        None,
        description="Pass as after_id to continue tailing the log"
    )


class ReconciliationRecordResponse(BaseModel):
    source_id: UUID
    source_name: Optional[str] = None
    extracted_count: int
    claimed_count: int
    actual_count: int
    logged_persisted_count: int
    capped_count: int
    duplicates_skipped: int
    matches: bool
    discrepancy_types: List[str]
    sample_ids: List[str]


class ReconciliationResponse(BaseModel):
    job_id: UUID
    passed: bool
    discrepancies: int
    total_actual: int
    generated_at: datetime
    sources: List[ReconciliationRecordResponse]


class LifecycleAuditResponse(BaseModel):
    tracking_ids: int
    clean: bool
    violations: List[Dict[str, Any]]


class JobMetricsResponse(BaseModel):
    job_id: UUID
    source_performance: List[Dict[str, Any]]
    error_summary: List[Dict[str, Any]]
    http_errors: int
    lifecycle_audit: LifecycleAuditResponse


class ErrorResponse(BaseModel):
    error: str
    detail: Any
    correlation_id: Optional[str] = None
