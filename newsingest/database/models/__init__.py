from .base import Base, BaseModel
from .source import Source
from .scraping_job import ScrapingJob, JobStatus, TERMINAL_STATUSES
from .scraped_article import ScrapedArticle
from .scraping_log import ScrapingLog, LogLevel

__all__ = [
    "Base",
    "BaseModel",
    "Source",
    "ScrapingJob",
    "JobStatus",
    "TERMINAL_STATUSES",
    "ScrapedArticle",
    "ScrapingLog",
    "LogLevel",
]
