from .base import BaseRepository
from .source_repo import SourceRepository
from .job_repo import ScrapingJobRepository
from .article_repo import ScrapedArticleRepository
from .log_repo import ScrapingLogRepository

__all__ = [
    "BaseRepository",
    "SourceRepository",
    "ScrapingJobRepository",
    "ScrapedArticleRepository",
    "ScrapingLogRepository"
]
