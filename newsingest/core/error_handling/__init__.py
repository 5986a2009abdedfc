"""Retry policies shared by feed and page fetching."""

from .retry_handler import RetryConfig, RetryHandler, fetch_retry_config, feed_retry_config

__all__ = [
    "RetryConfig",
    "RetryHandler",
    "fetch_retry_config",
    "feed_retry_config"
]
