"""Exponential backoff for feed and page fetches.

Only ``BaseAppException`` subclasses flagged ``retryable`` are retried; in
practice that is ``FetchError`` and its timeout variant. Anything else
propagates on the first attempt. A ``retry_after`` hint on the error replaces
the computed delay, capped at ``max_delay``.
"""

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type

from newsingest.shared.config import Settings
from newsingest.shared.exceptions import BaseAppException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter_range: float = 0.5
    never_retry: Tuple[Type[Exception], ...] = ()

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


class RetryHandler:
    def __init__(self, config: Optional[RetryConfig] = None):
        self.config = config or RetryConfig()

    def calculate_delay(self, attempt: int) -> float:
        """Backoff in seconds after the 0-based ``attempt`` failed."""
        config = self.config
        delay = min(config.base_delay * config.exponential_base ** attempt, config.max_delay)
        if config.jitter_range:
            delay *= 1 + random.uniform(-config.jitter_range, config.jitter_range)
        return max(0.0, delay)

    def is_retryable(self, error: Exception) -> bool:
        if isinstance(error, self.config.never_retry):
            return False
        return isinstance(error, BaseAppException) and error.retryable

    def _delay_after(self, error: Exception, attempt: int) -> float:
        hint = getattr(error, "retry_after", None)
        if hint:
            return min(float(hint), self.config.max_delay)
        return self.calculate_delay(attempt)

    async def execute_with_retry(
        self,
        func: Callable,
        *args,
        correlation_id: Optional[str] = None,
        **kwargs
    ) -> Any:
        """Call ``func`` (sync or async) until it succeeds or retries run out.

        Raises:
            Exception: The last error raised by ``func``, unchanged
        """
        operation = getattr(func, "__name__", repr(func))
        attempt = 0
        while True:
            try:
                result = func(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                return result
            except Exception as e:
                if attempt >= self.config.max_retries or not self.is_retryable(e):
                    raise
                delay = self._delay_after(e, attempt)
                logger.warning(
                    f"Retrying {operation} in {delay:.2f}s",
                    extra={
                        "correlation_id": correlation_id,
                        "operation": operation,
                        "attempt": attempt + 1,
                        "max_attempts": self.config.max_attempts,
                        "error": str(e),
                        "error_type": type(e).__name__
                    }
                )
                await asyncio.sleep(delay)
                attempt += 1


def fetch_retry_config(settings: Settings) -> RetryConfig:
    """Article page policy: jittered so one source's pages do not retry in lockstep."""
    return RetryConfig(
        max_retries=settings.FETCH_MAX_RETRIES,
        base_delay=settings.FETCH_RETRY_BASE_DELAY,
        max_delay=30.0,
        exponential_base=settings.FETCH_RETRY_MULTIPLIER,
        jitter_range=0.3
    )


def feed_retry_config(settings: Settings) -> RetryConfig:
    """Feed policy: a fixed 1x, 2x, 4x... schedule of ``FETCH_RETRY_BASE_DELAY``."""
    return RetryConfig(
        max_retries=settings.FEED_MAX_RETRIES,
        base_delay=settings.FETCH_RETRY_BASE_DELAY,
        max_delay=60.0,
        exponential_base=2.0,
        jitter_range=0.0
    )
