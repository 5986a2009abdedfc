"""Run the async scraping engine from synchronous entry points.

Celery tasks are plain functions while the orchestrator is async end to end.
``safe_async_run`` gives each call its own event loop, on a helper thread when
the caller is already inside a running loop, so database engines and HTTP
clients never outlive the loop that created them.
"""

import asyncio
import threading
from typing import Coroutine, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class AsyncExecutionError(Exception):
    """Raised when a coroutine run through ``safe_async_run`` fails or times out."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


def is_event_loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def _run_on_fresh_loop(coro: Coroutine[None, None, T], timeout: Optional[float]) -> T:
    with asyncio.Runner() as runner:
        return runner.run(asyncio.wait_for(coro, timeout) if timeout else coro)


def _run_on_helper_thread(coro: Coroutine[None, None, T], timeout: Optional[float]) -> T:
    outcome = {}

    def target():
        try:
            outcome["result"] = _run_on_fresh_loop(coro, timeout)
        except BaseException as e:
            outcome["error"] = e

    thread = threading.Thread(target=target, name="safe-async-run")
    thread.start()
    thread.join()
    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]


def safe_async_run(coro: Coroutine[None, None, T], timeout: Optional[float] = None) -> T:
    """Run ``coro`` to completion and return its result.

    Raises:
        AsyncExecutionError: If the coroutine raised or exceeded ``timeout``
    """
    nested = is_event_loop_running()
    logger.debug("Running coroutine synchronously", nested=nested, timeout=timeout)
    try:
        if nested:
            return _run_on_helper_thread(coro, timeout)
        return _run_on_fresh_loop(coro, timeout)
    except Exception as e:
        logger.error(
            "Synchronous coroutine run failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True
        )
        raise AsyncExecutionError(f"Async execution failed: {e}", original_error=e) from e
