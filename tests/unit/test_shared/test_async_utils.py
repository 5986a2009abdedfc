"""Tests for running coroutines from synchronous code."""

import asyncio

import pytest

from newsingest.shared.async_utils import AsyncExecutionError, is_event_loop_running, safe_async_run


async def add(a, b):
    await asyncio.sleep(0)
    return a + b


async def fail():
    raise ValueError("bad input")


class TestSafeAsyncRun:
    def test_runs_without_a_loop(self):
        assert is_event_loop_running() is False
        assert safe_async_run(add(1, 2)) == 3

    async def test_runs_inside_a_running_loop(self):
        """Test the coroutine is moved to a helper thread when a loop is running."""
        assert is_event_loop_running() is True
        assert safe_async_run(add(2, 3)) == 5

    def test_errors_are_wrapped(self):
        with pytest.raises(AsyncExecutionError) as exc_info:
            safe_async_run(fail())

        assert isinstance(exc_info.value.original_error, ValueError)

    def test_timeout(self):
        with pytest.raises(AsyncExecutionError) as exc_info:
            safe_async_run(asyncio.sleep(1), timeout=0.01)

        assert isinstance(exc_info.value.original_error, asyncio.TimeoutError)
