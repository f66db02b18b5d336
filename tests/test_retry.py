"""Tests for the generic retry-with-backoff helper."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.dealdocs.documents.errors import RetryExhaustedError
from src.dealdocs.documents.retry import RetryPolicy, with_retry


class FlakyOperation:
    """Fails ``failures`` times with the given messages, then returns ``result``."""

    def __init__(self, failures: int, result: str = "ok", message: str = "boom") -> None:
        self.failures = failures
        self.result = result
        self.message = message
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ValueError(f"{self.message} {self.calls}" if self.message else "")
        return self.result


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.attempts == 3
        assert policy.delays == (0.5, 1.0)

    def test_from_schedule_derives_attempts(self):
        policy = RetryPolicy.from_schedule([0.5, 1.0])
        assert policy.attempts == 3
        assert policy.delays == (0.5, 1.0)

    def test_from_schedule_with_explicit_attempts(self):
        policy = RetryPolicy.from_schedule([0.2], attempts=5)
        assert policy.attempts == 5
        assert policy.delays == (0.2,)


class TestWithRetry:
    async def test_first_attempt_success_does_not_sleep(self):
        sleep = AsyncMock()
        operation = FlakyOperation(failures=0)

        result = await with_retry(operation, RetryPolicy(), sleep=sleep)

        assert result == "ok"
        assert operation.calls == 1
        sleep.assert_not_awaited()

    async def test_recovers_after_failures_using_schedule(self):
        sleep = AsyncMock()
        operation = FlakyOperation(failures=2)

        result = await with_retry(operation, RetryPolicy(), sleep=sleep)

        assert result == "ok"
        assert operation.calls == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    async def test_exhaustion_reraises_last_error(self):
        sleep = AsyncMock()
        operation = FlakyOperation(failures=10)

        with pytest.raises(ValueError, match="boom 3"):
            await with_retry(operation, RetryPolicy(), sleep=sleep)

        assert operation.calls == 3
        assert sleep.await_count == 2

    async def test_short_schedule_repeats_last_delay(self):
        sleep = AsyncMock()
        operation = FlakyOperation(failures=10)

        with pytest.raises(ValueError):
            await with_retry(operation, RetryPolicy(attempts=4, delays=(0.2,)), sleep=sleep)

        assert operation.calls == 4
        assert [c.args[0] for c in sleep.await_args_list] == [0.2, 0.2, 0.2]

    async def test_single_attempt_policy(self):
        sleep = AsyncMock()
        operation = FlakyOperation(failures=1)

        with pytest.raises(ValueError):
            await with_retry(operation, RetryPolicy(attempts=1), sleep=sleep)

        assert operation.calls == 1
        sleep.assert_not_awaited()

    async def test_empty_message_is_wrapped(self):
        sleep = AsyncMock()
        operation = FlakyOperation(failures=10, message="")

        with pytest.raises(RetryExhaustedError) as exc_info:
            await with_retry(operation, RetryPolicy(), operation_name="upload", sleep=sleep)

        assert "upload failed after 3 attempts" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert exc_info.value.code == "RETRY_EXHAUSTED"
