"""Generic retry-with-backoff for remote calls made during a document sync.

A single helper replaces per-call-site retry loops. Every failure is retried
the same way (no retryable/fatal classification, no jitter), so callers must
only wrap idempotent operations and keep schedules short.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt
from tenacity.wait import wait_base

from src.dealdocs.documents.errors import RetryExhaustedError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget plus the delay (seconds) to wait after each failed attempt."""

    attempts: int = 3
    delays: tuple[float, ...] = (0.5, 1.0)

    @classmethod
    def from_schedule(cls, delays: Sequence[float], attempts: int | None = None) -> RetryPolicy:
        """Build a policy from a delay schedule; attempts default to len(delays) + 1."""
        schedule = tuple(float(d) for d in delays)
        return cls(attempts=attempts if attempts is not None else len(schedule) + 1, delays=schedule)


class wait_schedule(wait_base):
    """Tenacity wait strategy reading delays from a fixed schedule.

    The delay after the n-th failed attempt is ``delays[n - 1]``, clamped to
    the last element when the schedule is shorter than the attempt count.
    """

    def __init__(self, delays: Sequence[float]) -> None:
        self.delays = tuple(delays)

    def __call__(self, retry_state: RetryCallState) -> float:
        if not self.delays:
            return 0.0
        index = min(retry_state.attempt_number - 1, len(self.delays) - 1)
        return max(0.0, self.delays[index])


def _log_retry(operation_name: str) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "retry.attempt_failed",
            operation=operation_name,
            attempt=retry_state.attempt_number,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc) or type(exc).__name__,
        )

    return _before_sleep


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    operation_name: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] | None = None,
) -> T:
    """Run ``operation`` until it succeeds or the attempt budget is spent.

    Args:
        operation: Zero-argument coroutine factory. Called once per attempt.
        policy: Attempts and delay schedule. Defaults to 3 attempts, 0.5s/1s.
        operation_name: Label used in retry log events.
        sleep: Optional async sleep override (tests pass a no-op).

    Returns:
        The operation's result.

    Raises:
        The last error raised by ``operation``. When that error has an empty
        message it is wrapped in RetryExhaustedError so callers always get a
        usable diagnostic.
    """
    policy = policy or RetryPolicy()
    retry_kwargs: dict[str, Any] = {
        "stop": stop_after_attempt(max(1, policy.attempts)),
        "wait": wait_schedule(policy.delays),
        "reraise": True,
        "before_sleep": _log_retry(operation_name),
    }
    if sleep is not None:
        retry_kwargs["sleep"] = sleep

    try:
        async for attempt in AsyncRetrying(**retry_kwargs):
            with attempt:
                return await operation()
    except Exception as exc:
        if str(exc).strip():
            raise
        raise RetryExhaustedError(
            f"{operation_name} failed after {max(1, policy.attempts)} attempts "
            f"({type(exc).__name__})"
        ) from exc
    raise RetryExhaustedError(f"{operation_name} did not run")  # pragma: no cover
