"""Resilience wrapper for outbound calls: timeout, retry, circuit breaker.

Policies compose innermost to outermost:

    breaker( retry( timeout( call ) ) )

- Each attempt is bounded by its own timeout.
- Retryable failures are re-attempted a fixed number of times with a fixed
  delay between attempts.
- The breaker counts one failure per exhausted call (not per attempt) and,
  after enough consecutive failures, rejects calls without invoking them
  until the reset window passes. It then lets a single trial call through.

Caller cancellation always propagates; the per-attempt timeout is applied
in addition to any deadline the caller already has.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TypeVar

import httpx

from gatekeep.core.config import settings

__all__ = [
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "DispatchPolicy",
    "ResilientDispatcher",
    "UpstreamServerError",
    "with_retries",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UpstreamServerError(Exception):
    """Remote dependency answered with a 5xx status.

    Attributes:
        status_code: HTTP status returned by the dependency.
    """

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        super().__init__(message or f"Upstream server error {status_code}")


class CircuitOpenError(Exception):
    """Call rejected because the circuit breaker is open."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Circuit '{name}' is open")


# Failures worth another attempt. Anything else propagates immediately.
DEFAULT_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    UpstreamServerError,
    TimeoutError,
    httpx.TransportError,
)


@dataclass(frozen=True)
class DispatchPolicy:
    """Tunables for one ResilientDispatcher.

    Attributes:
        timeout_seconds: Upper bound for a single attempt.
        max_attempts: Total attempts including the first.
        backoff_seconds: Fixed delay between attempts.
        failure_threshold: Consecutive failed calls that open the breaker.
        reset_timeout_seconds: How long the breaker stays open.
    """

    timeout_seconds: float = 30.0
    max_attempts: int = 3
    backoff_seconds: float = 0.5
    failure_threshold: int = 5
    reset_timeout_seconds: float = 30.0

    @classmethod
    def for_email(cls) -> "DispatchPolicy":
        """Policy for transactional email, read from settings."""
        return cls(
            timeout_seconds=settings.email_timeout_seconds,
            max_attempts=settings.email_max_attempts,
            backoff_seconds=settings.email_backoff_seconds,
            failure_threshold=settings.email_failure_threshold,
            reset_timeout_seconds=settings.email_reset_timeout_seconds,
        )


async def with_retries(
    func: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    delay_seconds: float,
    retryable_errors: tuple[type[Exception], ...] = DEFAULT_RETRYABLE_ERRORS,
    operation: str = "call",
) -> T:
    """Execute function with fixed-delay retry.

    Args:
        func: Async function to execute (no arguments).
        max_attempts: Total attempts including the first (>= 1).
        delay_seconds: Sleep between attempts.
        retryable_errors: Tuple of error types that should trigger retry.
        operation: Name used in log messages.

    Returns:
        Result from successful function execution.

    Raises:
        Exception: The last retryable error once attempts are exhausted, or
            the first non-retryable error.
    """
    if max_attempts < 1:
        msg = f"max_attempts must be >= 1, got {max_attempts}"
        raise ValueError(msg)

    for attempt in range(1, max_attempts + 1):
        try:
            return await func()
        except retryable_errors as e:
            if attempt == max_attempts:
                raise

            logger.warning(
                "%s failed (attempt %d/%d): %s. Retrying in %.2fs",
                operation,
                attempt,
                max_attempts,
                type(e).__name__,
                delay_seconds,
            )
            await asyncio.sleep(delay_seconds)

    # Unreachable: the final attempt either returns or raises
    raise RuntimeError("Retry loop exited without error or result")


class CircuitState(StrEnum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure circuit breaker safe for concurrent callers.

    State lives behind an asyncio.Lock that is held only while reading or
    updating counters, never across the guarded call itself.

    Transitions:
        CLOSED -> OPEN        after failure_threshold consecutive failures
        OPEN -> HALF_OPEN     once reset_timeout has elapsed (next caller)
        HALF_OPEN -> CLOSED   when the single trial call succeeds
        HALF_OPEN -> OPEN     when the trial call fails
    """

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int,
        reset_timeout_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            msg = f"failure_threshold must be >= 1, got {failure_threshold}"
            raise ValueError(msg)
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def _transition(self, new_state: CircuitState) -> None:
        if new_state is self._state:
            return
        logger.warning(
            "Circuit breaker state change",
            extra={
                "circuit": self.name,
                "from_state": self._state.value,
                "to_state": new_state.value,
            },
        )
        self._state = new_state

    async def _acquire(self) -> bool:
        """Admit a call or raise; returns True if the call is the trial."""
        async with self._lock:
            if self._state is CircuitState.OPEN:
                if self._clock() - self._opened_at < self.reset_timeout_seconds:
                    raise CircuitOpenError(self.name)
                self._transition(CircuitState.HALF_OPEN)

            if self._state is CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(self.name)
                self._trial_in_flight = True
                return True
            return False

    async def _record_success(self, is_trial: bool) -> None:
        async with self._lock:
            if is_trial:
                self._trial_in_flight = False
            self._failures = 0
            self._transition(CircuitState.CLOSED)

    async def _record_failure(self, is_trial: bool) -> None:
        async with self._lock:
            if is_trial:
                self._trial_in_flight = False
            self._failures += 1
            if (
                self._state is CircuitState.HALF_OPEN
                or self._failures >= self.failure_threshold
            ):
                self._opened_at = self._clock()
                self._transition(CircuitState.OPEN)

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """Run func through the breaker.

        Args:
            func: Async function to execute (no arguments).

        Returns:
            Result of func.

        Raises:
            CircuitOpenError: If the breaker rejects the call.
        """
        is_trial = await self._acquire()
        try:
            result = await func()
        except asyncio.CancelledError:
            # Cancellation frees the trial slot without counting as a failure
            if is_trial:
                self._trial_in_flight = False
            raise
        except Exception:
            await self._record_failure(is_trial)
            raise
        await self._record_success(is_trial)
        return result


class ResilientDispatcher:
    """Timeout + retry + circuit breaker around arbitrary async calls.

    One dispatcher per dependency; its breaker state is shared by every call
    made through it.
    """

    def __init__(
        self,
        name: str,
        policy: DispatchPolicy | None = None,
        *,
        retryable_errors: tuple[type[Exception], ...] = DEFAULT_RETRYABLE_ERRORS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.policy = policy or DispatchPolicy()
        self.retryable_errors = retryable_errors
        self.breaker = CircuitBreaker(
            name,
            failure_threshold=self.policy.failure_threshold,
            reset_timeout_seconds=self.policy.reset_timeout_seconds,
            clock=clock,
        )

    async def _attempt(self, func: Callable[[], Awaitable[T]]) -> T:
        async with asyncio.timeout(self.policy.timeout_seconds):
            return await func()

    async def _retried(self, func: Callable[[], Awaitable[T]]) -> T:
        return await with_retries(
            lambda: self._attempt(func),
            max_attempts=self.policy.max_attempts,
            delay_seconds=self.policy.backoff_seconds,
            retryable_errors=self.retryable_errors,
            operation=self.name,
        )

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """Dispatch func through breaker, retry, and timeout.

        Args:
            func: Async function to execute (no arguments). Called once per
                attempt, so it must be safe to re-invoke.

        Returns:
            Result of the first successful attempt.

        Raises:
            CircuitOpenError: If the breaker is open.
            TimeoutError: If the final attempt timed out.
            Exception: The final attempt's error otherwise.
        """
        return await self.breaker.call(lambda: self._retried(func))
