"""
Retry -- one parameterised exponential-backoff utility for database calls.

Contract:
    ``Retrier.call(fn, operation)`` runs ``fn`` until it succeeds or the
    policy's attempt limit is reached.  Only transient database errors are
    retried; anything else propagates on the first occurrence.  The sleep
    callable is injected so tests and cooperative schedulers control time.

Architecture: ledger_allocation/services.  Imports from ledger_kernel and
    ledger_config only.

Failure modes:
    - RetryExhaustedError after the last attempt, chained to the final
      transient error.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from ledger_config.schema import RetrySettings
from ledger_kernel.exceptions import RetryExhaustedError
from ledger_kernel.logging_config import get_logger

logger = get_logger("allocation.retry")

T = TypeVar("T")

TRANSIENT_DB_ERRORS: tuple[type[BaseException], ...] = (
    OperationalError,
    InterfaceError,
    PoolTimeoutError,
)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    backoff_multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_seconds=settings.base_delay_seconds,
            backoff_multiplier=settings.backoff_multiplier,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt ``attempt`` (1-based)."""
        return self.base_delay_seconds * self.backoff_multiplier ** (attempt - 1)


class Retrier:
    """Runs callables under a RetryPolicy."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        retryable: tuple[type[BaseException], ...] = TRANSIENT_DB_ERRORS,
    ):
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._retryable = retryable

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def call(self, fn: Callable[[], T], operation: str) -> T:
        max_attempts = max(self._policy.max_attempts, 1)
        last_error: BaseException | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                return fn()
            except self._retryable as exc:
                last_error = exc
                if attempt == max_attempts:
                    break
                delay = self._policy.delay_for(attempt)
                logger.warning(
                    "retrying_operation",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "delay_seconds": delay,
                        "error": str(exc),
                    },
                )
                self._sleep(delay)

        logger.error(
            "retry_exhausted",
            extra={
                "operation": operation,
                "attempts": max_attempts,
                "error": str(last_error),
            },
        )
        raise RetryExhaustedError(operation, max_attempts, last_error) from last_error
