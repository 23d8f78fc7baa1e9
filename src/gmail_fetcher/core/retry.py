"""Retry combinator with exponential backoff, gated by a circuit breaker."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from gmail_fetcher.core.deadline import Deadline
from gmail_fetcher.core.results import ApiResult, ResultKind

if TYPE_CHECKING:
    from gmail_fetcher.config.settings import GmailFetcherSettings
    from gmail_fetcher.core.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

T = TypeVar("T")


def exponential_backoff(attempt: int, base: float, cap: float) -> float:
    """Delay before retrying after ``attempt`` (1-based): base, 2*base, 4*base, ... capped."""
    return min(base * (2 ** max(attempt - 1, 0)), cap)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceilings and backoff curves per failure kind.

    Quota violations get the long curve and the high ceiling; transient and
    unknown failures get a shorter curve and a lower ceiling. Auth failures are
    never retried. Timeouts are retried like transient failures only when
    ``retry_timeouts`` is set, as it is for listing; a detail timeout is final.
    """

    max_attempts: int = 5
    transient_max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 10.0
    transient_base_delay: float = 1.0
    transient_max_delay: float = 5.0
    retry_timeouts: bool = False

    @classmethod
    def for_listing(cls, settings: GmailFetcherSettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_list_attempts,
            transient_max_attempts=settings.max_transient_attempts,
            base_delay=settings.initial_backoff_seconds,
            max_delay=settings.max_backoff_seconds,
            transient_base_delay=settings.transient_initial_backoff_seconds,
            transient_max_delay=settings.transient_max_backoff_seconds,
            retry_timeouts=True,
        )

    @classmethod
    def for_details(cls, settings: GmailFetcherSettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_detail_attempts,
            transient_max_attempts=settings.max_detail_attempts,
            base_delay=settings.initial_backoff_seconds,
            max_delay=settings.max_backoff_seconds,
            transient_base_delay=settings.transient_initial_backoff_seconds,
            transient_max_delay=settings.transient_max_backoff_seconds,
        )

    def ceiling_for(self, kind: ResultKind) -> int:
        if kind is ResultKind.RATE_LIMITED:
            return self.max_attempts
        if kind in (ResultKind.TRANSIENT, ResultKind.UNKNOWN):
            return self.transient_max_attempts
        if kind is ResultKind.TIMEOUT and self.retry_timeouts:
            return self.transient_max_attempts
        return 1

    def escalates(self, kind: ResultKind) -> bool:
        """Whether a failure of this kind counts against the circuit breaker."""
        if kind is ResultKind.TIMEOUT:
            return self.retry_timeouts
        return kind is not ResultKind.AUTH

    def delay_for(self, attempt: int, result: ApiResult[Any]) -> float:
        if result.kind is ResultKind.RATE_LIMITED:
            delay = exponential_backoff(attempt, self.base_delay, self.max_delay)
            if result.retry_after is not None:
                delay = min(max(delay, result.retry_after), self.max_delay)
            return delay
        return exponential_backoff(attempt, self.transient_base_delay, self.transient_max_delay)


def with_retry(
    operation: Callable[[], ApiResult[T]],
    policy: RetryPolicy,
    *,
    breaker: CircuitBreaker | None = None,
    deadline: Deadline | None = None,
    sleep: Callable[[float], None] = time.sleep,
    context: str = "request",
    abandoned: threading.Event | None = None,
) -> ApiResult[T]:
    """Run ``operation`` until it succeeds or its failure kind's ceiling is hit.

    The breaker is consulted before every attempt; while it is open the attempt
    is short-circuited without calling ``operation``. Outcomes of real calls are
    recorded in the breaker. No sleep extends past ``deadline``. Once
    ``abandoned`` is set the caller has stopped waiting: no further attempt is
    made and the outcome of an in-flight call is not recorded.

    Returns:
        The successful result, or the last failed result.
    """
    attempt = 0
    while True:
        attempt += 1
        if abandoned is not None and abandoned.is_set():
            return ApiResult.failure(ResultKind.TIMEOUT, f"Abandoned {context}")
        if breaker is not None and breaker.is_open_now():
            result: ApiResult[T] = ApiResult.circuit_open(
                f"Circuit breaker '{breaker.name}' is open, skipped {context}"
            )
        else:
            result = operation()
            if abandoned is not None and abandoned.is_set():
                return result
            if result.ok:
                if breaker is not None:
                    breaker.record_success()
                return result
            if result.kind is ResultKind.UNKNOWN:
                logger.warning("Unclassified error during %s: %s", context, result.message)
            if breaker is not None and policy.escalates(result.kind):
                breaker.record_error(
                    is_quota_violation=result.kind is ResultKind.RATE_LIMITED,
                    attempt=attempt,
                )

        ceiling = policy.ceiling_for(result.kind)
        if attempt >= ceiling:
            if ceiling > 1:
                logger.warning(
                    "Giving up on %s after %d attempts (%s)", context, attempt, result.kind.value
                )
            return result

        delay = policy.delay_for(attempt, result)
        if deadline is not None and deadline.remaining() <= delay:
            logger.warning(
                "Session deadline too close to retry %s (%.1fs left)", context, deadline.remaining()
            )
            return result

        logger.warning(
            "%s during %s (attempt %d/%d), sleeping %.2fs",
            result.kind.value, context, attempt, ceiling, delay,
        )
        sleep(delay)
