"""Quota-aware circuit breaker, keyed per tenant.

State machine: CLOSED -> OPEN when consecutive errors reach the threshold, OPEN ->
CLOSED when the cooldown expires or on emergency reset. ``is_heavy`` is a separate
degraded-mode bit: set whenever the breaker opens, cleared only after a sustained
success streak or a reset.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from gmail_fetcher.config.settings import GmailFetcherSettings
from gmail_fetcher.core.models import CircuitStatus
from gmail_fetcher.core.retry import exponential_backoff

logger = logging.getLogger(__name__)


@dataclass
class CircuitState:
    """Mutable breaker state. Only touched while holding the owning breaker's lock."""

    is_open: bool = False
    opened_until: float | None = None
    consecutive_errors: int = 0
    is_heavy: bool = False
    success_streak: int = 0


class CircuitBreaker:
    """Gates outbound Gmail calls after repeated quota violations."""

    def __init__(
        self,
        name: str = "default",
        *,
        failure_threshold: int = 3,
        transient_failure_threshold: int = 6,
        heavy_recovery_successes: int = 10,
        min_cooldown_seconds: float = 30.0,
        backoff_base_seconds: float = 2.0,
        backoff_cap_seconds: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self._failure_threshold = failure_threshold
        self._transient_failure_threshold = transient_failure_threshold
        self._heavy_recovery_successes = heavy_recovery_successes
        self._min_cooldown = min_cooldown_seconds
        self._backoff_base = backoff_base_seconds
        self._backoff_cap = backoff_cap_seconds
        self._clock = clock
        self._state = CircuitState()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        name: str,
        settings: GmailFetcherSettings,
        clock: Callable[[], float] = time.time,
    ) -> CircuitBreaker:
        return cls(
            name,
            failure_threshold=settings.failure_threshold,
            transient_failure_threshold=settings.transient_failure_threshold,
            heavy_recovery_successes=settings.heavy_recovery_successes,
            min_cooldown_seconds=settings.min_cooldown_seconds,
            backoff_base_seconds=settings.initial_backoff_seconds,
            backoff_cap_seconds=settings.max_backoff_seconds,
            clock=clock,
        )

    def is_open_now(self) -> bool:
        """Whether calls must be short-circuited right now."""
        with self._lock:
            return self._check_open_locked()

    def record_success(self) -> None:
        with self._lock:
            state = self._state
            state.consecutive_errors = max(0, state.consecutive_errors - 1)
            state.success_streak += 1
            if state.is_heavy and state.success_streak >= self._heavy_recovery_successes:
                state.is_heavy = False
                logger.info(
                    "Circuit '%s' leaving heavy mode after %d successes",
                    self.name, state.success_streak,
                )

    def record_error(self, is_quota_violation: bool, attempt: int = 1) -> None:
        """Count a failed call; open the circuit once the threshold is reached.

        Args:
            is_quota_violation: True for 429/quota errors, which trip the breaker
                sooner than other retryable failures.
            attempt: Attempt number within the current page or item, used to size
                the cooldown.
        """
        with self._lock:
            already_open = self._check_open_locked()
            state = self._state
            state.success_streak = 0
            state.consecutive_errors += 1
            threshold = (
                self._failure_threshold
                if is_quota_violation
                else self._transient_failure_threshold
            )
            if already_open or state.consecutive_errors < threshold:
                return

            cooldown = max(
                exponential_backoff(attempt, self._backoff_base, self._backoff_cap),
                self._min_cooldown,
            )
            state.is_open = True
            state.opened_until = self._clock() + cooldown
            state.is_heavy = True
            logger.error(
                "Circuit '%s' OPEN after %d consecutive errors, cooling down %.1fs",
                self.name, state.consecutive_errors, cooldown,
            )

    def emergency_reset(self) -> None:
        """Force the breaker closed and out of heavy mode."""
        with self._lock:
            self._state = CircuitState()
        logger.warning("Circuit '%s' emergency reset", self.name)

    def status(self) -> CircuitStatus:
        with self._lock:
            is_open = self._check_open_locked()
            state = self._state
            return CircuitStatus(
                is_open=is_open,
                is_heavy=state.is_heavy,
                consecutive_errors=state.consecutive_errors,
                opened_until=state.opened_until,
            )

    def _check_open_locked(self) -> bool:
        state = self._state
        if not state.is_open:
            return False
        if state.opened_until is not None and self._clock() < state.opened_until:
            return True
        state.is_open = False
        state.opened_until = None
        state.consecutive_errors = 0
        logger.info("Circuit '%s' cooldown expired, closing", self.name)
        return False


class CircuitBreakerRegistry:
    """Tenant id -> CircuitBreaker map, so one user's quota trouble stays theirs."""

    def __init__(self) -> None:
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(
        self,
        tenant_id: str,
        factory: Callable[[str], CircuitBreaker] | None = None,
    ) -> CircuitBreaker:
        """Return the tenant's breaker, creating it with ``factory`` on first use."""
        with self._lock:
            breaker = self._breakers.get(tenant_id)
            if breaker is None:
                breaker = factory(tenant_id) if factory else CircuitBreaker(tenant_id)
                self._breakers[tenant_id] = breaker
            return breaker

    def tenants(self) -> list[str]:
        with self._lock:
            return sorted(self._breakers)

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.emergency_reset()


default_registry = CircuitBreakerRegistry()
