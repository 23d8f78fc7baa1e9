"""Shared fixtures for Gmail Fetcher tests."""

from __future__ import annotations

import pytest
from fakes import FakeClock, RecordingSleep

from gmail_fetcher.config.settings import GmailFetcherSettings
from gmail_fetcher.core.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry


@pytest.fixture
def settings() -> GmailFetcherSettings:
    """Settings with defaults, isolated from any local .env file."""
    return GmailFetcherSettings(_env_file=None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def breaker(clock: FakeClock) -> CircuitBreaker:
    """Breaker on a fake clock with the default thresholds."""
    return CircuitBreaker("test", clock=clock)


@pytest.fixture
def registry() -> CircuitBreakerRegistry:
    """Fresh registry so tests never share breaker state."""
    return CircuitBreakerRegistry()
