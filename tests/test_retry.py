"""Tests for the with_retry combinator and RetryPolicy."""

from __future__ import annotations

import threading
from typing import Any

import pytest
from fakes import FakeClock, RecordingSleep

from gmail_fetcher.config.settings import GmailFetcherSettings
from gmail_fetcher.core.circuit_breaker import CircuitBreaker
from gmail_fetcher.core.deadline import Deadline
from gmail_fetcher.core.results import ApiResult, ResultKind
from gmail_fetcher.core.retry import RetryPolicy, exponential_backoff, with_retry

RATE_LIMITED: ApiResult[Any] = ApiResult.failure(ResultKind.RATE_LIMITED, "429 rateLimitExceeded")
TRANSIENT: ApiResult[Any] = ApiResult.failure(ResultKind.TRANSIENT, "503 backend error")


class ScriptedOperation:
    """Returns the scripted results in order, then repeats the last one."""

    def __init__(self, *results: ApiResult[Any]) -> None:
        self._results = list(results)
        self.calls = 0

    def __call__(self) -> ApiResult[Any]:
        self.calls += 1
        if len(self._results) > 1:
            return self._results.pop(0)
        return self._results[0]


# ---------- exponential_backoff ----------


class TestExponentialBackoff:
    def test_doubles_from_base(self) -> None:
        assert [exponential_backoff(n, 2.0, 10.0) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    def test_capped(self) -> None:
        assert exponential_backoff(4, 2.0, 10.0) == 10.0
        assert exponential_backoff(20, 2.0, 10.0) == 10.0


# ---------- RetryPolicy ----------


class TestRetryPolicy:
    def test_ceilings_by_kind(self) -> None:
        policy = RetryPolicy(max_attempts=5, transient_max_attempts=3)

        assert policy.ceiling_for(ResultKind.RATE_LIMITED) == 5
        assert policy.ceiling_for(ResultKind.TRANSIENT) == 3
        assert policy.ceiling_for(ResultKind.UNKNOWN) == 3
        assert policy.ceiling_for(ResultKind.TIMEOUT) == 1
        assert policy.ceiling_for(ResultKind.AUTH) == 1

    def test_transient_backoff_is_shorter(self) -> None:
        policy = RetryPolicy()

        assert policy.delay_for(2, TRANSIENT) < policy.delay_for(2, RATE_LIMITED)

    def test_retry_after_hint_respected_up_to_cap(self) -> None:
        policy = RetryPolicy(base_delay=2.0, max_delay=10.0)
        hinted = ApiResult.failure(ResultKind.RATE_LIMITED, "429", retry_after=7.0)
        huge = ApiResult.failure(ResultKind.RATE_LIMITED, "429", retry_after=3600.0)

        assert policy.delay_for(1, hinted) == 7.0
        assert policy.delay_for(1, huge) == 10.0

    def test_built_from_settings(self) -> None:
        settings = GmailFetcherSettings(_env_file=None)

        listing = RetryPolicy.for_listing(settings)
        details = RetryPolicy.for_details(settings)

        assert listing.max_attempts == 5
        assert listing.transient_max_attempts == 3
        assert details.max_attempts == details.transient_max_attempts == 2

    def test_listing_retries_timeouts_details_do_not(self) -> None:
        settings = GmailFetcherSettings(_env_file=None)

        listing = RetryPolicy.for_listing(settings)
        details = RetryPolicy.for_details(settings)

        assert listing.ceiling_for(ResultKind.TIMEOUT) == 3
        assert listing.escalates(ResultKind.TIMEOUT) is True
        assert details.ceiling_for(ResultKind.TIMEOUT) == 1
        assert details.escalates(ResultKind.TIMEOUT) is False
        assert listing.escalates(ResultKind.AUTH) is False


# ---------- with_retry ----------


class TestWithRetry:
    def test_returns_first_success(self, sleep: RecordingSleep) -> None:
        op = ScriptedOperation(ApiResult.success("ok"))

        result = with_retry(op, RetryPolicy(), sleep=sleep)

        assert result.ok and result.value == "ok"
        assert op.calls == 1
        assert sleep.calls == []

    def test_retries_rate_limit_with_backoff(self, sleep: RecordingSleep) -> None:
        op = ScriptedOperation(RATE_LIMITED, RATE_LIMITED, ApiResult.success("ok"))

        result = with_retry(op, RetryPolicy(), sleep=sleep)

        assert result.ok
        assert op.calls == 3
        assert sleep.calls == [2.0, 4.0]

    def test_gives_up_at_ceiling(self, sleep: RecordingSleep) -> None:
        op = ScriptedOperation(TRANSIENT)

        result = with_retry(op, RetryPolicy(transient_max_attempts=3), sleep=sleep)

        assert result.kind is ResultKind.TRANSIENT
        assert op.calls == 3
        assert sleep.calls == [1.0, 2.0]

    @pytest.mark.parametrize("kind", [ResultKind.AUTH, ResultKind.TIMEOUT])
    def test_non_retryable_kinds_return_immediately(
        self, kind: ResultKind, sleep: RecordingSleep
    ) -> None:
        op = ScriptedOperation(ApiResult.failure(kind, "nope"))

        result = with_retry(op, RetryPolicy(), sleep=sleep)

        assert result.kind is kind
        assert op.calls == 1
        assert sleep.calls == []

    def test_short_circuits_when_breaker_open(
        self, breaker: CircuitBreaker, sleep: RecordingSleep
    ) -> None:
        for attempt in (1, 2, 3):
            breaker.record_error(is_quota_violation=True, attempt=attempt)
        op = ScriptedOperation(ApiResult.success("ok"))

        result = with_retry(op, RetryPolicy(max_attempts=2), breaker=breaker, sleep=sleep)

        assert result.kind is ResultKind.RATE_LIMITED
        assert result.short_circuited is True
        assert op.calls == 0

    def test_opens_breaker_then_short_circuits_remaining_attempts(
        self, breaker: CircuitBreaker, sleep: RecordingSleep
    ) -> None:
        op = ScriptedOperation(RATE_LIMITED)

        result = with_retry(op, RetryPolicy(max_attempts=5), breaker=breaker, sleep=sleep)

        assert op.calls == 3
        assert result.short_circuited is True
        assert breaker.status().is_open is True
        assert len(sleep.calls) == 4

    def test_records_success_in_breaker(
        self, breaker: CircuitBreaker, sleep: RecordingSleep
    ) -> None:
        breaker.record_error(is_quota_violation=True)
        op = ScriptedOperation(ApiResult.success("ok"))

        with_retry(op, RetryPolicy(), breaker=breaker, sleep=sleep)

        assert breaker.status().consecutive_errors == 0

    def test_timeouts_do_not_escalate_breaker(
        self, breaker: CircuitBreaker, sleep: RecordingSleep
    ) -> None:
        op = ScriptedOperation(ApiResult.failure(ResultKind.TIMEOUT, "timed out"))

        for _ in range(5):
            with_retry(op, RetryPolicy(), breaker=breaker, sleep=sleep)

        assert breaker.status().consecutive_errors == 0

    def test_stops_when_deadline_too_close(self, clock: FakeClock) -> None:
        sleep = RecordingSleep(clock)
        deadline = Deadline(5.0, clock=clock)
        op = ScriptedOperation(RATE_LIMITED)

        result = with_retry(op, RetryPolicy(max_attempts=5), deadline=deadline, sleep=sleep)

        # Slept 2s, then 4s would not fit in the 3s left
        assert result.kind is ResultKind.RATE_LIMITED
        assert op.calls == 2
        assert sleep.calls == [2.0]

    def test_timeout_retried_on_transient_curve_when_enabled(
        self, breaker: CircuitBreaker, sleep: RecordingSleep
    ) -> None:
        op = ScriptedOperation(
            ApiResult.failure(ResultKind.TIMEOUT, "timed out"), ApiResult.success("ok")
        )

        result = with_retry(op, RetryPolicy(retry_timeouts=True), breaker=breaker, sleep=sleep)

        assert result.ok
        assert op.calls == 2
        assert sleep.calls == [1.0]

    def test_abandoned_makes_no_attempt(
        self, breaker: CircuitBreaker, sleep: RecordingSleep
    ) -> None:
        abandoned = threading.Event()
        abandoned.set()
        op = ScriptedOperation(ApiResult.success("ok"))

        result = with_retry(op, RetryPolicy(), breaker=breaker, sleep=sleep, abandoned=abandoned)

        assert result.kind is ResultKind.TIMEOUT
        assert op.calls == 0

    def test_outcome_after_abandonment_not_recorded(
        self, breaker: CircuitBreaker, sleep: RecordingSleep
    ) -> None:
        abandoned = threading.Event()

        def late_failure() -> ApiResult[Any]:
            abandoned.set()
            return RATE_LIMITED

        result = with_retry(
            late_failure, RetryPolicy(), breaker=breaker, sleep=sleep, abandoned=abandoned
        )

        assert result.kind is ResultKind.RATE_LIMITED
        assert breaker.status().consecutive_errors == 0
        assert sleep.calls == []
