"""Tagged outcomes of Gmail API calls.

Every raw API response or exception is classified exactly once, in
``gmail_client``, into an :class:`ApiResult`. Retry, breaker, and pipeline code
branch on :class:`ResultKind` and never inspect status codes themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

from gmail_fetcher.core.exceptions import (
    AuthError,
    FetchTimeoutError,
    GmailFetcherError,
    RateLimitError,
    TransientError,
    UnknownError,
)
from gmail_fetcher.core.models import MessageStub

T = TypeVar("T")


class ResultKind(str, Enum):
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    AUTH = "auth"
    UNKNOWN = "unknown"


_ERROR_TYPES: dict[ResultKind, type[GmailFetcherError]] = {
    ResultKind.RATE_LIMITED: RateLimitError,
    ResultKind.TRANSIENT: TransientError,
    ResultKind.TIMEOUT: FetchTimeoutError,
    ResultKind.AUTH: AuthError,
    ResultKind.UNKNOWN: UnknownError,
}


@dataclass(frozen=True)
class ApiResult(Generic[T]):
    """Success value or classified failure of a single API call."""

    kind: ResultKind
    value: T | None = None
    message: str = ""
    retry_after: float | None = None
    short_circuited: bool = False

    @property
    def ok(self) -> bool:
        return self.kind is ResultKind.OK

    @classmethod
    def success(cls, value: T) -> ApiResult[T]:
        return cls(kind=ResultKind.OK, value=value)

    @classmethod
    def failure(
        cls, kind: ResultKind, message: str, retry_after: float | None = None
    ) -> ApiResult[T]:
        if kind is ResultKind.OK:
            raise ValueError("failure() requires a non-OK kind")
        return cls(kind=kind, message=message, retry_after=retry_after)

    @classmethod
    def circuit_open(cls, message: str) -> ApiResult[T]:
        """Rate-limited result produced without any network I/O."""
        return cls(kind=ResultKind.RATE_LIMITED, message=message, short_circuited=True)

    def to_exception(self) -> GmailFetcherError:
        """Exception equivalent of a failed result."""
        if self.ok:
            raise ValueError("Successful result has no exception")
        if self.kind is ResultKind.RATE_LIMITED:
            return RateLimitError(self.message, retry_after=self.retry_after)
        return _ERROR_TYPES[self.kind](self.message)


@dataclass(frozen=True)
class ListPage:
    """One page of the messages.list endpoint."""

    stubs: tuple[MessageStub, ...] = field(default_factory=tuple)
    next_page_token: str | None = None
    result_size_estimate: int = 0
