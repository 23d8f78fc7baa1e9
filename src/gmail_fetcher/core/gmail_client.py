"""Gmail API client for listing and fetching messages, returning tagged results."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

import httplib2
from google.auth.exceptions import RefreshError
from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from gmail_fetcher.core.auth import TokenProvider
from gmail_fetcher.core.exceptions import AuthError
from gmail_fetcher.core.models import MessageStub
from gmail_fetcher.core.results import ApiResult, ListPage, ResultKind

logger = logging.getLogger(__name__)

# Gmail API hard limit for messages.list maxResults
MAX_PAGE_SIZE = 500

_RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded")


def _is_rate_limit_error(exc: Exception) -> bool:
    """Check whether an exception represents a Gmail API quota violation."""
    if isinstance(exc, HttpError):
        if exc.status_code == 429:
            return True
        if exc.status_code == 403:
            return any(reason in str(exc) for reason in _RATE_LIMIT_REASONS)
        return False
    error_str = str(exc)
    return "429" in error_str or "rateLimitExceeded" in error_str


def _parse_retry_after(exc: HttpError) -> float | None:
    """Read a Retry-After hint as seconds. Large values are treated as epoch timestamps."""
    resp = getattr(exc, "resp", None)
    raw = resp.get("retry-after") if isinstance(resp, dict) else None
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if value >= 300:
        value -= time.time()
    return max(value, 0.0)


def classify_error(exc: Exception) -> ApiResult[Any]:
    """Map a raised exception onto the closed set of result kinds."""
    message = str(exc)
    if isinstance(exc, RefreshError):
        return ApiResult.failure(ResultKind.AUTH, f"Token refresh failed: {message}")

    if isinstance(exc, HttpError):
        status = exc.status_code
        if _is_rate_limit_error(exc):
            return ApiResult.failure(
                ResultKind.RATE_LIMITED, message, retry_after=_parse_retry_after(exc)
            )
        if status == 401:
            return ApiResult.failure(ResultKind.AUTH, message)
        if status is not None and (status >= 500 or status == 408):
            return ApiResult.failure(ResultKind.TRANSIENT, message)
        return ApiResult.failure(ResultKind.UNKNOWN, message)

    # TimeoutError must be checked before OSError, it is a subclass
    if isinstance(exc, TimeoutError):
        return ApiResult.failure(ResultKind.TIMEOUT, message)
    if isinstance(exc, (ConnectionError, httplib2.HttpLib2Error, OSError)):
        return ApiResult.failure(ResultKind.TRANSIENT, message)
    if _is_rate_limit_error(exc):
        return ApiResult.failure(ResultKind.RATE_LIMITED, message)
    return ApiResult.failure(ResultKind.UNKNOWN, message)


class GmailClient:
    """Thin wrapper around Gmail API message listing and retrieval.

    Calls never raise for API failures; each returns an :class:`ApiResult`.
    Retrying and circuit breaking are the caller's concern.
    """

    def __init__(
        self,
        service: Resource,
        user_id: str = "me",
        *,
        token_provider: TokenProvider | None = None,
        http_factory: Callable[[], Any] | None = None,
        num_retries: int = 0,
    ) -> None:
        self._service = service
        self._user_id = user_id
        self._token_provider = token_provider
        self._http_factory = http_factory
        self._num_retries = num_retries
        self._local = threading.local()

    def list_messages(
        self,
        query: str | None,
        page_size: int,
        page_token: str | None = None,
    ) -> ApiResult[ListPage]:
        """Fetch one page of message stubs.

        Args:
            query: Gmail search query, e.g. ``"in:inbox"``.
            page_size: Requested stubs per page (capped at 500).
            page_token: Cursor from a previous page, or None for the first page.
        """
        kwargs: dict[str, Any] = {
            "userId": self._user_id,
            "maxResults": max(1, min(page_size, MAX_PAGE_SIZE)),
        }
        if query:
            kwargs["q"] = query
        if page_token:
            kwargs["pageToken"] = page_token

        result = self._execute(
            lambda: self._service.users().messages().list(**kwargs), "list messages"
        )
        if not result.ok:
            return result

        response = result.value or {}
        stubs = tuple(
            MessageStub(message_id=msg["id"], thread_id=msg.get("threadId", ""))
            for msg in response.get("messages", [])
            if msg.get("id")
        )
        logger.debug("Listed %d message IDs (page)", len(stubs))
        return ApiResult.success(
            ListPage(
                stubs=stubs,
                next_page_token=response.get("nextPageToken") or None,
                result_size_estimate=response.get("resultSizeEstimate", 0),
            )
        )

    def get_message(self, message_id: str) -> ApiResult[dict[str, Any]]:
        """Fetch the full raw payload of one message."""
        return self._execute(
            lambda: self._service.users()
            .messages()
            .get(userId=self._user_id, id=message_id, format="full"),
            f"get message {message_id}",
        )

    def _execute(self, build_request: Callable[[], Any], context: str) -> ApiResult[Any]:
        """Execute a request once, retrying a single time after refreshing on 401."""
        refreshed = False
        while True:
            try:
                return ApiResult.success(self._run(build_request()))
            except Exception as e:
                result = classify_error(e)

            if result.kind is ResultKind.AUTH and self._token_provider and not refreshed:
                refreshed = True
                logger.info("Unauthorized during %s, refreshing access token", context)
                try:
                    self._token_provider.refresh_token()
                except AuthError as auth_err:
                    return ApiResult.failure(ResultKind.AUTH, str(auth_err))
                continue

            logger.debug("%s failed (%s): %s", context, result.kind.value, result.message)
            return result

    def _run(self, request: Any) -> Any:
        if self._http_factory is None:
            return request.execute(num_retries=self._num_retries)
        return request.execute(http=self._thread_http(), num_retries=self._num_retries)

    def _thread_http(self) -> Any:
        http = getattr(self._local, "http", None)
        if http is None:
            http = self._http_factory()
            self._local.http = http
        return http
