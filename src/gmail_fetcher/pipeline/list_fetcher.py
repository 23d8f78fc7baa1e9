"""Sequential pagination over messages.list with retry and graceful degradation."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from gmail_fetcher.core.circuit_breaker import CircuitBreaker
from gmail_fetcher.core.deadline import Deadline
from gmail_fetcher.core.exceptions import AuthError, ListingExhaustedError
from gmail_fetcher.core.gmail_client import GmailClient
from gmail_fetcher.core.models import BatchPlan, MessageStub
from gmail_fetcher.core.results import ListPage, ResultKind
from gmail_fetcher.core.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListOutcome:
    """What the listing phase produced, and why it stopped."""

    stubs: tuple[MessageStub, ...]
    next_page_token: str | None
    pages_fetched: int
    failure: ResultKind | None = None
    failure_message: str = ""
    deadline_reached: bool = False

    @property
    def mailbox_exhausted(self) -> bool:
        """True when listing ended because the remote had no more pages."""
        return self.failure is None and not self.deadline_reached and self.next_page_token is None


class ListFetcher:
    """Walks message pages strictly in order for a single session.

    Page N+1 is only requested once page N has succeeded. A failed page is
    retried with the same page token; once retries run out, listing stops and
    whatever was accumulated is returned.
    """

    def __init__(
        self,
        client: GmailClient,
        breaker: CircuitBreaker,
        plan: BatchPlan,
        deadline: Deadline,
        policy: RetryPolicy,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._breaker = breaker
        self._plan = plan
        self._deadline = deadline
        self._policy = policy
        self._sleep = sleep

    def fetch_list(
        self,
        query: str | None,
        target_count: int,
        resume_token: str | None = None,
        *,
        max_pages: int | None = None,
    ) -> ListOutcome:
        """Accumulate message stubs until ``target_count``, the last page, or the deadline.

        Raises:
            AuthError: Credentials were rejected and could not be refreshed.
            ListingExhaustedError: Not a single page could be retrieved because
                of transient or unclassified failures.
        """
        stubs: list[MessageStub] = []
        token = resume_token
        pages = 0
        failure: ResultKind | None = None
        failure_message = ""
        deadline_reached = False

        while len(stubs) < target_count:
            if self._deadline.expired():
                deadline_reached = True
                logger.warning("Session deadline reached after %d pages", pages)
                break
            if pages and self._plan.inter_page_delay > 0:
                if self._deadline.remaining() <= self._plan.inter_page_delay:
                    deadline_reached = True
                    logger.warning("Session deadline too close for another page")
                    break
                self._sleep(self._plan.inter_page_delay)

            page_size = min(self._plan.page_size, target_count - len(stubs))
            page_token = token
            result = with_retry(
                lambda: self._client.list_messages(query, page_size, page_token),
                self._policy,
                breaker=self._breaker,
                deadline=self._deadline,
                sleep=self._sleep,
                context=f"list page {pages + 1}",
            )

            if result.kind is ResultKind.AUTH:
                raise AuthError(f"{result.message}. Please re-authenticate with Google.")
            if not result.ok:
                if pages == 0 and result.kind is not ResultKind.RATE_LIMITED:
                    raise ListingExhaustedError(
                        f"Could not list messages ({result.kind.value}): {result.message}. "
                        "Retry later, or reset the circuit breaker if it has opened."
                    )
                failure = result.kind
                failure_message = result.message
                logger.warning(
                    "Listing stopped after %d pages (%d stubs): %s",
                    pages, len(stubs), result.kind.value,
                )
                break

            page: ListPage = result.value
            pages += 1
            stubs.extend(page.stubs)
            token = page.next_page_token
            logger.info("Listed page %d: %d stubs (total %d)", pages, len(page.stubs), len(stubs))

            if not token:
                break
            if max_pages is not None and pages >= max_pages:
                break

        return ListOutcome(
            stubs=tuple(stubs[:target_count]),
            next_page_token=token,
            pages_fetched=pages,
            failure=failure,
            failure_message=failure_message,
            deadline_reached=deadline_reached,
        )
