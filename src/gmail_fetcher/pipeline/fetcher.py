"""Session orchestrator: plan → list → dedupe → detail → aggregate."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from gmail_fetcher.config.settings import GmailFetcherSettings
from gmail_fetcher.core.auth import (
    CredentialsTokenProvider,
    authenticate,
    build_authorized_http,
    build_gmail_service,
)
from gmail_fetcher.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    default_registry,
)
from gmail_fetcher.core.deadline import Deadline
from gmail_fetcher.core.gmail_client import GmailClient
from gmail_fetcher.core.models import (
    CircuitStatus,
    FetchMode,
    FetchProgress,
    FetchResult,
    FetchSession,
    MessageDetail,
)
from gmail_fetcher.core.results import ResultKind
from gmail_fetcher.core.retry import RetryPolicy
from gmail_fetcher.pipeline.aggregator import aggregate, dedupe_stubs
from gmail_fetcher.pipeline.detail_pool import DetailFetcherPool
from gmail_fetcher.pipeline.list_fetcher import ListFetcher, ListOutcome
from gmail_fetcher.pipeline.scheduler import plan_batches

logger = logging.getLogger(__name__)


class MailboxFetcher:
    """Best-effort batch retrieval of a mailbox under Gmail API quotas.

    Session flow:
        INIT       - derive a BatchPlan from the tenant's circuit breaker
        LISTING    - page through message IDs (retry, then degrade)
        DETAILING  - resolve IDs into details in bounded concurrent batches
        AGGREGATE  - dedupe, sort newest first, flag partial results

    Every session ends with a FetchResult. Only AuthError and
    ListingExhaustedError propagate to the caller.
    """

    def __init__(
        self,
        settings: GmailFetcherSettings | None = None,
        *,
        tenant_id: str = "default",
        client: GmailClient | None = None,
        registry: CircuitBreakerRegistry | None = None,
        on_progress: Callable[[FetchProgress], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or GmailFetcherSettings()
        self._tenant_id = tenant_id
        self._client = client
        self._registry = registry or default_registry
        self._on_progress = on_progress
        self._sleep = sleep
        self._clock = clock
        self._progress = FetchProgress()

    @property
    def on_progress(self) -> Callable[[FetchProgress], None] | None:
        return self._on_progress

    @on_progress.setter
    def on_progress(self, callback: Callable[[FetchProgress], None] | None) -> None:
        self._on_progress = callback

    @property
    def breaker(self) -> CircuitBreaker:
        return self._registry.get(
            self._tenant_id,
            lambda name: CircuitBreaker.from_settings(name, self._settings),
        )

    def _ensure_client(self) -> GmailClient:
        """Authenticate and build the Gmail client on first use."""
        if self._client is None:
            self._settings.ensure_directories()
            creds = authenticate(self._settings.credentials_path, self._settings.token_path)
            timeout = self._settings.item_timeout_seconds
            self._client = GmailClient(
                build_gmail_service(creds),
                self._settings.user_id,
                token_provider=CredentialsTokenProvider(creds, self._settings.token_path),
                http_factory=lambda: build_authorized_http(creds, timeout),
            )
        return self._client

    def fetch(
        self,
        query: str,
        target_count: int,
        mode: FetchMode | str = FetchMode.SINGLE_PAGE,
        page_token: str | None = None,
    ) -> FetchResult:
        """Fetch up to ``target_count`` messages matching ``query``.

        Args:
            query: Gmail search query (e.g. ``"in:inbox"``).
            target_count: Number of messages wanted.
            mode: ``single-page`` fetches one page and surfaces its next page
                token; ``fetch-all`` paginates internally up to the target.
            page_token: Resume listing from this cursor.

        Returns:
            FetchResult, possibly partial.

        Raises:
            AuthError: Credentials were rejected; the user must re-authenticate.
            ListingExhaustedError: No page could be listed at all.
            ValueError: ``target_count`` is negative or ``mode`` is unknown.
        """
        if target_count < 0:
            raise ValueError("target_count must be non-negative")
        session = FetchSession(
            query=query,
            target_count=target_count,
            mode=FetchMode(mode),
            deadline=Deadline(self._settings.session_timeout_seconds, self._clock),
            page_token=page_token,
        )
        client = self._ensure_client()
        breaker = self.breaker
        plan = plan_batches(breaker.status(), self._settings)
        logger.info(
            "Fetch session: mode=%s target=%d heavy=%s page_size=%d concurrency=%d",
            session.mode.value, target_count, plan.heavy, plan.page_size, plan.detail_concurrency,
        )

        # Stage 1 - listing
        requested = target_count
        max_pages: int | None = None
        if session.mode is FetchMode.SINGLE_PAGE:
            requested = min(target_count, plan.page_size)
            max_pages = 1
        list_target = min(requested, plan.max_total_messages)

        self._progress = FetchProgress(current_stage="listing")
        self._notify()
        try:
            lister = ListFetcher(
                client,
                breaker,
                plan,
                session.deadline,
                RetryPolicy.for_listing(self._settings),
                sleep=self._sleep,
            )
            listing = lister.fetch_list(
                session.query, list_target, session.page_token, max_pages=max_pages
            )
            stubs = dedupe_stubs(listing.stubs)
            self._progress.pages_fetched = listing.pages_fetched
            self._progress.ids_listed = len(stubs)

            # Stage 2 - details
            self._progress.current_stage = "detailing"
            self._notify()
            pool = DetailFetcherPool(
                client,
                breaker,
                RetryPolicy.for_details(self._settings),
                item_timeout=self._settings.item_timeout_seconds,
                sleep=self._sleep,
                on_batch=self._record_batch,
            )
            details = pool.fetch_details(stubs, plan, session.deadline)
        except Exception as e:
            self._progress.current_stage = f"error: {e}"
            self._notify()
            raise

        # Stage 3 - aggregate
        result = aggregate(
            details,
            target_count=target_count,
            mode=session.mode,
            listing=listing,
            listed_count=len(stubs),
            error=self._describe_degradation(session, listing, details, len(stubs)),
        )
        self._progress.current_stage = "complete"
        self._notify()
        logger.info(
            "Fetch session done in %.1fs: %d messages (%d placeholders), partial=%s",
            session.deadline.elapsed(), result.total_fetched, result.failed_count,
            result.is_partial,
        )
        return result

    def reset_circuit(self) -> None:
        """Operator escape hatch: close this tenant's breaker and leave heavy mode."""
        self.breaker.emergency_reset()

    def get_circuit_status(self) -> CircuitStatus:
        return self.breaker.status()

    @property
    def progress(self) -> FetchProgress:
        return self._progress

    @staticmethod
    def _describe_degradation(
        session: FetchSession,
        listing: ListOutcome,
        details: list[MessageDetail],
        listed: int,
    ) -> str | None:
        """Actionable explanation of why a result came back short or degraded, if it did."""
        if listing.failure is ResultKind.RATE_LIMITED:
            return (
                "Gmail API quota exceeded; results are partial. Wait a few minutes "
                "or reset the circuit breaker."
            )
        if listing.failure is not None:
            return (
                f"Listing stopped after repeated {listing.failure.value} errors; "
                "results are partial."
            )
        if listing.deadline_reached or len(details) < listed:
            return "Session time limit reached; results are partial."

        failed = [d for d in details if d.is_placeholder]
        if any(d.error == ResultKind.RATE_LIMITED.value for d in failed):
            return (
                f"Gmail API quota exceeded while loading messages ({len(failed)} placeholders). "
                "Wait a few minutes or reset the circuit breaker."
            )
        if failed:
            return f"{len(failed)} of {len(details)} messages could not be loaded (placeholders)."

        if len(details) >= session.target_count:
            return None
        if session.mode is FetchMode.SINGLE_PAGE and listing.next_page_token:
            return "Single-page mode returns one page; pass next_page_token to continue."
        if listing.mailbox_exhausted:
            return f"Only {listed} messages match the query."
        return "Session message limit reached; results are partial."

    def _record_batch(self, batch: list[MessageDetail]) -> None:
        failed = sum(1 for d in batch if d.is_placeholder)
        self._progress.messages_fetched += len(batch) - failed
        self._progress.messages_failed += failed
        self._notify()

    def _notify(self) -> None:
        """Send progress update to callback if registered."""
        if self._on_progress:
            self._on_progress(self._progress)
