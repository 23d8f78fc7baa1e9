"""Bounded-concurrency retrieval of full message details."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait

from gmail_fetcher.core.circuit_breaker import CircuitBreaker
from gmail_fetcher.core.deadline import Deadline
from gmail_fetcher.core.exceptions import AuthError, ParseError
from gmail_fetcher.core.gmail_client import GmailClient
from gmail_fetcher.core.models import BatchPlan, MessageDetail, MessageStub
from gmail_fetcher.core.parser import GmailParser
from gmail_fetcher.core.results import ResultKind
from gmail_fetcher.core.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)


class DetailFetcherPool:
    """Fetches message details in sequential batches of concurrent requests.

    Every stub handed in yields exactly one MessageDetail, real or placeholder,
    unless the session deadline stops the pool before the stub's batch starts.
    """

    def __init__(
        self,
        client: GmailClient,
        breaker: CircuitBreaker,
        policy: RetryPolicy,
        parser: GmailParser | None = None,
        *,
        item_timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        on_batch: Callable[[list[MessageDetail]], None] | None = None,
    ) -> None:
        self._client = client
        self._breaker = breaker
        self._policy = policy
        self._parser = parser or GmailParser()
        self._item_timeout = item_timeout
        self._sleep = sleep
        self._on_batch = on_batch

    def fetch_details(
        self,
        stubs: Sequence[MessageStub],
        plan: BatchPlan,
        deadline: Deadline,
    ) -> list[MessageDetail]:
        """Resolve stubs into details, ``plan.detail_concurrency`` at a time.

        Raises:
            AuthError: An item was rejected for authentication reasons.
        """
        size = max(1, plan.detail_concurrency)
        batches = [stubs[i : i + size] for i in range(0, len(stubs), size)]
        details: list[MessageDetail] = []

        for index, batch in enumerate(batches):
            if deadline.expired():
                logger.warning(
                    "Session deadline reached, skipping %d of %d batches",
                    len(batches) - index, len(batches),
                )
                break
            if index and plan.inter_batch_delay > 0:
                if deadline.remaining() <= plan.inter_batch_delay:
                    logger.warning("Session deadline too close for batch %d", index + 1)
                    break
                self._sleep(plan.inter_batch_delay)

            logger.debug("Processing batch %d/%d", index + 1, len(batches))
            batch_details = self._run_batch(batch, deadline)
            details.extend(batch_details)
            if self._on_batch:
                self._on_batch(batch_details)

        return details

    def _run_batch(self, batch: Sequence[MessageStub], deadline: Deadline) -> list[MessageDetail]:
        executor = ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="gmail-detail")
        abandoned = threading.Event()
        try:
            futures: list[tuple[MessageStub, Future[MessageDetail]]] = [
                (stub, executor.submit(self._fetch_one, stub, deadline, abandoned))
                for stub in batch
            ]
            timeout = min(self._item_timeout, deadline.remaining())
            _, not_done = wait([future for _, future in futures], timeout=timeout)
        finally:
            # Timed-out calls are abandoned here; their transport's own socket
            # timeout releases the connection, and they make no further attempts.
            abandoned.set()
            executor.shutdown(wait=False, cancel_futures=True)

        results: list[MessageDetail] = []
        auth_error: AuthError | None = None
        for stub, future in futures:
            if future in not_done:
                future.cancel()
                logger.warning("Timed out fetching message %s", stub.message_id)
                results.append(MessageDetail.placeholder(stub, ResultKind.TIMEOUT.value))
                continue
            try:
                results.append(future.result())
            except AuthError as e:
                auth_error = e
                results.append(MessageDetail.placeholder(stub, ResultKind.AUTH.value))
            except Exception:
                logger.exception("Unexpected error fetching message %s", stub.message_id)
                results.append(MessageDetail.placeholder(stub, ResultKind.UNKNOWN.value))

        if auth_error is not None:
            raise auth_error
        return results

    def _fetch_one(
        self, stub: MessageStub, deadline: Deadline, abandoned: threading.Event
    ) -> MessageDetail:
        result = with_retry(
            lambda: self._client.get_message(stub.message_id),
            self._policy,
            breaker=self._breaker,
            deadline=deadline,
            sleep=self._sleep,
            context=f"get message {stub.message_id}",
            abandoned=abandoned,
        )
        if result.kind is ResultKind.AUTH:
            raise AuthError(f"{result.message}. Please re-authenticate with Google.")
        if not result.ok:
            logger.warning(
                "Failed to load message %s (%s): %s",
                stub.message_id, result.kind.value, result.message,
            )
            return MessageDetail.placeholder(stub, result.kind.value)

        try:
            return self._parser.parse(result.value)
        except ParseError as e:
            logger.warning("Failed to parse message %s: %s", stub.message_id, e)
            return MessageDetail.placeholder(stub, "parse_error")
