"""Deduplication, ordering, and partial-result flagging for fetch sessions."""

from __future__ import annotations

from collections.abc import Iterable

from gmail_fetcher.core.models import FetchMode, FetchResult, MessageDetail, MessageStub
from gmail_fetcher.pipeline.list_fetcher import ListOutcome


def dedupe_stubs(stubs: Iterable[MessageStub]) -> list[MessageStub]:
    """Drop repeated message IDs, keeping the first occurrence's position."""
    seen: set[str] = set()
    unique: list[MessageStub] = []
    for stub in stubs:
        if stub.message_id in seen:
            continue
        seen.add(stub.message_id)
        unique.append(stub)
    return unique


def sort_by_date(details: Iterable[MessageDetail]) -> list[MessageDetail]:
    """Newest first. Entries without a date (placeholders included) go last."""
    items = list(details)
    dated = [d for d in items if d.date is not None]
    undated = [d for d in items if d.date is None]
    dated.sort(key=lambda d: d.date, reverse=True)
    return dated + undated


def aggregate(
    details: list[MessageDetail],
    *,
    target_count: int,
    mode: FetchMode,
    listing: ListOutcome,
    listed_count: int,
    error: str | None = None,
) -> FetchResult:
    """Build the session's FetchResult.

    A result is partial whenever it holds fewer messages than ``target_count``,
    whatever the reason; ``error`` says why. Placeholders count as fetched.
    """
    messages = sort_by_date(details)
    total = len(messages)
    return FetchResult(
        messages=tuple(messages),
        total_fetched=total,
        is_partial=total < target_count,
        next_page_token=listing.next_page_token if mode is FetchMode.SINGLE_PAGE else None,
        failed_count=sum(1 for d in messages if d.is_placeholder),
        listed_count=listed_count,
        pages_fetched=listing.pages_fetched,
        error=error,
    )
