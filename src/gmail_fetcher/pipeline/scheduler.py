"""Adaptive batch planning from circuit breaker state."""

from __future__ import annotations

from gmail_fetcher.config.settings import GmailFetcherSettings
from gmail_fetcher.core.models import BatchPlan, CircuitStatus


def plan_batches(status: CircuitStatus, settings: GmailFetcherSettings) -> BatchPlan:
    """Derive page size, detail concurrency, and pacing for one session.

    Evaluated once at session start. A session that starts in heavy mode stays
    conservative to the end even if the breaker recovers meanwhile.
    """
    if status.is_heavy:
        return BatchPlan(
            page_size=settings.heavy_page_size,
            detail_concurrency=max(1, settings.heavy_detail_concurrency),
            inter_batch_delay=settings.heavy_inter_batch_delay_seconds,
            inter_page_delay=settings.heavy_inter_page_delay_seconds,
            max_total_messages=settings.heavy_max_total_messages,
            heavy=True,
        )
    return BatchPlan(
        page_size=settings.page_size,
        detail_concurrency=max(1, settings.detail_concurrency),
        inter_batch_delay=settings.inter_batch_delay_seconds,
        inter_page_delay=settings.inter_page_delay_seconds,
        max_total_messages=settings.max_total_messages,
    )
