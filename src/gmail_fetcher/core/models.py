"""Dataclasses for the Gmail Fetcher domain model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from gmail_fetcher.core.deadline import Deadline


class FetchMode(str, Enum):
    """How far a session paginates."""

    SINGLE_PAGE = "single-page"
    FETCH_ALL = "fetch-all"


@dataclass(frozen=True)
class MessageStub:
    """Lightweight message reference from Gmail list API."""

    message_id: str
    thread_id: str


@dataclass(frozen=True)
class AttachmentMeta:
    """Attachment metadata; the attachment content itself is never downloaded."""

    filename: str
    mime_type: str = "application/octet-stream"
    size: int = 0
    attachment_id: str = ""
    part_id: str = ""


@dataclass(frozen=True)
class MessageDetail:
    """Full message detail, or a placeholder when the fetch failed."""

    message_id: str
    thread_id: str = ""
    sender: str = ""
    recipient: str = ""
    subject: str = ""
    date: datetime | None = None
    snippet: str = ""
    body: str = ""
    is_html: bool = False
    labels: tuple[str, ...] = field(default_factory=tuple)
    attachments: tuple[AttachmentMeta, ...] = field(default_factory=tuple)
    is_placeholder: bool = False
    error: str = ""

    @classmethod
    def placeholder(cls, stub: MessageStub, reason: str) -> MessageDetail:
        """Build a "failed to load" entry that keeps the stub's identity."""
        return cls(
            message_id=stub.message_id,
            thread_id=stub.thread_id,
            sender="Unknown",
            subject="Error loading message",
            snippet="Failed to load message details",
            is_placeholder=True,
            error=reason,
        )


@dataclass(frozen=True)
class CircuitStatus:
    """Point-in-time snapshot of a circuit breaker."""

    is_open: bool
    is_heavy: bool
    consecutive_errors: int
    opened_until: float | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "is_open": self.is_open,
            "is_heavy": self.is_heavy,
            "consecutive_errors": self.consecutive_errors,
            "opened_until": self.opened_until,
        }


@dataclass(frozen=True)
class BatchPlan:
    """Batch sizing and pacing for one session, derived once from breaker state."""

    page_size: int
    detail_concurrency: int
    inter_batch_delay: float
    inter_page_delay: float
    max_total_messages: int
    heavy: bool = False


@dataclass(frozen=True)
class FetchSession:
    """One caller request. Discarded after the result is returned."""

    query: str
    target_count: int
    mode: FetchMode
    deadline: Deadline
    page_token: str | None = None


@dataclass(frozen=True)
class FetchResult:
    """Aggregated outcome of a fetch session."""

    messages: tuple[MessageDetail, ...]
    total_fetched: int
    is_partial: bool
    next_page_token: str | None = None
    failed_count: int = 0
    listed_count: int = 0
    pages_fetched: int = 0
    error: str | None = None


@dataclass
class FetchProgress:
    """Mutable progress tracker for session status reporting."""

    pages_fetched: int = 0
    ids_listed: int = 0
    messages_fetched: int = 0
    messages_failed: int = 0
    current_stage: str = "idle"
