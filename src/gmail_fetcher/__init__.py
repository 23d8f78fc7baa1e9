"""Gmail Fetcher - Quota-aware mailbox retrieval with circuit breaking and partial results."""

from gmail_fetcher.core.exceptions import (
    AuthError,
    GmailFetcherError,
    ListingExhaustedError,
    RateLimitError,
)
from gmail_fetcher.core.models import (
    AttachmentMeta,
    CircuitStatus,
    FetchMode,
    FetchProgress,
    FetchResult,
    MessageDetail,
    MessageStub,
)
from gmail_fetcher.pipeline.fetcher import MailboxFetcher

__all__ = [
    "AttachmentMeta",
    "AuthError",
    "CircuitStatus",
    "FetchMode",
    "FetchProgress",
    "FetchResult",
    "GmailFetcherError",
    "ListingExhaustedError",
    "MailboxFetcher",
    "MessageDetail",
    "MessageStub",
    "RateLimitError",
]
