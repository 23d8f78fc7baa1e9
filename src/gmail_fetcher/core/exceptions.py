"""Custom exceptions for the Gmail Fetcher."""


class GmailFetcherError(Exception):
    """Base exception for all Gmail Fetcher errors."""


class AuthError(GmailFetcherError):
    """Credentials are invalid or could not be refreshed. The user must re-authenticate."""


class RateLimitError(GmailFetcherError):
    """Gmail API quota exceeded, or the circuit breaker is open."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TransientError(GmailFetcherError):
    """Server-side (5xx) or network failure that may succeed on retry."""


class FetchTimeoutError(GmailFetcherError):
    """A single message fetch did not complete within its timeout."""


class UnknownError(GmailFetcherError):
    """Unclassified API failure, retried like a transient error."""


class ListingExhaustedError(GmailFetcherError):
    """Listing failed before a single page of message IDs was retrieved."""


class ParseError(GmailFetcherError):
    """Failed to parse a Gmail message payload."""
