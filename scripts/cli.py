"""Minimal CLI entry point for manual testing of the Gmail Fetcher."""

from __future__ import annotations

import argparse
import logging
import sys

from gmail_fetcher.config.settings import GmailFetcherSettings
from gmail_fetcher.core.exceptions import AuthError, ListingExhaustedError
from gmail_fetcher.core.models import CircuitStatus, FetchMode, FetchProgress, FetchResult
from gmail_fetcher.pipeline.fetcher import MailboxFetcher


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def on_progress(progress: FetchProgress) -> None:
    """Print progress updates to stdout."""
    print(
        f"[{progress.current_stage}] "
        f"pages={progress.pages_fetched} "
        f"listed={progress.ids_listed} "
        f"fetched={progress.messages_fetched} "
        f"failed={progress.messages_failed}",
        end="\r",
        flush=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Gmail Fetcher - Quota-aware mailbox retrieval"
    )
    parser.add_argument(
        "--tenant",
        default="default",
        help="Tenant key for the circuit breaker",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # fetch command
    fetch_parser = subparsers.add_parser("fetch", help="Fetch messages matching a query")
    _add_fetch_args(fetch_parser)
    return parser


def _add_fetch_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--query", "-q", default="in:inbox", help="Gmail search query")
    parser.add_argument(
        "--target",
        "-n",
        type=int,
        default=50,
        help="Number of messages to fetch",
    )
    parser.add_argument(
        "--all",
        action="store_true",
        dest="fetch_all",
        help="Paginate internally until the target is reached",
    )
    parser.add_argument(
        "--page-token",
        default=None,
        dest="page_token",
        help="Resume from a page token (single-page mode)",
    )


def _validate_args(args: argparse.Namespace) -> None:
    """Reject negative targets and page tokens combined with --all."""
    if args.target < 0:
        print("Error: --target must be non-negative", file=sys.stderr)
        sys.exit(1)
    if args.fetch_all and args.page_token:
        print("Error: --page-token cannot be combined with --all", file=sys.stderr)
        sys.exit(1)


def print_result(result: FetchResult) -> None:
    print(
        f"\n\nFetched {result.total_fetched} messages "
        f"({result.failed_count} failed to load, partial={result.is_partial})"
    )
    for message in result.messages:
        date = message.date.isoformat() if message.date else "-"
        print(f"  {date:25s} {message.sender[:30]:30s} {message.subject[:60]}")
    if result.next_page_token:
        print(f"\nNext page token: {result.next_page_token}")
    if result.error:
        print(f"\nNote: {result.error}")


def print_status(status: CircuitStatus) -> None:
    print(
        f"\nCircuit: open={status.is_open} heavy={status.is_heavy} "
        f"consecutive_errors={status.consecutive_errors}"
    )


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    _validate_args(args)

    settings = GmailFetcherSettings()
    setup_logging(settings.log_level)

    fetcher = MailboxFetcher(settings=settings, tenant_id=args.tenant, on_progress=on_progress)

    try:
        mode = FetchMode.FETCH_ALL if args.fetch_all else FetchMode.SINGLE_PAGE
        result = fetcher.fetch(args.query, args.target, mode, args.page_token)
        print_result(result)
        print_status(fetcher.get_circuit_status())

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except AuthError as e:
        print(f"\nAuthentication failed, please sign in again: {e}", file=sys.stderr)
        sys.exit(2)
    except ListingExhaustedError as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
