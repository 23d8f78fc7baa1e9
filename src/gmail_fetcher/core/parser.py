"""Gmail message parser: MIME tree walking, base64url decoding, header extraction."""

from __future__ import annotations

import base64
import binascii
import logging
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

from gmail_fetcher.core.exceptions import ParseError
from gmail_fetcher.core.models import AttachmentMeta, MessageDetail

logger = logging.getLogger(__name__)


class GmailParser:
    """Parses raw Gmail API message dicts into MessageDetail objects."""

    def parse(self, raw_message: dict[str, Any]) -> MessageDetail:
        """Parse a raw Gmail API message dict into a MessageDetail.

        Args:
            raw_message: Full message dict from Gmail API (format=full).

        Returns:
            Parsed MessageDetail.

        Raises:
            ParseError: If the message structure is invalid.
        """
        try:
            payload = raw_message.get("payload") or {}
            headers = self._extract_headers(payload)
            plain_text, html = self._walk_parts(payload)
            if plain_text is None and html is None:
                plain_text, html = self._top_level_body(payload)

            return MessageDetail(
                message_id=raw_message["id"],
                thread_id=raw_message.get("threadId", ""),
                sender=headers.get("from", ""),
                recipient=headers.get("to", ""),
                subject=headers.get("subject", "(no subject)"),
                date=self._parse_date(headers.get("date", "")),
                snippet=raw_message.get("snippet", ""),
                body=plain_text if plain_text is not None else (html or ""),
                is_html=plain_text is None and html is not None,
                labels=tuple(raw_message.get("labelIds", [])),
                attachments=tuple(self._extract_attachments(payload)),
            )
        except ParseError:
            raise
        except (KeyError, TypeError, AttributeError) as e:
            raise ParseError(f"Failed to parse message {raw_message.get('id', '?')}: {e}") from e

    @staticmethod
    def _extract_headers(payload: dict[str, Any]) -> dict[str, str]:
        headers: dict[str, str] = {}
        for h in payload.get("headers", []):
            name = h.get("name", "").lower()
            if name in ("subject", "from", "to", "date") and name not in headers:
                headers[name] = h.get("value", "")
        return headers

    def _top_level_body(self, payload: dict[str, Any]) -> tuple[str | None, str | None]:
        body_data = payload.get("body", {}).get("data")
        if not body_data:
            return None, None
        decoded = self._decode_body(body_data)
        if "html" in payload.get("mimeType", ""):
            return None, decoded
        return decoded, None

    def _walk_parts(self, part: dict[str, Any]) -> tuple[str | None, str | None]:
        """Recursively walk MIME parts to find text/plain and text/html.

        Returns:
            Tuple of (plain_text, html); either may be None.
        """
        plain_text: str | None = None
        html: str | None = None
        mime_type = part.get("mimeType", "")

        if mime_type == "text/plain":
            data = part.get("body", {}).get("data")
            if data:
                plain_text = self._decode_body(data)
        elif mime_type == "text/html":
            data = part.get("body", {}).get("data")
            if data:
                html = self._decode_body(data)
        elif mime_type.startswith("multipart/"):
            for sub_part in part.get("parts", []):
                # Skip attachments
                if sub_part.get("filename"):
                    continue

                sub_plain, sub_html = self._walk_parts(sub_part)
                if sub_plain and not plain_text:
                    plain_text = sub_plain
                if sub_html and not html:
                    html = sub_html

        return plain_text, html

    def _extract_attachments(self, part: dict[str, Any]) -> list[AttachmentMeta]:
        attachments: list[AttachmentMeta] = []
        filename = part.get("filename")
        body = part.get("body") or {}
        if filename and (body.get("attachmentId") or body.get("data")):
            attachments.append(
                AttachmentMeta(
                    filename=filename,
                    mime_type=part.get("mimeType") or "application/octet-stream",
                    size=int(body.get("size") or 0),
                    attachment_id=body.get("attachmentId", ""),
                    part_id=part.get("partId", ""),
                )
            )
        for sub_part in part.get("parts", []) or []:
            attachments.extend(self._extract_attachments(sub_part))
        return attachments

    @staticmethod
    def _decode_body(data: str) -> str:
        """Decode base64url-encoded body data, returning "" if it is corrupt."""
        # Gmail uses base64url encoding (RFC 4648 §5)
        padded = data + "=" * (-len(data) % 4)
        try:
            return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError):
            logger.warning("Failed to decode base64 body data")
            return ""

    @staticmethod
    def _parse_date(date_str: str) -> datetime | None:
        """Parse an RFC 2822 date string into an aware UTC datetime, or None."""
        if not date_str:
            return None
        try:
            parsed = parsedate_to_datetime(date_str)
        except (TypeError, ValueError, IndexError):
            logger.warning("Failed to parse date: %s", date_str)
            return None
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
