"""Gmail message parsing and content extraction: MIME tree, body text, attachments."""

from __future__ import annotations

import base64
import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any

from gmail_chatterbox.core.exceptions import AttachmentFetchError, ParseError
from gmail_chatterbox.core.models import Attachment, AttachmentInfo, MailMessage, Part

logger = logging.getLogger(__name__)

PLAIN_TEXT = "text/plain"
HTML = "text/html"


def decode_base64url(data: str) -> bytes:
    """Decode Gmail's base64url data (RFC 4648 §5), tolerating missing padding."""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded)


class MessageParser:
    """Parses raw Gmail API message dicts into MailMessage objects."""

    def parse(self, raw_message: dict[str, Any]) -> MailMessage:
        """Parse a raw Gmail API message dict (format=full).

        Raises:
            ParseError: If the message structure is invalid.
        """
        try:
            payload = raw_message.get("payload", {})
            headers = self._extract_headers(payload)

            return MailMessage(
                message_id=raw_message["id"],
                thread_id=raw_message.get("threadId", ""),
                subject=headers.get("subject", ""),
                sender=headers.get("from", ""),
                to=headers.get("to", ""),
                date=self._parse_date(headers.get("date", "")),
                payload=self._build_part(payload),
            )
        except ParseError:
            raise
        except Exception as e:
            raise ParseError(f"Failed to parse message {raw_message.get('id', '?')}: {e}") from e

    @staticmethod
    def _extract_headers(payload: dict[str, Any]) -> dict[str, str]:
        headers: dict[str, str] = {}
        for h in payload.get("headers", []):
            name = h.get("name", "").lower()
            if name in ("subject", "from", "to", "date") and name not in headers:
                headers[name] = h.get("value", "")
        return headers

    def _build_part(self, part: dict[str, Any]) -> Part:
        """Recursively convert a payload dict into a Part tree."""
        body = part.get("body", {})
        data = body.get("data")
        decoded = decode_base64url(data) if data else None

        return Part(
            mime_type=part.get("mimeType", ""),
            filename=part.get("filename", ""),
            data=decoded,
            attachment_id=body.get("attachmentId"),
            size=int(body.get("size", len(decoded) if decoded else 0)),
            parts=tuple(self._build_part(p) for p in part.get("parts", [])),
        )

    @staticmethod
    def _parse_date(date_str: str) -> datetime:
        """Parse an RFC 2822 date string, or return the epoch if it can't be parsed."""
        if not date_str:
            return datetime(1970, 1, 1)
        try:
            return parsedate_to_datetime(date_str)
        except Exception:
            logger.warning("Failed to parse date: %s", date_str)
            return datetime(1970, 1, 1)


def extract_body(parts: Sequence[Part], mime_type: str) -> str | None:
    """Find the first body part of ``mime_type`` in a part tree.

    All siblings at a level are checked for a direct match before any of them
    is descended into, so a top-level text part wins over a nested one.
    """
    for part in parts:
        if part.mime_type == mime_type and part.data and not part.filename:
            return part.data.decode("utf-8", errors="replace")

    for part in parts:
        if part.parts:
            found = extract_body(part.parts, mime_type)
            if found is not None:
                return found

    return None


def extract_prompt(payload: Part) -> str | None:
    """Body text of a message: text/plain, falling back to text/html."""
    return extract_body((payload,), PLAIN_TEXT) or extract_body((payload,), HTML)


def enumerate_attachments(parts: Iterable[Part]) -> list[AttachmentInfo]:
    """List attachment parts depth-first, in document order."""
    found: list[AttachmentInfo] = []
    for part in parts:
        if part.is_attachment:
            found.append(
                AttachmentInfo(
                    filename=part.filename,
                    size=part.size,
                    attachment_id=None if part.data is not None else part.attachment_id,
                )
            )
        if part.parts:
            found.extend(enumerate_attachments(part.parts))
    return found


class ContentExtractor:
    """Collects attachment bytes for a message, downloading large ones on demand."""

    def fetch_attachments(
        self,
        message: MailMessage,
        fetch: Callable[[str, str], bytes],
    ) -> list[Attachment]:
        """Return every attachment of ``message`` with its content.

        Inline parts are used as-is. Parts carrying only an attachment id are
        downloaded through ``fetch(message_id, attachment_id)``; one that fails
        is logged and left out.
        """
        attachments: list[Attachment] = []
        for part in _walk(message.payload):
            if not part.is_attachment:
                continue
            if part.data is not None:
                attachments.append(Attachment(filename=part.filename, content=part.data))
                continue
            try:
                content = fetch(message.message_id, part.attachment_id or "")
            except AttachmentFetchError as e:
                logger.warning(
                    "Skipping attachment %s of message %s: %s",
                    part.filename, message.message_id, e,
                )
                continue
            attachments.append(Attachment(filename=part.filename, content=content))
        return attachments


def _walk(part: Part) -> Iterable[Part]:
    yield part
    for child in part.parts:
        yield from _walk(child)
