"""Confirmation-of-receipt replies for tagged messages."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from email.utils import parseaddr

from gmail_chatterbox.core.gmail_client import GmailClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Acknowledgment:
    """A composed confirmation email."""

    to: str
    subject: str
    body: str


def compose_acknowledgment(
    *,
    sender: str,
    original_subject: str,
    conversation_id: str,
    title: str,
    body_length: int,
    attachment_count: int,
    total_attachment_size: int,
    keyword: str = "chatterbox",
) -> Acknowledgment:
    """Build the confirmation reply for a materialized turn."""
    to = parseaddr(sender)[1] or sender
    next_subject = f"{keyword}:{conversation_id} {title or 'Your Next Title Here'}"
    body = "\n".join(
        [
            "Dear sender,",
            "",
            "This is an automated confirmation that your message has been received.",
            "",
            "Details of your message:",
            f'- Original Subject: "{original_subject}"',
            f"- Conversation ID: {conversation_id}",
            f"- Body Length: {body_length} bytes",
            f"- Number of Attachments: {attachment_count}",
            f"- Total Attachment Size: {total_attachment_size} bytes",
            f'- Extracted Title: "{title or "N/A"}"',
            "",
            "For your next communication in this conversation, "
            "please use a subject line similar to this example:",
            f'"{next_subject}"',
            "",
            "Thank you.",
            "",
        ]
    )
    return Acknowledgment(
        to=to,
        subject=f"Re: {original_subject} - Confirmation of Receipt",
        body=body,
    )


class Acknowledger:
    """Sends composed acknowledgments through the Gmail client."""

    def __init__(self, client: GmailClient) -> None:
        self._client = client

    def send(self, ack: Acknowledgment) -> str:
        """Send ``ack``; AcknowledgmentError propagates to the caller."""
        sent_id = self._client.send_message(ack.to, ack.subject, ack.body)
        logger.info("Confirmation sent to %s (%s)", ack.to, sent_id)
        return sent_id
