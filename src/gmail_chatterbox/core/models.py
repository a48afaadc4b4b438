"""Frozen dataclasses for the Chatterbox domain model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

SENTINEL_CURSOR = "0"


@dataclass(frozen=True)
class Part:
    """One node of a message's MIME tree.

    ``data`` holds decoded inline bytes; ``attachment_id`` is set when the
    payload has to be fetched separately.
    """

    mime_type: str
    filename: str = ""
    data: bytes | None = None
    attachment_id: str | None = None
    size: int = 0
    parts: tuple[Part, ...] = field(default_factory=tuple)

    @property
    def is_attachment(self) -> bool:
        return bool(self.filename) and (self.data is not None or self.attachment_id is not None)


@dataclass(frozen=True)
class MailMessage:
    """Complete parsed Gmail message."""

    message_id: str
    thread_id: str
    subject: str
    sender: str
    to: str
    date: datetime
    payload: Part


@dataclass(frozen=True)
class MessageChange:
    """A 'message added' history entry."""

    message_id: str
    history_id: str


@dataclass(frozen=True)
class ChangeSet:
    """Result of fetching history since a cursor."""

    cursor: str
    changes: tuple[MessageChange, ...] = field(default_factory=tuple)
    baseline: bool = False

    @property
    def message_ids(self) -> tuple[str, ...]:
        return tuple(change.message_id for change in self.changes)


@dataclass(frozen=True)
class SubjectClassification:
    """Outcome of parsing a subject line against the tagging grammar."""

    is_tagged: bool
    conversation_id: str | None = None
    title: str = ""


@dataclass(frozen=True)
class AttachmentInfo:
    """Attachment part discovered in a message, not yet downloaded."""

    filename: str
    size: int
    attachment_id: str | None = None


@dataclass(frozen=True)
class Attachment:
    """Attachment with its byte content."""

    filename: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class MaterializedTurn:
    """Location of a turn written to disk."""

    conversation_id: str
    turn_number: str
    path: Path


@dataclass(frozen=True)
class UniqueAttachment:
    """Content-unique attachment found across the turns of a conversation."""

    unique_name: str
    path: Path
    filename: str
    turn_number: str
    digest: str


class PollState(str, Enum):
    """States of a poll cycle."""

    IDLE = "idle"
    FETCHING = "fetching"
    BASELINE = "baseline"
    RESYNCING = "resyncing"
    PROCESSING = "processing"
    ACKNOWLEDGING = "acknowledging"
    PERSISTING = "persisting"


@dataclass
class PollProgress:
    """Mutable progress tracker for poller status reporting."""

    run_cycles: int = 0
    total_cycles: int = 0
    messages_seen: int = 0
    messages_tagged: int = 0
    turns_written: int = 0
    acknowledgments_sent: int = 0
    messages_failed: int = 0
    resyncs: int = 0
    cursor: str = SENTINEL_CURSOR
    current_stage: PollState = PollState.IDLE


@dataclass
class CycleReport:
    """What one poll cycle did."""

    cursor_before: str
    cursor_after: str = ""
    baseline: bool = False
    resynced: bool = False
    fetch_failed: bool = False
    message_ids: tuple[str, ...] = ()
    turns: list[MaterializedTurn] = field(default_factory=list)
    failed_message_ids: list[str] = field(default_factory=list)
