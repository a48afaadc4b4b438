"""Gmail Chatterbox - Turn tagged Gmail messages into on-disk conversation turns."""

from gmail_chatterbox.core.models import (
    Attachment,
    ChangeSet,
    CycleReport,
    MailMessage,
    MaterializedTurn,
    MessageChange,
    PollProgress,
    PollState,
    SubjectClassification,
    UniqueAttachment,
)
from gmail_chatterbox.pipeline.poller import ChatterboxPoller

__all__ = [
    "Attachment",
    "ChangeSet",
    "ChatterboxPoller",
    "CycleReport",
    "MailMessage",
    "MaterializedTurn",
    "MessageChange",
    "PollProgress",
    "PollState",
    "SubjectClassification",
    "UniqueAttachment",
]
