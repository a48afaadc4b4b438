"""Attachment listings over the interactions tree."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from gmail_chatterbox.core.models import UniqueAttachment
from gmail_chatterbox.storage.materializer import BODY_FILENAME, turn_numbers

logger = logging.getLogger(__name__)


def file_digest(path: Path) -> str:
    """MD5 hex digest of a file's content."""
    digest = hashlib.md5()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def turn_attachments(turn_dir: Path) -> list[Path]:
    """Attachment files of a single turn, sorted by name."""
    if not turn_dir.is_dir():
        return []
    return sorted(
        (p for p in turn_dir.iterdir() if p.is_file() and p.name != BODY_FILENAME),
        key=lambda p: p.name,
    )


def list_unique_attachments(interactions_dir: Path, conversation_id: str) -> list[UniqueAttachment]:
    """List attachments of a conversation, keeping the first file per content hash.

    Turns are visited in numeric order and files by name, so the earliest copy
    of duplicated content is the one reported.
    """
    conversation_dir = interactions_dir / conversation_id
    if not conversation_dir.is_dir():
        logger.warning("Conversation folder not found: %s", conversation_dir)
        return []

    seen: dict[str, UniqueAttachment] = {}
    for number in turn_numbers(conversation_dir):
        turn_number = f"{number:03d}"
        for path in turn_attachments(conversation_dir / turn_number):
            try:
                digest = file_digest(path)
            except OSError as e:
                logger.warning("Could not hash %s, skipping: %s", path, e)
                continue

            if digest in seen:
                first = seen[digest]
                logger.debug(
                    "Skipping duplicate %s/%s (same content as %s/%s)",
                    turn_number, path.name, first.turn_number, first.filename,
                )
                continue

            seen[digest] = UniqueAttachment(
                unique_name=f"{turn_number}_{path.name}",
                path=path,
                filename=path.name,
                turn_number=turn_number,
                digest=digest,
            )

    return list(seen.values())
