"""Conversation/turn directory writer for tagged messages."""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Sequence
from pathlib import Path

from gmail_chatterbox.core.exceptions import MaterializationError
from gmail_chatterbox.core.models import Attachment, MaterializedTurn

logger = logging.getLogger(__name__)

BODY_FILENAME = "body_text.txt"
TURN_PATTERN = re.compile(r"^\d{3}$")

# Common NAME_MAX (ext4, APFS, NTFS); names are measured in UTF-8 bytes.
MAX_FILENAME_BYTES = 255
COLLISION_SUFFIX_BYTES = 8


def new_conversation_id() -> str:
    """Mint a conversation id in the same canonical form subjects carry."""
    return str(uuid.uuid4())


def turn_numbers(conversation_dir: Path) -> list[int]:
    """Existing turn numbers of a conversation, ascending."""
    if not conversation_dir.is_dir():
        return []
    return sorted(
        int(entry.name)
        for entry in conversation_dir.iterdir()
        if entry.is_dir() and TURN_PATTERN.match(entry.name)
    )


class ConversationMaterializer:
    """Lay out one turn per tagged message.

    Layout: ``{interactions_dir}/{conversation_id}/{NNN}/body_text.txt`` plus
    one file per attachment. Turn numbers come from scanning the directory, so
    a single writer per conversation is assumed.
    """

    def __init__(self, interactions_dir: Path) -> None:
        self._interactions_dir = interactions_dir

    @property
    def interactions_dir(self) -> Path:
        return self._interactions_dir

    def materialize(
        self,
        conversation_id: str | None,
        body_text: str | None,
        attachments: Sequence[Attachment] = (),
    ) -> MaterializedTurn:
        """Write a new turn and return where it went.

        Args:
            conversation_id: Existing conversation slug, or None to mint one.
            body_text: Prompt text; no body file is written when absent.
            attachments: Attachments in message order.

        Raises:
            MaterializationError: On any filesystem failure.
        """
        if conversation_id is None:
            conversation_id = new_conversation_id()
            logger.info("Minted new conversation id %s", conversation_id)

        conversation_dir = self._interactions_dir / conversation_id
        stage = "conversation directory"
        try:
            conversation_dir.mkdir(parents=True, exist_ok=True)

            stage = "turn directory"
            existing = turn_numbers(conversation_dir)
            turn_number = f"{(existing[-1] + 1) if existing else 1:03d}"
            turn_dir = conversation_dir / turn_number
            turn_dir.mkdir()

            if body_text:
                stage = "body text"
                body_path = turn_dir / BODY_FILENAME
                body_path.write_text(body_text, encoding="utf-8")
                logger.debug("Wrote body text: %s", body_path)

            stage = "attachments"
            for attachment in attachments:
                path = self._unique_path(turn_dir, self._safe_filename(attachment.filename))
                path.write_bytes(attachment.content)
                logger.debug("Wrote attachment: %s (%d bytes)", path, attachment.size)
        except OSError as e:
            raise MaterializationError(
                f"Failed to write {stage} for conversation {conversation_id}: {e}",
                conversation_id=conversation_id,
                stage=stage,
            ) from e

        logger.info("Materialized turn %s/%s", conversation_id, turn_number)
        return MaterializedTurn(
            conversation_id=conversation_id,
            turn_number=turn_number,
            path=turn_dir,
        )

    @staticmethod
    def _safe_filename(filename: str) -> str:
        """Reduce an attachment filename to a bare name that stays inside the turn.

        The result leaves room under NAME_MAX for a collision suffix.
        """
        name = filename.replace("\\", "/").rsplit("/", 1)[-1]
        name = name.replace("\x00", "").strip()
        if name in ("", ".", ".."):
            return "attachment"
        stem, ext = _split_extension(name)
        return _fit_filename(stem, ext, MAX_FILENAME_BYTES - COLLISION_SUFFIX_BYTES)

    @staticmethod
    def _unique_path(directory: Path, filename: str) -> Path:
        """Suffix ``_1``, ``_2``... before the extension until the name is free."""
        path = directory / filename
        if not path.exists():
            return path
        stem, ext = _split_extension(filename)
        counter = 1
        while True:
            suffix = f"_{counter}"
            name = _fit_filename(stem, ext, MAX_FILENAME_BYTES - len(suffix))
            base, name_ext = _split_extension(name)
            candidate = directory / f"{base}{suffix}{name_ext}"
            if not candidate.exists():
                return candidate
            counter += 1


def _split_extension(filename: str) -> tuple[str, str]:
    """``report.pdf`` -> (``report``, ``.pdf``); names without a stem keep no extension."""
    stem, dot, ext = filename.rpartition(".")
    if not stem:
        return filename, ""
    return stem, dot + ext


def _fit_filename(stem: str, ext: str, limit: int) -> str:
    """Truncate ``stem`` so ``stem + ext`` is at most ``limit`` UTF-8 bytes.

    An extension longer than half the limit is dropped instead.
    """
    if len(ext.encode("utf-8")) > limit // 2:
        stem, ext = stem + ext, ""
    budget = limit - len(ext.encode("utf-8"))
    truncated = stem.encode("utf-8")[:budget].decode("utf-8", errors="ignore")
    return (truncated or "attachment") + ext
