"""Turn Gmail history into an ordered batch of new message ids."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from gmail_chatterbox.core.gmail_client import GmailClient
from gmail_chatterbox.core.models import SENTINEL_CURSOR, ChangeSet, MessageChange

logger = logging.getLogger(__name__)


def cursor_key(cursor: str) -> tuple[int, str]:
    """Sort key for Gmail history ids (non-negative decimal strings) without parsing them."""
    return len(cursor), cursor


def latest_cursor(cursors: Iterable[str], default: str) -> str:
    """The latest of ``cursors``, or ``default`` when there are none."""
    return max(cursors, key=cursor_key, default=default)


class ChangeFetcher:
    """Wraps history listing with baseline handling."""

    def __init__(self, client: GmailClient) -> None:
        self._client = client

    def fetch_changes_since(self, cursor: str) -> ChangeSet:
        """Return the messages added since ``cursor`` and the new high-water cursor.

        A sentinel cursor does not replay history: it returns the mailbox's
        current historyId with no changes, so the next call starts from now.

        Raises:
            InvalidCursorError: Gmail rejected ``cursor``.
            TransientFetchError: The request failed for another reason.
        """
        if cursor == SENTINEL_CURSOR:
            baseline = self._client.get_baseline_history_id()
            logger.info("No stored history id; baseline set to %s", baseline)
            return ChangeSet(cursor=baseline, baseline=True)

        records = self._client.list_history(cursor)
        changes = self._flatten(records)
        new_cursor = latest_cursor(
            (str(r["id"]) for r in records if r.get("id")), default=cursor
        )
        logger.info(
            "%d history records, %d new messages since %s (now %s)",
            len(records), len(changes), cursor, new_cursor,
        )
        return ChangeSet(cursor=new_cursor, changes=tuple(changes))

    @staticmethod
    def _flatten(records: list[dict[str, Any]]) -> list[MessageChange]:
        """Every messagesAdded entry in order, first occurrence of each id only."""
        changes: list[MessageChange] = []
        seen: set[str] = set()
        for record in records:
            history_id = str(record.get("id", ""))
            for added in record.get("messagesAdded", []):
                message_id = added.get("message", {}).get("id")
                if not message_id or message_id in seen:
                    continue
                seen.add(message_id)
                changes.append(MessageChange(message_id=message_id, history_id=history_id))
        return changes
