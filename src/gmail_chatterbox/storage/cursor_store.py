"""Plain-text state files: history cursor, poll cycle counter, polled account."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from gmail_chatterbox.core.models import SENTINEL_CURSOR

logger = logging.getLogger(__name__)

CURSOR_FILE = "last_history_id.txt"
COUNTER_FILE = "total_poll_cycles.txt"
ACCOUNT_FILE = "last_polled_email.txt"


class CursorStore:
    """Persists poller state under ``data_dir`` across process restarts.

    Files:
    - last_history_id.txt: Gmail historyId, "0" meaning never synced
    - total_poll_cycles.txt: completed poll cycles
    - last_polled_email.txt: account the cursor belongs to

    Unreadable files are logged and treated as absent, so a corrupted cursor
    causes a fresh baseline rather than a crash.
    """

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir

    @property
    def cursor_path(self) -> Path:
        return self._data_dir / CURSOR_FILE

    @property
    def counter_path(self) -> Path:
        return self._data_dir / COUNTER_FILE

    @property
    def account_path(self) -> Path:
        return self._data_dir / ACCOUNT_FILE

    def load(self) -> str:
        """Return the stored cursor, or the sentinel if there is none."""
        value = self._read(self.cursor_path)
        return value or SENTINEL_CURSOR

    def save(self, cursor: str) -> None:
        """Durably replace the stored cursor."""
        self._write_atomic(self.cursor_path, str(cursor))
        logger.debug("Saved cursor %s", cursor)

    def load_counter(self) -> int:
        """Return the persisted poll cycle count, 0 if absent or unreadable."""
        value = self._read(self.counter_path)
        if not value:
            return 0
        try:
            return max(int(value), 0)
        except ValueError:
            logger.warning("Ignoring unreadable poll counter %r in %s", value, self.counter_path)
            return 0

    def save_counter(self, count: int) -> None:
        self._write_atomic(self.counter_path, str(count))

    def load_account(self) -> str | None:
        return self._read(self.account_path) or None

    def save_account(self, email: str) -> None:
        self._write_atomic(self.account_path, email)

    def switch_account(self, email: str) -> bool:
        """Record ``email`` as the polled account.

        A cursor belongs to one mailbox, so when a different account was
        polled last the cursor and counter are reset. Returns True on reset.
        """
        previous = self.load_account()
        changed = previous is not None and previous.lower() != email.lower()
        if changed:
            logger.info("Polled account changed from %s to %s, resetting state", previous, email)
            self.reset()
        self.save_account(email)
        return changed

    def reset(self) -> list[Path]:
        """Delete the cursor and counter files. Returns the paths removed."""
        removed: list[Path] = []
        for path in (self.cursor_path, self.counter_path):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            removed.append(path)
            logger.info("Deleted %s", path)
        return removed

    @staticmethod
    def _read(path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return ""
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to read %s, starting fresh: %s", path, e)
            return ""

    @staticmethod
    def _write_atomic(path: Path, value: str) -> None:
        """Write ``value`` to a temp file beside ``path``, fsync, then rename over it."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
