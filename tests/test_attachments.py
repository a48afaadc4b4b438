"""Tests for the unique-attachment listing."""

from __future__ import annotations

from pathlib import Path

from gmail_chatterbox.core.models import Attachment
from gmail_chatterbox.storage.attachments import (
    file_digest,
    list_unique_attachments,
    turn_attachments,
)
from gmail_chatterbox.storage.materializer import ConversationMaterializer


class TestTurnAttachments:
    def test_excludes_body_and_sorts(self, interactions_dir: Path) -> None:
        turn = ConversationMaterializer(interactions_dir).materialize(
            "abc", "body", [Attachment("b.txt", b"b"), Attachment("a.txt", b"a")]
        )

        assert [p.name for p in turn_attachments(turn.path)] == ["a.txt", "b.txt"]

    def test_missing_turn(self, tmp_path: Path) -> None:
        assert turn_attachments(tmp_path / "nope") == []


class TestListUniqueAttachments:
    """Tests for list_unique_attachments()."""

    def test_duplicates_across_turns_keep_first(self, interactions_dir: Path) -> None:
        materializer = ConversationMaterializer(interactions_dir)
        materializer.materialize("abc", "one", [Attachment("plan.pdf", b"v1"), Attachment("logo.png", b"L")])
        materializer.materialize("abc", "two", [Attachment("plan.pdf", b"v2"), Attachment("logo-copy.png", b"L")])

        result = list_unique_attachments(interactions_dir, "abc")

        assert [a.unique_name for a in result] == ["001_logo.png", "001_plan.pdf", "002_plan.pdf"]
        assert result[0].path == interactions_dir / "abc" / "001" / "logo.png"
        assert result[0].digest == file_digest(result[0].path)

    def test_turns_visited_numerically(self, interactions_dir: Path) -> None:
        for number, content in (("010", b"same"), ("002", b"same")):
            turn = interactions_dir / "abc" / number
            turn.mkdir(parents=True)
            (turn / "f.bin").write_bytes(content)

        result = list_unique_attachments(interactions_dir, "abc")

        assert [a.unique_name for a in result] == ["002_f.bin"]

    def test_missing_conversation(self, interactions_dir: Path) -> None:
        assert list_unique_attachments(interactions_dir, "missing") == []

    def test_body_text_is_ignored(self, interactions_dir: Path) -> None:
        ConversationMaterializer(interactions_dir).materialize("abc", "only a body")

        assert list_unique_attachments(interactions_dir, "abc") == []

    def test_md5_digest(self, tmp_path: Path) -> None:
        path = tmp_path / "f"
        path.write_bytes(b"hello")

        assert file_digest(path) == "5d41402abc4b2a76b9719d911017c592"
