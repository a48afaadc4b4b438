"""Tests for CLI argument parsing and command handlers."""

from __future__ import annotations

import argparse
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from gmail_chatterbox.config.settings import ChatterboxSettings
from gmail_chatterbox.core.models import Attachment, CycleReport, PollProgress
from gmail_chatterbox.storage.cursor_store import CursorStore
from gmail_chatterbox.storage.materializer import ConversationMaterializer
from scripts import cli


def _parse_args(argv: list[str]) -> argparse.Namespace:
    return cli.build_parser().parse_args(argv)


class TestPollArgs:
    """Test --interval, --duration, --email, --once on 'poll'."""

    def test_defaults(self) -> None:
        args = _parse_args(["poll"])
        assert args.interval is None
        assert args.duration is None
        assert args.email is None
        assert args.once is False

    def test_all_flags(self) -> None:
        args = _parse_args(
            ["poll", "--interval", "0.5", "--duration", "30", "--email", "bot@example.com", "--once"]
        )
        assert args.interval == 0.5
        assert args.duration == 30.0
        assert args.email == "bot@example.com"
        assert args.once is True

    def test_non_positive_interval_rejected(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli._validate_poll_args(_parse_args(["poll", "--interval", "0"]))
        assert exc_info.value.code == 1

    def test_negative_duration_rejected(self) -> None:
        with pytest.raises(SystemExit):
            cli._validate_poll_args(_parse_args(["poll", "--duration", "-1"]))

    def test_zero_duration_allowed(self) -> None:
        cli._validate_poll_args(_parse_args(["poll", "--duration", "0"]))


class TestCompleteArgs:
    def test_prompt_and_turn_dir_are_exclusive(self) -> None:
        with pytest.raises(SystemExit):
            _parse_args(["complete", "--prompt", "hi", "--turn-dir", "x"])

    def test_one_source_required(self) -> None:
        with pytest.raises(SystemExit):
            _parse_args(["complete"])

    def test_attachments_require_prompt(self) -> None:
        args = _parse_args(["complete", "--turn-dir", "x", "--attachments-path", "y"])
        with pytest.raises(SystemExit):
            cli._validate_complete_args(args)

    def test_unique_attachments_requires_id(self) -> None:
        with pytest.raises(SystemExit):
            _parse_args(["unique-attachments"])


class TestResolveAccount:
    def test_flag_wins(self, tmp_path: Path) -> None:
        store = CursorStore(tmp_path)
        store.save_account("stored@example.com")
        assert cli.resolve_account("flag@example.com", store, "me") == "flag@example.com"

    def test_stored_account_next(self, tmp_path: Path) -> None:
        store = CursorStore(tmp_path)
        store.save_account("stored@example.com")
        assert cli.resolve_account(None, store, "me") == "stored@example.com"

    def test_settings_default_last(self, tmp_path: Path) -> None:
        assert cli.resolve_account(None, CursorStore(tmp_path), "me") == "me"


class TestRunPoll:
    """run_poll wires account switching into the poller."""

    def test_account_change_resets_state_and_token(
        self, tmp_settings: ChatterboxSettings
    ) -> None:
        store = CursorStore(tmp_settings.data_dir)
        store.save_account("old@example.com")
        store.save("500")
        tmp_settings.token_path.parent.mkdir(parents=True)
        tmp_settings.token_path.write_text("{}")

        with patch.object(cli, "ChatterboxPoller") as mock_poller_cls:
            mock_poller_cls.return_value.run = AsyncMock(return_value=PollProgress())
            cli.run_poll(_parse_args(["poll", "--email", "new@example.com"]), tmp_settings)

        assert store.load() == "0"
        assert store.load_account() == "new@example.com"
        assert not tmp_settings.token_path.exists()
        settings = mock_poller_cls.call_args.kwargs["settings"]
        assert settings.gmail_user == "new@example.com"
        mock_poller_cls.return_value.run.assert_awaited_once_with(
            interval_minutes=None, duration_minutes=None
        )

    def test_once_runs_single_cycle(self, tmp_settings: ChatterboxSettings) -> None:
        with patch.object(cli, "ChatterboxPoller") as mock_poller_cls:
            poller = mock_poller_cls.return_value
            poller.run_cycle = AsyncMock(return_value=CycleReport(cursor_before="0"))
            poller.run = AsyncMock()
            cli.run_poll(_parse_args(["poll", "--once"]), tmp_settings)

        poller.run_cycle.assert_awaited_once()
        poller.run.assert_not_called()
        assert CursorStore(tmp_settings.data_dir).load_account() == "bot@example.com"


class TestCommands:
    def test_clean(self, tmp_settings: ChatterboxSettings, capsys: pytest.CaptureFixture[str]) -> None:
        store = CursorStore(tmp_settings.data_dir)
        store.save("9")
        store.save_counter(1)
        tmp_settings.token_path.parent.mkdir(parents=True)
        tmp_settings.token_path.write_text("{}")

        cli.run_clean(tmp_settings)

        assert "Deleted 3 file(s)" in capsys.readouterr().out
        assert store.load() == "0"
        assert not tmp_settings.token_path.exists()

    def test_clean_nothing(self, tmp_settings: ChatterboxSettings, capsys: pytest.CaptureFixture[str]) -> None:
        cli.run_clean(tmp_settings)

        assert "Nothing to clean" in capsys.readouterr().out

    def test_status(self, tmp_settings: ChatterboxSettings, capsys: pytest.CaptureFixture[str]) -> None:
        store = CursorStore(tmp_settings.data_dir)
        store.save("321")
        store.save_counter(5)

        cli.run_status(tmp_settings)

        out = capsys.readouterr().out
        assert "321" in out
        assert "total poll cycles: 5" in out

    def test_status_shows_authorization(
        self, tmp_settings: ChatterboxSettings, capsys: pytest.CaptureFixture[str]
    ) -> None:
        tmp_settings.credentials_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_settings.credentials_path.write_text("{}")

        cli.run_status(tmp_settings)

        out = capsys.readouterr().out
        assert f"credentials file:  {tmp_settings.credentials_path} (present)" in out
        assert f"token file:        {tmp_settings.token_path} (missing)" in out
        assert "https://www.googleapis.com/auth/gmail.readonly" in out
        assert "https://www.googleapis.com/auth/gmail.send" in out

    def test_unique_attachments(
        self, tmp_settings: ChatterboxSettings, capsys: pytest.CaptureFixture[str]
    ) -> None:
        materializer = ConversationMaterializer(tmp_settings.interactions_dir)
        materializer.materialize("abc", None, [Attachment("a.txt", b"same")])
        materializer.materialize("abc", None, [Attachment("b.txt", b"same")])

        cli.run_unique_attachments(_parse_args(["unique-attachments", "-c", "abc"]), tmp_settings)

        out = capsys.readouterr().out
        assert "Found 1 unique attachments" in out
        assert "001_a.txt" in out

    def test_complete_with_attachments_dir(
        self, tmp_settings: ChatterboxSettings, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        files = tmp_path / "files"
        files.mkdir()
        (files / "b.txt").write_text("b")
        (files / "a.txt").write_text("a")

        with patch.object(cli, "CompletionClient") as mock_completion_cls:
            mock_completion_cls.return_value.complete.return_value = "answer"
            cli.run_complete(
                _parse_args(["complete", "--prompt", "hi", "--attachments-path", str(files)]),
                tmp_settings,
            )

        mock_completion_cls.return_value.complete.assert_called_once_with(
            "hi", [files / "a.txt", files / "b.txt"]
        )
        assert "answer" in capsys.readouterr().out

    def test_complete_turn_dir(self, tmp_settings: ChatterboxSettings, tmp_path: Path) -> None:
        with patch.object(cli, "CompletionClient") as mock_completion_cls:
            mock_completion_cls.return_value.complete_turn.return_value = "answer"
            cli.run_complete(_parse_args(["complete", "--turn-dir", str(tmp_path)]), tmp_settings)

        mock_completion_cls.return_value.complete_turn.assert_called_once_with(tmp_path)


class TestOnProgress:
    def test_prints_counts(self, capsys: pytest.CaptureFixture[str]) -> None:
        cli.on_progress(PollProgress(run_cycles=2, messages_seen=5, turns_written=1))

        out = capsys.readouterr().out
        assert "[idle]" in out
        assert "cycles=2" in out
        assert "seen=5" in out
        assert "turns=1" in out


def test_main_without_command_exits(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("sys.argv", ["cli.py"])
    with patch.object(cli.argparse.ArgumentParser, "print_help", MagicMock()):
        with pytest.raises(SystemExit) as exc_info:
            cli.main()
    assert exc_info.value.code == 1
