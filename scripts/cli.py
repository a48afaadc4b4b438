"""CLI entry point for the Gmail Chatterbox poller and its helper commands."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from gmail_chatterbox.config.settings import ChatterboxSettings
from gmail_chatterbox.core.auth import SCOPES, forget_token
from gmail_chatterbox.core.completion import CompletionClient
from gmail_chatterbox.core.models import PollProgress
from gmail_chatterbox.pipeline.poller import ChatterboxPoller
from gmail_chatterbox.storage.attachments import list_unique_attachments
from gmail_chatterbox.storage.cursor_store import CursorStore


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def on_progress(progress: PollProgress) -> None:
    """Print progress updates to stdout."""
    print(
        f"[{progress.current_stage.value}] "
        f"cycles={progress.run_cycles} "
        f"seen={progress.messages_seen} "
        f"tagged={progress.messages_tagged} "
        f"turns={progress.turns_written} "
        f"failed={progress.messages_failed}",
        end="\r",
        flush=True,
    )


def _add_poll_args(subparser: argparse.ArgumentParser) -> None:
    """Add --interval, --duration, --email and --once flags to a subparser."""
    subparser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Minutes between poll cycles (default: from settings)",
    )
    subparser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Total minutes to keep polling, 0 for no limit (default: from settings)",
    )
    subparser.add_argument(
        "--email",
        default=None,
        help="Gmail account to poll (default: last polled account, then settings)",
    )
    subparser.add_argument(
        "--once",
        action="store_true",
        help="Run a single poll cycle and exit",
    )


def _validate_poll_args(args: argparse.Namespace) -> None:
    """Reject non-positive interval and negative duration."""
    if getattr(args, "interval", None) is not None and args.interval <= 0:
        print("Error: --interval must be positive", file=sys.stderr)
        sys.exit(1)
    if getattr(args, "duration", None) is not None and args.duration < 0:
        print("Error: --duration must be non-negative", file=sys.stderr)
        sys.exit(1)


def _validate_complete_args(args: argparse.Namespace) -> None:
    """--attachments-path only makes sense together with --prompt."""
    if args.attachments_path is not None and args.prompt is None:
        print("Error: --attachments-path requires --prompt", file=sys.stderr)
        sys.exit(1)


def resolve_account(requested: str | None, store: CursorStore, default: str) -> str:
    """Account to poll: explicit flag, then the last polled account, then settings."""
    return requested or store.load_account() or default


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Gmail Chatterbox - Save tagged emails as conversation turns"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # poll command
    poll_parser = subparsers.add_parser("poll", help="Poll the mailbox for tagged emails")
    _add_poll_args(poll_parser)

    # status command
    subparsers.add_parser("status", help="Show stored account, history id and cycle count")

    # clean command
    subparsers.add_parser("clean", help="Delete cached token, history id and cycle count")

    # unique-attachments command
    unique_parser = subparsers.add_parser(
        "unique-attachments", help="List content-unique attachments of a conversation"
    )
    unique_parser.add_argument("--conversation-id", "-c", required=True, dest="conversation_id")

    # complete command
    complete_parser = subparsers.add_parser("complete", help="Send a prompt to the LLM")
    source = complete_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--prompt", "-p", help="Prompt text")
    source.add_argument(
        "--turn-dir", type=Path, dest="turn_dir", help="Materialized turn directory to send"
    )
    complete_parser.add_argument(
        "--attachments-path",
        type=Path,
        default=None,
        dest="attachments_path",
        help="Directory of files to attach to --prompt",
    )

    return parser


def run_poll(args: argparse.Namespace, settings: ChatterboxSettings) -> None:
    store = CursorStore(settings.data_dir)
    account = resolve_account(args.email, store, settings.gmail_user)
    if store.switch_account(account):
        forget_token(settings.token_path)
    settings = settings.model_copy(update={"gmail_user": account})

    poller = ChatterboxPoller(settings=settings, on_progress=on_progress)
    if args.once:
        report = asyncio.run(poller.run_cycle())
        print(f"\n\nCycle complete: {report}")
        return

    progress = asyncio.run(
        poller.run(interval_minutes=args.interval, duration_minutes=args.duration)
    )
    print(f"\n\nComplete: {progress}")


def run_status(settings: ChatterboxSettings) -> None:
    store = CursorStore(settings.data_dir)
    print("\nPoller state:")
    print(f"  account:           {store.load_account() or '-'}")
    print(f"  last history id:   {store.load()}")
    print(f"  total poll cycles: {store.load_counter()}")
    print("\nAuthorization:")
    credentials, token = settings.credentials_path, settings.token_path
    print(f"  credentials file:  {credentials} ({_exists(credentials)})")
    print(f"  token file:        {token} ({_exists(token)})")
    print("  scopes:")
    for scope in SCOPES:
        print(f"    {scope}")


def _exists(path: Path) -> str:
    return "present" if path.exists() else "missing"


def run_clean(settings: ChatterboxSettings) -> None:
    removed = CursorStore(settings.data_dir).reset()
    if forget_token(settings.token_path):
        removed.append(settings.token_path)
    if not removed:
        print("\nNothing to clean")
        return
    print(f"\nDeleted {len(removed)} file(s):")
    for path in removed:
        print(f"  {path}")


def run_unique_attachments(args: argparse.Namespace, settings: ChatterboxSettings) -> None:
    attachments = list_unique_attachments(settings.interactions_dir, args.conversation_id)
    print(f"\nFound {len(attachments)} unique attachments:\n")
    for attachment in attachments:
        print(f"  {attachment.unique_name:40s} {attachment.path}")


def run_complete(args: argparse.Namespace, settings: ChatterboxSettings) -> None:
    client = CompletionClient(
        settings.openai_api_key,
        settings.openai_model,
        organization=settings.openai_organization,
        max_tokens=settings.max_response_tokens,
    )
    if args.turn_dir is not None:
        reply = client.complete_turn(args.turn_dir)
    else:
        attachments: list[Path] = []
        if args.attachments_path is not None:
            attachments = sorted(p for p in args.attachments_path.iterdir() if p.is_file())
        reply = client.complete(args.prompt, attachments)
    print(reply)


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "poll":
        _validate_poll_args(args)
    elif args.command == "complete":
        _validate_complete_args(args)

    settings = ChatterboxSettings()
    setup_logging(settings.log_level)

    try:
        if args.command == "poll":
            run_poll(args, settings)
        elif args.command == "status":
            run_status(settings)
        elif args.command == "clean":
            run_clean(settings)
        elif args.command == "unique-attachments":
            run_unique_attachments(args, settings)
        elif args.command == "complete":
            run_complete(args, settings)

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
