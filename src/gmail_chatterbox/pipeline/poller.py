"""Poll cycle orchestrator: fetch history → classify → materialize → acknowledge."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from gmail_chatterbox.config.settings import ChatterboxSettings
from gmail_chatterbox.core.auth import authenticate, build_gmail_service
from gmail_chatterbox.core.classifier import classify
from gmail_chatterbox.core.exceptions import (
    AcknowledgmentError,
    ChatterboxError,
    InvalidCursorError,
    MaterializationError,
    MessageNotFoundError,
    ParseError,
)
from gmail_chatterbox.core.extractor import (
    ContentExtractor,
    MessageParser,
    enumerate_attachments,
    extract_prompt,
)
from gmail_chatterbox.core.gmail_client import GmailClient
from gmail_chatterbox.core.models import (
    SENTINEL_CURSOR,
    Attachment,
    AttachmentInfo,
    ChangeSet,
    CycleReport,
    MailMessage,
    MaterializedTurn,
    MessageChange,
    PollProgress,
    PollState,
    SubjectClassification,
)
from gmail_chatterbox.pipeline.acknowledger import Acknowledger, compose_acknowledgment
from gmail_chatterbox.pipeline.fetcher import ChangeFetcher, cursor_key, latest_cursor
from gmail_chatterbox.storage.cursor_store import CursorStore
from gmail_chatterbox.storage.materializer import ConversationMaterializer

logger = logging.getLogger(__name__)

BODY_PREVIEW_CHARS = 500


class ChatterboxPoller:
    """Runs sequential poll cycles against one mailbox.

    Each cycle:
    FETCHING    - load the cursor, list history since it (RESYNCING on a rejected cursor)
    BASELINE    - first run: store the current historyId, process nothing
    PROCESSING  - per message: fetch → parse → classify → materialize (tagged only)
    ACKNOWLEDGING - confirmation reply for each materialized turn
    PERSISTING  - save the cursor (never past a failed message) and the cycle counter

    Blocking work (Gmail API, filesystem) runs in worker threads one call at a
    time, so cycles never overlap and messages are handled in order.
    """

    def __init__(
        self,
        settings: ChatterboxSettings | None = None,
        on_progress: Callable[[PollProgress], None] | None = None,
    ) -> None:
        self._settings = settings or ChatterboxSettings()
        self._on_progress = on_progress
        self._progress = PollProgress()
        self._stop_event = asyncio.Event()

        # Components initialized lazily
        self._client: GmailClient | None = None
        self._fetcher: ChangeFetcher | None = None
        self._acknowledger: Acknowledger | None = None
        self._parser = MessageParser()
        self._extractor = ContentExtractor()
        self._store = CursorStore(self._settings.data_dir)
        self._materializer = ConversationMaterializer(self._settings.interactions_dir)
        self._message_stage = "fetch"

    @property
    def settings(self) -> ChatterboxSettings:
        return self._settings

    @property
    def progress(self) -> PollProgress:
        return self._progress

    @property
    def on_progress(self) -> Callable[[PollProgress], None] | None:
        return self._on_progress

    @on_progress.setter
    def on_progress(self, callback: Callable[[PollProgress], None] | None) -> None:
        self._on_progress = callback

    def _ensure_initialized(self) -> tuple[GmailClient, ChangeFetcher, Acknowledger]:
        """Authenticate and build the Gmail-facing components if not already done."""
        if self._client is None:
            self._settings.ensure_directories()

            creds = authenticate(
                self._settings.credentials_path,
                self._settings.token_path,
            )
            service = build_gmail_service(creds)
            self._client = GmailClient(
                service,
                self._settings.gmail_user,
                max_retries=self._settings.max_retries,
                initial_backoff_seconds=self._settings.initial_backoff_seconds,
                max_backoff_seconds=self._settings.max_backoff_seconds,
                num_retries=self._settings.num_retries,
            )

        if self._fetcher is None:
            self._fetcher = ChangeFetcher(self._client)

        if self._acknowledger is None:
            self._acknowledger = Acknowledger(self._client)

        return self._client, self._fetcher, self._acknowledger

    def request_stop(self) -> None:
        """Stop after the in-flight cycle; a pending wait for the next tick is cancelled."""
        self._stop_event.set()

    async def run(
        self,
        *,
        interval_minutes: float | None = None,
        duration_minutes: float | None = None,
        max_cycles: int | None = None,
    ) -> PollProgress:
        """Poll until the duration budget runs out, a stop is requested, or max_cycles.

        Args:
            interval_minutes: Pause between cycles (defaults to settings).
            duration_minutes: Total run time budget, 0 for unbounded (defaults to settings).
            max_cycles: Optional cap on cycles in this run.

        Returns:
            PollProgress with final counts.
        """
        interval = 60 * (
            self._settings.poll_interval_minutes if interval_minutes is None else interval_minutes
        )
        duration = 60 * (
            self._settings.poll_duration_minutes if duration_minutes is None else duration_minutes
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration if duration > 0 else None

        await asyncio.to_thread(self._ensure_initialized)
        if deadline is None:
            logger.info("Polling %s every %.2f minutes until stopped", self._settings.gmail_user, interval / 60)
        else:
            logger.info(
                "Polling %s every %.2f minutes for %.2f minutes",
                self._settings.gmail_user, interval / 60, duration / 60,
            )

        while True:
            await self.run_cycle()

            if max_cycles is not None and self._progress.run_cycles >= max_cycles:
                break
            if self._stop_event.is_set():
                logger.info("Stop requested, exiting poll loop")
                break

            delay = interval
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.info("Polling duration reached, exiting poll loop")
                    break
                delay = min(delay, remaining)

            if await self._wait_for_next_tick(delay):
                logger.info("Stop requested, exiting poll loop")
                break
            if deadline is not None and loop.time() >= deadline:
                logger.info("Polling duration reached, exiting poll loop")
                break

        return self._progress

    async def _wait_for_next_tick(self, delay: float) -> bool:
        """Sleep until the next cycle is due. Returns True if a stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True

    async def run_cycle(self) -> CycleReport:
        """Run exactly one poll cycle and persist its outcome."""
        client, fetcher, acknowledger = await asyncio.to_thread(self._ensure_initialized)

        self._progress.run_cycles += 1
        self._set_state(PollState.FETCHING)

        stored = await asyncio.to_thread(self._store.load)
        total_cycles = await asyncio.to_thread(self._store.load_counter)
        report = CycleReport(cursor_before=stored)
        logger.info(
            "--- Poll cycle %d (total %d) for %s since history id %s ---",
            self._progress.run_cycles, total_cycles + 1, self._settings.gmail_user, stored,
        )

        stored, changes = await self._fetch(fetcher, stored, report)
        new_cursor = stored

        if changes is not None and changes.baseline:
            self._set_state(PollState.BASELINE)
            report.baseline = True
            new_cursor = changes.cursor
            logger.info("Baseline history id %s; new mail is picked up from the next cycle", new_cursor)
        elif changes is not None:
            self._set_state(PollState.PROCESSING)
            report.message_ids = changes.message_ids
            blocked: list[MessageChange] = []
            total = len(changes.changes)
            for index, change in enumerate(changes.changes, start=1):
                if not await self._process_change(client, acknowledger, change, index, total, report):
                    blocked.append(change)
            new_cursor = self._safe_cursor(stored, changes, blocked)
            self._log_summary(report)

        self._set_state(PollState.PERSISTING)
        try:
            if new_cursor != stored:
                await asyncio.to_thread(self._store.save, new_cursor)
                logger.info("Updated last history id to %s", new_cursor)
            await asyncio.to_thread(self._store.save_counter, total_cycles + 1)
        except OSError as e:
            logger.error("Failed to persist poll state (history id %s): %s", new_cursor, e)

        report.cursor_after = new_cursor
        self._progress.total_cycles = total_cycles + 1
        self._progress.cursor = new_cursor
        self._set_state(PollState.IDLE)
        return report

    async def _fetch(
        self, fetcher: ChangeFetcher, stored: str, report: CycleReport
    ) -> tuple[str, ChangeSet | None]:
        """Fetch changes, resyncing once if the cursor is rejected.

        Returns the cursor now in storage and the changes (None if fetching failed).
        """
        try:
            return stored, await asyncio.to_thread(fetcher.fetch_changes_since, stored)
        except InvalidCursorError as e:
            self._set_state(PollState.RESYNCING)
            logger.warning("History id %s rejected, resetting and re-baselining: %s", stored, e)
            report.resynced = True
            self._progress.resyncs += 1
            try:
                await asyncio.to_thread(self._store.save, SENTINEL_CURSOR)
            except OSError as save_error:
                logger.error("Failed to reset history id: %s", save_error)
                report.fetch_failed = True
                return stored, None
            stored = SENTINEL_CURSOR
        except ChatterboxError as e:
            logger.error("Error fetching history since %s: %s", stored, e)
            report.fetch_failed = True
            return stored, None

        self._set_state(PollState.FETCHING)
        try:
            return stored, await asyncio.to_thread(fetcher.fetch_changes_since, stored)
        except ChatterboxError as e:
            logger.error("Error establishing a new baseline: %s", e)
            report.fetch_failed = True
            return stored, None

    async def _process_change(
        self,
        client: GmailClient,
        acknowledger: Acknowledger,
        change: MessageChange,
        index: int,
        total: int,
        report: CycleReport,
    ) -> bool:
        """Handle one new message. Returns False if the cursor must not pass it."""
        self._progress.messages_seen += 1
        self._message_stage = "fetch"
        self._notify()

        try:
            return await self._handle_change(client, acknowledger, change, index, total, report)
        except Exception as e:
            logger.exception(
                "Unexpected error processing message %s (stage=%s): %s",
                change.message_id, self._message_stage, e,
            )
            self._record_failure(report, change.message_id)
            return False

    async def _handle_change(
        self,
        client: GmailClient,
        acknowledger: Acknowledger,
        change: MessageChange,
        index: int,
        total: int,
        report: CycleReport,
    ) -> bool:
        message_id = change.message_id
        try:
            raw = await asyncio.to_thread(client.get_message, message_id)
        except MessageNotFoundError as e:
            logger.warning("Message %s no longer exists, skipping: %s", message_id, e)
            return True
        except ChatterboxError as e:
            logger.error("Failed to fetch message %s (stage=fetch): %s", message_id, e)
            self._record_failure(report, message_id)
            return False

        self._message_stage = "parse"
        try:
            message = self._parser.parse(raw)
        except ParseError as e:
            logger.error("Failed to parse message %s (stage=parse), skipping: %s", message_id, e)
            self._record_failure(report, message_id)
            return True

        classification = classify(message.subject, self._settings.tag_keyword)
        body = extract_prompt(message.payload)

        if not classification.is_tagged:
            self._log_message(
                message, classification, body,
                enumerate_attachments((message.payload,)), index, total,
            )
            return True

        self._progress.messages_tagged += 1
        self._message_stage = "attachments"
        attachments = await asyncio.to_thread(
            self._extractor.fetch_attachments, message, client.get_attachment
        )

        self._message_stage = "materialize"
        try:
            turn = await asyncio.to_thread(
                self._materializer.materialize,
                classification.conversation_id,
                body,
                attachments,
            )
        except MaterializationError as e:
            logger.error(
                "Failed to materialize message %s (conversation=%s, stage=%s): %s",
                message_id, e.conversation_id, e.stage, e,
            )
            self._record_failure(report, message_id)
            return False

        report.turns.append(turn)
        self._progress.turns_written += 1
        self._log_message(
            message, classification, body,
            [AttachmentInfo(filename=a.filename, size=a.size) for a in attachments],
            index, total, turn=turn,
        )

        self._message_stage = "acknowledge"
        await self._acknowledge(acknowledger, message, classification, turn, body, attachments)
        return True

    async def _acknowledge(
        self,
        acknowledger: Acknowledger,
        message: MailMessage,
        classification: SubjectClassification,
        turn: MaterializedTurn,
        body: str | None,
        attachments: Sequence[Attachment],
    ) -> None:
        """Send the confirmation reply; failures are logged and never block the cycle."""
        if not self._settings.send_acknowledgments:
            return

        self._set_state(PollState.ACKNOWLEDGING)
        ack = compose_acknowledgment(
            sender=message.sender,
            original_subject=message.subject,
            conversation_id=turn.conversation_id,
            title=classification.title,
            body_length=len(body.encode("utf-8")) if body else 0,
            attachment_count=len(attachments),
            total_attachment_size=sum(a.size for a in attachments),
            keyword=self._settings.tag_keyword,
        )
        try:
            await asyncio.to_thread(acknowledger.send, ack)
        except AcknowledgmentError as e:
            logger.error(
                "Failed to acknowledge message %s (conversation=%s): %s",
                message.message_id, turn.conversation_id, e,
            )
        except Exception as e:
            logger.exception(
                "Unexpected error acknowledging message %s (conversation=%s): %s",
                message.message_id, turn.conversation_id, e,
            )
        else:
            self._progress.acknowledgments_sent += 1
        finally:
            self._set_state(PollState.PROCESSING)

    @staticmethod
    def _safe_cursor(stored: str, changes: ChangeSet, blocked: list[MessageChange]) -> str:
        """Highest cursor that does not skip past any failed message."""
        if not blocked:
            return changes.cursor

        earliest = min((c.history_id for c in blocked), key=cursor_key)
        safe = latest_cursor(
            (
                c.history_id
                for c in changes.changes
                if cursor_key(c.history_id) < cursor_key(earliest)
            ),
            default=stored,
        )
        logger.warning(
            "%d message(s) failed; holding history id at %s instead of %s",
            len(blocked), safe, changes.cursor,
        )
        return safe

    def _record_failure(self, report: CycleReport, message_id: str) -> None:
        report.failed_message_ids.append(message_id)
        self._progress.messages_failed += 1
        self._notify()

    def _log_message(
        self,
        message: MailMessage,
        classification: SubjectClassification,
        body: str | None,
        attachments: Sequence[AttachmentInfo],
        index: int,
        total: int,
        turn: MaterializedTurn | None = None,
    ) -> None:
        """Detailed per-message log block."""
        if classification.is_tagged:
            status = "IS chatterbox"
            if classification.conversation_id:
                status += f" HAS conversation id {classification.conversation_id}"
            else:
                status += " DOES NOT HAVE conversation id"
        else:
            status = "ISNOT chatterbox"
        status += f" CONTAINS attachments {len(attachments)}" if attachments else " NO ATTACHMENTS"

        if body:
            preview = body[:BODY_PREVIEW_CHARS] + ("..." if len(body) > BODY_PREVIEW_CHARS else "")
        else:
            preview = "<No Text Body>"

        logger.info("FROM      : %s", message.sender)
        logger.info("TO        : %s (polled account: %s)", message.to, self._settings.gmail_user)
        logger.info("TIMESTAMP : %s, GMAIL ID: %s", message.date.isoformat(), message.message_id)
        logger.info("ITEM      : email %d of %d (read this polling cycle)", index, total)
        logger.info("SUBJECT   : %s", message.subject)
        logger.info("STATUS    : %s", status)
        for attachment in attachments:
            logger.info("  - %s (%d bytes)", attachment.filename, attachment.size)
        if turn is not None:
            logger.info("SAVED     : %s", turn.path)
        logger.info("BODY      : %s", preview)

    @staticmethod
    def _log_summary(report: CycleReport) -> None:
        if not report.turns:
            logger.info("No chatterbox messages found in this poll")
            return
        logger.info(
            "%d chatterbox message%s", len(report.turns), "" if len(report.turns) == 1 else "s"
        )
        for turn in report.turns:
            logger.info("conversation:%s|turn %s", turn.conversation_id, turn.turn_number)

    def status(self) -> dict[str, str | int | None]:
        """Stored account, cursor and total cycle count."""
        return {
            "account": self._store.load_account(),
            "history_id": self._store.load(),
            "total_poll_cycles": self._store.load_counter(),
        }

    def _set_state(self, state: PollState) -> None:
        self._progress.current_stage = state
        self._notify()

    def _notify(self) -> None:
        """Send progress update to callback if registered."""
        if self._on_progress:
            self._on_progress(self._progress)
