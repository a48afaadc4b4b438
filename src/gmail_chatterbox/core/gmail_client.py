"""Gmail API client for history polling, message fetch and sending replies."""

from __future__ import annotations

import base64
import logging
import random
import time
from email.message import EmailMessage
from typing import Any

from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from gmail_chatterbox.core.exceptions import (
    AcknowledgmentError,
    AttachmentFetchError,
    ChatterboxError,
    InvalidCursorError,
    MessageNotFoundError,
    RateLimitError,
    TransientFetchError,
)
from gmail_chatterbox.core.extractor import decode_base64url

logger = logging.getLogger(__name__)


def _is_rate_limit_error(exc: Exception) -> bool:
    """Check whether an exception represents a Gmail API 429 rate limit."""
    if isinstance(exc, HttpError) and exc.status_code == 429:
        return True
    error_str = str(exc)
    return "429" in error_str or "rateLimitExceeded" in error_str


def _is_invalid_cursor_error(exc: Exception) -> bool:
    """Check whether Gmail rejected a startHistoryId as invalid or too old."""
    if isinstance(exc, HttpError) and exc.status_code == 404:
        return True
    return "startHistoryId" in str(exc)


def _is_not_found_error(exc: Exception) -> bool:
    return isinstance(exc, HttpError) and exc.status_code == 404


class GmailClient:
    """Thin wrapper around the Gmail API calls the poller needs."""

    def __init__(
        self,
        service: Resource,
        user_id: str = "me",
        *,
        max_retries: int = 5,
        initial_backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 60.0,
        inter_page_delay_seconds: float = 0.2,
        num_retries: int = 3,
    ) -> None:
        self._service = service
        self._user_id = user_id
        self._max_retries = max_retries
        self._initial_backoff = initial_backoff_seconds
        self._max_backoff = max_backoff_seconds
        self._inter_page_delay = inter_page_delay_seconds
        self._num_retries = num_retries

    @property
    def user_id(self) -> str:
        return self._user_id

    def _execute_with_retry(self, request: Any, context: str) -> Any:
        """Execute a single API request with exponential backoff on 429 errors.

        Args:
            request: A googleapiclient HttpRequest object.
            context: Description for log messages (e.g. "list history").

        Returns:
            The API response dict.

        Raises:
            RateLimitError: When retries are exhausted on 429 errors.
            HttpError: Non-rate-limit API errors, for the caller to classify.
        """
        backoff = self._initial_backoff

        for attempt in range(self._max_retries + 1):
            try:
                return request.execute(num_retries=self._num_retries)
            except Exception as e:
                if not _is_rate_limit_error(e):
                    raise
                if attempt >= self._max_retries:
                    raise RateLimitError(
                        f"Rate limited during {context} after "
                        f"{self._max_retries} retries: {e}"
                    ) from e
                sleep_time = min(backoff, self._max_backoff)
                jitter = random.uniform(0, sleep_time)
                logger.warning(
                    "Rate limited during %s (attempt %d/%d), "
                    "sleeping %.2fs (backoff=%.2f + jitter=%.2f)",
                    context, attempt + 1, self._max_retries,
                    jitter, backoff, jitter,
                )
                time.sleep(jitter)
                backoff = min(backoff * 2, self._max_backoff)

        raise RateLimitError(f"Rate limited during {context} after {self._max_retries} retries")

    def get_baseline_history_id(self) -> str:
        """Return the mailbox's current historyId from the user profile."""
        request = self._service.users().getProfile(userId=self._user_id)
        try:
            profile = self._execute_with_retry(request, "get profile")
        except ChatterboxError:
            raise
        except Exception as e:
            raise TransientFetchError(f"Failed to get profile: {e}") from e
        return str(profile["historyId"])

    def list_history(self, start_history_id: str) -> list[dict[str, Any]]:
        """Fetch every 'messageAdded' history record after ``start_history_id``.

        Follows ``nextPageToken`` until exhausted.

        Raises:
            InvalidCursorError: Gmail no longer accepts the start id.
            TransientFetchError: Any other failure.
        """
        records: list[dict[str, Any]] = []
        page_token: str | None = None
        first_page = True

        while True:
            if not first_page and self._inter_page_delay > 0:
                time.sleep(self._inter_page_delay)
            first_page = False

            kwargs: dict[str, Any] = {
                "userId": self._user_id,
                "startHistoryId": start_history_id,
                "historyTypes": ["messageAdded"],
            }
            if page_token:
                kwargs["pageToken"] = page_token

            request = self._service.users().history().list(**kwargs)
            try:
                response = self._execute_with_retry(request, "list history")
            except ChatterboxError:
                raise
            except Exception as e:
                if _is_invalid_cursor_error(e):
                    raise InvalidCursorError(
                        f"History id {start_history_id} rejected: {e}"
                    ) from e
                raise TransientFetchError(f"Failed to list history: {e}") from e

            page = response.get("history", [])
            records.extend(page)
            logger.debug("Fetched %d history records (page)", len(page))

            page_token = response.get("nextPageToken")
            if not page_token:
                return records

    def get_message(self, message_id: str) -> dict[str, Any]:
        """Fetch a full message by id.

        Raises:
            MessageNotFoundError: The message was deleted since it was listed.
            TransientFetchError: Any other failure.
        """
        request = (
            self._service.users()
            .messages()
            .get(userId=self._user_id, id=message_id, format="full")
        )
        try:
            return self._execute_with_retry(request, f"get message {message_id}")
        except ChatterboxError:
            raise
        except Exception as e:
            if _is_not_found_error(e):
                raise MessageNotFoundError(f"Message {message_id} not found") from e
            raise TransientFetchError(f"Failed to get message {message_id}: {e}") from e

    def get_attachment(self, message_id: str, attachment_id: str) -> bytes:
        """Download an out-of-band attachment payload.

        Raises:
            AttachmentFetchError: The payload could not be fetched.
        """
        request = (
            self._service.users()
            .messages()
            .attachments()
            .get(userId=self._user_id, messageId=message_id, id=attachment_id)
        )
        try:
            response = self._execute_with_retry(request, "get attachment")
            return decode_base64url(response.get("data", ""))
        except Exception as e:
            raise AttachmentFetchError(
                f"Failed to fetch attachment {attachment_id} of {message_id}: {e}"
            ) from e

    def send_message(self, to: str, subject: str, body: str) -> str:
        """Send a plain-text email and return the new message id.

        Raises:
            AcknowledgmentError: The send request failed.
        """
        try:
            raw = self._build_raw_message(to, subject, body)
            request = (
                self._service.users()
                .messages()
                .send(userId=self._user_id, body={"raw": raw})
            )
            response = self._execute_with_retry(request, "send message")
        except Exception as e:
            raise AcknowledgmentError(f"Failed to send message to {to}: {e}") from e
        return str(response.get("id", ""))

    def _build_raw_message(self, to: str, subject: str, body: str) -> str:
        """Base64url RFC 822 text; header values with line breaks raise ValueError."""
        message = EmailMessage()
        if self._user_id != "me":
            message["From"] = self._user_id
            message["Reply-To"] = self._user_id
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")
