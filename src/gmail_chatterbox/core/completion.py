"""Single-turn OpenAI chat completion over a prompt and its attachments."""

from __future__ import annotations

import base64
import logging
import mimetypes
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from openai import OpenAI, OpenAIError

from gmail_chatterbox.core.converter import PromptConverter
from gmail_chatterbox.core.exceptions import CompletionError, ConfigurationError
from gmail_chatterbox.storage.attachments import turn_attachments
from gmail_chatterbox.storage.materializer import BODY_FILENAME

logger = logging.getLogger(__name__)


def attachment_content_parts(attachments: Sequence[Path]) -> list[dict[str, Any]]:
    """Build OpenAI message content parts for attachment files.

    Images become base64 ``image_url`` parts, text files are inlined between
    start/end markers, and anything else is skipped.
    """
    parts: list[dict[str, Any]] = []
    for path in attachments:
        mime_type, _ = mimetypes.guess_type(path.name)
        mime_type = mime_type or "application/octet-stream"
        try:
            if mime_type.startswith("image/"):
                encoded = base64.b64encode(path.read_bytes()).decode("ascii")
                parts.append(
                    {
                        "type": "image_url",
                        "image_url": {
                            "url": f"data:{mime_type};base64,{encoded}",
                            "detail": "auto",
                        },
                    }
                )
            elif mime_type.startswith("text/"):
                content = path.read_text(encoding="utf-8", errors="replace")
                parts.append(
                    {
                        "type": "text",
                        "text": (
                            f"--- Start of attached file: {path.name} ---\n"
                            f"{content}\n"
                            f"--- End of attached file: {path.name} ---"
                        ),
                    }
                )
            else:
                logger.warning("Skipping unsupported attachment type: %s (%s)", path.name, mime_type)
                continue
        except OSError as e:
            logger.error("Error processing attachment %s: %s", path, e)
            continue
        logger.debug("Added %s attachment: %s", mime_type, path.name)
    return parts


class CompletionClient:
    """Stateless completion requests; no conversation history is kept."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        *,
        organization: str | None = None,
        max_tokens: int = 10000,
        client: OpenAI | None = None,
        converter: PromptConverter | None = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise ConfigurationError("OpenAI API key is not set (OPENAI_API_KEY).")
            client = OpenAI(api_key=api_key, organization=organization or None)
        self._client = client
        self._model = model
        self._max_tokens = max_tokens
        self._converter = converter or PromptConverter()

    def complete(self, prompt: str | None, attachments: Sequence[Path] = ()) -> str:
        """Send a prompt plus attachments and return the model's reply.

        Raises:
            CompletionError: Nothing to send, or the API call failed.
        """
        content: list[dict[str, Any]] = []
        if prompt:
            content.append({"type": "text", "text": self._converter.convert(prompt)})
        content.extend(attachment_content_parts(attachments))

        if not content:
            raise CompletionError("No content (prompt or attachments) provided for the LLM request")

        logger.info("Sending completion request to %s (%d content parts)", self._model, len(content))
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": content}],
                max_tokens=self._max_tokens,
            )
        except OpenAIError as e:
            raise CompletionError(f"Completion request failed: {e}") from e

        return (response.choices[0].message.content or "").strip()

    def complete_turn(self, turn_dir: Path) -> str:
        """Complete using a materialized turn's body text and attachments."""
        body_path = turn_dir / BODY_FILENAME
        prompt = body_path.read_text(encoding="utf-8") if body_path.exists() else None
        return self.complete(prompt, turn_attachments(turn_dir))
