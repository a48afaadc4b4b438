"""Shared fixtures for Gmail Chatterbox tests."""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Any

import pytest

from gmail_chatterbox.config.settings import ChatterboxSettings

CONVERSATION_ID = "3f2b8c1e-9a4d-4e6f-8b7a-1c2d3e4f5a6b"


def b64(text: str | bytes) -> str:
    """Gmail-style base64url without padding."""
    raw = text.encode("utf-8") if isinstance(text, str) else text
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def raw_message(
    message_id: str,
    subject: str,
    *,
    sender: str = "Alice <alice@example.com>",
    to: str = "bot@example.com",
    text: str | None = "Hello there",
    html: str | None = None,
    attachments: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build a Gmail API ``format=full`` message dict."""
    headers = [
        {"name": "Subject", "value": subject},
        {"name": "From", "value": sender},
        {"name": "To", "value": to},
        {"name": "Date", "value": "Mon, 15 Jan 2024 10:30:00 +0000"},
    ]
    body_parts: list[dict[str, Any]] = []
    if text is not None:
        body_parts.append({"mimeType": "text/plain", "filename": "", "body": {"data": b64(text)}})
    if html is not None:
        body_parts.append({"mimeType": "text/html", "filename": "", "body": {"data": b64(html)}})

    payload: dict[str, Any] = {
        "mimeType": "multipart/mixed",
        "filename": "",
        "headers": headers,
        "body": {"size": 0},
        "parts": [{"mimeType": "multipart/alternative", "filename": "", "body": {}, "parts": body_parts}],
    }
    payload["parts"].extend(attachments or [])
    return {"id": message_id, "threadId": f"thread_{message_id}", "payload": payload}


def inline_attachment(filename: str, content: bytes, mime_type: str = "application/pdf") -> dict[str, Any]:
    return {
        "mimeType": mime_type,
        "filename": filename,
        "body": {"data": b64(content), "size": len(content)},
    }


def remote_attachment(filename: str, attachment_id: str, size: int = 2048) -> dict[str, Any]:
    return {
        "mimeType": "application/octet-stream",
        "filename": filename,
        "body": {"attachmentId": attachment_id, "size": size},
    }


@pytest.fixture
def tmp_settings(tmp_path: Path) -> ChatterboxSettings:
    """Settings pointing to temporary directories."""
    return ChatterboxSettings(
        credentials_path=tmp_path / "creds" / "client_secret.json",
        token_path=tmp_path / "creds" / "token.json",
        data_dir=tmp_path / "data",
        interactions_dir=tmp_path / "interactions",
        gmail_user="bot@example.com",
        poll_interval_minutes=0.001,
        poll_duration_minutes=0,
    )


@pytest.fixture
def interactions_dir(tmp_path: Path) -> Path:
    """Temporary interactions root."""
    path = tmp_path / "interactions"
    path.mkdir()
    return path
