"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChatterboxSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Instances are frozen; the poller receives one at construction and never
    mutates it. Use ``model_copy(update=...)`` to derive variants.
    """

    model_config = SettingsConfigDict(
        env_prefix="CHATTERBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # OAuth credentials
    credentials_path: Path = Path("credentials/client_secret.json")
    token_path: Path = Path("credentials/token.json")

    # Gmail API settings
    gmail_user: str = "me"
    tag_keyword: str = "chatterbox"
    send_acknowledgments: bool = True

    # State and output paths
    data_dir: Path = Path("data")
    interactions_dir: Path = Path("interactions")

    # Scheduling
    poll_interval_minutes: float = Field(default=2.0, gt=0)
    poll_duration_minutes: float = Field(default=60.0, ge=0)

    # Rate limiting & retry
    max_retries: int = 5
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 60.0
    num_retries: int = 3

    # OpenAI
    openai_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("CHATTERBOX_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    openai_model: str = "gpt-4o"
    openai_organization: str | None = None
    max_response_tokens: int = 10000

    # Logging
    log_level: str = "INFO"

    def ensure_directories(self) -> None:
        """Create state, output and credential directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.interactions_dir.mkdir(parents=True, exist_ok=True)
        self.credentials_path.parent.mkdir(parents=True, exist_ok=True)
