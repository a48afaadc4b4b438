"""Custom exceptions for the Chatterbox poller."""


class ChatterboxError(Exception):
    """Base exception for all Chatterbox errors."""


class AuthenticationError(ChatterboxError):
    """Failed to authenticate with Gmail API."""


class ConfigurationError(ChatterboxError):
    """Startup configuration is missing or unusable."""


class TransientFetchError(ChatterboxError):
    """Network or provider hiccup; retry on the next cycle."""


class RateLimitError(TransientFetchError):
    """Gmail API rate limit exceeded."""


class InvalidCursorError(ChatterboxError):
    """The provider rejected the stored history cursor as invalid or expired."""


class MessageNotFoundError(ChatterboxError):
    """A message listed in history no longer exists in the mailbox."""


class ParseError(ChatterboxError):
    """Failed to parse email MIME content."""


class AttachmentFetchError(ChatterboxError):
    """A single attachment payload could not be fetched."""


class MaterializationError(ChatterboxError):
    """Failed to write a turn (directory, body or attachment) to disk."""

    def __init__(self, message: str, *, conversation_id: str = "", stage: str = "") -> None:
        super().__init__(message)
        self.conversation_id = conversation_id
        self.stage = stage


class AcknowledgmentError(ChatterboxError):
    """Failed to send the confirmation email."""


class CompletionError(ChatterboxError):
    """The LLM completion request failed."""
