"""Exceptions raised by prbridge_core."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """A required credential or setting is missing or malformed."""


class UnknownStatusError(ValueError):
    """The parent message carries no status line prbridge can recognise."""


class ChatAPIError(RuntimeError):
    """A chat-platform request failed.

    ``status_code`` is None when no HTTP response was received.
    ``retry_after`` carries the server's rate-limit hint in seconds, if any.
    """

    def __init__(self, message: str, status_code: int | None = None, retry_after: float | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500
