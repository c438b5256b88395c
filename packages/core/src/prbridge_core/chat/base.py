"""Chat-platform client interface.

The handlers talk to the chat platform through BaseChatClient only:

    send_message / create_thread / send_thread_message   (creation)
    get_message / edit_message                           (parent read-modify-write)
    add_reaction / remove_reaction                       (status markers)
    lock_thread / archive_thread / remove_thread_member  (thread lifecycle)

Subclasses implement the operations as single attempts that raise
ChatAPIError; the retry loop for rate limits and server errors is defined
once here and wraps every request.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from prbridge_core.errors import ChatAPIError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MAX_RETRIES = 3
_MAX_RETRY_DELAY = 30.0


@dataclass
class ChatMessage:
    """A message as read back from the chat platform."""

    id: str
    content: str
    own_reactions: set[str] = field(default_factory=set)

    def has_own_reaction(self, emoji: str) -> bool:
        return emoji in self.own_reactions


class BaseChatClient(ABC):
    MAX_RETRIES: int = _MAX_RETRIES

    # ------------------------------------------------------------------ #
    # Abstract: implement in each platform client                         #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def send_message(self, channel_id: str, content: str) -> str:
        """Post a message to a channel and return its id."""

    @abstractmethod
    def create_thread(self, channel_id: str, message_id: str, name: str) -> str:
        """Start a thread from a message and return the thread id."""

    @abstractmethod
    def send_thread_message(self, thread_id: str, content: str) -> None:
        """Post a message inside a thread."""

    @abstractmethod
    def get_message(self, channel_id: str, message_id: str) -> ChatMessage:
        """Fetch one message."""

    @abstractmethod
    def edit_message(self, channel_id: str, message_id: str, content: str) -> None:
        """Replace the content of a message."""

    @abstractmethod
    def add_reaction(self, channel_id: str, message_id: str, emoji: str) -> None:
        """React to a message as the bot."""

    @abstractmethod
    def remove_reaction(self, channel_id: str, message_id: str, emoji: str) -> None:
        """Remove the bot's reaction. A reaction that is already gone is not an error."""

    @abstractmethod
    def lock_thread(self, thread_id: str, locked: bool) -> None:
        """Lock or unlock a thread."""

    @abstractmethod
    def archive_thread(self, thread_id: str) -> None:
        """Archive and lock a thread."""

    @abstractmethod
    def remove_thread_member(self, thread_id: str, user_id: str) -> None:
        """Remove a user from a thread. A user who is not a member is not an error."""

    def close(self) -> None:
        """Release network resources. Default is a no-op."""

    # ------------------------------------------------------------------ #
    # Shared implementation                                                #
    # ------------------------------------------------------------------ #

    def _call_with_retry(self, description: str, call: Callable[[], T]) -> T:
        """Run ``call`` up to MAX_RETRIES times while it fails with a retryable error.

        Non-retryable errors (4xx other than 429) are raised immediately.
        The server's Retry-After hint wins over exponential backoff.
        """
        for attempt in range(self.MAX_RETRIES):
            try:
                return call()
            except ChatAPIError as e:
                if not e.retryable or attempt == self.MAX_RETRIES - 1:
                    raise
                delay = min(e.retry_after if e.retry_after is not None else 2**attempt, _MAX_RETRY_DELAY)
                logger.warning(
                    "%s: %s (attempt %d/%d). Retrying in %.1fs...",
                    self.__class__.__name__,
                    e,
                    attempt + 1,
                    self.MAX_RETRIES,
                    delay,
                )
                time.sleep(delay)
        raise ChatAPIError(f"{description}: no attempts made")
