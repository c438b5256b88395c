"""Abstract metadata store interface.

Handlers depend on BaseMetadataStore, not on the comment-backed store, so
tests can hand in a mock and the persistence medium stays swappable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prbridge_store.models import NotificationMetadata


class BaseMetadataStore(ABC):
    """Recovers and persists the Discord ids bound to a pull request.

    Implementations may cache within one invocation but must never assume
    the cache is still fresh in the next one.
    """

    @abstractmethod
    def load(self, pr_number: int) -> NotificationMetadata | None:
        """Return the metadata for a pull request, or None if it has none."""

    @abstractmethod
    def save(self, pr_number: int, metadata: NotificationMetadata) -> None:
        """Persist metadata for a pull request. Raises on failure."""

    @abstractmethod
    def list_comments(self, pr_number: int) -> list:
        """Return the pull request's conversation comments, oldest first."""

    @abstractmethod
    def post_notice_once(self, pr_number: int, body: str, marker: str) -> bool:
        """Post ``body`` unless a comment containing ``marker`` already exists.

        Returns True when a comment was posted.
        """

    def close(self) -> None:
        """Release any resources held by the store.

        Default is a no-op so callers can always call close() safely.
        """
