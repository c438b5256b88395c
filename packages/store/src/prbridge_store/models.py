"""Notification metadata model.

Decoupled from prbridge_core so the store layer can be used independently
and prbridge_core has no knowledge of how the ids are persisted.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class NotificationMetadata:
    """Discord ids that bind one pull request to its notification.

    Written once by the "opened" handler and immutable afterwards. All three
    values are opaque Discord snowflakes kept as strings.
    """

    message_id: str
    thread_id: str
    channel_id: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> NotificationMetadata:
        return cls(
            message_id=str(data.get("message_id") or ""),
            thread_id=str(data.get("thread_id") or ""),
            channel_id=str(data.get("channel_id") or ""),
        )
