"""Notification status and its status-line codec.

The status line of the parent Discord message is the only place the current
status is recorded, so rendering and parsing live side by side here:

    **Status**: :white_check_mark: Approved by <@1234>
"""

from __future__ import annotations

from enum import Enum

from prbridge_core.errors import UnknownStatusError

STATUS_PREFIX = "**Status**:"


class NotificationStatus(Enum):
    DRAFT = "draft"
    READY_FOR_REVIEW = "ready_for_review"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    CLOSED = "closed"
    MERGED = "merged"

    @property
    def emoji(self) -> str:
        return _EMOJI[self]

    @property
    def label(self) -> str:
        return _LABEL[self]


_EMOJI = {
    NotificationStatus.DRAFT: ":pencil:",
    NotificationStatus.READY_FOR_REVIEW: ":eyes:",
    NotificationStatus.APPROVED: ":white_check_mark:",
    NotificationStatus.CHANGES_REQUESTED: ":tools:",
    NotificationStatus.CLOSED: ":closed_book:",
    NotificationStatus.MERGED: ":tada:",
}

_LABEL = {
    NotificationStatus.DRAFT: "Draft - In Progress",
    NotificationStatus.READY_FOR_REVIEW: "Ready for Review",
    NotificationStatus.APPROVED: "Approved",
    NotificationStatus.CHANGES_REQUESTED: "Changes Requested",
    NotificationStatus.CLOSED: "Closed",
    NotificationStatus.MERGED: "Merged",
}

# Discord may hand content back with the unicode glyph instead of the shortcode.
_UNICODE_EMOJI = {
    NotificationStatus.DRAFT: ("📝",),
    NotificationStatus.READY_FOR_REVIEW: ("👀",),
    NotificationStatus.APPROVED: ("✅",),
    NotificationStatus.CHANGES_REQUESTED: ("🛠️", "🛠"),
    NotificationStatus.CLOSED: ("📕",),
    NotificationStatus.MERGED: ("🎉",),
}

# Statuses whose line names who caused them ("Approved by @alice").
ACTOR_STATUSES = frozenset(
    {
        NotificationStatus.APPROVED,
        NotificationStatus.CHANGES_REQUESTED,
        NotificationStatus.CLOSED,
        NotificationStatus.MERGED,
    }
)

# Statuses under which a missing reviewer list is not worth a warning.
QUIET_STATUSES = frozenset({NotificationStatus.DRAFT, NotificationStatus.CLOSED, NotificationStatus.MERGED})


def render_status_line(status: NotificationStatus, actor: str | None = None) -> str:
    """Return the full ``**Status**:`` line for ``status``."""
    line = f"{STATUS_PREFIX} {status.emoji} {status.label}"
    if actor and status in ACTOR_STATUSES:
        line += f" by {actor}"
    return line


def parse_status_value(value: str) -> NotificationStatus:
    """Parse the text after ``**Status**:`` back into a status.

    Raises UnknownStatusError instead of guessing: transition rules depend on
    knowing the true current state.
    """
    value = value.strip()
    for status in NotificationStatus:
        for emoji in (status.emoji, *_UNICODE_EMOJI[status]):
            token = f"{emoji} {status.label}"
            if value == token or value.startswith(token + " by "):
                return status
    raise UnknownStatusError(f"Unrecognised status line: {value!r}")


def find_status_line(text: str) -> int | None:
    """Return the index of the last status line in ``text.split('\\n')``."""
    lines = text.split("\n")
    for index in range(len(lines) - 1, -1, -1):
        if lines[index].startswith(STATUS_PREFIX):
            return index
    return None


def extract_status(text: str) -> NotificationStatus:
    """Return the status recorded in a parent message."""
    index = find_status_line(text or "")
    if index is None:
        raise UnknownStatusError("Parent message has no status line")
    line = text.split("\n")[index]
    return parse_status_value(line[len(STATUS_PREFIX) :])
