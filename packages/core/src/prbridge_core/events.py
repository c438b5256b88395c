"""Typed view over GitHub pull request webhook payloads."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)


class EventKind(Enum):
    OPENED = "opened"
    READY_FOR_REVIEW = "ready_for_review"
    REVIEWER_ADDED = "review_requested"
    REVIEWER_REMOVED = "review_request_removed"
    REVIEW_SUBMITTED = "review_submitted"
    REVIEW_DISMISSED = "review_dismissed"
    SYNCHRONIZE = "synchronize"
    CLOSED = "closed"
    MERGED = "merged"


_PULL_REQUEST_EVENTS = ("pull_request", "pull_request_target")

_PULL_REQUEST_ACTIONS = {
    "opened": EventKind.OPENED,
    "ready_for_review": EventKind.READY_FOR_REVIEW,
    "review_requested": EventKind.REVIEWER_ADDED,
    "review_request_removed": EventKind.REVIEWER_REMOVED,
    "synchronize": EventKind.SYNCHRONIZE,
}

_REVIEW_ACTIONS = {
    "submitted": EventKind.REVIEW_SUBMITTED,
    "dismissed": EventKind.REVIEW_DISMISSED,
}


@dataclass
class PullRequestInfo:
    number: int
    title: str
    url: str
    author: str
    base_ref: str
    head_ref: str
    body: str = ""
    draft: bool = False
    state: str = "open"
    requested_reviewers: list[str] = field(default_factory=list)
    merged: bool = False
    merged_by: str | None = None
    merge_commit_sha: str | None = None

    @classmethod
    def from_payload(cls, data: dict) -> PullRequestInfo:
        return cls(
            number=int(data["number"]),
            title=data.get("title") or "",
            url=data.get("html_url") or "",
            author=_login(data.get("user")) or "unknown",
            base_ref=(data.get("base") or {}).get("ref", ""),
            head_ref=(data.get("head") or {}).get("ref", ""),
            body=data.get("body") or "",
            draft=bool(data.get("draft", False)),
            state=data.get("state") or "open",
            requested_reviewers=[
                login for login in (_login(r) for r in data.get("requested_reviewers") or []) if login
            ],
            merged=data.get("merged") is True,
            merged_by=_login(data.get("merged_by")),
            merge_commit_sha=data.get("merge_commit_sha"),
        )


@dataclass
class ReviewInfo:
    id: int
    author: str
    state: str  # "approved" | "changes_requested" | "commented" | "dismissed"
    body: str = ""

    @classmethod
    def from_payload(cls, data: dict) -> ReviewInfo:
        return cls(
            id=int(data.get("id") or 0),
            author=_login(data.get("user")) or "unknown",
            state=(data.get("state") or "").lower(),
            body=data.get("body") or "",
        )


@dataclass
class PullRequestEvent:
    """One incoming event, already classified."""

    kind: EventKind
    action: str
    pull_request: PullRequestInfo
    review: ReviewInfo | None = None
    requested_reviewer: str | None = None
    sender: str | None = None


def _login(user) -> str | None:
    if isinstance(user, dict):
        return user.get("login")
    return None


def classify_event(event_name: str, payload: dict) -> EventKind | None:
    """Map a (GitHub event name, payload action) pair to an EventKind.

    Returns None for pairs prbridge does not handle.
    """
    action = payload.get("action")
    if event_name in _PULL_REQUEST_EVENTS:
        if action == "closed":
            merged = (payload.get("pull_request") or {}).get("merged") is True
            return EventKind.MERGED if merged else EventKind.CLOSED
        return _PULL_REQUEST_ACTIONS.get(action)
    if event_name == "pull_request_review":
        return _REVIEW_ACTIONS.get(action)
    return None


def parse_event(event_name: str, payload: dict) -> PullRequestEvent | None:
    """Classify and parse a raw payload, or return None if it is not handled."""
    kind = classify_event(event_name, payload)
    if kind is None:
        return None
    if not payload.get("pull_request"):
        raise ValueError(f"{event_name}.{payload.get('action')} payload has no pull_request object")
    review = payload.get("review")
    return PullRequestEvent(
        kind=kind,
        action=payload.get("action", ""),
        pull_request=PullRequestInfo.from_payload(payload["pull_request"]),
        review=ReviewInfo.from_payload(review) if review else None,
        requested_reviewer=_login(payload.get("requested_reviewer")),
        sender=_login(payload.get("sender")),
    )


def load_event_payload(path: str | Path) -> dict:
    """Read the event payload file GitHub Actions writes to GITHUB_EVENT_PATH."""
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Failed to load event payload from {path}: {e}") from e
