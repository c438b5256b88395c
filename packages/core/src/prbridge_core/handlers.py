"""Event handlers: the status synchronization state machine.

Each handler turns one incoming event plus the state recovered from GitHub
(metadata comment) and Discord (parent message text) into a short list of
Discord and GitHub calls. Nothing is cached between runs; the status line of
the parent message is re-read on every event.

Failure policy: every side effect goes through HandlerOutcome.attempt(),
which logs and records a warning instead of raising. The only exceptions that
escape a handler are the first send_message of "opened" (nothing exists
without it) and UnknownStatusError (guessing the current status would corrupt
every later transition).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from prbridge_core.chat.base import BaseChatClient, ChatMessage
from prbridge_core.errors import ConfigurationError
from prbridge_core.events import EventKind, PullRequestEvent
from prbridge_core.formatting import (
    METADATA_MISSING_COMMENT,
    METADATA_MISSING_MARKER,
    THREAD_INTRO,
    THREAD_NAME_LIMIT,
    announce_approved,
    announce_changes_addressed,
    announce_changes_requested,
    announce_closed,
    announce_merged,
    announce_new_commits,
    announce_ready_for_review,
    announce_review_requested,
    announce_reviewer_removed,
    apply_reviewers,
    apply_status,
    mention,
    render_parent,
    thread_name,
)
from prbridge_core.gh.pull_request import (
    find_recent_comment,
    get_commit_headline,
    get_review_body,
    request_reviewers,
)
from prbridge_core.status import NotificationStatus, extract_status
from prbridge_store.base import BaseMetadataStore
from prbridge_store.models import NotificationMetadata

logger = logging.getLogger(__name__)

APPROVED_REACTION = "✅"
CHANGES_REQUESTED_REACTION = "❌"
MERGED_REACTION = "🎉"


@dataclass
class HandlerContext:
    """Collaborators and settings shared by every handler of one invocation."""

    repo: Any  # PyGithub Repository
    chat: BaseChatClient
    store: BaseMetadataStore
    user_mapping: dict[str, str] = field(default_factory=dict)
    channel_id: str | None = None
    thread_name_limit: int = THREAD_NAME_LIMIT
    close_comment_window_seconds: float = 60

    def mention(self, login: str) -> str:
        return mention(login, self.user_mapping)


@dataclass
class HandlerOutcome:
    """What one handler did: performed actions, downgraded failures, status change."""

    kind: EventKind
    pr_number: int
    status_before: NotificationStatus | None = None
    status_after: NotificationStatus | None = None
    actions: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    skipped: str | None = None

    def attempt(self, description: str, call: Callable, *args, record: bool = True) -> tuple[bool, Any]:
        """Run one side effect, downgrading any failure to a warning."""
        try:
            result = call(*args)
        except Exception as e:
            self.warn(f"Failed to {description}: {e}")
            return False, None
        if record:
            self.actions.append(description)
        return True, result

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def skip(self, reason: str) -> HandlerOutcome:
        logger.info("PR #%d %s: %s", self.pr_number, self.kind.value, reason)
        self.skipped = reason
        return self


# --------------------------------------------------------------------------- #
# Shared steps                                                                 #
# --------------------------------------------------------------------------- #


def _recover_metadata(ctx: HandlerContext, outcome: HandlerOutcome) -> NotificationMetadata | None:
    """Load the metadata comment; report and return None if the PR has none."""
    pr_number = outcome.pr_number
    ok, metadata = outcome.attempt("look up notification metadata", ctx.store.load, pr_number, record=False)
    if not ok:
        return None
    if metadata is None or not metadata.thread_id:
        outcome.warn(f"No Discord thread found for PR #{pr_number}. Skipping.")
        ok, posted = outcome.attempt(
            "comment on PR about missing metadata",
            ctx.store.post_notice_once,
            pr_number,
            METADATA_MISSING_COMMENT,
            METADATA_MISSING_MARKER,
            record=False,
        )
        if ok and posted:
            outcome.actions.append("comment on PR about missing metadata")
        return None
    return metadata


def _read_parent(ctx: HandlerContext, metadata: NotificationMetadata, outcome: HandlerOutcome) -> ChatMessage | None:
    """Fetch the parent message and record its current status.

    UnknownStatusError from extract_status propagates.
    """
    ok, message = outcome.attempt(
        "read parent message",
        ctx.chat.get_message,
        metadata.channel_id,
        metadata.message_id,
        record=False,
    )
    if not ok:
        return None
    outcome.status_before = extract_status(message.content)
    outcome.status_after = outcome.status_before
    return message


def _edit_parent(
    ctx: HandlerContext,
    metadata: NotificationMetadata,
    outcome: HandlerOutcome,
    message: ChatMessage,
    content: str,
) -> None:
    if content == message.content:
        return
    outcome.attempt("edit parent message", ctx.chat.edit_message, metadata.channel_id, metadata.message_id, content)


def _set_status(
    ctx: HandlerContext,
    metadata: NotificationMetadata,
    outcome: HandlerOutcome,
    message: ChatMessage | None,
    status: NotificationStatus,
    actor: str | None = None,
) -> None:
    if message is None:
        outcome.warn("Skipping parent message edit: parent message could not be read")
        return
    _edit_parent(ctx, metadata, outcome, message, apply_status(message.content, status, actor))
    outcome.status_after = status


def _update_reviewers(
    ctx: HandlerContext,
    metadata: NotificationMetadata,
    outcome: HandlerOutcome,
    message: ChatMessage | None,
    reviewers: list[str],
) -> None:
    if message is None:
        outcome.warn("Skipping parent message edit: parent message could not be read")
        return
    _edit_parent(ctx, metadata, outcome, message, apply_reviewers(message.content, reviewers, ctx.user_mapping))


def _announce(ctx: HandlerContext, metadata: NotificationMetadata, outcome: HandlerOutcome, text: str, what: str):
    return outcome.attempt(f"announce {what}", ctx.chat.send_thread_message, metadata.thread_id, text)


def _react(
    ctx: HandlerContext,
    metadata: NotificationMetadata,
    outcome: HandlerOutcome,
    message: ChatMessage | None,
    emoji: str,
) -> None:
    if message is not None and message.has_own_reaction(emoji):
        return
    outcome.attempt(f"add {emoji} reaction", ctx.chat.add_reaction, metadata.channel_id, metadata.message_id, emoji)


def _unreact(
    ctx: HandlerContext,
    metadata: NotificationMetadata,
    outcome: HandlerOutcome,
    message: ChatMessage | None,
    emoji: str,
) -> None:
    # When the parent could not be read, try anyway: a missing reaction is not an error.
    if message is not None and not message.has_own_reaction(emoji):
        return
    outcome.attempt(
        f"remove {emoji} reaction", ctx.chat.remove_reaction, metadata.channel_id, metadata.message_id, emoji
    )


# --------------------------------------------------------------------------- #
# Handlers                                                                     #
# --------------------------------------------------------------------------- #


def handle_opened(event: PullRequestEvent, ctx: HandlerContext) -> HandlerOutcome:
    """Create the parent message and thread, then persist their ids on the PR."""
    pr = event.pull_request
    outcome = HandlerOutcome(kind=event.kind, pr_number=pr.number)

    if not ctx.channel_id:
        raise ConfigurationError("DISCORD_CHANNEL_ID secret must be set")

    ok, existing = outcome.attempt("look up notification metadata", ctx.store.load, pr.number, record=False)
    if ok and existing is not None:
        return outcome.skip("notification already exists for this PR")

    status = NotificationStatus.DRAFT if pr.draft else NotificationStatus.READY_FOR_REVIEW
    content = render_parent(status, pr.requested_reviewers, pr, ctx.user_mapping)

    # Not wrapped: the thread hangs off this message.
    message_id = ctx.chat.send_message(ctx.channel_id, content)
    outcome.actions.append("send parent message")
    outcome.status_after = status

    ok, thread_id = outcome.attempt(
        "create thread",
        ctx.chat.create_thread,
        ctx.channel_id,
        message_id,
        thread_name(pr.number, pr.title, ctx.thread_name_limit),
    )
    if not ok:
        return outcome

    metadata = NotificationMetadata(message_id=message_id, thread_id=thread_id, channel_id=ctx.channel_id)
    _announce(ctx, metadata, outcome, THREAD_INTRO, "thread intro")
    outcome.attempt("save notification metadata", ctx.store.save, pr.number, metadata)

    for reviewer in pr.requested_reviewers:
        text = announce_review_requested(reviewer, pr, ctx.user_mapping)
        _announce(ctx, metadata, outcome, text, f"review request for {reviewer}")
    return outcome


def handle_ready_for_review(event: PullRequestEvent, ctx: HandlerContext) -> HandlerOutcome:
    pr = event.pull_request
    outcome = HandlerOutcome(kind=event.kind, pr_number=pr.number)

    metadata = _recover_metadata(ctx, outcome)
    if metadata is None:
        return outcome.skip("notification metadata missing")
    message = _read_parent(ctx, metadata, outcome)
    if message is None:
        return outcome.skip("parent message unavailable")
    if outcome.status_before is not NotificationStatus.DRAFT:
        return outcome.skip(f"status is {outcome.status_before.label}, not a draft")

    _set_status(ctx, metadata, outcome, message, NotificationStatus.READY_FOR_REVIEW)
    _announce(ctx, metadata, outcome, announce_ready_for_review(), "ready for review")
    return outcome


def handle_reviewer_added(event: PullRequestEvent, ctx: HandlerContext) -> HandlerOutcome:
    """Announce the requested reviewer and re-render the full reviewer list."""
    pr = event.pull_request
    outcome = HandlerOutcome(kind=event.kind, pr_number=pr.number)

    metadata = _recover_metadata(ctx, outcome)
    if metadata is None:
        return outcome.skip("notification metadata missing")
    message = _read_parent(ctx, metadata, outcome)

    if event.requested_reviewer:
        _announce(
            ctx,
            metadata,
            outcome,
            announce_review_requested(event.requested_reviewer, pr, ctx.user_mapping),
            f"review request for {event.requested_reviewer}",
        )

    _update_reviewers(ctx, metadata, outcome, message, pr.requested_reviewers)
    return outcome


def handle_reviewer_removed(event: PullRequestEvent, ctx: HandlerContext) -> HandlerOutcome:
    """Announce the removal, drop the reviewer from the thread, re-render reviewers."""
    pr = event.pull_request
    outcome = HandlerOutcome(kind=event.kind, pr_number=pr.number)

    metadata = _recover_metadata(ctx, outcome)
    if metadata is None:
        return outcome.skip("notification metadata missing")
    message = _read_parent(ctx, metadata, outcome)

    removed = event.requested_reviewer
    if removed:
        _announce(
            ctx,
            metadata,
            outcome,
            announce_reviewer_removed(removed, ctx.user_mapping),
            f"removal of {removed}",
        )
        discord_id = ctx.user_mapping.get(removed)
        if discord_id:
            outcome.attempt(
                f"remove {removed} from thread", ctx.chat.remove_thread_member, metadata.thread_id, discord_id
            )

    _update_reviewers(ctx, metadata, outcome, message, pr.requested_reviewers)
    return outcome


def handle_review_submitted(event: PullRequestEvent, ctx: HandlerContext) -> HandlerOutcome:
    """Approved → ✅ + lock; changes requested → ❌; plain comments are ignored.

    Approval clears ❌, but a change request leaves an earlier ✅ in place.
    """
    pr = event.pull_request
    outcome = HandlerOutcome(kind=event.kind, pr_number=pr.number)
    review = event.review

    if review is None:
        outcome.warn("No review found in payload")
        return outcome.skip("no review in payload")
    if review.state == "commented":
        return outcome.skip("review is a plain comment")
    if review.state not in ("approved", "changes_requested"):
        return outcome.skip(f"review state {review.state!r} is not handled")

    metadata = _recover_metadata(ctx, outcome)
    if metadata is None:
        return outcome.skip("notification metadata missing")
    message = _read_parent(ctx, metadata, outcome)

    body = review.body
    if not body.strip():
        ok, fetched = outcome.attempt(
            "fetch review body", get_review_body, ctx.repo, pr.number, review.id, record=False
        )
        body = fetched if ok and fetched else ""

    if review.state == "approved":
        _unreact(ctx, metadata, outcome, message, CHANGES_REQUESTED_REACTION)
        _react(ctx, metadata, outcome, message, APPROVED_REACTION)
        _announce(
            ctx, metadata, outcome, announce_approved(pr.author, review.author, body, ctx.user_mapping), "approval"
        )
        outcome.attempt("lock thread", ctx.chat.lock_thread, metadata.thread_id, True)
        new_status = NotificationStatus.APPROVED
    else:
        _react(ctx, metadata, outcome, message, CHANGES_REQUESTED_REACTION)
        _announce(
            ctx,
            metadata,
            outcome,
            announce_changes_requested(pr.author, review.author, body, ctx.user_mapping),
            "change request",
        )
        new_status = NotificationStatus.CHANGES_REQUESTED

    _set_status(ctx, metadata, outcome, message, new_status, ctx.mention(review.author))
    return outcome


def handle_review_dismissed(event: PullRequestEvent, ctx: HandlerContext) -> HandlerOutcome:
    """A dismissed change request puts the PR back to Ready for Review.

    Dismissing an approval changes nothing: the ✅ and the lock stay.
    """
    pr = event.pull_request
    outcome = HandlerOutcome(kind=event.kind, pr_number=pr.number)
    review = event.review

    if review is None:
        outcome.warn("No review found in payload")
        return outcome.skip("no review in payload")
    if review.state != "changes_requested":
        return outcome.skip("dismissed review was not a change request")

    metadata = _recover_metadata(ctx, outcome)
    if metadata is None:
        return outcome.skip("notification metadata missing")
    message = _read_parent(ctx, metadata, outcome)

    _announce(
        ctx, metadata, outcome, announce_changes_addressed(review.author, ctx.user_mapping), "changes addressed"
    )
    # An earlier approval may have locked the thread; Ready threads stay open.
    outcome.attempt("unlock thread", ctx.chat.lock_thread, metadata.thread_id, False)
    _set_status(ctx, metadata, outcome, message, NotificationStatus.READY_FOR_REVIEW)
    return outcome


def handle_synchronize(event: PullRequestEvent, ctx: HandlerContext) -> HandlerOutcome:
    """New commits on an approved PR reopen the review."""
    pr = event.pull_request
    outcome = HandlerOutcome(kind=event.kind, pr_number=pr.number)

    metadata = _recover_metadata(ctx, outcome)
    if metadata is None:
        return outcome.skip("notification metadata missing")
    message = _read_parent(ctx, metadata, outcome)
    if message is None:
        return outcome.skip("parent message unavailable")
    if outcome.status_before is not NotificationStatus.APPROVED:
        return outcome.skip("PR was not approved")

    reviewers = pr.requested_reviewers
    outcome.attempt("unlock thread", ctx.chat.lock_thread, metadata.thread_id, False)
    _set_status(ctx, metadata, outcome, message, NotificationStatus.READY_FOR_REVIEW)
    _announce(ctx, metadata, outcome, announce_new_commits(reviewers, ctx.user_mapping), "new commits")
    if reviewers:
        outcome.attempt("re-request reviews", request_reviewers, ctx.repo, pr.number, reviewers)
    return outcome


def handle_closed(event: PullRequestEvent, ctx: HandlerContext) -> HandlerOutcome:
    """Closed without merging: announce, lock, mark Closed."""
    pr = event.pull_request
    outcome = HandlerOutcome(kind=event.kind, pr_number=pr.number)
    closer = event.sender or pr.author

    metadata = _recover_metadata(ctx, outcome)
    if metadata is None:
        return outcome.skip("notification metadata missing")
    message = _read_parent(ctx, metadata, outcome)

    ok, comments = outcome.attempt("fetch closing comment", ctx.store.list_comments, pr.number, record=False)
    close_comment = find_recent_comment(comments, closer, ctx.close_comment_window_seconds) if ok else ""

    _announce(ctx, metadata, outcome, announce_closed(pr, closer, close_comment, ctx.user_mapping), "close")
    outcome.attempt("lock thread", ctx.chat.lock_thread, metadata.thread_id, True)
    _set_status(ctx, metadata, outcome, message, NotificationStatus.CLOSED, ctx.mention(closer))
    return outcome


def handle_merged(event: PullRequestEvent, ctx: HandlerContext) -> HandlerOutcome:
    """Merged: 🎉, announce with the merge commit headline, archive, mark Merged."""
    pr = event.pull_request
    outcome = HandlerOutcome(kind=event.kind, pr_number=pr.number)
    merger = pr.merged_by or event.sender or "unknown"

    metadata = _recover_metadata(ctx, outcome)
    if metadata is None:
        return outcome.skip("notification metadata missing")
    message = _read_parent(ctx, metadata, outcome)

    headline = ""
    if pr.merge_commit_sha:
        ok, fetched = outcome.attempt(
            "fetch merge commit", get_commit_headline, ctx.repo, pr.merge_commit_sha, record=False
        )
        headline = fetched if ok and fetched else ""

    _react(ctx, metadata, outcome, message, MERGED_REACTION)
    _announce(ctx, metadata, outcome, announce_merged(pr, headline, ctx.user_mapping), "merge")
    outcome.attempt("archive thread", ctx.chat.archive_thread, metadata.thread_id)
    _set_status(ctx, metadata, outcome, message, NotificationStatus.MERGED, ctx.mention(merger))
    return outcome
