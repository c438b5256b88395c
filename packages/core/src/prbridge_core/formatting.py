"""Parent message and thread announcement formatting.

The parent message has a fixed layout:

    ## [PR #12: Add login page](https://github.com/o/r/pull/12)
    -# `feature/login` -> `main`

    **Author:** <@1234>
    <description, optional>

    **Reviewers:** <@5678> @bob            (or the two-line warning block)

    **Status**: :eyes: Ready for Review

Handlers never rebuild the whole message from the payload: reviewers who have
already submitted a review drop out of ``requested_reviewers``, so the
existing reviewers line is kept unless the reviewer list itself changed.
ParentMessage splits the text into head, reviewers block and status line so
one section can be replaced without touching the rest.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from prbridge_core.errors import UnknownStatusError
from prbridge_core.status import (
    QUIET_STATUSES,
    STATUS_PREFIX,
    NotificationStatus,
    find_status_line,
    parse_status_value,
    render_status_line,
)

if TYPE_CHECKING:
    from prbridge_core.events import PullRequestInfo

REVIEWERS_PREFIX = "**Reviewers:**"
AUTHOR_PREFIX = "**Author:**"
WARNING_HEADER = "⚠️ WARNING::No reviewers assigned:"
WARNING_DETAIL = "PR has to be reviewed by another member before merging."
THREAD_NAME_LIMIT = 100
MESSAGE_LIMIT = 2000
ELLIPSIS = "…"

# header, branch line, blank, author line
_FIXED_HEAD_LINES = 4
# Room kept free in a new parent message for later reviewer/status edits.
_EDIT_HEADROOM = 200
# Text shared by the current warning header and the older ansi-fenced one.
_WARNING_TOKEN = "WARNING::No reviewers assigned"

METADATA_MISSING_MARKER = "<!-- DISCORD_BOT_METADATA_MISSING -->"
METADATA_MISSING_COMMENT = (
    "⚠️ Discord integration not initialized for this PR: could not find the Discord thread "
    "metadata, so the Discord notification for this PR will not be updated.\n"
    f"{METADATA_MISSING_MARKER}"
)


def mention(login: str, user_mapping: dict[str, str]) -> str:
    """Render a GitHub login as a Discord mention, or ``@login`` if unmapped."""
    discord_id = user_mapping.get(login)
    return f"<@{discord_id}>" if discord_id else f"@{login}"


def mentions(logins: list[str], user_mapping: dict[str, str]) -> str:
    return " ".join(mention(login, user_mapping) for login in logins)


def quote(text: str) -> str:
    """Render ``text`` as a Discord block quote."""
    text = text.replace("\r\n", "\n").strip()
    return "> " + text.replace("\n", "\n> ")


def thread_name(number: int, title: str, limit: int = THREAD_NAME_LIMIT) -> str:
    """Return ``PR #<n>: <title>``, truncating the title so the name fits ``limit``."""
    prefix = f"PR #{number}: "
    budget = limit - len(prefix)
    if len(title) > budget:
        title = title[: max(budget - len(ELLIPSIS), 0)] + ELLIPSIS
    return (prefix + title)[:limit]


def reviewers_block(reviewers: list[str], user_mapping: dict[str, str], status: NotificationStatus) -> list[str]:
    """Return the lines shown between the description and the status line."""
    if reviewers:
        return [f"{REVIEWERS_PREFIX} {mentions(reviewers, user_mapping)}"]
    if status in QUIET_STATUSES:
        return []
    return [WARNING_HEADER, WARNING_DETAIL]


@dataclass
class ParentMessage:
    """Structural view of a parent message."""

    head: list[str]
    reviewers: list[str]
    status_line: str
    tail: list[str] = field(default_factory=list)

    @property
    def status(self) -> NotificationStatus:
        return parse_status_value(self.status_line[len(STATUS_PREFIX) :])

    @property
    def has_reviewers(self) -> bool:
        return bool(self.reviewers) and self.reviewers[0].startswith(REVIEWERS_PREFIX)

    @property
    def has_warning(self) -> bool:
        return bool(self.reviewers) and not self.has_reviewers

    def render(self) -> str:
        lines = list(self.head)
        if self.reviewers:
            if len(self.head) > _FIXED_HEAD_LINES:
                lines.append("")
            lines.extend(self.reviewers)
        lines.extend(["", self.status_line])
        lines.extend(self.tail)
        return "\n".join(lines)


def _strip_trailing_blanks(lines: list[str]) -> list[str]:
    end = len(lines)
    while end and not lines[end - 1].strip():
        end -= 1
    return lines[:end]


def _escape_reserved(line: str) -> str:
    """Keep a description line from being read back as a bot-owned section.

    The escapes render the same in Discord.
    """
    if line.startswith((REVIEWERS_PREFIX, STATUS_PREFIX)):
        return "\\*\\*" + line[2:]
    if _WARNING_TOKEN in line:
        return line.replace("WARNING::", "WARNING\\::")
    return line


def _is_legacy_noise(line: str) -> bool:
    return line.strip() in ("", "```", "```ansi", WARNING_DETAIL) or _WARNING_TOKEN in line


def _legacy_block_start(lines: list[str], last: int) -> int | None:
    """Find an ansi-fenced warning left by earlier versions, ending at ``lines[last]``.

    Those versions wrote the fence with stray blank lines and, when a reviewer
    replaced the warning, left the detail line and closing fence behind the
    new reviewers line.
    """
    if last < 0 or lines[last].strip() != "```":
        return None
    first = last
    while first > 0 and _is_legacy_noise(lines[first - 1]):
        first -= 1
    for index in range(first, last + 1):
        if lines[index].strip() == "```ansi":
            return index
    if first > 0 and lines[first - 1].startswith(REVIEWERS_PREFIX):
        return first - 1
    return None


def _block_start(lines: list[str], last: int) -> int:
    """Return where the reviewers block ending at ``lines[last]`` starts.

    Returns ``last + 1`` when there is no block.
    """
    if last >= 1 and lines[last] == WARNING_DETAIL and lines[last - 1] == WARNING_HEADER:
        return last - 1
    legacy = _legacy_block_start(lines, last)
    if legacy is not None:
        return legacy
    if last >= 0 and lines[last].startswith(REVIEWERS_PREFIX):
        return last
    return last + 1


def _normalize_block(block: list[str]) -> list[str]:
    """Reduce a reviewers block, possibly in an older layout, to the current one."""
    if not block:
        return []
    if block[0].startswith(REVIEWERS_PREFIX):
        return [block[0]]
    return [WARNING_HEADER, WARNING_DETAIL]


def parse_parent(text: str) -> ParentMessage:
    """Split a parent message into its sections.

    Raises UnknownStatusError when the message has no status line.
    """
    lines = (text or "").replace("\r\n", "\n").split("\n")
    index = find_status_line("\n".join(lines))
    if index is None:
        raise UnknownStatusError("Parent message has no status line")

    last = index - 1
    while last >= 0 and not lines[last].strip():
        last -= 1
    start = _block_start(lines, last)

    return ParentMessage(
        head=_strip_trailing_blanks(lines[:start]),
        reviewers=_normalize_block(lines[start : last + 1]),
        status_line=lines[index],
        tail=_strip_trailing_blanks(lines[index + 1 :]),
    )


def render_parent(
    status: NotificationStatus,
    reviewers: list[str],
    pr: PullRequestInfo,
    user_mapping: dict[str, str],
    actor: str | None = None,
    max_length: int = MESSAGE_LIMIT,
) -> str:
    """Build the parent message for a pull request from scratch.

    The description is truncated when the whole message would not fit in
    ``max_length`` with room left for later edits.
    """
    head = [
        f"## [PR #{pr.number}: {pr.title}]({pr.url})",
        f"-# `{pr.head_ref}` -> `{pr.base_ref}`",
        "",
        f"{AUTHOR_PREFIX} {mention(pr.author, user_mapping)}",
    ]
    parent = ParentMessage(
        head=head,
        reviewers=reviewers_block(reviewers, user_mapping, status),
        status_line=render_status_line(status, actor),
    )

    body_lines = pr.body.replace("\r\n", "\n").rstrip().split("\n")
    description = "\n".join(_escape_reserved(line) for line in body_lines)
    if description.strip():
        budget = max_length - _EDIT_HEADROOM - len(parent.render()) - 2
        if len(description) > budget:
            description = description[: max(budget - len(ELLIPSIS), 0)].rstrip() + ELLIPSIS
        parent.head = head + description.split("\n")
    return parent.render()


def apply_status(text: str, status: NotificationStatus, actor: str | None = None) -> str:
    """Replace the status line, showing or hiding the no-reviewers warning to match."""
    parent = parse_parent(text)
    parent.status_line = render_status_line(status, actor)
    if not parent.has_reviewers:
        if status in QUIET_STATUSES:
            parent.reviewers = []
        elif not parent.has_warning:
            parent.reviewers = [WARNING_HEADER, WARNING_DETAIL]
    return parent.render()


def apply_reviewers(text: str, reviewers: list[str], user_mapping: dict[str, str]) -> str:
    """Replace the reviewers block with the current reviewer list."""
    parent = parse_parent(text)
    parent.reviewers = reviewers_block(reviewers, user_mapping, parent.status)
    return parent.render()


# --------------------------------------------------------------------------- #
# Thread announcements                                                         #
# --------------------------------------------------------------------------- #

THREAD_INTRO = ":thread: Keep all conversations/dialogue about the contents of the PR in this thread **or** in the PR's comments"


def announce_review_requested(reviewer: str, pr: PullRequestInfo, user_mapping: dict[str, str]) -> str:
    return f":bellhop: {mention(reviewer, user_mapping)} - your review has been requested for [PR #{pr.number}]({pr.url})"


def announce_reviewer_removed(reviewer: str, user_mapping: dict[str, str]) -> str:
    return f"👋 {mention(reviewer, user_mapping)} has been removed as a reviewer from this PR."


def announce_ready_for_review() -> str:
    return ":eyes: This PR is now ready for review!"


def announce_approved(author: str, reviewer: str, body: str, user_mapping: dict[str, str]) -> str:
    message = f":white_check_mark: {mention(author, user_mapping)} - {mention(reviewer, user_mapping)} has approved the PR\n"
    if body.strip():
        message += f"{quote(body)}\n\n"
    return message + "Feel free to merge if all other conditions have been met"


def announce_changes_requested(author: str, reviewer: str, body: str, user_mapping: dict[str, str]) -> str:
    message = (
        f":tools: {mention(author, user_mapping)} - changes have been requested by {mention(reviewer, user_mapping)}.\n"
    )
    if body.strip():
        message += f"{quote(body)}\n\n"
    return message + "Please resolve them and re-request a review."


def announce_changes_addressed(reviewer: str, user_mapping: dict[str, str]) -> str:
    return f"✅ {mention(reviewer, user_mapping)} The requested changes have been addressed. Please review the updates."


def announce_new_commits(reviewers: list[str], user_mapping: dict[str, str]) -> str:
    if reviewers:
        return (
            f"⚠️ New commits have been pushed to this PR. {mentions(reviewers, user_mapping)} "
            "Please review the updates."
        )
    return "⚠️ New commits have been pushed to this PR. Please add reviewers if needed."


def announce_closed(pr: PullRequestInfo, closer: str, comment: str, user_mapping: dict[str, str]) -> str:
    message = f":closed_book: [PR #{pr.number}]({pr.url}) has been closed by {mention(closer, user_mapping)}\n"
    if comment.strip():
        message += f"{quote(comment)}\n"
    return message


def announce_merged(pr: PullRequestInfo, headline: str, user_mapping: dict[str, str]) -> str:
    message = (
        f":tada: {mention(pr.author, user_mapping)} - [PR #{pr.number}]({pr.url}) "
        f"has been merged into `{pr.base_ref}`\n\n"
    )
    if headline:
        message += f"> {headline}\n\n"
    return message + "Remember to delete the associated branch if it is no longer needed!"
