"""Tests for the event handlers, run end to end through dispatch().

The chat platform is an in-memory fake that keeps message text, the bot's
reactions and thread state, so each test can assert on the resulting Discord
state rather than on individual calls. Metadata lives in the real
PullRequestCommentStore on top of a MagicMock repository.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from prbridge_core.chat.base import BaseChatClient, ChatMessage
from prbridge_core.dispatcher import dispatch
from prbridge_core.errors import ChatAPIError, ConfigurationError, UnknownStatusError
from prbridge_core.formatting import (
    METADATA_MISSING_MARKER,
    THREAD_INTRO,
    WARNING_DETAIL,
    WARNING_HEADER,
)
from prbridge_core.handlers import HandlerContext
from prbridge_core.status import NotificationStatus
from prbridge_store.codec import encode_metadata, find_metadata
from prbridge_store.comments import PullRequestCommentStore
from prbridge_store.models import NotificationMetadata

CHANNEL = "500"
MAPPING = {"alice": "1001", "bob": "1002"}


class FakeChat(BaseChatClient):
    def __init__(self):
        self.messages: dict[str, str] = {}
        self.reactions: dict[str, set[str]] = {}
        self.threads: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.fail: set[str] = set()
        self._next_id = 100

    def _record(self, op, *args):
        self.calls.append((op, *args))
        if op in self.fail:
            raise ChatAPIError(f"{op} failed", status_code=500)

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    def send_message(self, channel_id, content):
        self._record("send_message", channel_id, content)
        message_id = self._new_id()
        self.messages[message_id] = content
        self.reactions[message_id] = set()
        return message_id

    def create_thread(self, channel_id, message_id, name):
        self._record("create_thread", channel_id, message_id, name)
        thread_id = self._new_id()
        self.threads[thread_id] = {"name": name, "messages": [], "locked": False, "archived": False}
        return thread_id

    def send_thread_message(self, thread_id, content):
        self._record("send_thread_message", thread_id, content)
        self.threads[thread_id]["messages"].append(content)

    def get_message(self, channel_id, message_id):
        self._record("get_message", channel_id, message_id)
        if message_id not in self.messages:
            raise ChatAPIError("Unknown Message", status_code=404)
        return ChatMessage(message_id, self.messages[message_id], set(self.reactions[message_id]))

    def edit_message(self, channel_id, message_id, content):
        self._record("edit_message", channel_id, message_id, content)
        self.messages[message_id] = content

    def add_reaction(self, channel_id, message_id, emoji):
        self._record("add_reaction", channel_id, message_id, emoji)
        self.reactions[message_id].add(emoji)

    def remove_reaction(self, channel_id, message_id, emoji):
        self._record("remove_reaction", channel_id, message_id, emoji)
        self.reactions[message_id].discard(emoji)

    def lock_thread(self, thread_id, locked):
        self._record("lock_thread", thread_id, locked)
        self.threads[thread_id]["locked"] = locked

    def archive_thread(self, thread_id):
        self._record("archive_thread", thread_id)
        self.threads[thread_id].update(archived=True, locked=True)

    def remove_thread_member(self, thread_id, user_id):
        self._record("remove_thread_member", thread_id, user_id)


def _comment(login, body):
    c = MagicMock()
    c.user.login = login
    c.body = body
    c.created_at = datetime.now(timezone.utc)
    return c


def _make_repo():
    repo = MagicMock()
    comments: list = []
    issue = repo.get_issue.return_value
    issue.get_comments.side_effect = lambda: list(comments)

    def create_comment(body):
        comments.append(_comment("github-actions[bot]", body))
        return comments[-1]

    issue.create_comment.side_effect = create_comment
    repo.get_pull.return_value.get_review.return_value.body = None
    repo.get_commit.return_value.commit.message = "Fix bug (#7)\n\nLonger description"
    return repo, comments


def _pr(draft=False, reviewers=("bob",), merged=False, merged_by=None, sha=None, body="Fixes the crash."):
    return {
        "number": 7,
        "title": "Fix bug",
        "html_url": "https://github.com/o/r/pull/7",
        "user": {"login": "alice"},
        "base": {"ref": "main"},
        "head": {"ref": "fix"},
        "body": body,
        "draft": draft,
        "state": "closed" if merged else "open",
        "requested_reviewers": [{"login": r} for r in reviewers],
        "merged": merged,
        "merged_by": {"login": merged_by} if merged_by else None,
        "merge_commit_sha": sha,
    }


def _review(state, reviewer="bob", body="LGTM"):
    return {"id": 31, "user": {"login": reviewer}, "state": state, "body": body}


class World:
    """One repository + Discord channel; every run() is a fresh invocation."""

    def __init__(self):
        self.chat = FakeChat()
        self.repo, self.comments = _make_repo()

    def run(self, event_name, payload, channel_id=CHANNEL):
        ctx = HandlerContext(
            repo=self.repo,
            chat=self.chat,
            store=PullRequestCommentStore(self.repo),
            user_mapping=MAPPING,
            channel_id=channel_id,
        )
        return dispatch(event_name, payload, ctx)

    # --- events ---

    def open(self, **pr_kwargs):
        return self.run("pull_request", {"action": "opened", "pull_request": _pr(**pr_kwargs)})

    def pr_action(self, action, pr=None, **extra):
        return self.run("pull_request", {"action": action, "pull_request": pr or _pr(), **extra})

    def review(self, state, reviewer="bob", body="LGTM", reviewers=()):
        payload = {
            "action": "submitted",
            "pull_request": _pr(reviewers=reviewers),
            "review": _review(state, reviewer, body),
            "sender": {"login": reviewer},
        }
        return self.run("pull_request_review", payload)

    def dismiss(self, state, reviewer="bob"):
        payload = {"action": "dismissed", "pull_request": _pr(), "review": _review(state, reviewer)}
        return self.run("pull_request_review", payload)

    # --- state ---

    @property
    def metadata(self) -> NotificationMetadata:
        return find_metadata(self.comments)

    @property
    def parent(self) -> str:
        return self.chat.messages[self.metadata.message_id]

    @property
    def status_line(self) -> str:
        return self.parent.split("\n")[-1]

    @property
    def reactions(self) -> set[str]:
        return self.chat.reactions[self.metadata.message_id]

    @property
    def thread(self) -> dict:
        return self.chat.threads[self.metadata.thread_id]

    def ops(self, since=0) -> list[str]:
        return [call[0] for call in self.chat.calls[since:]]


@pytest.fixture
def world():
    return World()


@pytest.fixture
def opened(world):
    world.open()
    return world


# ---------------------------------------------------------------------------
# opened
# ---------------------------------------------------------------------------


class TestOpened:
    def test_draft_without_reviewers(self, world):
        outcome = world.open(draft=True, reviewers=())

        assert world.status_line == "**Status**: :pencil: Draft - In Progress"
        assert WARNING_HEADER not in world.parent
        assert world.thread["name"] == "PR #7: Fix bug"
        assert world.thread["messages"] == [THREAD_INTRO]
        assert world.metadata == NotificationMetadata(
            message_id=world.metadata.message_id, thread_id=world.metadata.thread_id, channel_id=CHANNEL
        )
        assert outcome.status_after is NotificationStatus.DRAFT
        assert outcome.warnings == []

    def test_ready_without_reviewers_shows_warning(self, world):
        world.open(draft=False, reviewers=())

        assert world.status_line == "**Status**: :eyes: Ready for Review"
        lines = world.parent.split("\n")
        index = lines.index(WARNING_HEADER)
        assert lines[index + 1] == WARNING_DETAIL

    def test_reviewers_listed_and_announced(self, world):
        world.open(reviewers=("bob", "carol"))

        assert "**Reviewers:** <@1002> @carol" in world.parent
        assert WARNING_HEADER not in world.parent
        announcements = world.thread["messages"][1:]
        assert len(announcements) == 2
        assert announcements[0].startswith(":bellhop: <@1002>")
        assert announcements[1].startswith(":bellhop: @carol")

    def test_parent_message_sent_to_configured_channel(self, world):
        world.open()
        assert world.chat.calls[0][:2] == ("send_message", CHANNEL)

    def test_missing_channel_fails_before_side_effects(self, world):
        with pytest.raises(ConfigurationError, match="DISCORD_CHANNEL_ID"):
            world.run("pull_request", {"action": "opened", "pull_request": _pr()}, channel_id=None)
        assert world.chat.calls == []

    def test_send_message_failure_is_fatal(self, world):
        world.chat.fail.add("send_message")
        with pytest.raises(ChatAPIError):
            world.open()
        assert world.comments == []

    def test_thread_failure_is_a_warning(self, world):
        world.chat.fail.add("create_thread")
        outcome = world.open()

        assert len(world.chat.messages) == 1
        assert world.comments == []
        assert any("create thread" in w for w in outcome.warnings)

    def test_metadata_save_failure_is_a_warning(self, world):
        world.repo.get_issue.return_value.create_comment.side_effect = RuntimeError("403")
        outcome = world.open()

        assert len(world.chat.threads) == 1
        assert any("save notification metadata" in w for w in outcome.warnings)

    def test_redelivery_does_not_duplicate(self, world):
        world.open()
        outcome = world.open()

        assert len(world.chat.messages) == 1
        assert outcome.skipped


# ---------------------------------------------------------------------------
# Missing metadata
# ---------------------------------------------------------------------------


class TestMissingMetadata:
    def test_reports_once_on_the_pull_request(self, world):
        outcome = world.pr_action("ready_for_review")
        world.pr_action("synchronize")

        notices = [c for c in world.comments if METADATA_MISSING_MARKER in c.body]
        assert len(notices) == 1
        assert "Discord integration not initialized for this PR" in notices[0].body
        assert outcome.skipped
        assert any("No Discord thread found" in w for w in outcome.warnings)
        assert world.chat.calls == []

    def test_metadata_without_thread_counts_as_missing(self, world):
        partial = NotificationMetadata(message_id="1", thread_id="", channel_id=CHANNEL)
        world.comments.append(_comment("github-actions[bot]", encode_metadata(partial)))

        outcome = world.pr_action("synchronize")

        assert outcome.skipped
        assert world.chat.calls == []

    def test_comment_failure_is_a_warning(self, world):
        world.repo.get_issue.return_value.create_comment.side_effect = RuntimeError("403")
        outcome = world.pr_action("ready_for_review")
        assert outcome.skipped


# ---------------------------------------------------------------------------
# ready_for_review
# ---------------------------------------------------------------------------


class TestReadyForReview:
    def test_draft_becomes_ready(self, world):
        world.open(draft=True, reviewers=())
        outcome = world.pr_action("ready_for_review", _pr(reviewers=()))

        assert world.status_line == "**Status**: :eyes: Ready for Review"
        assert WARNING_HEADER in world.parent
        assert world.thread["messages"][-1] == ":eyes: This PR is now ready for review!"
        assert outcome.status_before is NotificationStatus.DRAFT
        assert outcome.status_after is NotificationStatus.READY_FOR_REVIEW

    def test_not_a_draft_is_a_no_op(self, opened):
        before = opened.parent
        mark = len(opened.chat.calls)
        outcome = opened.pr_action("ready_for_review")

        assert opened.parent == before
        assert opened.ops(mark) == ["get_message"]
        assert outcome.skipped


# ---------------------------------------------------------------------------
# Reviewer changes
# ---------------------------------------------------------------------------


class TestReviewerChanges:
    def test_added_reviewer_announced_and_listed(self, world):
        world.open(reviewers=())
        world.pr_action(
            "review_requested", _pr(reviewers=("bob",)), requested_reviewer={"login": "bob"}
        )

        assert "**Reviewers:** <@1002>" in world.parent
        assert WARNING_HEADER not in world.parent
        assert world.thread["messages"][-1].startswith(":bellhop: <@1002> - your review has been requested")

    def test_team_request_still_updates_list(self, opened):
        mark = len(opened.chat.calls)
        opened.pr_action("review_requested", _pr(reviewers=("bob", "carol")))

        assert "send_thread_message" not in opened.ops(mark)
        assert "**Reviewers:** <@1002> @carol" in opened.parent

    def test_removing_last_reviewer_brings_warning_back(self, opened):
        opened.pr_action("review_request_removed", _pr(reviewers=()), requested_reviewer={"login": "bob"})

        assert "**Reviewers:**" not in opened.parent
        assert WARNING_HEADER in opened.parent
        assert opened.thread["messages"][-1].startswith("👋 <@1002> has been removed")
        assert ("remove_thread_member", opened.metadata.thread_id, "1002") in opened.chat.calls

    def test_description_line_like_reviewers_is_left_alone(self, world):
        body = "Checklist done\n**Reviewers:** ping the infra team"
        world.open(draft=True, reviewers=(), body=body)

        world.pr_action("ready_for_review", _pr(reviewers=(), body=body))
        assert WARNING_HEADER in world.parent
        assert WARNING_DETAIL in world.parent

        world.pr_action(
            "review_requested", _pr(reviewers=("bob",), body=body), requested_reviewer={"login": "bob"}
        )
        assert "ping the infra team" in world.parent
        assert "**Reviewers:** <@1002>" in world.parent
        assert WARNING_HEADER not in world.parent

    def test_unmapped_reviewer_not_removed_from_thread(self, world):
        world.open(reviewers=("carol",))
        world.pr_action("review_request_removed", _pr(reviewers=()), requested_reviewer={"login": "carol"})
        assert "remove_thread_member" not in world.ops()

    def test_parent_unreadable_still_announces(self, opened):
        opened.chat.fail.add("get_message")
        outcome = opened.pr_action(
            "review_requested", _pr(reviewers=("bob", "dave")), requested_reviewer={"login": "dave"}
        )

        assert opened.thread["messages"][-1].startswith(":bellhop: @dave")
        assert "edit_message" not in opened.ops()
        assert len(outcome.warnings) == 2


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


class TestReviewSubmitted:
    def test_approval(self, opened):
        outcome = opened.review("approved")

        assert "✅" in opened.reactions
        assert opened.thread["locked"] is True
        assert opened.status_line == "**Status**: :white_check_mark: Approved by <@1002>"
        assert opened.thread["messages"][-1].startswith(":white_check_mark: <@1001> - <@1002> has approved the PR")
        assert outcome.status_after is NotificationStatus.APPROVED

    def test_approval_keeps_reviewer_line(self, opened):
        # GitHub drops a reviewer from requested_reviewers once they review.
        opened.review("approved", reviewers=())
        assert "**Reviewers:** <@1002>" in opened.parent

    def test_commented_review_changes_nothing(self, opened):
        before = opened.parent
        reactions = set(opened.reactions)
        mark = len(opened.chat.calls)
        comment_count = len(opened.comments)

        outcome = opened.review("commented")

        assert opened.parent == before
        assert opened.reactions == reactions
        assert opened.ops(mark) == []
        assert len(opened.comments) == comment_count
        assert outcome.skipped

    def test_changes_requested(self, opened):
        opened.review("changes_requested", body="Please add tests")

        assert "❌" in opened.reactions
        assert opened.thread["locked"] is False
        assert opened.status_line == "**Status**: :tools: Changes Requested by <@1002>"
        assert "> Please add tests" in opened.thread["messages"][-1]

    def test_approval_clears_changes_requested(self, opened):
        opened.review("changes_requested")
        opened.review("approved")
        assert opened.reactions == {"✅"}

    def test_changes_requested_keeps_earlier_approval(self, opened):
        opened.review("approved")
        opened.review("changes_requested", reviewer="carol")

        assert opened.reactions == {"✅", "❌"}
        assert opened.thread["locked"] is True
        assert opened.status_line == "**Status**: :tools: Changes Requested by @carol"

    def test_reaction_not_re_added(self, opened):
        opened.review("approved")
        mark = len(opened.chat.calls)
        opened.review("approved")
        assert "add_reaction" not in opened.ops(mark)
        assert "remove_reaction" not in opened.ops(mark)

    def test_body_fetched_when_payload_omits_it(self, opened):
        opened.repo.get_pull.return_value.get_review.return_value.body = "Fetched body"
        opened.review("approved", body="")

        assert "> Fetched body" in opened.thread["messages"][-1]
        opened.repo.get_pull.return_value.get_review.assert_called_with(31)

    def test_edit_failure_is_a_warning(self, opened):
        opened.chat.fail.add("edit_message")
        outcome = opened.review("approved")

        assert opened.thread["locked"] is True
        assert any("edit parent message" in w for w in outcome.warnings)

    def test_unknown_status_fails_loudly(self, opened):
        opened.chat.messages[opened.metadata.message_id] = "hand-edited text\n**Status**: :eyes: Maybe"
        with pytest.raises(UnknownStatusError):
            opened.review("approved")
        assert opened.reactions == set()


class TestReviewDismissed:
    def test_dismissed_change_request_returns_to_ready(self, opened):
        opened.review("changes_requested")
        outcome = opened.dismiss("changes_requested")

        assert opened.status_line == "**Status**: :eyes: Ready for Review"
        assert "The requested changes have been addressed" in opened.thread["messages"][-1]
        assert outcome.status_after is NotificationStatus.READY_FOR_REVIEW
        assert ("lock_thread", opened.metadata.thread_id, False) in opened.chat.calls

    def test_dismissed_approval_is_a_no_op(self, opened):
        opened.review("approved")
        before = opened.parent
        mark = len(opened.chat.calls)

        opened.dismiss("approved")

        assert opened.parent == before
        assert opened.ops(mark) == []
        assert opened.thread["locked"] is True


# ---------------------------------------------------------------------------
# synchronize
# ---------------------------------------------------------------------------


class TestSynchronize:
    def test_new_commits_after_approval_reopen_review(self, opened):
        opened.review("approved")
        outcome = opened.pr_action("synchronize", _pr(reviewers=()))

        assert opened.thread["locked"] is False
        assert opened.status_line == "**Status**: :eyes: Ready for Review"
        assert opened.thread["messages"][-1].startswith("⚠️ New commits have been pushed to this PR.")
        assert outcome.status_before is NotificationStatus.APPROVED

    def test_reviewers_re_requested(self, opened):
        opened.review("approved")
        opened.pr_action("synchronize", _pr(reviewers=("bob",)))

        opened.repo.get_pull.return_value.create_review_request.assert_called_once_with(reviewers=["bob"])
        assert "<@1002> Please review the updates." in opened.thread["messages"][-1]

    def test_no_reviewers_no_request(self, opened):
        opened.review("approved")
        opened.pr_action("synchronize", _pr(reviewers=()))
        opened.repo.get_pull.return_value.create_review_request.assert_not_called()

    def test_not_approved_is_a_no_op(self, opened):
        before = opened.parent
        mark = len(opened.chat.calls)
        outcome = opened.pr_action("synchronize")

        assert opened.parent == before
        assert opened.ops(mark) == ["get_message"]
        assert outcome.skipped


# ---------------------------------------------------------------------------
# closed / merged
# ---------------------------------------------------------------------------


class TestClosed:
    def test_closed_by_sender_with_comment(self, opened):
        opened.comments.append(_comment("bob", "Superseded by #8"))
        pr = _pr()
        pr["state"] = "closed"
        opened.pr_action("closed", pr, sender={"login": "bob"})

        assert opened.status_line == "**Status**: :closed_book: Closed by <@1002>"
        assert opened.thread["locked"] is True
        assert opened.thread["archived"] is False
        message = opened.thread["messages"][-1]
        assert "has been closed by <@1002>" in message
        assert "> Superseded by #8" in message

    def test_closer_defaults_to_author(self, opened):
        opened.pr_action("closed")
        assert opened.status_line == "**Status**: :closed_book: Closed by <@1001>"

    def test_closed_hides_warning(self, world):
        world.open(reviewers=())
        world.pr_action("closed", _pr(reviewers=()))
        assert WARNING_HEADER not in world.parent


class TestMerged:
    def test_merge(self, opened):
        outcome = opened.pr_action(
            "closed", _pr(merged=True, merged_by="carol", sha="abc123"), sender={"login": "carol"}
        )

        assert "🎉" in opened.reactions
        assert opened.thread["archived"] is True
        assert opened.thread["locked"] is True
        assert opened.status_line == "**Status**: :tada: Merged by @carol"
        assert "> Fix bug (#7)" in opened.thread["messages"][-1]
        assert outcome.kind.value == "merged"
        opened.repo.get_commit.assert_called_once_with("abc123")

    def test_headline_failure_still_merges(self, opened):
        opened.repo.get_commit.side_effect = RuntimeError("boom")
        outcome = opened.pr_action("closed", _pr(merged=True, merged_by="carol", sha="abc123"))

        assert opened.thread["archived"] is True
        assert opened.thread["messages"][-1].startswith(":tada:")
        assert any("merge commit" in w for w in outcome.warnings)


# ---------------------------------------------------------------------------
# Lifecycle properties
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_lock_follows_status(self, world):
        world.open(draft=True)
        assert world.thread["locked"] is False

        world.pr_action("ready_for_review")
        assert world.thread["locked"] is False

        world.review("approved")
        assert world.thread["locked"] is True

        world.pr_action("synchronize")
        assert world.thread["locked"] is False

        world.review("approved")
        assert world.thread["locked"] is True

        world.review("changes_requested", reviewer="carol")
        assert world.thread["locked"] is True

        world.dismiss("changes_requested", reviewer="carol")
        assert world.status_line == "**Status**: :eyes: Ready for Review"
        assert world.thread["locked"] is False

        world.review("approved")
        assert world.thread["locked"] is True

        world.pr_action("closed", _pr(merged=True, merged_by="bob"))
        assert world.thread["locked"] is True
        assert world.thread["archived"] is True
        assert world.status_line == "**Status**: :tada: Merged by <@1002>"

    @pytest.mark.parametrize(
        "sequence",
        [
            ["approved", "changes_requested", "approved"],
            ["changes_requested", "approved"],
            ["changes_requested", "changes_requested", "approved", "approved"],
        ],
    )
    def test_sequences_ending_in_approval_show_only_checkmark(self, opened, sequence):
        for state in sequence:
            opened.review(state)
        assert opened.reactions == {"✅"}

    def test_description_survives_every_edit(self, opened):
        opened.review("changes_requested")
        opened.dismiss("changes_requested")
        opened.review("approved")
        opened.pr_action("synchronize")
        opened.pr_action("closed", _pr(merged=True, merged_by="bob"))
        assert "Fixes the crash." in opened.parent
