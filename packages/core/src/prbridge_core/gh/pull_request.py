from __future__ import annotations

from datetime import datetime, timezone

from github import Github


def get_repo(repo_name: str, token: str):
    return Github(token).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def get_review_body(repo, pr_number: int, review_id: int) -> str:
    """Fetch a review's body; webhook payloads sometimes omit it."""
    return get_pull(repo, pr_number).get_review(review_id).body or ""


def request_reviewers(repo, pr_number: int, logins: list[str]) -> None:
    """Re-request reviews from ``logins``. Does nothing for an empty list."""
    if not logins:
        return
    get_pull(repo, pr_number).create_review_request(reviewers=logins)


def get_commit_headline(repo, sha: str) -> str:
    """Return the first line of a commit message."""
    message = repo.get_commit(sha).commit.message or ""
    return message.split("\n", 1)[0].strip()


def find_recent_comment(comments: list, login: str, window_seconds: float, now: datetime | None = None) -> str:
    """Return the body of the last comment if ``login`` wrote it within the window.

    GitHub has no notion of a "closing comment"; a comment posted by the
    closer moments before the close event is the best available stand-in.
    """
    if not comments:
        return ""
    last = comments[-1]
    author = getattr(getattr(last, "user", None), "login", None)
    created_at = getattr(last, "created_at", None)
    if author != login or created_at is None:
        return ""
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    if (now - created_at).total_seconds() > window_seconds:
        return ""
    return last.body or ""
