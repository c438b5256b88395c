"""PullRequestCommentStore — notification metadata kept in PR comments.

Why pull request comments:
- Zero infra: the process runs inside a GitHub Actions job with no database
  and no state carried between runs.
- The GITHUB_TOKEN that Actions injects can already read and write issue
  comments on the repository, so no extra secret is needed.
- The marker is an HTML comment, invisible in the GitHub UI but found by a
  linear scan among arbitrary human comments.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from prbridge_store.base import BaseMetadataStore
from prbridge_store.codec import encode_metadata, find_metadata

if TYPE_CHECKING:
    from prbridge_store.models import NotificationMetadata

logger = logging.getLogger(__name__)


class PullRequestCommentStore(BaseMetadataStore):
    """Reads and writes metadata through the issue-comments API of a repository.

    ``repo`` is a PyGithub ``Repository``. The comment listing of each pull
    request is fetched at most once per store instance; one store instance
    lives for exactly one invocation.
    """

    def __init__(self, repo):
        self._repo = repo
        self._comments: dict[int, list] = {}

    def _issue(self, pr_number: int):
        return self._repo.get_issue(number=pr_number)

    def list_comments(self, pr_number: int) -> list:
        if pr_number not in self._comments:
            self._comments[pr_number] = list(self._issue(pr_number).get_comments())
        return self._comments[pr_number]

    def load(self, pr_number: int) -> NotificationMetadata | None:
        metadata = find_metadata(self.list_comments(pr_number))
        if metadata is None:
            logger.debug("No notification metadata on PR #%d", pr_number)
        return metadata

    def save(self, pr_number: int, metadata: NotificationMetadata) -> None:
        comment = self._issue(pr_number).create_comment(encode_metadata(metadata))
        self._comments.setdefault(pr_number, []).append(comment)
        logger.info("Saved notification metadata on PR #%d", pr_number)

    def post_notice_once(self, pr_number: int, body: str, marker: str) -> bool:
        for comment in self.list_comments(pr_number):
            if marker in (getattr(comment, "body", None) or ""):
                logger.debug("Notice already present on PR #%d; not posting again", pr_number)
                return False
        comment = self._issue(pr_number).create_comment(body)
        self._comments[pr_number].append(comment)
        return True

    def close(self) -> None:
        self._comments.clear()
