"""Hidden-comment codec for notification metadata.

The metadata is the only state prbridge keeps between runs. It lives in a
regular pull request comment as an HTML comment, so GitHub renders nothing
while the block stays machine-readable:

    <!-- DISCORD_BOT_METADATA
    {
      "message_id": "...",
      "thread_id": "...",
      "channel_id": "..."
    }
    -->
"""

from __future__ import annotations

import json
import logging
import re
from typing import Iterable

from prbridge_store.models import NotificationMetadata

logger = logging.getLogger(__name__)

METADATA_START = "<!-- DISCORD_BOT_METADATA"
METADATA_END = "-->"

_METADATA_RE = re.compile(r"<!-- DISCORD_BOT_METADATA\r?\n(.*?)\r?\n-->", re.DOTALL)


def encode_metadata(metadata: NotificationMetadata) -> str:
    """Return the comment body that persists ``metadata``."""
    payload = json.dumps(metadata.to_dict(), indent=2)
    return f"{METADATA_START}\n{payload}\n{METADATA_END}"


def decode_metadata(body: str | None) -> NotificationMetadata | None:
    """Parse one comment body, or return None if it carries no usable marker."""
    if not body:
        return None
    match = _METADATA_RE.search(body)
    if not match:
        return None
    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError:
        logger.debug("Ignoring metadata marker with invalid JSON")
        return None
    if not isinstance(data, dict) or not data.get("message_id") or not data.get("channel_id"):
        return None
    return NotificationMetadata.from_dict(data)


def find_metadata(comments: Iterable) -> NotificationMetadata | None:
    """Return the first metadata block found in ``comments``.

    ``comments`` are PyGithub IssueComment objects or anything else with a
    ``body`` attribute. Bodies that fail to parse are skipped; None means the
    integration was never initialized for this pull request.
    """
    for comment in comments:
        metadata = decode_metadata(getattr(comment, "body", None))
        if metadata is not None:
            return metadata
    return None
