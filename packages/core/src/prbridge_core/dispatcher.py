"""Route a GitHub event to its handler."""

from __future__ import annotations

import logging
from typing import Callable

from prbridge_core import handlers
from prbridge_core.events import EventKind, PullRequestEvent, parse_event
from prbridge_core.handlers import HandlerContext, HandlerOutcome

logger = logging.getLogger(__name__)

Handler = Callable[[PullRequestEvent, HandlerContext], HandlerOutcome]

HANDLERS: dict[EventKind, Handler] = {
    EventKind.OPENED: handlers.handle_opened,
    EventKind.READY_FOR_REVIEW: handlers.handle_ready_for_review,
    EventKind.REVIEWER_ADDED: handlers.handle_reviewer_added,
    EventKind.REVIEWER_REMOVED: handlers.handle_reviewer_removed,
    EventKind.REVIEW_SUBMITTED: handlers.handle_review_submitted,
    EventKind.REVIEW_DISMISSED: handlers.handle_review_dismissed,
    EventKind.SYNCHRONIZE: handlers.handle_synchronize,
    EventKind.CLOSED: handlers.handle_closed,
    EventKind.MERGED: handlers.handle_merged,
}

_missing = set(EventKind) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"No handler registered for: {sorted(k.value for k in _missing)}")


def dispatch(event_name: str, payload: dict, context: HandlerContext) -> HandlerOutcome | None:
    """Parse ``payload`` and run the matching handler.

    Returns None, after logging, when the event/action pair is not handled.
    """
    event = parse_event(event_name, payload)
    if event is None:
        logger.warning("Unhandled event: %s.%s", event_name, payload.get("action"))
        return None
    logger.info(
        "Handling %s for PR #%d (%s)", event.kind.value, event.pull_request.number, event.pull_request.title
    )
    return HANDLERS[event.kind](event, context)
