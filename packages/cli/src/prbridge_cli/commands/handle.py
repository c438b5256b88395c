"""handle command — apply one GitHub event to its Discord notification."""

from __future__ import annotations

import logging

import click
import requests
from github import GithubException
from rich.console import Console

from prbridge_core.config import validate_config
from prbridge_core.dispatcher import dispatch
from prbridge_core.errors import ChatAPIError, ConfigurationError, UnknownStatusError
from prbridge_core.events import EventKind, classify_event, load_event_payload
from prbridge_core.gh.pull_request import get_repo
from prbridge_core.handlers import HandlerContext, HandlerOutcome

console = Console()
logger = logging.getLogger(__name__)


@click.command("handle")
@click.option(
    "--event-name",
    envvar="GITHUB_EVENT_NAME",
    required=True,
    help="GitHub event name, e.g. pull_request. Defaults to $GITHUB_EVENT_NAME.",
)
@click.option(
    "--event-path",
    envvar="GITHUB_EVENT_PATH",
    required=True,
    type=click.Path(dir_okay=False),
    help="Path to the event payload JSON. Defaults to $GITHUB_EVENT_PATH.",
)
@click.option("--repo", default=None, help="GitHub repository (owner/name). Defaults to $GITHUB_REPOSITORY.")
@click.pass_context
def handle_cmd(ctx, event_name: str, event_path: str, repo: str | None):
    """Update the Discord notification for a pull request event.

    Meant to run as a GitHub Actions step on pull_request and
    pull_request_review events.

    \b
    Required environment variables:
      DISCORD_BOT_TOKEN    Discord bot token
      DISCORD_CHANNEL_ID   Channel for new notifications (opened events)
      GITHUB_TOKEN         GitHub token (or use gh CLI)
    """
    from prbridge_cli.cli import _build_chat, _build_store

    config = ctx.obj["config"]
    if repo:
        config["repository"] = repo

    try:
        payload = load_event_payload(event_path)
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    kind = classify_event(event_name, payload)
    if kind is None:
        console.print(f"[yellow]Nothing to do for {event_name}.{payload.get('action')}[/yellow]")
        return

    try:
        validate_config(config, require_channel=kind is EventKind.OPENED)
    except ConfigurationError as e:
        raise click.UsageError(str(e)) from e

    try:
        repo_obj = get_repo(config["repository"], token=config["github_token"])
    except (GithubException, requests.RequestException) as e:
        logger.error("Cannot access repository %s: %s", config["repository"], e)
        raise click.ClickException(f"Cannot access repository {config['repository']}: {e}") from e
    store = _build_store(repo_obj)
    chat = _build_chat(config)
    ctx.call_on_close(store.close)
    ctx.call_on_close(chat.close)

    context = HandlerContext(
        repo=repo_obj,
        chat=chat,
        store=store,
        user_mapping=config["user_mapping"],
        channel_id=config.get("channel_id"),
        thread_name_limit=int(config["thread_name_limit"]),
        close_comment_window_seconds=float(config["close_comment_window_seconds"]),
    )

    try:
        outcome = dispatch(event_name, payload, context)
    except ConfigurationError as e:
        raise click.UsageError(str(e)) from e
    except UnknownStatusError as e:
        logger.error("Cannot determine the current notification status: %s", e)
        raise click.ClickException(str(e)) from e
    except ChatAPIError as e:
        logger.error("Discord request failed: %s", e)
        raise click.ClickException(str(e)) from e
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    if outcome is not None:
        _print_outcome(outcome)


def _print_outcome(outcome: HandlerOutcome) -> None:
    header = f"[bold]PR #{outcome.pr_number}[/bold] {outcome.kind.value}"
    if outcome.status_before and outcome.status_after and outcome.status_before != outcome.status_after:
        header += f": {outcome.status_before.label} → {outcome.status_after.label}"
    elif outcome.status_after:
        header += f": {outcome.status_after.label}"
    console.print(header)

    if outcome.skipped:
        console.print(f"[dim]Skipped: {outcome.skipped}[/dim]")
    for action in outcome.actions:
        console.print(f"  [green]✓[/green] {action}")
    for warning in outcome.warnings:
        console.print(f"  [yellow]![/yellow] {warning}")
