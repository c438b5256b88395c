"""inspect command — show the Discord notification recorded on a pull request."""

from __future__ import annotations

import click
import requests
from github import GithubException
from rich.console import Console
from rich.table import Table

from prbridge_core.errors import ChatAPIError, UnknownStatusError
from prbridge_core.gh.pull_request import get_repo
from prbridge_core.status import extract_status

console = Console()


@click.command("inspect")
@click.option("--repo", default=None, help="GitHub repository (owner/name). Defaults to the configured repository.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.pass_context
def inspect_cmd(ctx, repo: str | None, pr_number: int):
    """Show the Discord message and thread linked to a pull request.

    The current status is read from Discord when DISCORD_BOT_TOKEN is set.
    """
    from prbridge_cli.cli import _build_chat, _build_store

    config = ctx.obj["config"]
    repo = repo or config.get("repository")
    if not repo:
        raise click.UsageError("No repository given. Pass --repo or set GITHUB_REPOSITORY.")
    token = config.get("github_token")
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first."
        )

    try:
        store = _build_store(get_repo(repo, token=token))
        ctx.call_on_close(store.close)
        metadata = store.load(pr_number)
    except (GithubException, requests.RequestException) as e:
        raise click.ClickException(f"Cannot read PR #{pr_number} in {repo}: {e}") from e

    if metadata is None:
        console.print(f"[yellow]No Discord notification recorded on PR #{pr_number}.[/yellow]")
        return

    status = "[dim]unknown (DISCORD_BOT_TOKEN not set)[/dim]"
    if config.get("discord_bot_token"):
        chat = _build_chat(config)
        ctx.call_on_close(chat.close)
        try:
            message = chat.get_message(metadata.channel_id, metadata.message_id)
            found = extract_status(message.content)
            status = f"{found.emoji} {found.label}"
        except (ChatAPIError, UnknownStatusError) as e:
            status = f"[red]{e}[/red]"

    table = Table(title=f"Discord notification — {repo}#{pr_number}", show_header=True, header_style="bold cyan")
    table.add_column("Field", style="bold", width=12)
    table.add_column("Value")
    table.add_row("Channel", metadata.channel_id)
    table.add_row("Message", metadata.message_id)
    table.add_row("Thread", metadata.thread_id or "[red]missing[/red]")
    table.add_row("Status", status)

    console.print(table)
