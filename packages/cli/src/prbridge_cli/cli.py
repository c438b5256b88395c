"""CLI entry point for prbridge.

Commands:
  handle   — apply one GitHub pull request event to its Discord notification
  inspect  — show the Discord notification recorded on a pull request
  init     — interactive setup wizard (config file + Actions workflow)
"""

from __future__ import annotations

import importlib.metadata
import logging
import os

import click
from rich.console import Console

from prbridge_cli.commands.handle import handle_cmd
from prbridge_cli.commands.init import init_cmd
from prbridge_cli.commands.inspect import inspect_cmd

console = Console()


class ActionsAnnotationFormatter(logging.Formatter):
    """Prefix warnings and errors with GitHub Actions workflow commands."""

    _COMMANDS = {logging.WARNING: "warning", logging.ERROR: "error", logging.CRITICAL: "error"}

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        command = self._COMMANDS.get(record.levelno)
        return f"::{command}::{message}" if command else message


def _setup_logging(verbose: bool) -> None:
    handler = logging.StreamHandler()
    if os.environ.get("GITHUB_ACTIONS") == "true":
        handler.setFormatter(ActionsAnnotationFormatter("%(message)s"))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=[handler])
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _build_store(repo):
    """Return the metadata store for ``repo``.

    The store lives with the pull request itself (a hidden comment), so it
    needs nothing beyond the PyGithub repository object.
    """
    from prbridge_store.comments import PullRequestCommentStore

    return PullRequestCommentStore(repo)


def _build_chat(config: dict):
    from prbridge_core.chat.discord import DiscordClient

    return DiscordClient(
        bot_token=config["discord_bot_token"],
        api_base=config["discord_api_base"],
        timeout=float(config["request_timeout"]),
        max_retries=int(config["max_retries"]),
        auto_archive_minutes=int(config["thread_auto_archive_minutes"]),
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("prbridge"),
    prog_name="prbridge",
)
@click.option(
    "--config",
    "config_path",
    default=".prbridge.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRBRIDGE_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Mirror GitHub pull request activity into Discord threads."""
    from prbridge_cli.auth import resolve_github_token
    from prbridge_core.config import load_config
    from prbridge_core.errors import ConfigurationError

    _setup_logging(verbose)
    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        raise click.UsageError(str(e)) from e

    # Resolve token early so all subcommands share the same resolution.
    token = resolve_github_token()
    if token:
        config["github_token"] = token

    ctx.obj["config"] = config


main.add_command(handle_cmd)
main.add_command(inspect_cmd)
main.add_command(init_cmd)
