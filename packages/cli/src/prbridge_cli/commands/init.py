"""init command — interactive setup wizard.

Writes .prbridge.yml (channel and GitHub → Discord user mapping) and
optionally .github/workflows/prbridge.yml, which runs `prbridge handle` on
every pull request event the handlers understand.
"""

from __future__ import annotations

import importlib.metadata
import subprocess
from pathlib import Path

import click
import yaml
from rich.console import Console

console = Console()

_WORKFLOW_TEMPLATE = """\
name: Discord PR Notifications

on:
  pull_request:
    types: [opened, ready_for_review, review_requested, review_request_removed, synchronize, closed]
  pull_request_review:
    types: [submitted, dismissed]

jobs:
  notify:
    runs-on: ubuntu-latest
    permissions:
      contents: read
      issues: write
      pull-requests: write

    steps:
      - name: Set up Python
        uses: actions/setup-python@v5
        with:
          python-version: "3.12"

      - name: Install prbridge
        run: pip install "prbridge=={version}"

      - name: Update Discord notification
        env:
          GITHUB_TOKEN: ${{{{ secrets.GITHUB_TOKEN }}}}
          DISCORD_BOT_TOKEN: ${{{{ secrets.DISCORD_BOT_TOKEN }}}}
          DISCORD_CHANNEL_ID: ${{{{ secrets.DISCORD_CHANNEL_ID }}}}
          DISCORD_USER_MAPPING: ${{{{ vars.DISCORD_USER_MAPPING }}}}
        run: prbridge handle
"""


@click.command("init")
@click.option("--repo", default=None, help="GitHub repository (owner/name). Auto-detected from git remote.")
def init_cmd(repo: str | None):
    """Set up prbridge for a repository.

    Creates .prbridge.yml and, optionally, a GitHub Actions workflow.
    """
    console.print("\n[bold cyan]prbridge init[/bold cyan] — setup wizard\n")

    if repo is None:
        repo = _detect_repo_from_git()
        if repo:
            console.print(f"[dim]Detected repository: {repo}[/dim]")
        else:
            repo = click.prompt("GitHub repository (owner/name)")

    channel_id = click.prompt(
        "Discord channel id for notifications (leave empty to use the DISCORD_CHANNEL_ID secret)",
        default="",
        show_default=False,
    ).strip()

    console.print(
        "\nMap GitHub logins to Discord user ids so notifications @mention people."
        "\nLeave the login empty to finish."
    )
    user_mapping: dict[str, str] = {}
    while True:
        login = click.prompt("GitHub login", default="", show_default=False).strip()
        if not login:
            break
        user_mapping[login] = click.prompt(f"Discord user id for {login}").strip()

    config: dict = {"repository": repo}
    if channel_id:
        config["channel_id"] = channel_id
    if user_mapping:
        config["user_mapping"] = user_mapping

    _write_config(config)
    console.print("[green]Created .prbridge.yml[/green]")

    setup_ci = click.confirm("\nGenerate .github/workflows/prbridge.yml for GitHub Actions?", default=True)
    if setup_ci:
        _write_workflow()
        console.print("[green]Created .github/workflows/prbridge.yml[/green]")
        console.print(
            "\n[yellow]Remember to add [bold]DISCORD_BOT_TOKEN[/bold] and [bold]DISCORD_CHANNEL_ID[/bold] "
            "to your GitHub repository secrets (Settings → Secrets → Actions).[/yellow]"
        )

    console.print("\n[bold green]Setup complete![/bold green]")
    console.print(f"Check a pull request with: [bold]prbridge inspect --repo {repo} --pr <number>[/bold]")


def _detect_repo_from_git() -> str | None:
    """Try to detect the GitHub repo slug from the git remote URL."""
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    url = result.stdout.strip()
    # https://github.com/owner/repo.git and git@github.com:owner/repo.git
    if "github.com" not in url:
        return None
    slug = url.split("github.com")[-1].lstrip("/:").removesuffix(".git")
    return slug if "/" in slug else None


def _write_config(config: dict) -> None:
    """Write or update .prbridge.yml, preserving any existing keys."""
    path = Path(".prbridge.yml")
    existing: dict = {}
    if path.exists():
        existing = yaml.safe_load(path.read_text()) or {}
    mapping = {**(existing.get("user_mapping") or {}), **config.pop("user_mapping", {})}
    existing.update(config)
    if mapping:
        existing["user_mapping"] = mapping
    path.write_text(yaml.dump(existing, default_flow_style=False, sort_keys=False))


def _write_workflow() -> None:
    workflow_dir = Path(".github/workflows")
    workflow_dir.mkdir(parents=True, exist_ok=True)
    (workflow_dir / "prbridge.yml").write_text(
        _WORKFLOW_TEMPLATE.format(version=importlib.metadata.version("prbridge"))
    )
