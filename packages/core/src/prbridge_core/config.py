import json
import os
from pathlib import Path
from typing import Optional

import yaml

from prbridge_core.errors import ConfigurationError

DEFAULT_CONFIG: dict = {
    "channel_id": None,
    "repository": None,  # owner/name; GITHUB_REPOSITORY wins when set
    "user_mapping": {},  # GitHub login -> Discord user id, for @mentions
    "discord_api_base": "https://discord.com/api/v10",
    "request_timeout": 10.0,
    "max_retries": 3,
    "thread_auto_archive_minutes": 1440,
    "thread_name_limit": 100,
    "close_comment_window_seconds": 60,
}


def parse_user_mapping(raw: Optional[str]) -> dict:
    """Parse the DISCORD_USER_MAPPING JSON object."""
    if not raw:
        return {}
    try:
        mapping = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Failed to parse DISCORD_USER_MAPPING: {e}") from e
    if not isinstance(mapping, dict):
        raise ConfigurationError("DISCORD_USER_MAPPING must be a JSON object of GitHub login -> Discord user id")
    return {str(login): str(discord_id) for login, discord_id in mapping.items()}


def load_config(config_path: str = ".prbridge.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prbridge.yml in the current directory
      3. CLI argument overrides
      4. Credentials and ids from the environment
    """
    config = {**DEFAULT_CONFIG, "user_mapping": dict(DEFAULT_CONFIG["user_mapping"])}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        file_mapping = file_config.pop("user_mapping", None) or {}
        config.update(file_config)
        config["user_mapping"].update({str(k): str(v) for k, v in file_mapping.items()})

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Secrets are only ever read from the environment, never from the file.
    config["discord_bot_token"] = os.environ.get("DISCORD_BOT_TOKEN")
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    if os.environ.get("DISCORD_CHANNEL_ID"):
        config["channel_id"] = os.environ["DISCORD_CHANNEL_ID"]
    if os.environ.get("GITHUB_REPOSITORY"):
        config["repository"] = os.environ["GITHUB_REPOSITORY"]
    config["user_mapping"].update(parse_user_mapping(os.environ.get("DISCORD_USER_MAPPING")))

    if config["channel_id"] is not None:
        config["channel_id"] = str(config["channel_id"])

    return config


def validate_config(config: dict, require_channel: bool = False) -> None:
    """Raise ConfigurationError naming the first missing required setting."""
    if not config.get("discord_bot_token"):
        raise ConfigurationError("DISCORD_BOT_TOKEN secret must be set")
    if require_channel and not config.get("channel_id"):
        raise ConfigurationError("DISCORD_CHANNEL_ID secret must be set")
    if not config.get("github_token"):
        raise ConfigurationError("GITHUB_TOKEN is required")
    repository = config.get("repository")
    if not repository or "/" not in repository:
        raise ConfigurationError("GITHUB_REPOSITORY must be set to owner/name")
    try:
        max_retries = int(config.get("max_retries", 1))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"max_retries must be an integer: {e}") from e
    if max_retries < 1:
        raise ConfigurationError("max_retries must be at least 1")
