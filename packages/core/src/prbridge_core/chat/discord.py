from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from prbridge_core.chat.base import BaseChatClient, ChatMessage
from prbridge_core.errors import ChatAPIError

logger = logging.getLogger(__name__)

DISCORD_API_BASE = "https://discord.com/api/v10"

# Message flag SUPPRESS_EMBEDS: no link preview under the PR link.
_SUPPRESS_EMBEDS = 1 << 2


class DiscordClient(BaseChatClient):
    """Discord REST client authenticated as a bot."""

    def __init__(
        self,
        bot_token: str,
        api_base: str = DISCORD_API_BASE,
        timeout: float = 10.0,
        max_retries: int | None = None,
        auto_archive_minutes: int = 1440,
        transport: httpx.BaseTransport | None = None,
    ):
        if not bot_token:
            raise ValueError("A Discord bot token is required.")
        self._client = httpx.Client(
            base_url=api_base,
            timeout=timeout,
            headers={
                "Authorization": f"Bot {bot_token}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )
        self._auto_archive_minutes = auto_archive_minutes
        if max_retries is not None:
            self.MAX_RETRIES = max_retries

    # ------------------------------------------------------------------ #
    # Messages                                                             #
    # ------------------------------------------------------------------ #

    def send_message(self, channel_id: str, content: str) -> str:
        response = self._request(
            "POST",
            f"/channels/{channel_id}/messages",
            {"content": content, "flags": _SUPPRESS_EMBEDS},
        )
        return str(response.json()["id"])

    def send_thread_message(self, thread_id: str, content: str) -> None:
        # Threads are channels in Discord's model.
        self._request(
            "POST",
            f"/channels/{thread_id}/messages",
            {"content": content, "flags": _SUPPRESS_EMBEDS},
        )

    def get_message(self, channel_id: str, message_id: str) -> ChatMessage:
        data = self._request("GET", f"/channels/{channel_id}/messages/{message_id}").json()
        own = {
            (reaction.get("emoji") or {}).get("name")
            for reaction in data.get("reactions") or []
            if reaction.get("me")
        }
        own.discard(None)
        return ChatMessage(id=str(data["id"]), content=data.get("content") or "", own_reactions=own)

    def edit_message(self, channel_id: str, message_id: str, content: str) -> None:
        self._request(
            "PATCH",
            f"/channels/{channel_id}/messages/{message_id}",
            {"content": content, "flags": _SUPPRESS_EMBEDS},
        )

    # ------------------------------------------------------------------ #
    # Reactions                                                            #
    # ------------------------------------------------------------------ #

    def add_reaction(self, channel_id: str, message_id: str, emoji: str) -> None:
        self._request("PUT", self._reaction_path(channel_id, message_id, emoji))

    def remove_reaction(self, channel_id: str, message_id: str, emoji: str) -> None:
        self._request("DELETE", self._reaction_path(channel_id, message_id, emoji), ok_statuses=(404,))

    @staticmethod
    def _reaction_path(channel_id: str, message_id: str, emoji: str) -> str:
        return f"/channels/{channel_id}/messages/{message_id}/reactions/{quote(emoji, safe='')}/@me"

    # ------------------------------------------------------------------ #
    # Threads                                                              #
    # ------------------------------------------------------------------ #

    def create_thread(self, channel_id: str, message_id: str, name: str) -> str:
        response = self._request(
            "POST",
            f"/channels/{channel_id}/messages/{message_id}/threads",
            {"name": name, "auto_archive_duration": self._auto_archive_minutes},
        )
        return str(response.json()["id"])

    def lock_thread(self, thread_id: str, locked: bool) -> None:
        self._request("PATCH", f"/channels/{thread_id}", {"locked": locked})

    def archive_thread(self, thread_id: str) -> None:
        self._request("PATCH", f"/channels/{thread_id}", {"archived": True, "locked": True})

    def remove_thread_member(self, thread_id: str, user_id: str) -> None:
        self._request("DELETE", f"/channels/{thread_id}/thread-members/{user_id}", ok_statuses=(404,))

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------ #
    # Transport                                                            #
    # ------------------------------------------------------------------ #

    def _request(
        self,
        method: str,
        path: str,
        payload: dict | None = None,
        ok_statuses: tuple[int, ...] = (),
    ) -> httpx.Response:
        description = f"{method} {path}"

        def attempt() -> httpx.Response:
            try:
                response = self._client.request(method, path, json=payload)
            except httpx.HTTPError as e:
                raise ChatAPIError(f"{description} failed: {e}") from e
            if response.is_success or response.status_code in ok_statuses:
                return response
            raise ChatAPIError(
                f"{description} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
                retry_after=_retry_after(response),
            )

        logger.debug("Discord %s", description)
        return self._call_with_retry(description, attempt)


def _retry_after(response: httpx.Response) -> float | None:
    if response.status_code != 429:
        return None
    header = response.headers.get("Retry-After")
    if header:
        try:
            return float(header)
        except ValueError:
            pass
    try:
        return float(response.json().get("retry_after"))
    except (ValueError, TypeError, AttributeError):
        return None
