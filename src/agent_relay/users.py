"""Mapping between Discord users and relay identities."""

from __future__ import annotations

import re

from agent_relay.config import core

_MENTION_RE = re.compile(r"<@[!&]?\d+>")


def user_key(discord_user_id: int) -> str:
    """Relay user id for a Discord account."""
    return f"discord_{discord_user_id}"


def strip_mentions(text: str) -> str:
    return _MENTION_RE.sub("", text or "").strip()


def auth_url(discord_user_id: int) -> str:
    return f"{core.SERVER_BASE_URL}/auth/login/{discord_user_id}"


def auth_prompt(discord_user_id: int) -> str:
    return (
        "🔐 **Authentication Required**\n\n"
        "To use this bot, you need to authenticate with your Microsoft account: "
        f"<{auth_url(discord_user_id)}>"
    )
