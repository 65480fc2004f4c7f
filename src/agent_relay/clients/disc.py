"""Discord bot bootstrap and chat-platform adapter."""

from __future__ import annotations

import logging

import discord
from discord.ext import commands as discord_commands

from agent_relay import commands as relay_commands
from agent_relay.config import core
from agent_relay.event_hooks import message_hook, ready_hook
from agent_relay.relay import factory
from agent_relay.relay.chat import PostedMessage

logger = logging.getLogger(__name__)

# --- Intents --------------------------------------------------------------- #
intents = discord.Intents.default()
intents.message_content = True

MAX_MESSAGE_LENGTH = 2000
SIGNED_IN_MESSAGE = "✅ You're signed in! You can now chat with me."


def _fit(text: str) -> str:
    if len(text) <= MAX_MESSAGE_LENGTH:
        return text
    return text[: MAX_MESSAGE_LENGTH - 1] + "…"


class DiscordChat:
    """Chat-platform client backed by a Discord connection."""

    def __init__(self, client: discord.Client) -> None:
        self._client = client

    async def _channel(self, channel_id: int | str):
        channel = self._client.get_channel(int(channel_id))
        if channel is None:
            channel = await self._client.fetch_channel(int(channel_id))
        return channel

    async def post_message(self, channel: int | str, text: str) -> PostedMessage:
        target = await self._channel(channel)
        sent = await target.send(_fit(text))
        return PostedMessage(id=sent.id, channel=sent.channel.id)

    async def update_message(self, channel: int | str, message_id: int | str, text: str) -> None:
        target = await self._channel(channel)
        await target.get_partial_message(int(message_id)).edit(content=_fit(text))


class RelayBot(discord_commands.Bot):
    """Discord front end that forwards conversations to the agent."""

    def __init__(self) -> None:
        super().__init__(command_prefix=discord_commands.when_mentioned, intents=intents)
        self.chat = DiscordChat(self)
        self.relay, self.janitor, self.auth_server = factory.build(self.chat)
        self.auth_server.on_signed_in = self.notify_signed_in

    async def setup_hook(self) -> None:
        """Register slash commands and synchronise with Discord."""

        await relay_commands.setup(self)

        try:
            await self.auth_server.start()
        except OSError:
            logger.exception("Failed to start auth server; sign-in links will not work")

        try:
            synced = await self.tree.sync()
            logger.info("Synced %d application command(s)", len(synced))
        except Exception:
            logger.exception("Failed to sync application commands")

    async def notify_signed_in(self, discord_id: int) -> None:
        """DM the user once their sign-in has been stored."""

        user = self.get_user(discord_id) or await self.fetch_user(discord_id)
        await user.send(SIGNED_IN_MESSAGE)

    async def close(self) -> None:
        await self.janitor.stop()
        await self.auth_server.stop()
        await super().close()


bot = RelayBot()


@bot.event
async def on_ready() -> None:
    await ready_hook.handle(bot)


@bot.event
async def on_message(message: discord.Message) -> None:
    await message_hook.handle(bot, message)


def run() -> None:
    """Start the Discord bot using configuration from the environment."""

    if not core.DISCORD_API_TOKEN:
        logger.error("No DISCORD_API_TOKEN configured. Cannot run client.")
        return

    try:
        bot.run(core.DISCORD_API_TOKEN, log_handler=None)
    except discord.LoginFailure as exc:
        logger.error("Login failed: %s", exc)
    except Exception as exc:  # pragma: no cover - defensive guard
        logger.exception("Unexpected error while running client: %s", exc)
