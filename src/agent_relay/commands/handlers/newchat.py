from __future__ import annotations

import logging

import discord
from discord import app_commands
from discord.ext import commands

from agent_relay.relay.errors import RelayError

from .. import register_cog, require_sign_in

logger = logging.getLogger(__name__)


@register_cog
class NewChat(commands.Cog):
    """Reset the caller's agent conversation."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @app_commands.command(name="newchat", description="Start a new conversation with the agent.")
    async def newchat(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)

        caller = await require_sign_in(interaction)
        if caller is None:
            return
        user_id, credential = caller

        try:
            await self.bot.relay.new_conversation(user_id, credential)
        except RelayError as exc:
            logger.error("Failed to start new conversation for %s: %s", user_id, exc)
            await interaction.followup.send(
                "❌ Failed to start new conversation. Please try again.", ephemeral=True
            )
            return

        await interaction.followup.send(
            "🔄 Started a new conversation! You can now ask me anything.", ephemeral=True
        )
