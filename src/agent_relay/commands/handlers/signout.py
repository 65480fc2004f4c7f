from __future__ import annotations

import discord
from discord import app_commands
from discord.ext import commands

from agent_relay.users import user_key

from .. import register_cog


@register_cog
class SignOut(commands.Cog):
    """Forget the caller's stored credential and conversation."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @app_commands.command(name="signout", description="Sign out and end your conversation.")
    async def signout(self, interaction: discord.Interaction) -> None:
        removed = self.bot.relay.sign_out(user_key(interaction.user.id))
        message = "👋 Signed out. Your conversation has been closed." if removed else "You are not signed in."
        await interaction.response.send_message(message, ephemeral=True)
