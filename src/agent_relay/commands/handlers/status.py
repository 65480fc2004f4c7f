from __future__ import annotations

import discord
from discord import app_commands
from discord.ext import commands

from .. import register_cog


@register_cog
class RelayStatus(commands.Cog):
    """Report how many agent conversations are live."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @app_commands.command(name="relaystatus", description="Show active agent conversations.")
    @app_commands.default_permissions(administrator=True)
    async def relaystatus(self, interaction: discord.Interaction) -> None:
        stats = self.bot.relay.get_stats()
        lines = [f"Active conversations: {stats['active_connections']}"]
        for conn in stats["connections"][:10]:
            marker = "✅" if conn["has_conversation_id"] else "⚠️"
            lines.append(f"{marker} `{conn['user_id']}` last active {conn['last_activity']}")
        await interaction.response.send_message("\n".join(lines), ephemeral=True)
