"""
Slash commands for the relay.

Cogs in ``commands/handlers`` register themselves with :func:`register_cog`.
:func:`setup` attaches them to the bot, refuses duplicate command names and
installs a tree-wide error handler so a failing command answers the caller
with a generic message instead of the error text.

Handlers that act on the caller's conversation use :func:`require_sign_in`
to apply the same authentication gate as direct messages.
"""

from __future__ import annotations

import logging
from importlib import import_module
from typing import List, Optional, Tuple, Type

import discord
from discord import app_commands
from discord.ext import commands as commands_ext

from agent_relay.config import core
from agent_relay.users import auth_prompt, user_key

logger = logging.getLogger(__name__)

HANDLERS = ("newchat", "signout", "status")
COMMAND_FAILED = "❌ Something went wrong running that command. Please try again."

_COG_CLASSES: List[Type[commands_ext.Cog]] = []


def register_cog(cls: Type[commands_ext.Cog]) -> Type[commands_ext.Cog]:
    """Class decorator adding a cog to the set attached by :func:`setup`."""

    if not issubclass(cls, commands_ext.Cog):
        raise TypeError("register_cog expects a discord.ext.commands.Cog subclass")
    if cls not in _COG_CLASSES:
        _COG_CLASSES.append(cls)
    return cls


async def require_sign_in(interaction: discord.Interaction) -> Optional[Tuple[str, Optional[str]]]:
    """
    Return ``(relay user id, credential)`` for the caller.

    When sign-in is required and the caller has no valid token, the auth link
    is sent as a follow-up and ``None`` is returned. The interaction must
    already be deferred.
    """
    user_id = user_key(interaction.user.id)
    credential = interaction.client.relay.tokens.get(user_id)
    if core.REQUIRE_AUTH and credential is None:
        await interaction.followup.send(auth_prompt(interaction.user.id), ephemeral=True)
        return None
    return user_id, credential


async def on_command_error(
    interaction: discord.Interaction, error: app_commands.AppCommandError
) -> None:
    command = interaction.command.name if interaction.command else "?"
    logger.error("Command /%s failed for %s: %s", command, interaction.user.id, error)

    try:
        if interaction.response.is_done():
            await interaction.followup.send(COMMAND_FAILED, ephemeral=True)
        else:
            await interaction.response.send_message(COMMAND_FAILED, ephemeral=True)
    except discord.DiscordException as exc:
        logger.warning("Could not report command failure: %s", exc)


async def setup(bot: commands_ext.Bot) -> None:
    """Attach registered cogs to ``bot`` (call from ``setup_hook``)."""

    names: set[str] = set()
    for cog_cls in _COG_CLASSES:
        if bot.get_cog(cog_cls.__name__):
            continue
        cog = cog_cls(bot)
        provided = {cmd.name for cmd in cog.get_app_commands()}
        clash = provided & names
        if clash:
            logger.error("Skipping %s: duplicate command(s) %s", cog_cls.__name__, sorted(clash))
            continue
        await bot.add_cog(cog)
        names |= provided

    bot.tree.error(on_command_error)
    logger.info("Slash commands ready: %s", ", ".join(f"/{n}" for n in sorted(names)) or "none")


for _name in HANDLERS:
    import_module(f"{__name__}.handlers.{_name}")


__all__ = [
    "register_cog",
    "require_sign_in",
    "on_command_error",
    "setup",
    "COMMAND_FAILED",
]
