import logging

import discord

logger = logging.getLogger(__name__)


async def handle(client: discord.Client):
    """Start housekeeping once the gateway session is ready."""
    logger.info("Logged in as %s (ID: %s)", client.user.name, client.user.id)

    await client.janitor.start()
