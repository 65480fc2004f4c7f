import logging

import discord

from agent_relay.config import core
from agent_relay.users import auth_prompt, strip_mentions, user_key

logger = logging.getLogger(__name__)

GREETING = "Hi! How can I help you today?"
APOLOGY = "Sorry, I encountered an error processing your message. Please try again."


async def handle(client: discord.Client, message: discord.Message):
    """Forward direct messages and bot mentions to the agent."""

    # Never answer bots, including ourselves.
    if message.author.bot or (client.user and message.author.id == client.user.id):
        return

    is_dm = message.guild is None
    if not is_dm:
        bot_mentioned = client.user in message.mentions if client.user else False
        if not bot_mentioned:
            return
        # Optional allow-list for guild channels
        if core.CHANNEL_IDS and message.channel.id not in core.CHANNEL_IDS:
            return

    text = strip_mentions(message.content)
    if not text:
        await message.channel.send(GREETING)
        return

    user_id = user_key(message.author.id)
    logger.info(
        "Message from %s in %s",
        user_id,
        "DM" if is_dm else getattr(message.channel, "name", message.channel.id),
    )

    relay = client.relay
    credential = None
    if core.REQUIRE_AUTH:
        credential = relay.tokens.get(user_id)
        if credential is None:
            logger.info("User %s not authenticated - sending auth link", user_id)
            await message.channel.send(auth_prompt(message.author.id))
            return

    try:
        async with message.channel.typing():
            await relay.relay(user_id, message.channel.id, text, credential)
    except Exception:
        logger.exception("Error handling message from %s", user_id)
        try:
            await message.channel.send(APOLOGY)
        except discord.DiscordException as exc:
            logger.error("Failed to send error message: %s", exc)
