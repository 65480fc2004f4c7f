"""
Chat-turn orchestration.

One turn moves through::

    AWAITING_CONNECTION -> SENDING -> COLLECTING -> CLASSIFYING
        -> {PLAIN_REPLY | CONSENT_FLOW | SIGN_IN_FLOW} -> RESOLVED

:meth:`MessageOrchestrator.handle_turn` runs a turn and returns the text to
show the user, raising a :class:`~agent_relay.relay.errors.RelayError` on
failure. :meth:`MessageOrchestrator.relay` wraps a turn with the chat-side
"thinking" indicator and turns failures into a generic apology.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Sequence

from .agent import AgentClient, Fragment
from .chat import ChatClient, PostedMessage
from .connections import ConnectionRegistry, UserSession
from .errors import ConsentLoopExceeded, RelayError, TurnTimeout, UpstreamUnavailable
from .fragments import classify_fragments, consent_approval_payload, render_sign_in
from .service_token import ServiceTokenCache
from .tokens import TokenStore

logger = logging.getLogger(__name__)

CONSENT_SENT = "I've sent the consent approval. Please wait a moment for the process to complete."
NO_RESPONSE = "No response from Copilot Studio"
THINKING = ":thinking: Thinking..."
APOLOGY = "Sorry, I encountered an error processing your message. Please try again."


class TurnState(str, Enum):
    AWAITING_CONNECTION = "awaiting_connection"
    SENDING = "sending"
    COLLECTING = "collecting_fragments"
    CLASSIFYING = "classifying"
    PLAIN_REPLY = "plain_reply"
    CONSENT_FLOW = "consent_flow"
    SIGN_IN_FLOW = "sign_in_flow"
    RESOLVED = "resolved"


class MessageOrchestrator:
    """Runs chat turns against the agent on behalf of chat-platform users."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        tokens: TokenStore,
        service_tokens: ServiceTokenCache,
        agent: AgentClient,
        *,
        chat: ChatClient | None = None,
        turn_timeout: float | None = 30.0,
        consent_max_depth: int = 3,
    ) -> None:
        self.registry = registry
        self.tokens = tokens
        self.service_tokens = service_tokens
        self._agent = agent
        self.chat = chat
        self._turn_timeout = turn_timeout
        self._consent_max_depth = consent_max_depth

    # ------------------------------------------------------------------ #
    # Turn handling
    # ------------------------------------------------------------------ #

    async def handle_turn(self, user_id: str, text: str, credential: str | None = None) -> str:
        """Send ``text`` for ``user_id`` and return the reply to show them."""

        try:
            return await asyncio.wait_for(
                self._run_turn(user_id, text, credential), timeout=self._turn_timeout
            )
        except asyncio.TimeoutError as exc:
            logger.error("Turn for %s timed out after %ss; dropping session", user_id, self._turn_timeout)
            self.registry.invalidate(user_id)
            raise TurnTimeout(f"No reply within {self._turn_timeout}s") from exc

    async def _run_turn(self, user_id: str, text: str, credential: str | None) -> str:
        _log_state(user_id, TurnState.AWAITING_CONNECTION)
        if credential is None:
            credential = await self.service_tokens.get_or_refresh()
        session = await self.registry.get_or_create(user_id, credential)

        _log_state(user_id, TurnState.SENDING)
        fragments = await self._ask(session, text)

        _log_state(user_id, TurnState.CLASSIFYING)
        try:
            reply = await self._resolve(session, fragments)
        except RelayError:
            raise
        except Exception as exc:
            raise UpstreamUnavailable(f"Could not resolve agent reply for {user_id}") from exc

        self.registry.touch(user_id)
        _log_state(user_id, TurnState.RESOLVED)
        return reply

    async def _resolve(self, session: UserSession, fragments: Sequence[Fragment]) -> str:
        result = classify_fragments(fragments)

        if result.text:
            _log_state(session.user_id, TurnState.PLAIN_REPLY)
            reply = result.text
        elif result.consent_card is not None:
            _log_state(session.user_id, TurnState.CONSENT_FLOW)
            await self._approve_consent(session, self._consent_max_depth)
            reply = CONSENT_SENT
        else:
            reply = NO_RESPONSE

        if result.sign_in_card is not None:
            _log_state(session.user_id, TurnState.SIGN_IN_FLOW)
            reply = f"{reply} {render_sign_in(result.sign_in_card)}"
        return reply

    async def _ask(self, session: UserSession, text: str) -> Sequence[Fragment]:
        try:
            fragments = await self._agent.ask_question(session.handle, text, session.conversation_id)
        except RelayError:
            raise
        except Exception as exc:
            raise UpstreamUnavailable(f"Agent request failed for {session.user_id}") from exc

        _log_state(session.user_id, TurnState.COLLECTING)
        logger.debug("Received %d fragment(s) for %s", len(fragments), session.user_id)
        return fragments

    async def _approve_consent(self, session: UserSession, remaining: int) -> None:
        """Answer a consent card with "Allow", following up to ``remaining`` rounds."""

        if remaining <= 0:
            raise ConsentLoopExceeded(self._consent_max_depth)

        logger.info("Sending consent approval for %s (%d round(s) left)", session.user_id, remaining)
        fragments = await self._ask(session, consent_approval_payload())
        if classify_fragments(fragments).consent_card is not None:
            await self._approve_consent(session, remaining - 1)

    # ------------------------------------------------------------------ #
    # Session management
    # ------------------------------------------------------------------ #

    async def new_conversation(self, user_id: str, credential: str | None = None) -> UserSession:
        """Replace the user's conversation with a fresh one."""

        logger.info("Starting new conversation for %s", user_id)
        self.registry.invalidate(user_id)
        if credential is None:
            credential = await self.service_tokens.get_or_refresh()
        return await self.registry.get_or_create(user_id, credential)

    def sign_out(self, user_id: str) -> bool:
        revoked = self.tokens.revoke(user_id)
        cleared = self.registry.invalidate(user_id)
        return revoked or cleared

    def get_stats(self) -> dict:
        return self.registry.stats()

    # ------------------------------------------------------------------ #
    # Chat-platform delivery
    # ------------------------------------------------------------------ #

    async def relay(
        self,
        user_id: str,
        channel: int | str,
        text: str,
        credential: str | None = None,
    ) -> str:
        """
        Run a turn and deliver the outcome to ``channel``.

        A "thinking" message is posted first and then edited into the reply.
        Failures are reported with a generic apology; the error detail only
        goes to the log. Returns the text that was delivered.
        """
        if self.chat is None:
            raise RuntimeError("relay() requires a chat client")

        indicator = await self._post_indicator(channel)
        try:
            reply = await self.handle_turn(user_id, text, credential)
        except RelayError as exc:
            logger.error("Turn failed for %s: %s", user_id, exc)
            reply = APOLOGY

        await self._deliver(channel, indicator, reply)
        return reply

    async def _post_indicator(self, channel: int | str) -> PostedMessage | None:
        try:
            return await self.chat.post_message(channel, THINKING)
        except Exception as exc:
            logger.warning("Failed to post thinking message in %s: %s", channel, exc)
            return None

    async def _deliver(self, channel: int | str, indicator: PostedMessage | None, text: str) -> None:
        if indicator is not None:
            try:
                await self.chat.update_message(indicator.channel, indicator.id, text)
                return
            except Exception as exc:
                logger.warning("Failed to update thinking message in %s: %s", channel, exc)

        try:
            await self.chat.post_message(channel, text)
        except Exception as exc:
            logger.error("Failed to post reply in %s: %s", channel, exc)


def _log_state(user_id: str, state: TurnState) -> None:
    logger.debug("Turn for %s -> %s", user_id, state.value)


__all__ = [
    "MessageOrchestrator",
    "TurnState",
    "CONSENT_SENT",
    "NO_RESPONSE",
    "THINKING",
    "APOLOGY",
]
