"""
Registry of live upstream conversations, one per user.

Creation is single-flight: while a conversation is being opened for a user,
further :meth:`ConnectionRegistry.get_or_create` calls for that user await the
same in-flight task instead of opening a second conversation.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from .agent import AgentClient
from .errors import RelayError, UpstreamUnavailable

logger = logging.getLogger(__name__)


@dataclass
class UserSession:
    """Live mapping from a user to an upstream conversation."""

    user_id: str
    handle: Any
    conversation_id: str | None
    last_activity: float


class ConnectionRegistry:
    """Keyed cache of :class:`UserSession` objects with idle eviction."""

    def __init__(self, agent: AgentClient, *, clock: Callable[[], float] = time.time) -> None:
        self._agent = agent
        self._clock = clock
        self._sessions: Dict[str, UserSession] = {}
        self._pending: Dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._sessions

    def get(self, user_id: str) -> UserSession | None:
        return self._sessions.get(user_id)

    def last_activity(self, user_id: str) -> float | None:
        session = self._sessions.get(user_id)
        return session.last_activity if session else None

    # ------------------------------------------------------------------ #
    # WRITE helpers
    # ------------------------------------------------------------------ #

    async def get_or_create(self, user_id: str, credential: str) -> UserSession:
        """Return the user's session, opening a conversation if there is none."""

        session = self._sessions.get(user_id)
        if session is not None:
            return session

        pending = self._pending.get(user_id)
        if pending is None:
            pending = asyncio.ensure_future(self._create(user_id, credential))
            self._pending[user_id] = pending
        else:
            logger.debug("Awaiting in-flight connection for %s", user_id)
        return await asyncio.shield(pending)

    async def _create(self, user_id: str, credential: str) -> UserSession:
        this_task = asyncio.current_task()
        try:
            logger.info("Creating connection for %s", user_id)
            try:
                started = await self._agent.start_conversation(credential)
            except RelayError:
                raise
            except Exception as exc:
                raise UpstreamUnavailable(f"Could not start conversation for {user_id}") from exc

            session = UserSession(
                user_id=user_id,
                handle=started.handle,
                conversation_id=started.conversation_id,
                last_activity=self._clock(),
            )
            if self._pending.get(user_id) is not this_task:
                # Invalidated while opening; hand the session to current waiters only.
                logger.info("Discarding connection for %s opened before reset", user_id)
                return session
            if user_id in self._sessions:
                logger.warning("Replacing existing session for %s", user_id)
            self._sessions[user_id] = session
            logger.info("Connection created for %s (conversation %s)", user_id, started.conversation_id)
            return session
        finally:
            if self._pending.get(user_id) is this_task:
                del self._pending[user_id]

    def invalidate(self, user_id: str) -> bool:
        """
        Drop the user's session; return whether one existed.

        A conversation still being opened for the user is detached as well, so
        it is never stored once it completes.
        """

        if self._pending.pop(user_id, None) is not None:
            logger.info("Detached in-flight connection for %s", user_id)
        removed = self._sessions.pop(user_id, None) is not None
        if removed:
            logger.info("Cleared connection for %s", user_id)
        return removed

    def touch(self, user_id: str) -> None:
        session = self._sessions.get(user_id)
        if session is not None:
            session.last_activity = self._clock()

    # ------------------------------------------------------------------ #
    # MAINTENANCE
    # ------------------------------------------------------------------ #

    def sweep(self, now: float | None = None, idle: float = 2 * 60 * 60) -> int:
        """Remove sessions idle for more than ``idle`` seconds; return the count."""

        now = self._clock() if now is None else now
        removed = 0
        for user_id, session in list(self._sessions.items()):
            if now - session.last_activity > idle:
                self._sessions.pop(user_id, None)
                removed += 1

        if removed:
            logger.info("Swept %d idle connection(s)", removed)
        return removed

    def stats(self) -> dict:
        return {
            "active_connections": len(self._sessions),
            "connections": [
                {
                    "user_id": user_id,
                    "last_activity": datetime.fromtimestamp(
                        session.last_activity, tz=timezone.utc
                    ).isoformat(),
                    "has_conversation_id": bool(session.conversation_id),
                }
                for user_id, session in list(self._sessions.items())
            ],
        }


__all__ = ["ConnectionRegistry", "UserSession"]
