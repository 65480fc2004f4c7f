"""
HTTP endpoints served alongside the bot.

``GET /auth/login/{discord_id}``
    Starts the Microsoft sign-in (authorization code flow with PKCE) and
    redirects the browser to the login page. The Discord id travels as the
    OAuth ``state``.
``GET /auth/callback``
    Redeems the returned code and stores the user's access token in the
    relay's :class:`~agent_relay.relay.tokens.TokenStore`.
``GET /health``
    Liveness plus the relay's session statistics.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Tuple

from aiohttp import web
from jwt.utils import base64url_encode

from agent_relay.clients.identity import IdentityClient
from agent_relay.relay.errors import RelayError
from agent_relay.relay.orchestrator import MessageOrchestrator
from agent_relay.users import user_key

logger = logging.getLogger(__name__)

VERIFIER_TTL = 600.0

SIGNED_IN_PAGE = (
    "<h2>✅ Authentication Successful!</h2>"
    "<p>You can now return to Discord and start chatting with the bot.</p>"
    "<p>This window can be closed.</p>"
)
SIGN_IN_FAILED_PAGE = (
    "<h2>❌ Authentication Failed</h2>"
    "<p>Please try again from Discord.</p>"
)

SignedInCallback = Callable[[int], Awaitable[None]]


def pkce_pair() -> Tuple[str, str]:
    """Return a fresh ``(code_verifier, S256 code_challenge)`` pair."""

    verifier = secrets.token_urlsafe(64)
    challenge = base64url_encode(hashlib.sha256(verifier.encode("ascii")).digest()).decode("ascii")
    return verifier, challenge


class AuthServer:
    """aiohttp application handling user sign-in for the relay."""

    def __init__(
        self,
        relay: MessageOrchestrator,
        identity: IdentityClient,
        *,
        base_url: str,
        scope: str,
        host: str = "0.0.0.0",
        port: int = 8005,
        on_signed_in: SignedInCallback | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._relay = relay
        self._identity = identity
        self._scope = scope
        self._host = host
        self._port = port
        self._clock = clock
        self.redirect_uri = f"{base_url.rstrip('/')}/auth/callback"
        self.on_signed_in = on_signed_in

        # discord id -> (code verifier, issued at)
        self._verifiers: Dict[str, Tuple[str, float]] = {}
        self._runner: web.AppRunner | None = None

        self.app = web.Application()
        self.app.router.add_get("/health", self.health)
        self.app.router.add_get("/auth/login/{discord_id}", self.login)
        self.app.router.add_get("/auth/callback", self.callback)

    # ------------------------------------------------------------------ #
    # Handlers
    # ------------------------------------------------------------------ #

    async def login(self, request: web.Request) -> web.Response:
        discord_id = request.match_info["discord_id"]
        if not discord_id.isdigit():
            raise web.HTTPBadRequest(text="Invalid user id")

        now = self._clock()
        for stale, (_, issued) in list(self._verifiers.items()):
            if now - issued > VERIFIER_TTL:
                del self._verifiers[stale]

        verifier, challenge = pkce_pair()
        self._verifiers[discord_id] = (verifier, now)
        logger.info("Starting sign-in for %s", user_key(int(discord_id)))
        raise web.HTTPFound(
            self._identity.authorize_url(
                state=discord_id,
                redirect_uri=self.redirect_uri,
                scope=self._scope,
                code_challenge=challenge,
            )
        )

    async def callback(self, request: web.Request) -> web.Response:
        error = request.query.get("error")
        if error:
            logger.warning("Sign-in rejected by identity provider: %s", error)
            return _page(SIGN_IN_FAILED_PAGE, status=400)

        code = request.query.get("code")
        state = request.query.get("state")
        if not code or not state:
            return web.Response(status=400, text="Missing authorization code or state")

        pending = self._verifiers.pop(state, None)
        if pending is None or self._clock() - pending[1] > VERIFIER_TTL:
            logger.warning("No pending sign-in for state %s", state)
            return _page(SIGN_IN_FAILED_PAGE, status=400)

        try:
            credential = await self._identity.redeem_code(
                code,
                redirect_uri=self.redirect_uri,
                code_verifier=pending[0],
                scope=self._scope,
            )
        except RelayError as exc:
            logger.error("Code redemption failed for %s: %s", state, exc)
            return _page(SIGN_IN_FAILED_PAGE, status=500)

        discord_id = int(state)
        self._relay.tokens.store(user_key(discord_id), credential.token)

        if self.on_signed_in is not None:
            try:
                await self.on_signed_in(discord_id)
            except Exception as exc:
                logger.warning("Could not notify %s about sign-in: %s", discord_id, exc)

        return _page(SIGNED_IN_PAGE)

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "stats": self._relay.get_stats(),
            }
        )

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        if self._runner is not None:
            return
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        logger.info("Auth server listening on http://%s:%d", self._host, self._port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None


def _page(body: str, status: int = 200) -> web.Response:
    return web.Response(text=body, status=status, content_type="text/html")


__all__ = ["AuthServer", "pkce_pair", "VERIFIER_TTL"]
