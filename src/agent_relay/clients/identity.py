"""Client-credential token requests against the Microsoft identity platform."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable
from urllib.parse import urlencode

import aiohttp

from agent_relay.relay.errors import CredentialUnavailable
from agent_relay.relay.service_token import ServiceCredential

logger = logging.getLogger(__name__)


def parse_token_response(payload: Any, now: float) -> ServiceCredential:
    """Build a :class:`ServiceCredential` from an OAuth2 token response body."""

    if not isinstance(payload, dict):
        raise CredentialUnavailable("Token endpoint returned an unexpected body")

    token = payload.get("access_token")
    if not token:
        error = payload.get("error_description") or payload.get("error") or "no access_token"
        raise CredentialUnavailable(f"Token request rejected: {error}")

    expires_in = payload.get("expires_in")
    expires_on = now + float(expires_in) if expires_in is not None else None
    return ServiceCredential(token=token, expires_on=expires_on)


class IdentityClient:
    """Confidential client for one app registration in one tenant."""

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        *,
        authority: str = "https://login.microsoftonline.com",
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        base = f"{authority.rstrip('/')}/{tenant_id}/oauth2/v2.0"
        self.authorize_endpoint = f"{base}/authorize"
        self.token_url = f"{base}/token"
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._clock = clock

    async def acquire_service_credential(self, scope: str) -> ServiceCredential:
        return await self._request_token(
            {
                "grant_type": "client_credentials",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "scope": scope,
            }
        )

    def authorize_url(
        self, *, state: str, redirect_uri: str, scope: str, code_challenge: str
    ) -> str:
        """URL of the interactive sign-in page (authorization code flow with PKCE)."""

        query = urlencode(
            {
                "client_id": self._client_id,
                "response_type": "code",
                "redirect_uri": redirect_uri,
                "scope": scope,
                "state": state,
                "code_challenge": code_challenge,
                "code_challenge_method": "S256",
            }
        )
        return f"{self.authorize_endpoint}?{query}"

    async def redeem_code(
        self, code: str, *, redirect_uri: str, code_verifier: str, scope: str
    ) -> ServiceCredential:
        """Exchange an authorization code for the signed-in user's access token."""

        return await self._request_token(
            {
                "grant_type": "authorization_code",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
                "code_verifier": code_verifier,
                "scope": scope,
            }
        )

    async def _request_token(self, form: dict[str, str]) -> ServiceCredential:
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as s, s.post(
                self.token_url, data=form
            ) as r:
                payload = await r.json(content_type=None)
                status = r.status
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise CredentialUnavailable(f"Token request failed: {exc!r}") from exc

        if status >= 400:
            logger.error("Token endpoint returned HTTP %d", status)
        return parse_token_response(payload, self._clock())


__all__ = ["IdentityClient", "parse_token_response"]
