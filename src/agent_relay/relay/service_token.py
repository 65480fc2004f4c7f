"""Shared service credential obtained through a client-credential grant."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from .errors import CredentialUnavailable, RelayError

logger = logging.getLogger(__name__)

REFRESH_BUFFER = 5 * 60
DEFAULT_LIFETIME = 60 * 60


@dataclass(frozen=True)
class ServiceCredential:
    """Token returned by the identity provider; ``expires_on`` is epoch seconds."""

    token: str
    expires_on: float | None = None


class IdentityProvider(Protocol):
    async def acquire_service_credential(self, scope: str) -> ServiceCredential: ...


class ServiceTokenCache:
    """
    Cache a single service token and refresh it ahead of expiry.

    The cached token is served while ``now < expires_at - buffer``. Otherwise a
    new one is requested; concurrent callers share that one request. When the
    request fails the cache is emptied so the next call retries from scratch.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        scope: str,
        *,
        buffer: float = REFRESH_BUFFER,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._provider = provider
        self._scope = scope
        self._buffer = buffer
        self._clock = clock
        self._token: str | None = None
        self._expires_at: float = 0.0
        self._refreshing: asyncio.Task | None = None

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def is_fresh(self, now: float | None = None) -> bool:
        now = self._clock() if now is None else now
        return self._token is not None and now < self._expires_at - self._buffer

    async def get_or_refresh(self) -> str:
        if self.is_fresh():
            logger.debug("Using cached service token")
            return self._token  # type: ignore[return-value]

        if self._refreshing is None or self._refreshing.done():
            self._refreshing = asyncio.ensure_future(self._refresh())
        return await asyncio.shield(self._refreshing)

    async def _refresh(self) -> str:
        logger.info("Acquiring new service token")
        try:
            credential = await self._provider.acquire_service_credential(self._scope)
        except Exception as exc:
            self.clear()
            logger.error("Failed to acquire service token: %s", exc)
            if isinstance(exc, RelayError):
                raise
            raise CredentialUnavailable("Service token request failed") from exc

        if not credential.token:
            self.clear()
            raise CredentialUnavailable("Identity provider returned an empty token")

        now = self._clock()
        self._token = credential.token
        self._expires_at = (
            credential.expires_on if credential.expires_on is not None else now + DEFAULT_LIFETIME
        )
        logger.info("Service token acquired (valid for %.0fs)", self._expires_at - now)
        return credential.token

    def clear(self) -> None:
        self._token = None
        self._expires_at = 0.0

    def evict_expired(self, now: float | None = None) -> bool:
        """Forget the cached token once it is past its expiry; return whether it was dropped."""

        now = self._clock() if now is None else now
        if self._token is not None and now > self._expires_at:
            logger.info("Clearing expired service token from cache")
            self.clear()
            return True
        return False


__all__ = [
    "ServiceTokenCache",
    "ServiceCredential",
    "IdentityProvider",
    "REFRESH_BUFFER",
    "DEFAULT_LIFETIME",
]
