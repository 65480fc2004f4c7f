"""
Per-user credential cache.

:class:`TokenStore` keeps one entry per user. Entries come in two shapes:

* :class:`TokenRecord`: the structured form written by :meth:`TokenStore.store`,
  carrying storage/usage timestamps and the expiration decoded from the
  token's ``exp`` claim.
* :class:`LegacyToken`: a bare credential string as older snapshots stored
  it. Legacy entries carry no metadata, so their expiration is decoded again
  on every read and their age is judged from the owning session's activity.

Both shapes share a single read path in :meth:`TokenStore.get`; an entry whose
expiration has passed is deleted the moment it is observed.
"""

from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Union

from jwt.utils import base64url_decode

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
ActivityLookup = Callable[[str], "float | None"]


@dataclass
class TokenRecord:
    """Structured credential entry. Timestamps are epoch seconds."""

    token: str
    stored_at: float
    last_used: float
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


@dataclass(frozen=True)
class LegacyToken:
    """Bare credential string without metadata."""

    token: str


StoredToken = Union[TokenRecord, LegacyToken]


def decode_expiry(token: str) -> float | None:
    """
    Return the ``exp`` claim of ``token`` as epoch seconds.

    Only the payload segment is read; header and signature are ignored. The
    claim is used to decide when to stop handing the token out, not to trust
    it. Anything that is not a three-part token whose payload carries a finite,
    representable ``exp`` yields ``None`` ("no known expiration").
    """
    parts = token.split(".") if isinstance(token, str) else []
    if len(parts) != 3:
        return None

    try:
        claims = json.loads(base64url_decode(parts[1]))
    except ValueError as exc:
        logger.warning("Could not decode token for expiration: %s", exc)
        return None

    exp = claims.get("exp") if isinstance(claims, dict) else None
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    if not math.isfinite(exp):
        logger.warning("Ignoring non-finite token expiration %r", exp)
        return None
    try:
        datetime.fromtimestamp(exp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        logger.warning("Ignoring out-of-range token expiration %r", exp)
        return None
    return float(exp)


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _ms_to_seconds(value: Any) -> float | None:
    if value is None:
        return None
    return float(value) / 1000


class TokenStore:
    """In-memory map of user id -> credential with expiry-aware reads."""

    def __init__(self, *, clock: Clock = time.time) -> None:
        self._clock = clock
        self._entries: Dict[str, StoredToken] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._entries

    # ------------------------------------------------------------------ #
    # WRITE helpers
    # ------------------------------------------------------------------ #

    def store(self, user_id: str, credential: str) -> TokenRecord:
        """Store ``credential`` for ``user_id``, replacing any previous entry."""

        now = self._clock()
        expires_at = decode_expiry(credential)
        record = TokenRecord(
            token=credential,
            stored_at=now,
            last_used=now,
            expires_at=expires_at,
        )
        self._entries[user_id] = record

        if expires_at is not None:
            logger.info("Stored token for %s (expires at %s)", user_id, _iso(expires_at))
        else:
            logger.info("Stored token for %s (no expiration set)", user_id)
        return record

    def load(self, user_id: str, raw: str | Mapping[str, Any]) -> StoredToken:
        """
        Insert a previously serialized entry.

        ``raw`` is either a bare token string (legacy shape) or a mapping with
        ``token`` and the original millisecond timestamps
        (``storedAt``/``lastUsed``/``expiresAt``, snake_case accepted too).
        """
        if isinstance(raw, str):
            entry: StoredToken = LegacyToken(raw)
        else:
            token = raw.get("token")
            if not token:
                raise ValueError(f"Token entry for {user_id} has no token")
            now = self._clock()
            stored_at = _ms_to_seconds(raw.get("storedAt", raw.get("stored_at")))
            last_used = _ms_to_seconds(raw.get("lastUsed", raw.get("last_used")))
            entry = TokenRecord(
                token=token,
                stored_at=stored_at if stored_at is not None else now,
                last_used=last_used if last_used is not None else now,
                expires_at=_ms_to_seconds(raw.get("expiresAt", raw.get("expires_at"))),
            )
        self._entries[user_id] = entry
        return entry

    def revoke(self, user_id: str) -> bool:
        """Delete the entry for ``user_id``; return whether one existed."""

        removed = self._entries.pop(user_id, None) is not None
        if removed:
            logger.info("Revoked token for %s", user_id)
        return removed

    # ------------------------------------------------------------------ #
    # READ helpers
    # ------------------------------------------------------------------ #

    def get(self, user_id: str) -> str | None:
        """Return a still-valid token for ``user_id`` or ``None``."""

        entry = self._entries.get(user_id)
        if entry is None:
            logger.debug("No stored token for %s", user_id)
            return None

        now = self._clock()

        if isinstance(entry, LegacyToken):
            expires_at = decode_expiry(entry.token)
            if expires_at is not None and now > expires_at:
                logger.info("Legacy token for %s expired at %s", user_id, _iso(expires_at))
                del self._entries[user_id]
                return None
            return entry.token

        if entry.is_expired(now):
            logger.info("Token for %s expired at %s", user_id, _iso(entry.expires_at))
            del self._entries[user_id]
            return None

        entry.last_used = now
        return entry.token

    def peek(self, user_id: str) -> StoredToken | None:
        """Return the raw entry without validation or usage tracking."""

        return self._entries.get(user_id)

    # ------------------------------------------------------------------ #
    # MAINTENANCE
    # ------------------------------------------------------------------ #

    def sweep(
        self,
        now: float | None = None,
        max_age: float = 24 * 60 * 60,
        last_activity: ActivityLookup | None = None,
    ) -> int:
        """
        Drop entries unused for longer than ``max_age`` seconds.

        Structured records are judged by ``last_used``. Legacy entries have no
        usage data, so ``last_activity`` (the session registry lookup) decides:
        a legacy token without a session, or whose session has been idle longer
        than ``max_age``, is removed. Expiration is not considered here.
        """
        now = self._clock() if now is None else now
        removed = 0

        for user_id, entry in list(self._entries.items()):
            if isinstance(entry, LegacyToken):
                activity = last_activity(user_id) if last_activity else None
                stale = activity is None or now - activity > max_age
            else:
                stale = now - entry.last_used > max_age

            if stale:
                self._entries.pop(user_id, None)
                removed += 1

        if removed:
            logger.info("Swept %d stale token(s)", removed)
        return removed


__all__ = ["TokenStore", "TokenRecord", "LegacyToken", "StoredToken", "decode_expiry"]
