"""Periodic eviction of idle sessions and stale credentials."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from .connections import ConnectionRegistry
from .service_token import ServiceTokenCache
from .tokens import TokenStore

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    connections: int = 0
    tokens: int = 0
    service_token: bool = False


class JanitorTask:
    """
    Sweep the session registry and credential caches.

    :meth:`sweep` performs one pass and can be called directly; :meth:`start`
    repeats it every ``interval`` seconds in a background task.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        tokens: TokenStore,
        service_tokens: ServiceTokenCache | None = None,
        *,
        idle_timeout: float,
        token_max_age: float,
        interval: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._tokens = tokens
        self._service_tokens = service_tokens
        self._idle_timeout = idle_timeout
        self._token_max_age = token_max_age
        self._interval = interval
        self._clock = clock
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self, now: float | None = None) -> SweepReport:
        """Run one eviction pass. Errors are logged, never raised."""

        now = self._clock() if now is None else now
        report = SweepReport()

        # Sessions go first so legacy tokens see post-sweep activity.
        try:
            report.connections = self._registry.sweep(now, self._idle_timeout)
        except Exception:
            logger.exception("Connection sweep failed")

        try:
            report.tokens = self._tokens.sweep(
                now, self._token_max_age, last_activity=self._registry.last_activity
            )
        except Exception:
            logger.exception("Token sweep failed")

        if self._service_tokens is not None:
            try:
                report.service_token = self._service_tokens.evict_expired(now)
            except Exception:
                logger.exception("Service token eviction failed")

        if report.connections or report.tokens:
            logger.info(
                "Cleanup completed: %d connection(s), %d token(s) removed",
                report.connections,
                report.tokens,
            )
        return report

    async def _run(self) -> None:
        # First pass one interval after start.
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Cleanup cycle failed")

    async def start(self) -> asyncio.Task:
        """Schedule :meth:`sweep` every ``interval`` seconds; idempotent."""

        if self.running:
            return self._task  # type: ignore[return-value]

        logger.info("Starting cleanup (interval=%.0fs)", self._interval)
        self._task = asyncio.create_task(self._run(), name="relay-janitor")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Cleanup stopped")


__all__ = ["JanitorTask", "SweepReport"]
