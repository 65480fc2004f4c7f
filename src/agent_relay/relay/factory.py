"""Assemble the relay core from application configuration."""

from __future__ import annotations

import logging

from agent_relay.clients.copilot import CopilotStudioClient
from agent_relay.clients.identity import IdentityClient
from agent_relay.config import copilot, core, relay
from agent_relay.server import AuthServer

from .chat import ChatClient
from .connections import ConnectionRegistry
from .janitor import JanitorTask
from .orchestrator import MessageOrchestrator
from .service_token import ServiceTokenCache
from .tokens import TokenStore

logger = logging.getLogger(__name__)


def build(
    chat: ChatClient | None = None,
) -> tuple[MessageOrchestrator, JanitorTask, AuthServer]:
    """Return the orchestrator, its janitor and the sign-in server, wired to config."""

    agent = CopilotStudioClient(copilot.ENVIRONMENT_ID, copilot.AGENT_IDENTIFIER)
    identity = IdentityClient(
        copilot.TENANT_ID,
        copilot.APP_CLIENT_ID,
        copilot.CLIENT_SECRET,
        authority=copilot.LOGIN_AUTHORITY,
    )

    tokens = TokenStore()
    service_tokens = ServiceTokenCache(identity, copilot.OAUTH_SCOPE)
    registry = ConnectionRegistry(agent)

    orchestrator = MessageOrchestrator(
        registry,
        tokens,
        service_tokens,
        agent,
        chat=chat,
        turn_timeout=relay.MESSAGE_TIMEOUT,
        consent_max_depth=relay.CONSENT_MAX_DEPTH,
    )
    janitor = JanitorTask(
        registry,
        tokens,
        service_tokens,
        idle_timeout=relay.CONNECTION_TIMEOUT,
        token_max_age=relay.TOKEN_MAX_AGE,
        interval=relay.CLEANUP_INTERVAL,
    )
    auth_server = AuthServer(
        orchestrator,
        identity,
        base_url=core.SERVER_BASE_URL,
        scope=copilot.OAUTH_SCOPE,
        host=core.HOST,
        port=core.PORT,
    )
    logger.info(
        "Relay ready (idle timeout=%.0fs, cleanup every %.0fs)",
        relay.CONNECTION_TIMEOUT,
        relay.CLEANUP_INTERVAL,
    )
    return orchestrator, janitor, auth_server


__all__ = ["build"]
