"""Session, credential and chat-turn core of the relay."""

from .connections import ConnectionRegistry, UserSession
from .errors import (
    ConsentLoopExceeded,
    CredentialUnavailable,
    MalformedSignInCard,
    RelayError,
    TurnTimeout,
    UpstreamUnavailable,
)
from .janitor import JanitorTask, SweepReport
from .orchestrator import MessageOrchestrator, TurnState
from .service_token import ServiceCredential, ServiceTokenCache
from .tokens import LegacyToken, TokenRecord, TokenStore

__all__ = [
    "ConnectionRegistry",
    "UserSession",
    "TokenStore",
    "TokenRecord",
    "LegacyToken",
    "ServiceTokenCache",
    "ServiceCredential",
    "MessageOrchestrator",
    "TurnState",
    "JanitorTask",
    "SweepReport",
    "RelayError",
    "CredentialUnavailable",
    "UpstreamUnavailable",
    "TurnTimeout",
    "ConsentLoopExceeded",
    "MalformedSignInCard",
]
