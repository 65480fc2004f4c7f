import asyncio
import os
import sys
import warnings
from pathlib import Path
from types import SimpleNamespace

import jwt
import pytest

# Add the src/ tree to sys.path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

# Ensure required environment variables for the config sections
os.environ.setdefault("DISCORD_API_TOKEN", "test-token")
os.environ.setdefault("COPILOT_ENVIRONMENT_ID", "Default-0a1b2c3d-0000-4000-8000-00000000ab12")
os.environ.setdefault("COPILOT_AGENT_IDENTIFIER", "cr123_agent")
os.environ.setdefault("COPILOT_APP_CLIENT_ID", "client-id")
os.environ.setdefault("COPILOT_CLIENT_SECRET", "client-secret")
os.environ.setdefault("COPILOT_TENANT_ID", "tenant-id")
os.environ.setdefault("SERVER_BASE_URL", "https://relay.example.com")

# Silence deprecation warnings surfaced from third-party dependencies during tests
warnings.filterwarnings("ignore", "'audioop' is deprecated", DeprecationWarning)

from agent_relay.relay.agent import StartedConversation  # noqa: E402
from agent_relay.relay.service_token import ServiceCredential  # noqa: E402


def pytest_configure(config):
    warnings.filterwarnings("ignore", "'audioop' is deprecated", DeprecationWarning)


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAgent:
    """Scripted agent client. Each ``ask_question`` consumes the next entry of ``replies``."""

    def __init__(self, replies=None) -> None:
        self.replies = list(replies or [])
        self.started: list[str] = []
        self.asked: list[tuple[str | None, str]] = []
        self.start_gate: asyncio.Event | None = None
        self.start_error: Exception | None = None
        self.ask_delay = 0.0

    async def start_conversation(self, credential):
        self.started.append(credential)
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.start_error is not None:
            error, self.start_error = self.start_error, None
            raise error
        n = len(self.started)
        return StartedConversation(
            handle=SimpleNamespace(credential=credential, n=n),
            conversation_id=f"conv-{n}",
        )

    async def ask_question(self, handle, text, conversation_id):
        self.asked.append((conversation_id, text))
        if self.ask_delay:
            await asyncio.sleep(self.ask_delay)
        if not self.replies:
            return []
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeIdentity:
    """Identity provider returning numbered tokens valid for ``lifetime`` seconds."""

    def __init__(self, clock, lifetime: float | None = 3600) -> None:
        self.clock = clock
        self.lifetime = lifetime
        self.calls: list[str] = []
        self.error: Exception | None = None

    async def acquire_service_credential(self, scope):
        self.calls.append(scope)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        expires_on = self.clock() + self.lifetime if self.lifetime is not None else None
        return ServiceCredential(token=f"service-{len(self.calls)}", expires_on=expires_on)


def make_jwt(exp=None, **claims) -> str:
    payload = dict(claims)
    if exp is not None:
        payload["exp"] = exp
    return jwt.encode(payload, "test-secret", algorithm="HS256")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def agent():
    return FakeAgent()


@pytest.fixture
def identity(clock):
    return FakeIdentity(clock)


@pytest.fixture
def token_factory():
    return make_jwt
