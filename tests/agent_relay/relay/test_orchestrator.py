import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from agent_relay.relay.chat import PostedMessage
from agent_relay.relay.connections import ConnectionRegistry
from agent_relay.relay.errors import (
    ConsentLoopExceeded,
    CredentialUnavailable,
    TurnTimeout,
    UpstreamUnavailable,
)
from agent_relay.relay.fragments import CONSENT_CARD_NAME, OAUTH_CARD_CONTENT_TYPE
from agent_relay.relay.orchestrator import (
    APOLOGY,
    CONSENT_SENT,
    NO_RESPONSE,
    THINKING,
    MessageOrchestrator,
)
from agent_relay.relay.service_token import ServiceTokenCache
from agent_relay.relay.tokens import TokenStore

CONSENT = {"type": "event", "name": CONSENT_CARD_NAME}
SIGN_IN = {
    "type": "message",
    "attachments": [
        {
            "contentType": OAUTH_CARD_CONTENT_TYPE,
            "content": {"text": "Sign in please", "buttons": [{"type": "signin", "value": "https://login/x"}]},
        }
    ],
}


def _text(value):
    return {"type": "message", "text": value}


@pytest.fixture
def build(clock, agent, identity):
    def _build(**kwargs):
        registry = ConnectionRegistry(agent, clock=clock)
        tokens = TokenStore(clock=clock)
        service = ServiceTokenCache(identity, "scope", clock=clock)
        return MessageOrchestrator(registry, tokens, service, agent, **kwargs)

    return _build


@pytest.mark.asyncio
async def test_plain_reply_concatenates_fragments(build, agent, clock):
    orchestrator = build()
    agent.replies = [[_text("Hello"), _text("there")]]

    reply = await orchestrator.handle_turn("u1", "hi", "user-cred")

    assert reply == "Hello there"
    assert agent.started == ["user-cred"]
    assert agent.asked == [("conv-1", "hi")]


@pytest.mark.asyncio
async def test_successful_turn_touches_session(build, agent, clock):
    orchestrator = build()
    await orchestrator.handle_turn("u1", "first", "cred")
    clock.advance(300)
    agent.replies = [[_text("ok")]]

    await orchestrator.handle_turn("u1", "second", "cred")

    assert orchestrator.registry.last_activity("u1") == clock()
    assert len(agent.started) == 1


@pytest.mark.asyncio
async def test_service_token_used_without_user_credential(build, agent, identity):
    orchestrator = build()
    agent.replies = [[_text("ok")]]

    await orchestrator.handle_turn("u1", "hi")

    assert agent.started == ["service-1"]
    assert identity.calls == ["scope"]


@pytest.mark.asyncio
async def test_consent_only_reply_sends_approval(build, agent):
    orchestrator = build()
    agent.replies = [[CONSENT], [_text("consent accepted")]]

    reply = await orchestrator.handle_turn("u1", "book a meeting", "cred")

    assert reply == CONSENT_SENT
    assert len(agent.asked) == 2
    approval = json.loads(agent.asked[1][1])
    assert approval["value"]["action"] == "Allow"
    assert agent.asked[1][0] == "conv-1"


@pytest.mark.asyncio
async def test_text_wins_over_consent(build, agent):
    orchestrator = build()
    agent.replies = [[_text("Hello"), CONSENT]]

    reply = await orchestrator.handle_turn("u1", "hi", "cred")

    assert reply == "Hello"
    assert len(agent.asked) == 1


@pytest.mark.asyncio
async def test_consent_loop_is_bounded(build, agent):
    orchestrator = build(consent_max_depth=3)
    agent.replies = [[CONSENT] for _ in range(10)]

    with pytest.raises(ConsentLoopExceeded):
        await orchestrator.handle_turn("u1", "hi", "cred")

    # One question plus three approvals
    assert len(agent.asked) == 4


@pytest.mark.asyncio
async def test_nested_consent_within_limit(build, agent):
    orchestrator = build(consent_max_depth=3)
    agent.replies = [[CONSENT], [CONSENT], [_text("done")]]

    assert await orchestrator.handle_turn("u1", "hi", "cred") == CONSENT_SENT
    assert len(agent.asked) == 3


@pytest.mark.asyncio
async def test_sign_in_link_appended_after_reply(build, agent):
    orchestrator = build()
    agent.replies = [[_text("I need access."), SIGN_IN]]

    reply = await orchestrator.handle_turn("u1", "hi", "cred")

    assert reply == "I need access. Sign in please\n\nClick here to sign in: https://login/x"


@pytest.mark.asyncio
async def test_sign_in_only_reply_uses_fallback_prefix(build, agent):
    orchestrator = build()
    agent.replies = [[SIGN_IN]]

    reply = await orchestrator.handle_turn("u1", "hi", "cred")

    assert reply.startswith(NO_RESPONSE + " Sign in please")


@pytest.mark.asyncio
async def test_empty_reply_uses_fallback(build, agent):
    orchestrator = build()
    agent.replies = [[{"type": "typing"}]]

    assert await orchestrator.handle_turn("u1", "hi", "cred") == NO_RESPONSE


@pytest.mark.asyncio
async def test_upstream_failure_keeps_session(build, agent):
    orchestrator = build()
    agent.replies = [RuntimeError("502"), [_text("second try")]]

    with pytest.raises(UpstreamUnavailable):
        await orchestrator.handle_turn("u1", "hi", "cred")
    assert "u1" in orchestrator.registry

    assert await orchestrator.handle_turn("u1", "hi", "cred") == "second try"
    assert len(agent.started) == 1


@pytest.mark.asyncio
async def test_credential_failure_aborts_turn(build, agent, identity):
    orchestrator = build()
    identity.error = RuntimeError("invalid_client")

    with pytest.raises(CredentialUnavailable):
        await orchestrator.handle_turn("u1", "hi")

    assert agent.started == []
    assert "u1" not in orchestrator.registry


@pytest.mark.asyncio
async def test_timeout_drops_session(build, agent):
    orchestrator = build(turn_timeout=0.01)
    agent.ask_delay = 1.0

    with pytest.raises(TurnTimeout):
        await orchestrator.handle_turn("u1", "hi", "cred")

    assert "u1" not in orchestrator.registry


@pytest.mark.asyncio
async def test_new_conversation_replaces_session(build, agent):
    orchestrator = build()
    old = await orchestrator.registry.get_or_create("u1", "cred")

    new = await orchestrator.new_conversation("u1", "cred")

    assert new is not old
    assert new.conversation_id == "conv-2"
    assert orchestrator.registry.get("u1") is new


@pytest.mark.asyncio
async def test_sign_out_clears_token_and_session(build, agent):
    orchestrator = build()
    orchestrator.tokens.store("u1", "cred")
    await orchestrator.registry.get_or_create("u1", "cred")

    assert orchestrator.sign_out("u1") is True
    assert orchestrator.tokens.get("u1") is None
    assert "u1" not in orchestrator.registry
    assert orchestrator.sign_out("u1") is False


@pytest.mark.asyncio
async def test_get_stats(build):
    orchestrator = build()
    await orchestrator.registry.get_or_create("u1", "cred")

    assert orchestrator.get_stats()["active_connections"] == 1


# --------------------------------------------------------------------------- #
# relay(): thinking indicator and delivery
# --------------------------------------------------------------------------- #


def _chat():
    chat = AsyncMock()
    chat.post_message.return_value = PostedMessage(id=99, channel=5)
    return chat


@pytest.mark.asyncio
async def test_relay_updates_thinking_message(build, agent):
    chat = _chat()
    orchestrator = build(chat=chat)
    agent.replies = [[_text("Answer")]]

    delivered = await orchestrator.relay("u1", 5, "question", "cred")

    assert delivered == "Answer"
    chat.post_message.assert_awaited_once_with(5, THINKING)
    chat.update_message.assert_awaited_once_with(5, 99, "Answer")


@pytest.mark.asyncio
async def test_relay_hides_error_details(build, agent):
    chat = _chat()
    orchestrator = build(chat=chat)
    agent.replies = [RuntimeError("secret internal detail")]

    delivered = await orchestrator.relay("u1", 5, "question", "cred")

    assert delivered == APOLOGY
    chat.update_message.assert_awaited_once_with(5, 99, APOLOGY)


@pytest.mark.asyncio
async def test_relay_falls_back_to_new_post_when_update_fails(build, agent):
    chat = _chat()
    chat.update_message.side_effect = RuntimeError("message deleted")
    orchestrator = build(chat=chat)
    agent.replies = [[_text("Answer")]]

    await orchestrator.relay("u1", 5, "question", "cred")

    assert chat.post_message.await_args_list[-1].args == (5, "Answer")
    assert chat.post_message.await_count == 2


@pytest.mark.asyncio
async def test_relay_proceeds_without_indicator(build, agent):
    chat = _chat()
    chat.post_message.side_effect = [RuntimeError("no permission"), PostedMessage(id=1, channel=5)]
    orchestrator = build(chat=chat)
    agent.replies = [[_text("Answer")]]

    delivered = await orchestrator.relay("u1", 5, "question", "cred")

    assert delivered == "Answer"
    chat.update_message.assert_not_awaited()
    assert chat.post_message.await_args_list[-1].args == (5, "Answer")


@pytest.mark.asyncio
async def test_timeout_while_connecting_leaves_no_session(build, agent):
    orchestrator = build(turn_timeout=0.01)
    agent.start_gate = asyncio.Event()

    with pytest.raises(TurnTimeout):
        await orchestrator.handle_turn("u1", "hi", "cred")

    agent.start_gate.set()
    await asyncio.sleep(0.01)
    assert "u1" not in orchestrator.registry


@pytest.mark.asyncio
async def test_unreadable_reply_surfaces_as_upstream_error(build, agent):
    orchestrator = build()
    agent.replies = [[{"type": "message", "text": 42}, _text("ok")]]

    with pytest.raises(UpstreamUnavailable):
        await orchestrator.handle_turn("u1", "hi", "cred")


@pytest.mark.asyncio
async def test_relay_replaces_indicator_when_reply_is_unreadable(build, agent):
    chat = _chat()
    orchestrator = build(chat=chat)
    agent.replies = [[{"type": "message", "text": 42}]]

    delivered = await orchestrator.relay("u1", 5, "question", "cred")

    assert delivered == APOLOGY
    chat.update_message.assert_awaited_once_with(5, 99, APOLOGY)


@pytest.mark.asyncio
async def test_consent_reply_with_text_ends_approval(build, agent):
    orchestrator = build()
    agent.replies = [
        [CONSENT],
        [{"type": "message", "name": CONSENT_CARD_NAME, "text": "Consent recorded"}],
    ]

    assert await orchestrator.handle_turn("u1", "hi", "cred") == CONSENT_SENT
    assert len(agent.asked) == 2
