"""
Copilot Studio conversation client.

Talks to the Power Platform "dataverse-backed" conversation endpoint. Starting
a conversation and asking a question are each a single POST whose response is
a server-sent-event stream of activities, closed by an ``end`` event.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable

import aiohttp

from agent_relay.relay.agent import Fragment, StartedConversation
from agent_relay.relay.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

API_VERSION = "2022-03-01-preview"
CONVERSATION_ID_HEADER = "x-ms-conversationid"
HOST_SUFFIX = "environment.api.powerplatform.com"


@dataclass(frozen=True)
class CopilotHandle:
    """Per-user connection state: the bearer token the conversation was opened with."""

    credential: str


def environment_host(environment_id: str, suffix_len: int = 2) -> str:
    """
    Build the API host for ``environment_id``.

    The id is lower-cased with dashes removed; its last ``suffix_len``
    characters become a separate DNS label.
    """
    normalized = environment_id.lower().replace("-", "")
    if len(normalized) <= suffix_len:
        raise ValueError(f"Environment id {environment_id!r} is too short")
    prefix, suffix = normalized[:-suffix_len], normalized[-suffix_len:]
    return f"{prefix}.{suffix}.{HOST_SUFFIX}"


def parse_event_stream(lines: Iterable[str]) -> list[Fragment]:
    """Collect activity payloads from SSE ``lines`` until the stream ends."""

    activities: list[Fragment] = []
    event: str | None = None

    for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            event = None
            continue
        if line.startswith("event:"):
            event = line[len("event:"):].strip()
            if event == "end":
                break
            continue
        if not line.startswith("data:") or event not in (None, "activity"):
            continue

        data = line[len("data:"):].strip()
        if data == "end":
            break
        try:
            activity = json.loads(data)
        except json.JSONDecodeError as exc:
            logger.warning("Skipping malformed activity payload: %s", exc)
            continue
        if isinstance(activity, dict):
            activities.append(activity)

    return activities


class CopilotStudioClient:
    """Agent client for one Copilot Studio agent."""

    def __init__(
        self,
        environment_id: str,
        agent_identifier: str,
        *,
        timeout: float = 60.0,
    ) -> None:
        self.base_url = (
            f"https://{environment_host(environment_id)}"
            f"/copilotstudio/dataverse-backed/authenticated/bots/{agent_identifier}"
        )
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def start_conversation(self, credential: str) -> StartedConversation:
        url = f"{self.base_url}/conversations?api-version={API_VERSION}"
        activities, header_id = await self._post(
            url, credential, {"emitStartConversationEvent": True}
        )

        conversation_id = header_id
        if not conversation_id:
            conversation_id = next(
                (
                    a["conversation"]["id"]
                    for a in activities
                    if isinstance(a.get("conversation"), dict) and a["conversation"].get("id")
                ),
                None,
            )
        logger.info("Conversation started: %s", conversation_id)
        return StartedConversation(handle=CopilotHandle(credential), conversation_id=conversation_id)

    async def ask_question(
        self, handle: CopilotHandle, text: str, conversation_id: str | None
    ) -> list[Fragment]:
        if not conversation_id:
            raise UpstreamUnavailable("Cannot ask a question without a conversation id")

        url = f"{self.base_url}/conversations/{conversation_id}?api-version={API_VERSION}"
        body = {
            "activity": {
                "type": "message",
                "text": text,
                "conversation": {"id": conversation_id},
            }
        }
        activities, _ = await self._post(url, handle.credential, body)
        return activities

    async def _post(
        self, url: str, credential: str, body: dict[str, Any]
    ) -> tuple[list[Fragment], str | None]:
        headers = {
            "Authorization": f"Bearer {credential}",
            "Accept": "text/event-stream",
            "Content-Type": "application/json",
        }
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as s, s.post(
                url, json=body, headers=headers
            ) as r:
                if r.status >= 400:
                    logger.error("Agent request to %s failed with HTTP %d", url, r.status)
                    raise UpstreamUnavailable(f"Agent returned HTTP {r.status}")
                lines = [chunk.decode("utf-8", errors="replace") async for chunk in r.content]
                return parse_event_stream(lines), r.headers.get(CONVERSATION_ID_HEADER)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise UpstreamUnavailable(f"Agent request failed: {exc!r}") from exc


__all__ = [
    "CopilotStudioClient",
    "CopilotHandle",
    "environment_host",
    "parse_event_stream",
    "API_VERSION",
]
