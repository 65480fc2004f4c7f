"""Contract between the relay core and the upstream agent client."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence

# A response fragment ("activity"): {"type", "text"?, "name"?, "attachments"?: [{"contentType", "content"}]}
Fragment = dict[str, Any]


@dataclass(frozen=True)
class StartedConversation:
    """Result of opening a conversation; ``handle`` is opaque to the relay."""

    handle: Any
    conversation_id: str | None


class AgentClient(Protocol):
    async def start_conversation(self, credential: str) -> StartedConversation: ...

    async def ask_question(
        self, handle: Any, text: str, conversation_id: str | None
    ) -> Sequence[Fragment]: ...


__all__ = ["AgentClient", "StartedConversation", "Fragment"]
