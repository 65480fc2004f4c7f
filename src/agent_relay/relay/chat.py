"""Contract for the chat platform the relay answers on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class PostedMessage:
    id: int | str
    channel: int | str


class ChatClient(Protocol):
    async def post_message(self, channel: int | str, text: str) -> PostedMessage: ...

    async def update_message(self, channel: int | str, message_id: int | str, text: str) -> None: ...


__all__ = ["ChatClient", "PostedMessage"]
