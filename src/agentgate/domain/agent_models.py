from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Literal, Optional, Protocol

ChunkKind = Literal["agent", "tools"]


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class AgentChunk:
    """One piece of a streamed agent reply: model text or a tool log line."""

    kind: ChunkKind
    content: str
    usage: Optional[TokenUsage] = None


class AgentHandle(Protocol):
    """A running conversational agent owned by exactly one session."""

    model_name: str

    def converse(self, message: str) -> AsyncIterator[AgentChunk]: ...


class AgentFactory(Protocol):
    async def construct(self) -> AgentHandle: ...
