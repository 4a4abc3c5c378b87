from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ..domain.agent_models import AgentChunk, TokenUsage
from .prompts import DEFAULT_MODE, MODES

FENCE = "```"
TOOL_LOG_PREFIX = "(TOOL-LOG) "


@dataclass
class ParsedReply:
    mode: str
    response_text: str
    code_blocks: List[str] = field(default_factory=list)
    usage: List[TokenUsage] = field(default_factory=list)


def _merge_agent_text(chunks: Iterable[AgentChunk]) -> List[AgentChunk]:
    """Join consecutive agent chunks so fences split across tokens still match."""
    merged: List[AgentChunk] = []
    buffer: List[str] = []
    for chunk in chunks:
        if chunk.kind == "agent":
            buffer.append(chunk.content)
            continue
        if buffer:
            merged.append(AgentChunk(kind="agent", content="".join(buffer)))
            buffer = []
        merged.append(chunk)
    if buffer:
        merged.append(AgentChunk(kind="agent", content="".join(buffer)))
    return merged


def detect_mode(response_text: str) -> str:
    first_line = response_text.split("\n", 1)[0].strip().upper() if response_text else ""
    return first_line if first_line in MODES else DEFAULT_MODE


def parse_chunks(chunks: Iterable[AgentChunk]) -> ParsedReply:
    """Split a streamed reply into prose, fenced code blocks and a mode label.

    A line containing a fence toggles code-block state; the fence line itself
    (including any language tag) is dropped. Tool chunks become
    ``(TOOL-LOG)`` lines in the prose.
    """
    chunks = list(chunks)
    usage = [c.usage for c in chunks if c.usage is not None]

    response_lines: List[str] = []
    code_blocks: List[str] = []
    current_block: List[str] = []
    in_code_block = False

    for chunk in _merge_agent_text(chunks):
        if chunk.kind == "tools":
            response_lines.append(f"{TOOL_LOG_PREFIX}{chunk.content}")
            continue
        for line in chunk.content.split("\n"):
            if FENCE in line:
                if in_code_block:
                    code_blocks.append("".join(current_block))
                    current_block = []
                in_code_block = not in_code_block
            elif in_code_block:
                current_block.append(line + "\n")
            else:
                response_lines.append(line)

    # an unterminated fence still returns what was generated
    if in_code_block and current_block:
        code_blocks.append("".join(current_block))

    response_text = "\n".join(response_lines).strip()
    return ParsedReply(
        mode=detect_mode(response_text),
        response_text=response_text,
        code_blocks=code_blocks,
        usage=usage,
    )


def total_usage(usages: Iterable[TokenUsage]) -> Optional[TokenUsage]:
    items = list(usages)
    if not items:
        return None
    return TokenUsage(
        prompt_tokens=sum(u.prompt_tokens for u in items),
        completion_tokens=sum(u.completion_tokens for u in items),
        total_tokens=sum(u.total_tokens for u in items),
    )
