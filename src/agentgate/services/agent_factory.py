from __future__ import annotations

"""Construction of LangChain-backed agent handles.

Each handle wraps one ``ChatOpenAI`` client and keeps its own conversation
history, so every session is an independent thread. Construction validates
the required credentials, loads the opaque wallet blob and persists the
exported blob afterwards.
"""

import asyncio
import logging
import os
from typing import Any, AsyncIterator, Callable, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from ..domain.agent_models import AgentChunk, TokenUsage
from .prompts import system_prompt
from .wallet_store import DEFAULT_NETWORK_ID, FileWalletStore, WalletConfig

logger = logging.getLogger("agentgate.agents")
LOG = logging.getLogger("agentgate.llm")

REQUIRED_ENV_VARS = ("OPENAI_API_KEY", "CDP_API_KEY_NAME", "CDP_API_KEY_PRIVATE_KEY")
DEFAULT_MODEL = "gpt-4o"


class AgentConfigurationError(RuntimeError):
    def __init__(self, missing: List[str]) -> None:
        super().__init__("Required environment variables are not set: " + ", ".join(missing))
        self.missing = missing


def missing_env_vars() -> List[str]:
    return [name for name in REQUIRED_ENV_VARS if not os.getenv(name)]


def validate_environment() -> None:
    missing = missing_env_vars()
    if missing:
        raise AgentConfigurationError(missing)
    if not os.getenv("NETWORK_ID"):
        logger.warning("NETWORK_ID not set, defaulting to %s", DEFAULT_NETWORK_ID)


def configured_model() -> str:
    return os.getenv("AGENTGATE_LLM_MODEL") or DEFAULT_MODEL


def _chunk_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: List[str] = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)
    return ""


def _chunk_usage(metadata: Any) -> Optional[TokenUsage]:
    if not metadata:
        return None
    return TokenUsage(
        prompt_tokens=int(metadata.get("input_tokens", 0) or 0),
        completion_tokens=int(metadata.get("output_tokens", 0) or 0),
        total_tokens=int(metadata.get("total_tokens", 0) or 0),
    )


class LangChainAgentHandle:
    """One running conversation bound to a chat model."""

    def __init__(
        self,
        llm: Any,
        system_prompt: str,
        model_name: str,
        max_history: int = 20,
    ) -> None:
        self._llm = llm
        self._system = SystemMessage(content=system_prompt)
        self._history: List[BaseMessage] = []
        self._max_history = max_history
        self.model_name = model_name

    @property
    def history(self) -> List[BaseMessage]:
        return list(self._history)

    async def converse(self, message: str) -> AsyncIterator[AgentChunk]:
        human = HumanMessage(content=message)
        messages = [self._system, *self._history, human]
        parts: List[str] = []
        async for chunk in self._llm.astream(messages):
            text = _chunk_text(getattr(chunk, "content", ""))
            usage = _chunk_usage(getattr(chunk, "usage_metadata", None))
            if not text and usage is None:
                continue
            parts.append(text)
            yield AgentChunk(kind="agent", content=text, usage=usage)
        self._history.extend([human, AIMessage(content="".join(parts))])
        if len(self._history) > self._max_history:
            del self._history[: len(self._history) - self._max_history]


class LangChainAgentFactory:
    def __init__(
        self,
        wallet_store: Optional[FileWalletStore] = None,
        model: Optional[str] = None,
        temperature: float = 0.7,
        llm_builder: Optional[Callable[[WalletConfig], Any]] = None,
    ) -> None:
        self._wallet_store = wallet_store or FileWalletStore()
        self.model = model or configured_model()
        self.temperature = temperature
        self._llm_builder = llm_builder or self._build_llm

    def _build_llm(self, wallet: WalletConfig) -> ChatOpenAI:
        LOG.info("Using remote LLM provider model=%s network=%s", self.model, wallet.network_id)
        return ChatOpenAI(
            model=self.model,
            temperature=self.temperature,
            stream_usage=True,
            base_url=os.getenv("OPENAI_BASE_URL") or None,
        )

    async def construct(self) -> LangChainAgentHandle:
        validate_environment()
        wallet = await asyncio.to_thread(self._wallet_store.build_config)
        llm = self._llm_builder(wallet)
        handle = LangChainAgentHandle(
            llm=llm,
            system_prompt=system_prompt(),
            model_name=self.model,
        )
        try:
            await asyncio.to_thread(self._wallet_store.save, wallet.export())
        except OSError as exc:
            logger.error("Failed to persist wallet data to %s: %s", self._wallet_store.path, exc)
        return handle
