import itertools
import sys
from collections import deque
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from src.agentgate.core.session_manager import SessionManager  # noqa: E402
from src.agentgate.core.settings import Settings  # noqa: E402
from src.agentgate.domain.agent_models import AgentChunk  # noqa: E402
from src.agentgate.services import chat_log  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path):
    """Keep transcripts, wallet files and event publishing out of the repo."""
    monkeypatch.setenv("AGENTGATE_CHAT_LOG_FILE", str(tmp_path / "logs" / "chat.log"))
    monkeypatch.setenv("WALLET_DATA_FILE", str(tmp_path / "wallet_data.txt"))
    monkeypatch.delenv("REDIS_URL", raising=False)
    chat_log.reset_chat_log()
    yield
    chat_log.configure_chat_log("")
    chat_log.reset_chat_log()


class _ManualHandle:
    def __init__(self, when, seq, callback, args):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    def cancelled(self):
        return self._cancelled


class ManualScheduler:
    """Virtual clock: callbacks fire only when the test advances time."""

    def __init__(self):
        self._now = 0.0
        self._handles = []
        self._seq = itertools.count()

    def now(self):
        return self._now

    def call_later(self, delay, callback, *args):
        handle = _ManualHandle(self._now + max(0.0, delay), next(self._seq), callback, args)
        self._handles.append(handle)
        return handle

    def advance(self, seconds):
        target = self._now + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled() and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._handles.remove(handle)
            self._now = handle.when
            handle.callback(*handle.args)
        self._now = target

    def pending(self):
        return [h for h in self._handles if not h.cancelled()]


class FakeHandle:
    def __init__(self, index, reply, model_name="fake-model"):
        self.index = index
        self.reply = list(reply)
        self.model_name = model_name
        self.received = []
        self.closed = False
        self.gate = None
        self.fail_with = None
        self.in_flight = 0
        self.max_in_flight = 0

    async def converse(self, message):
        self.received.append(message)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.fail_with is not None:
                raise self.fail_with
            for chunk in self.reply:
                yield chunk
        finally:
            self.in_flight -= 1

    async def aclose(self):
        self.closed = True


class FakeAgentFactory:
    def __init__(self):
        self.handles = []
        self.calls = 0
        self.failures = deque()
        self.gate = None
        self.reply = [AgentChunk(kind="agent", content="GENERAL\nHello from the agent.")]

    def fail_next(self, times=1, exc=None):
        for _ in range(times):
            self.failures.append(exc or RuntimeError("wallet provisioning failed"))

    async def construct(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.popleft()
        handle = FakeHandle(len(self.handles), self.reply)
        self.handles.append(handle)
        return handle


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def factory():
    return FakeAgentFactory()


@pytest.fixture
def make_manager(scheduler, factory):
    """Build a manager on the manual clock; call inside the running loop."""

    def _make(**overrides):
        settings = Settings(**{"max_active_sessions": 2, "inactivity_timeout": 600.0, **overrides})
        return SessionManager(factory=factory, settings=settings, scheduler=scheduler)

    return _make
