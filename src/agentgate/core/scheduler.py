from __future__ import annotations

"""Timer scheduling seam for session expiry and drain retries.

Timers are explicit objects the caller keeps and cancels; nothing is
scheduled implicitly. The default implementation uses the running asyncio
loop so callbacks fire on the same loop that serves requests.
"""

import asyncio
import time
from typing import Any, Callable, Protocol


class ScheduledCallback(Protocol):
    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ScheduledCallback: ...

    def now(self) -> float: ...


class LoopScheduler:
    """Scheduler backed by ``loop.call_later`` on the running event loop."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), callback, *args)

    def now(self) -> float:
        # same clock as loop.time() on the default loop
        return time.monotonic()
