from __future__ import annotations

"""Runtime settings for the session gateway.

All values come from environment variables (optionally loaded from ``.env``
by the API entrypoint). Invalid or non-positive numbers fall back to the
defaults so a typo never takes the service down.

Env vars:
- AGENTGATE_MAX_ACTIVE_SESSIONS (default 20)
- AGENTGATE_SESSION_INACTIVITY_SECONDS (default 600)
- AGENTGATE_AUTO_CREATE_ON_SEND (default true)
- AGENTGATE_BUSY_POLICY ("wait" or "reject", default wait)
- AGENTGATE_CONSTRUCT_TIMEOUT_SECONDS (default 60)
- AGENTGATE_REQUEST_TIMEOUT_SECONDS (default 120)
- AGENTGATE_DRAIN_MAX_RETRIES (default 5)
- AGENTGATE_DRAIN_BACKOFF_BASE_SECONDS / AGENTGATE_DRAIN_BACKOFF_MAX_SECONDS
- AGENTGATE_MAX_MESSAGE_CHARS (default 5000)
"""

import os
from dataclasses import dataclass
from typing import Optional

BUSY_WAIT = "wait"
BUSY_REJECT = "reject"
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    max_active_sessions: int = 20
    inactivity_timeout: float = 600.0
    auto_create_on_send: bool = True
    busy_policy: str = BUSY_WAIT
    construct_timeout: float = 60.0
    request_timeout: float = 120.0
    drain_max_retries: int = 5
    drain_backoff_base: float = 1.0
    drain_backoff_max: float = 60.0
    max_message_chars: int = 5000

    @staticmethod
    def from_env() -> "Settings":
        busy = (os.getenv("AGENTGATE_BUSY_POLICY") or BUSY_WAIT).strip().lower()
        if busy not in (BUSY_WAIT, BUSY_REJECT):
            busy = BUSY_WAIT
        return Settings(
            max_active_sessions=_env_int("AGENTGATE_MAX_ACTIVE_SESSIONS", 20),
            inactivity_timeout=_env_float("AGENTGATE_SESSION_INACTIVITY_SECONDS", 600.0),
            auto_create_on_send=_env_bool("AGENTGATE_AUTO_CREATE_ON_SEND", True),
            busy_policy=busy,
            construct_timeout=_env_float("AGENTGATE_CONSTRUCT_TIMEOUT_SECONDS", 60.0),
            request_timeout=_env_float("AGENTGATE_REQUEST_TIMEOUT_SECONDS", 120.0),
            drain_max_retries=_env_int("AGENTGATE_DRAIN_MAX_RETRIES", 5),
            drain_backoff_base=_env_float("AGENTGATE_DRAIN_BACKOFF_BASE_SECONDS", 1.0),
            drain_backoff_max=_env_float("AGENTGATE_DRAIN_BACKOFF_MAX_SECONDS", 60.0),
            max_message_chars=_env_int("AGENTGATE_MAX_MESSAGE_CHARS", 5000),
        )

    def backoff_delay(self, attempts: int) -> float:
        """Delay before the next drain retry after ``attempts`` failures."""
        if attempts <= 0:
            return 0.0
        delay = self.drain_backoff_base * (2 ** (attempts - 1))
        return min(delay, self.drain_backoff_max)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
        return value if value > 0 else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
        return value if value > 0 else default
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw: Optional[str] = os.getenv(name)
    if raw is None:
        return default
    flag = raw.strip().lower()
    if flag in _TRUE_VALUES:
        return True
    if flag in _FALSE_VALUES:
        return False
    return default
