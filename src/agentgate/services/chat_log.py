"""Chat transcript logging.

Every chat event goes to the ``agentgate.chat`` logger, to an append-only
transcript file (``AGENTGATE_CHAT_LOG_FILE``, default ``logs/chat.log``) and
to a bounded in-memory buffer for diagnostics.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import List, Optional

_logger = logging.getLogger("agentgate.chat")
_file_logger = logging.getLogger("agentgate.chat.file")
_file_logger.propagate = False

SENDER_USER = "USER"
SENDER_AI = "AI"
SENDER_SYSTEM = "SYSTEM"

_RECENT_EVENTS: List["ChatEvent"] = []
_MAX_BUFFER = 200
_file_handler: Optional[logging.FileHandler] = None


def _now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass
class ChatEvent:
    chat_id: str
    sender: str
    message: str
    mode: Optional[str] = None
    status: Optional[str] = None
    timestamp: str = field(default_factory=_now_iso)

    def file_line(self) -> str:
        mode = f"[Mode: {self.mode}]" if self.mode else ""
        status = f"[Status: {self.status}]" if self.status else ""
        return f"[{self.timestamp}] [ChatID: {self.chat_id}] [{self.sender}] {mode} {status}\n{self.message}\n"


def configure_chat_log(path: Optional[str] = None) -> Optional[Path]:
    """Attach (or replace) the transcript file handler. Returns the file path."""
    global _file_handler
    target = path if path is not None else os.getenv("AGENTGATE_CHAT_LOG_FILE", "logs/chat.log")
    if _file_handler is not None:
        _file_logger.removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None
    if not target:
        return None
    log_path = Path(target)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError as exc:
        _logger.warning("chat_log_file_unavailable", extra={"path": str(log_path), "err": str(exc)})
        return None
    handler.setFormatter(logging.Formatter("%(message)s"))
    _file_logger.addHandler(handler)
    _file_logger.setLevel(logging.INFO)
    _file_handler = handler
    return log_path


def record_chat_event(event: ChatEvent) -> None:
    _RECENT_EVENTS.append(event)
    if len(_RECENT_EVENTS) > _MAX_BUFFER:
        del _RECENT_EVENTS[0 : len(_RECENT_EVENTS) - _MAX_BUFFER]

    level = logging.ERROR if event.status == "ERROR" else logging.INFO
    _logger.log(
        level,
        "[ChatID: %s] [%s] %s",
        event.chat_id,
        event.sender,
        event.message if len(event.message) <= 500 else event.message[:500] + "...",
        extra={"chat_mode": event.mode, "chat_status": event.status},
    )
    if _file_handler is not None:
        _file_logger.info(event.file_line())


def log_chat(
    chat_id: str,
    sender: str,
    message: str,
    *,
    mode: Optional[str] = None,
    status: Optional[str] = None,
) -> None:
    record_chat_event(ChatEvent(chat_id=chat_id, sender=sender, message=message, mode=mode, status=status))


def list_recent_chat_events(limit: int = 50) -> List[ChatEvent]:
    if limit <= 0:
        return []
    return list(_RECENT_EVENTS[-limit:])


def reset_chat_log() -> None:
    """Clear the in-memory buffer (useful for tests)."""
    _RECENT_EVENTS.clear()
