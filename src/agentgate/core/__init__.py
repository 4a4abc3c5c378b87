from .admission_queue import AdmissionQueue, QueuedEntry
from .errors import (
    AgentConstructionError,
    ConversationError,
    DuplicateSessionId,
    SessionBusy,
    SessionError,
    SessionNotFound,
)
from .scheduler import LoopScheduler, Scheduler
from .session_manager import AdmissionResult, AdmissionStatus, Exchange, SessionInfo, SessionManager
from .settings import Settings

__all__ = [
    "AdmissionQueue",
    "QueuedEntry",
    "AgentConstructionError",
    "ConversationError",
    "DuplicateSessionId",
    "SessionBusy",
    "SessionError",
    "SessionNotFound",
    "LoopScheduler",
    "Scheduler",
    "AdmissionResult",
    "AdmissionStatus",
    "Exchange",
    "SessionInfo",
    "SessionManager",
    "Settings",
]
