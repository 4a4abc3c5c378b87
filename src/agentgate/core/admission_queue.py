from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional


@dataclass
class QueuedEntry:
    session_id: str
    enqueued_at: float
    attempts: int = 0
    retry_at: float = 0.0


class AdmissionQueue:
    """FIFO backlog of session ids waiting for a free slot.

    The queue does not deduplicate; the session manager never enqueues an id
    that is active or already queued.
    """

    def __init__(self) -> None:
        self._entries: Deque[QueuedEntry] = deque()

    def enqueue(self, session_id: str, now: float) -> QueuedEntry:
        entry = QueuedEntry(session_id=session_id, enqueued_at=now)
        self._entries.append(entry)
        return entry

    def peek(self) -> Optional[QueuedEntry]:
        return self._entries[0] if self._entries else None

    def pop_head(self) -> Optional[QueuedEntry]:
        if not self._entries:
            return None
        return self._entries.popleft()

    def push_head(self, entry: QueuedEntry) -> None:
        """Return an entry to the front so it keeps its arrival priority."""
        self._entries.appendleft(entry)

    def position(self, session_id: str) -> Optional[int]:
        for idx, entry in enumerate(self._entries):
            if entry.session_id == session_id:
                return idx
        return None

    def ids(self) -> List[str]:
        return [entry.session_id for entry in self._entries]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
