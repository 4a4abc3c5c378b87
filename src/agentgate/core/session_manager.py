from __future__ import annotations

"""Session admission, refresh and expiry.

The manager owns the session table and the admission queue. All mutations
happen synchronously on the event loop; the only suspension points are agent
construction and message exchange, and shared state is never mutated while
one of those is in flight. Capacity is counted as registered sessions plus
slots reserved for constructions in progress.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Coroutine, Dict, List, Optional, Set

from .admission_queue import AdmissionQueue, QueuedEntry
from .errors import (
    AgentConstructionError,
    ConversationError,
    DuplicateSessionId,
    SessionBusy,
    SessionNotFound,
)
from .scheduler import LoopScheduler, ScheduledCallback, Scheduler
from .settings import BUSY_REJECT, Settings
from ..domain.agent_models import AgentChunk, AgentFactory, AgentHandle
from ..infrastructure.events import (
    SESSION_CREATED,
    SESSION_DROPPED,
    SESSION_EXPIRED,
    SESSION_QUEUED,
    publish_event,
)
from ..observability import metrics

logger = logging.getLogger("agentgate.sessions")


class AdmissionStatus(str, Enum):
    CREATED = "created"
    QUEUED = "queued"


@dataclass(frozen=True)
class AdmissionResult:
    session_id: str
    status: AdmissionStatus
    queue_position: Optional[int] = None


@dataclass(frozen=True)
class Exchange:
    """Outcome of ``send_message``: collected chunks, or a queued admission."""

    session_id: str
    chunks: List[AgentChunk] = field(default_factory=list)
    model_name: Optional[str] = None
    admission: Optional[AdmissionResult] = None

    @property
    def queued(self) -> bool:
        return self.admission is not None and self.admission.status is AdmissionStatus.QUEUED


@dataclass(frozen=True)
class SessionInfo:
    session_id: str
    created_at: datetime
    last_active_at: datetime
    message_count: int
    busy: bool


@dataclass
class Session:
    session_id: str
    handle: AgentHandle
    created_at: datetime
    last_active_at: datetime
    expiry_timer: Optional[ScheduledCallback] = None
    message_count: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SessionManager:
    """Admits, refreshes and expires agent sessions under a capacity ceiling."""

    def __init__(
        self,
        factory: AgentFactory,
        settings: Optional[Settings] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self._factory = factory
        self._settings = settings or Settings()
        self._scheduler: Scheduler = scheduler or LoopScheduler()
        self._sessions: Dict[str, Session] = {}
        self._constructing: Set[str] = set()
        self._queue = AdmissionQueue()
        self._retry_timer: Optional[ScheduledCallback] = None
        self._background: Set[asyncio.Task] = set()
        self._draining = False
        self._closed = False

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def capacity(self) -> int:
        return self._settings.max_active_sessions

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    def active_ids(self) -> List[str]:
        return list(self._sessions.keys())

    def queued_ids(self) -> List[str]:
        return self._queue.ids()

    def get_session(self, session_id: str) -> Optional[SessionInfo]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        return SessionInfo(
            session_id=session.session_id,
            created_at=session.created_at,
            last_active_at=session.last_active_at,
            message_count=session.message_count,
            busy=session.lock.locked(),
        )

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------
    async def start_session(self, session_id: str) -> AdmissionResult:
        if session_id in self._sessions:
            raise DuplicateSessionId(session_id)
        if session_id in self._constructing:
            raise DuplicateSessionId(session_id, f"Session id '{session_id}' is already being created.")

        position = self._queue.position(session_id)
        if position is not None:
            return AdmissionResult(session_id, AdmissionStatus.QUEUED, position)

        # ids already waiting keep their priority over new arrivals
        if self._queue or not self._has_capacity():
            self._queue.enqueue(session_id, self._scheduler.now())
            position = len(self._queue) - 1
            logger.info(
                "Active sessions = %d, pushing session [%s] to queue (position %d).",
                self._occupied(),
                session_id,
                position,
            )
            self._observe()
            publish_event(SESSION_QUEUED, session_id, position=position)
            self._start_drain()
            return AdmissionResult(session_id, AdmissionStatus.QUEUED, position)

        self._constructing.add(session_id)
        try:
            await self._admit(session_id, path="direct")
        except AgentConstructionError:
            # the reserved slot is free again
            self._start_drain()
            raise
        return AdmissionResult(session_id, AdmissionStatus.CREATED)

    async def drain_one(self) -> Optional[AdmissionResult]:
        """Admit the head of the queue into a free slot, if it is due.

        Returns the admission, or None when nothing was admitted (empty queue,
        no free slot, head still backing off, a drain already running, or the
        construction failed).
        """
        task = self._start_drain()
        if task is None:
            return None
        return await task

    def _start_drain(self) -> Optional[asyncio.Task]:
        """Pop the queue head and reserve its slot before the loop moves on.

        Drains run one at a time so a failing head is retried before anything
        behind it is admitted.
        """
        if self._closed or self._draining or not self._queue or not self._has_capacity():
            return None
        head = self._queue.peek()
        if head is None:
            return None

        now = self._scheduler.now()
        if head.retry_at > now:
            self._schedule_retry(head.retry_at - now)
            return None

        entry = self._queue.pop_head()
        if entry is None:
            return None
        self._constructing.add(entry.session_id)
        self._draining = True
        self._observe()
        return self._spawn(self._finish_drain(entry))

    async def _finish_drain(self, entry: QueuedEntry) -> Optional[AdmissionResult]:
        failure: Optional[AgentConstructionError] = None
        try:
            await self._admit(entry.session_id, path="drain")
        except AgentConstructionError as exc:
            failure = exc
        finally:
            self._draining = False

        if failure is not None:
            self._on_drain_failed(entry, failure)
            return None

        logger.info("Processed queued session [%s]. Queue length: %d", entry.session_id, len(self._queue))
        self._start_drain()
        return AdmissionResult(entry.session_id, AdmissionStatus.CREATED)

    def _on_drain_failed(self, entry: QueuedEntry, exc: AgentConstructionError) -> None:
        """Put the id back at the head with backoff, or drop it once its retries are spent."""
        if self._closed:
            return
        entry.attempts += 1
        if entry.attempts >= self._settings.drain_max_retries:
            metrics.QUEUE_DROPPED.inc()
            self._observe()
            logger.error(
                "Dropping queued session [%s] after %d failed attempts: %s",
                entry.session_id,
                entry.attempts,
                exc,
            )
            publish_event(SESSION_DROPPED, entry.session_id, attempts=entry.attempts)
            self._start_drain()
            return

        delay = self._settings.backoff_delay(entry.attempts)
        entry.retry_at = self._scheduler.now() + delay
        self._queue.push_head(entry)
        self._observe()
        logger.warning(
            "Failed to process queued session [%s] (attempt %d), retrying in %.1fs: %s",
            entry.session_id,
            entry.attempts,
            delay,
            exc,
        )
        self._schedule_retry(delay)

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------
    async def send_message(self, session_id: str, message: str) -> Exchange:
        admission: Optional[AdmissionResult] = None
        session = self._sessions.get(session_id)
        if session is None:
            position = self._queue.position(session_id)
            if position is not None:
                return Exchange(
                    session_id,
                    admission=AdmissionResult(session_id, AdmissionStatus.QUEUED, position),
                )
            if not self._settings.auto_create_on_send:
                raise SessionNotFound(session_id)
            admission = await self.start_session(session_id)
            if admission.status is AdmissionStatus.QUEUED:
                return Exchange(session_id, admission=admission)
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound(session_id)

        if session.lock.locked() and self._settings.busy_policy == BUSY_REJECT:
            raise SessionBusy(session_id)

        async with session.lock:
            if self._sessions.get(session_id) is not session:
                # expired while queued behind another message
                raise SessionNotFound(session_id)
            self._reset_timer(session)
            try:
                chunks = await asyncio.wait_for(
                    self._collect(session.handle, message),
                    timeout=self._settings.request_timeout,
                )
            except Exception as exc:
                cause: Any = exc
                if isinstance(exc, asyncio.TimeoutError):
                    cause = f"no reply within {self._settings.request_timeout:g}s"
                logger.warning("agent_exchange_failed", extra={"session_id": session_id, "err": str(cause)})
                raise ConversationError(session_id, cause) from exc
            finally:
                if self._sessions.get(session_id) is session:
                    self._reset_timer(session)
            session.message_count += 1

        return Exchange(
            session_id,
            chunks=chunks,
            model_name=getattr(session.handle, "model_name", None),
            admission=admission,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def wait_for_background(self) -> None:
        """Wait until drain and cleanup tasks spawned by timers have finished."""
        while True:
            pending = [task for task in self._background if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        self._closed = True
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            if session.expiry_timer is not None:
                session.expiry_timer.cancel()
                session.expiry_timer = None
        self._queue.clear()

        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for session in sessions:
            await self._close_agent(session.session_id, session.handle)
        self._observe()
        logger.info("Session manager stopped; released %d sessions.", len(sessions))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _occupied(self) -> int:
        return len(self._sessions) + len(self._constructing)

    def _has_capacity(self) -> bool:
        return self._occupied() < self._settings.max_active_sessions

    def _observe(self) -> None:
        metrics.observe_occupancy(len(self._sessions), len(self._queue))

    async def _admit(self, session_id: str, *, path: str) -> Session:
        """Construct and register a handle for a slot the caller already reserved."""
        try:
            handle = await asyncio.wait_for(
                self._factory.construct(),
                timeout=self._settings.construct_timeout,
            )
        except Exception as exc:
            metrics.CONSTRUCTION_FAILURES.labels(path=path).inc()
            cause: Any = exc
            if isinstance(exc, asyncio.TimeoutError):
                cause = f"construction timed out after {self._settings.construct_timeout:g}s"
            raise AgentConstructionError(session_id, cause) from exc
        finally:
            self._constructing.discard(session_id)

        if self._closed:
            await self._close_agent(session_id, handle)
            raise AgentConstructionError(session_id, "session manager is shut down")

        now = datetime.now(UTC)
        session = Session(session_id=session_id, handle=handle, created_at=now, last_active_at=now)
        self._sessions[session_id] = session
        self._reset_timer(session)
        metrics.SESSIONS_ADMITTED.labels(path=path).inc()
        self._observe()
        logger.info("Created new session [%s] via %s. Active sessions: %d", session_id, path, len(self._sessions))
        publish_event(SESSION_CREATED, session_id, path=path)
        return session

    def _reset_timer(self, session: Session) -> None:
        if session.expiry_timer is not None:
            session.expiry_timer.cancel()
        session.expiry_timer = self._scheduler.call_later(
            self._settings.inactivity_timeout,
            self._on_expired,
            session.session_id,
            session,
        )
        session.last_active_at = datetime.now(UTC)

    def _on_expired(self, session_id: str, session: Session) -> None:
        if self._sessions.get(session_id) is not session:
            return
        del self._sessions[session_id]
        session.expiry_timer = None
        metrics.SESSIONS_EXPIRED.inc()
        self._observe()
        logger.info(
            "Session [%s] inactive for %g minutes. Cleaning up.",
            session_id,
            self._settings.inactivity_timeout / 60,
        )
        publish_event(SESSION_EXPIRED, session_id, messages=session.message_count)
        self._spawn(self._close_agent(session.session_id, session.handle))
        self._start_drain()

    def _schedule_retry(self, delay: float) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
        self._retry_timer = self._scheduler.call_later(delay, self._on_retry_due)

    def _on_retry_due(self) -> None:
        self._retry_timer = None
        self._start_drain()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background session task failed: %r", exc)

    @staticmethod
    async def _collect(handle: AgentHandle, message: str) -> List[AgentChunk]:
        return [chunk async for chunk in handle.converse(message)]

    @staticmethod
    async def _close_agent(session_id: str, handle: AgentHandle) -> None:
        closer = getattr(handle, "aclose", None)
        if closer is None:
            return
        try:
            await closer()
        except Exception:
            logger.exception("Failed to close agent for session [%s]", session_id)
