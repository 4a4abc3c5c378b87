from __future__ import annotations

"""Session lifecycle events over Redis pub/sub.

Each event is one JSON message on ``agentgate.events.<type>`` carrying the
event type, the session id, a UTC timestamp and event-specific fields.
Publishing is enabled only when ``REDIS_URL`` is set (``pip install
agentgate[events]``). The connection is opened lazily and re-opened after a
failure; an event that cannot be delivered is logged and dropped.
"""

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any, Callable, Optional

try:  # pragma: no cover - optional dependency
    import redis  # type: ignore
except ImportError:  # pragma: no cover - optional dependency
    redis = None  # type: ignore

logger = logging.getLogger("agentgate.events")

CHANNEL_PREFIX = "agentgate.events"

SESSION_CREATED = "session.created"
SESSION_QUEUED = "session.queued"
SESSION_EXPIRED = "session.expired"
SESSION_DROPPED = "session.dropped"


def _redis_client(url: str) -> Any:
    if redis is None:
        raise RuntimeError("the redis package is not installed")
    return redis.Redis.from_url(url, socket_timeout=0.5)


class SessionEventPublisher:
    def __init__(self, url: str, client_factory: Optional[Callable[[str], Any]] = None) -> None:
        self.url = url
        self._client_factory = client_factory or _redis_client
        self._client: Any = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            client = self._client_factory(self.url)
            client.ping()
        except Exception as exc:
            logger.warning("Event bus unavailable at %s: %s", self.url, exc)
            return None
        self._client = client
        return client

    def publish(self, event_type: str, session_id: str, **fields: Any) -> bool:
        """Publish one event; returns False when it could not be delivered."""
        client = self._ensure_client()
        if client is None:
            return False
        message = {
            "type": event_type,
            "session_id": session_id,
            "at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            **fields,
        }
        try:
            client.publish(f"{CHANNEL_PREFIX}.{event_type}", json.dumps(message, default=str))
        except Exception as exc:
            logger.warning("Failed to publish %s for session [%s]: %s", event_type, session_id, exc)
            self._client = None
            return False
        return True


_publisher: Optional[SessionEventPublisher] = None


def get_publisher() -> Optional[SessionEventPublisher]:
    """Publisher for the current ``REDIS_URL``, or None when events are off."""
    global _publisher
    url = os.getenv("REDIS_URL")
    if not url:
        return None
    if _publisher is None or _publisher.url != url:
        _publisher = SessionEventPublisher(url)
    return _publisher


def publish_event(event_type: str, session_id: str, **fields: Any) -> None:
    publisher = get_publisher()
    if publisher is not None:
        publisher.publish(event_type, session_id, **fields)
