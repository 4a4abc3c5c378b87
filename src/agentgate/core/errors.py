from __future__ import annotations


class SessionError(Exception):
    """Base class for failures surfaced by the session manager.

    ``status_code`` is the HTTP status the API layer answers with.
    """

    status_code: int = 500

    def __init__(self, session_id: str, message: str) -> None:
        super().__init__(message)
        self.session_id = session_id


class DuplicateSessionId(SessionError):
    status_code = 409

    def __init__(self, session_id: str, message: str | None = None) -> None:
        super().__init__(session_id, message or f"Session id '{session_id}' is already in use.")


class SessionNotFound(SessionError):
    status_code = 404

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id, f"No active session for id '{session_id}'.")


class SessionBusy(SessionError):
    status_code = 409

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id, f"Session '{session_id}' is already handling a message.")


class AgentConstructionError(SessionError):
    status_code = 502

    def __init__(self, session_id: str, cause: BaseException | str) -> None:
        super().__init__(session_id, f"Failed to create agent for session '{session_id}': {cause}")
        self.cause = cause


class ConversationError(SessionError):
    status_code = 502

    def __init__(self, session_id: str, cause: BaseException | str) -> None:
        super().__init__(session_id, f"Agent failed to respond for session '{session_id}': {cause}")
        self.cause = cause
