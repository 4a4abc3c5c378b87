from __future__ import annotations

"""Request-level chat flows on top of the session manager.

These functions add what the HTTP surface needs around the core: message
trimming, the mode prompt, reply parsing and the chat transcript.
"""

from datetime import UTC, datetime

from ..core.errors import DuplicateSessionId, SessionBusy, SessionNotFound
from ..core.session_manager import AdmissionStatus, SessionManager
from ..domain.session_models import ReplyMetadata, SendMessageResponse, StartSessionResponse
from .chat_log import SENDER_AI, SENDER_SYSTEM, SENDER_USER, log_chat
from .prompts import build_user_prompt
from .response_parser import parse_chunks, total_usage

# caller errors are answered directly and not written to the transcript
_CALLER_ERRORS = (DuplicateSessionId, SessionNotFound, SessionBusy)


def _queued_detail(manager: SessionManager) -> str:
    return f"Queue is full ({manager.capacity}). Your request has been queued."


def _now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


async def start_chat(manager: SessionManager, session_id: str) -> StartSessionResponse:
    try:
        result = await manager.start_session(session_id)
    except _CALLER_ERRORS:
        raise
    except Exception as exc:
        log_chat(session_id, SENDER_SYSTEM, f"Error: {exc}", status="ERROR")
        raise

    if result.status is AdmissionStatus.QUEUED:
        log_chat(session_id, SENDER_SYSTEM, f"Session queued at position {result.queue_position}", status="QUEUED")
        return StartSessionResponse(
            status="queued",
            detail=_queued_detail(manager),
            session_id=session_id,
            queue_position=result.queue_position,
        )

    log_chat(session_id, SENDER_SYSTEM, "New chat session started", status="SUCCESS")
    return StartSessionResponse(
        status="created",
        detail=f"Session [{session_id}] created successfully!",
        session_id=session_id,
    )


async def send_chat_message(manager: SessionManager, session_id: str, user_message: str) -> SendMessageResponse:
    trimmed = user_message[: manager.settings.max_message_chars]
    log_chat(session_id, SENDER_USER, user_message)

    try:
        exchange = await manager.send_message(session_id, build_user_prompt(trimmed))
    except _CALLER_ERRORS:
        raise
    except Exception as exc:
        log_chat(session_id, SENDER_SYSTEM, f"Error: {exc}", status="ERROR")
        raise

    if exchange.queued and exchange.admission is not None:
        log_chat(
            session_id,
            SENDER_SYSTEM,
            f"Message not sent, session queued at position {exchange.admission.queue_position}",
            status="QUEUED",
        )
        return SendMessageResponse(
            status="queued",
            detail=_queued_detail(manager),
            queue_position=exchange.admission.queue_position,
        )

    if exchange.admission is not None:
        log_chat(
            session_id,
            SENDER_SYSTEM,
            "Created new chat session automatically for send-message request",
            status="SUCCESS",
        )

    parsed = parse_chunks(exchange.chunks)
    usage = total_usage(parsed.usage)
    if usage is not None:
        log_chat(
            session_id,
            SENDER_AI,
            f"Token Usage: prompt={usage.prompt_tokens}, completion={usage.completion_tokens}, total={usage.total_tokens}",
        )
    log_chat(session_id, SENDER_AI, parsed.response_text, mode=parsed.mode, status="COMPLETE")
    if parsed.code_blocks:
        log_chat(session_id, SENDER_AI, f"Generated {len(parsed.code_blocks)} code blocks", mode="CODE")

    return SendMessageResponse(
        status="ok",
        mode=parsed.mode,
        response_text=parsed.response_text,
        code_blocks=parsed.code_blocks,
        metadata=ReplyMetadata(timestamp=_now_iso(), model=exchange.model_name, session_id=session_id),
    )
