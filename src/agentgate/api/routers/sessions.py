from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ...core.session_manager import SessionManager
from ...domain.session_models import (
    ErrorResponse,
    QueueStatusResponse,
    SendMessageRequest,
    SendMessageResponse,
    SessionStatusResponse,
    StartSessionRequest,
    StartSessionResponse,
)
from ...services.chat_service import send_chat_message, start_chat

router = APIRouter(tags=["sessions"])

_ERROR_RESPONSES = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


async def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


@router.post("/start-session", response_model=StartSessionResponse, responses=_ERROR_RESPONSES)
@router.post("/start-chat", response_model=StartSessionResponse, include_in_schema=False)
async def start_session(
    req: StartSessionRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> StartSessionResponse:
    return await start_chat(manager, req.session_id)


@router.post("/send-message", response_model=SendMessageResponse, responses=_ERROR_RESPONSES)
@router.post("/chat", response_model=SendMessageResponse, include_in_schema=False)
async def send_message(
    req: SendMessageRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> SendMessageResponse:
    return await send_chat_message(manager, req.session_id, req.message)


@router.get("/queue-status", response_model=QueueStatusResponse)
async def queue_status(manager: SessionManager = Depends(get_session_manager)) -> QueueStatusResponse:
    queued = manager.queued_ids()
    return QueueStatusResponse(queued=queued, count=len(queued))


@router.get("/session-status", response_model=SessionStatusResponse)
async def session_status(manager: SessionManager = Depends(get_session_manager)) -> SessionStatusResponse:
    active = manager.active_ids()
    return SessionStatusResponse(active_sessions=active, count=len(active), capacity=manager.capacity)
