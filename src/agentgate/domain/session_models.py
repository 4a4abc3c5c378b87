from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

StartStatus = Literal["created", "queued", "error"]
SendStatus = Literal["ok", "queued", "error"]


class StartSessionRequest(BaseModel):
    session_id: str = Field(min_length=1, validation_alias=AliasChoices("id", "chatId", "session_id"))


class StartSessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: StartStatus
    detail: str
    session_id: str = Field(alias="sessionId")
    queue_position: Optional[int] = Field(default=None, alias="queuePosition")


class SendMessageRequest(BaseModel):
    session_id: str = Field(min_length=1, validation_alias=AliasChoices("id", "chatId", "session_id"))
    message: str = Field(min_length=1, validation_alias=AliasChoices("message", "userMessage"))


class ReplyMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: str
    model: Optional[str] = None
    session_id: str = Field(alias="sessionId")


class SendMessageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: SendStatus
    mode: Optional[str] = None
    response_text: str = Field(default="", alias="responseText")
    code_blocks: List[str] = Field(default_factory=list, alias="codeBlocks")
    detail: Optional[str] = None
    queue_position: Optional[int] = Field(default=None, alias="queuePosition")
    metadata: Optional[ReplyMetadata] = None


class QueueStatusResponse(BaseModel):
    queued: List[str]
    count: int


class SessionStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    active_sessions: List[str] = Field(alias="activeSessions")
    count: int
    capacity: int


class ErrorResponse(BaseModel):
    status: Literal["error"] = "error"
    detail: str
