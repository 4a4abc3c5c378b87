from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import AsyncIterator, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .routers.diag import router as diag_router
from .routers.sessions import router as sessions_router
from ..core.errors import SessionError
from ..core.scheduler import Scheduler
from ..core.session_manager import SessionManager
from ..core.settings import Settings
from ..domain.agent_models import AgentFactory
from ..observability.metrics import metrics_middleware_factory
from ..services.agent_factory import LangChainAgentFactory
from ..services.chat_log import configure_chat_log

logger = logging.getLogger("agentgate.api")

APP_NAME = "agentgate"
APP_VERSION = "0.1.0"


def _cors_origins() -> list[str]:
    raw = os.getenv("AGENTGATE_CORS_ORIGINS", "*")
    return [o.strip() for o in raw.split(",") if o.strip()] or ["*"]


def create_app(
    settings: Optional[Settings] = None,
    factory: Optional[AgentFactory] = None,
    scheduler: Optional[Scheduler] = None,
) -> FastAPI:
    """Build the API. The session manager is created once per app lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_chat_log()
        manager = SessionManager(
            factory=factory or LangChainAgentFactory(),
            settings=settings or Settings.from_env(),
            scheduler=scheduler,
        )
        app.state.session_manager = manager
        logger.info(
            "Session manager ready (capacity=%d, inactivity=%gs, auto_create_on_send=%s)",
            manager.capacity,
            manager.settings.inactivity_timeout,
            manager.settings.auto_create_on_send,
        )
        try:
            yield
        finally:
            await manager.shutdown()

    app = FastAPI(title="agentgate", version=APP_VERSION, lifespan=lifespan)

    # Observability: request latency histogram
    app.middleware("http")(metrics_middleware_factory())

    origins = _cors_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SessionError)
    async def session_error_handler(request: Request, exc: SessionError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"status": "error", "detail": str(exc)})

    app.include_router(sessions_router)
    app.include_router(diag_router)
    # Same routes under /api for existing clients
    app.include_router(sessions_router, prefix="/api")
    app.include_router(diag_router, prefix="/api")

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return "Server is running."

    @app.get("/health")
    async def health(request: Request):
        manager: SessionManager = request.app.state.session_manager
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "components": {
                "api": "ok",
                "sessions": {
                    "active": len(manager.active_ids()),
                    "queued": len(manager.queued_ids()),
                    "capacity": manager.capacity,
                },
            },
        }

    @app.get("/metrics")
    def metrics() -> Response:
        data = generate_latest(REGISTRY)
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    return app


load_dotenv()  # OPENAI_API_KEY, CDP_API_KEY_* and AGENTGATE_* from .env if present

app = create_app()
