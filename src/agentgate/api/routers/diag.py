from __future__ import annotations

import os
from fastapi import APIRouter, Query

from ...services.agent_factory import configured_model, missing_env_vars
from ...services.chat_log import list_recent_chat_events
from ...services.wallet_store import DEFAULT_NETWORK_ID, FileWalletStore

router = APIRouter(prefix="/diag", tags=["diagnostics"])


@router.get("/agent")
async def diag_agent():
    """Report whether new agents can be constructed. Never echoes secrets."""
    missing = missing_env_vars()
    wallet = FileWalletStore()
    return {
        "model": configured_model(),
        "base_url": os.getenv("OPENAI_BASE_URL") or "https://api.openai.com/v1",
        "network_id": os.getenv("NETWORK_ID") or DEFAULT_NETWORK_ID,
        "missing_env": missing,
        "wallet_file": str(wallet.path),
        "wallet_present": wallet.path.exists(),
        "ready": not missing,
    }


@router.get("/chat-log")
async def diag_chat_log(limit: int = Query(25, ge=1, le=200)):
    events = list_recent_chat_events(limit)
    return {
        "events": [
            {
                "timestamp": e.timestamp,
                "chatId": e.chat_id,
                "sender": e.sender,
                "mode": e.mode,
                "status": e.status,
                "message": e.message,
            }
            for e in events
        ]
    }
