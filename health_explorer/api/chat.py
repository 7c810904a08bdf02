# health_explorer/api/chat.py
from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse

from health_explorer.api.deps import ModelClientFactory, get_current_user, get_model_client_factory
from health_explorer.api.events import SSE_HEADERS, turn_event_stream
from health_explorer.config import Settings, get_settings
from health_explorer.runtime.flow import make_completion_flow, make_turn_flow
from health_explorer.schemas.chat import ChatRequest
from health_explorer.services.anthropic_client import AnthropicError

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("")
async def chat_stream_endpoint(
    payload: ChatRequest,
    user_id: str = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    client_factory: ModelClientFactory = Depends(get_model_client_factory),
):
    """
    Stateless streaming turn. The caller sends the whole session (already
    ending with the new user message), the profile and the insight ledger:
    1. Build context (insights from this session are ignored)
    2. Stream model text / live reasoning as SSE
    3. Send the parsed turn result; nothing is stored
    """
    try:
        client = client_factory()
    except AnthropicError:
        return JSONResponse({"error": "API key not configured on server"}, status_code=500)

    shared: Dict[str, Any] = {
        "user_id": user_id,
        "session": payload.session,
        "profile": payload.profile,
        "insights": payload.insights,
        "settings": settings,
        "model_client": client,
    }
    stream = turn_event_stream(
        shared,
        make_turn_flow(record_user=False),
        make_completion_flow(persist=False),
    )
    return StreamingResponse(stream, media_type="text/event-stream", headers=SSE_HEADERS)
