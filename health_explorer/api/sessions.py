# health_explorer/api/sessions.py
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse, StreamingResponse

from health_explorer.api.deps import (
    ModelClientFactory,
    get_current_user,
    get_model_client_factory,
    get_repo,
)
from health_explorer.api.events import SSE_HEADERS, turn_event_stream
from health_explorer.config import Settings, get_settings
from health_explorer.runtime.flow import make_completion_flow, make_turn_flow
from health_explorer.schemas.chat import (
    DEFAULT_TITLE,
    ActionItem,
    ActionItemUpdate,
    ChatSession,
    MessageIn,
    SessionCreate,
    generate_session_title,
)
from health_explorer.services.anthropic_client import AnthropicError
from health_explorer.services.repo import Repo

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


async def _owned_session(repo: Repo, user_id: str, session_id: str) -> ChatSession:
    session = await repo.get_session(user_id, session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return session


@router.get("", response_model=List[ChatSession])
async def list_sessions(
    user_id: str = Depends(get_current_user),
    repo: Repo = Depends(get_repo),
):
    return await repo.list_sessions(user_id)


@router.post("", response_model=ChatSession, status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: SessionCreate,
    user_id: str = Depends(get_current_user),
    repo: Repo = Depends(get_repo),
):
    title = payload.title or (
        generate_session_title(payload.first_message) if payload.first_message else ""
    )
    return await repo.create_session(user_id, title or DEFAULT_TITLE)


@router.get("/{session_id}", response_model=ChatSession)
async def get_session(
    session_id: str,
    user_id: str = Depends(get_current_user),
    repo: Repo = Depends(get_repo),
):
    return await _owned_session(repo, user_id, session_id)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    user_id: str = Depends(get_current_user),
    repo: Repo = Depends(get_repo),
):
    if not await repo.delete_session(user_id, session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{session_id}/action-items/{item_id}", response_model=ActionItem)
async def update_action_item(
    session_id: str,
    item_id: str,
    payload: ActionItemUpdate,
    user_id: str = Depends(get_current_user),
    repo: Repo = Depends(get_repo),
):
    await _owned_session(repo, user_id, session_id)
    item = await repo.set_action_item_completed(session_id, item_id, payload.completed)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Action item not found")
    return item


@router.post("/{session_id}/messages")
async def post_message(
    session_id: str,
    payload: MessageIn,
    user_id: str = Depends(get_current_user),
    repo: Repo = Depends(get_repo),
    settings: Settings = Depends(get_settings),
    client_factory: ModelClientFactory = Depends(get_model_client_factory),
):
    """
    Stored streaming turn:
    1. Save the user message
    2. Build context from the stored session, profile and insights
    3. Stream model text / live reasoning as SSE
    4. Persist the assistant message, action items, insights and session
       flags (or an interruption notice) and send the final event
    """
    await _owned_session(repo, user_id, session_id)
    try:
        client = client_factory()
    except AnthropicError:
        return JSONResponse({"error": "API key not configured on server"}, status_code=500)

    shared: Dict[str, Any] = {
        "repo": repo,
        "user_id": user_id,
        "session_id": session_id,
        "user_text": payload.content,
        "client_id": payload.client_id,
        "settings": settings,
        "model_client": client,
    }
    stream = turn_event_stream(shared, make_turn_flow(), make_completion_flow())
    return StreamingResponse(stream, media_type="text/event-stream", headers=SSE_HEADERS)
