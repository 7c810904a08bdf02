# health_explorer/api/deps.py
from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, status

from health_explorer.config import Settings, get_settings
from health_explorer.db.session import SessionLocal
from health_explorer.services.anthropic_client import AnthropicClient
from health_explorer.services.repo import Repo

ModelClientFactory = Callable[[], AnthropicClient]


async def get_current_user(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> str:
    """Resolve ``Authorization: Bearer <token>`` to a user id or reject with 401."""
    scheme, _, token = (authorization or "").partition(" ")
    user_id = settings.token_users().get(token.strip()) if scheme.lower() == "bearer" else None
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


def get_repo() -> Repo:
    # one short-lived DB session per store call; streaming handlers outlive the request scope
    return Repo(SessionLocal)


def get_model_client_factory(settings: Settings = Depends(get_settings)) -> ModelClientFactory:
    return lambda: AnthropicClient(settings)
