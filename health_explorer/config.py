# health_explorer/config.py
from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Passed explicitly to the model client and the context assembler; nothing
    reads the environment at call time.
    """

    app_name: str = "Health Explorer API"
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./health_explorer.db"
    sql_echo: bool = False

    # Model transport
    anthropic_api_key: Optional[str] = None
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_model: str = "claude-sonnet-4-20250514"
    anthropic_version: str = "2023-06-01"
    max_tokens: int = 4096
    model_timeout: float = 60.0
    model_max_retries: int = 3
    model_backoff_factor: float = 0.6

    # Conversation policy
    history_window: Optional[int] = Field(
        default=None,
        description="Keep only the newest N messages when building model input. None keeps all.",
    )
    summary_threshold: int = 8

    # Bearer tokens accepted by the API, mapped token -> user id ("token" or "token:user").
    api_tokens: List[str] = Field(default_factory=list)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def token_users(self) -> dict[str, str]:
        users: dict[str, str] = {}
        for raw in self.api_tokens:
            token, _, user_id = raw.partition(":")
            token = token.strip()
            if token:
                users[token] = user_id.strip() or token
        return users


@lru_cache
def get_settings() -> Settings:
    return Settings()
