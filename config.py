"""Application configuration.

Values come from environment variables (a local ``.env`` file is loaded
first). Routes receive the configuration through ``Depends(get_app_config)``
so tests can swap it out with ``app.dependency_overrides``.
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(',') if item.strip()]


class AppConfiguration(BaseModel):
    database_url: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    model_name: str = "gpt-4o"
    max_steps: int = Field(default=5, ge=1)
    request_timeout: float = 30.0
    allowed_tables: List[str] = Field(default_factory=lambda: ["products", "sales"])
    default_row_limit: int = Field(default=1000, ge=1)
    read_only: bool = True
    verify_ssl: bool = True
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    api_url: str = "http://localhost:8000/api/chat"


def load_app_config() -> AppConfiguration:
    """Read a fresh configuration from the environment."""
    load_dotenv()
    return AppConfiguration(
        database_url=os.getenv("DATABASE_URL") or os.getenv("TURSO_DATABASE_URL"),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        openai_base_url=os.getenv("OPENAI_BASE_URL"),
        model_name=os.getenv("MODEL_NAME", "gpt-4o"),
        max_steps=int(os.getenv("MAX_STEPS", "5")),
        request_timeout=float(os.getenv("REQUEST_TIMEOUT", "30")),
        allowed_tables=_env_list("ALLOWED_TABLES", ["products", "sales"]),
        default_row_limit=int(os.getenv("DEFAULT_ROW_LIMIT", "1000")),
        read_only=_env_bool("DATABASE_READ_ONLY", True),
        verify_ssl=_env_bool("VERIFY_SSL", True),
        cors_origins=_env_list("CORS_ORIGINS", ["*"]),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        api_url=os.getenv("CHAT_API_URL", "http://localhost:8000/api/chat"),
    )


@lru_cache(maxsize=1)
def get_app_config() -> AppConfiguration:
    return load_app_config()
