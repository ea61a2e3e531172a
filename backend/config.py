"""
Ventanilla Única - Configuration
================================
Settings read from environment variables.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if not raw:
        return default
    return raw.strip().lower() in ("true", "1", "yes")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name) or default
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-5"
    openai_timeout_seconds: int = 30

    # Anonymous chat, no documents
    demo_mode: bool = False

    max_message_length: int = 2000
    chat_rate_limit: int = 20
    chat_rate_window_seconds: int = 60
    history_messages: int = 10

    cors_origins: List[str] = field(default_factory=list)
    log_level: str = "INFO"
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            openai_api_key=(os.getenv("OPENAI_API_KEY") or "").strip() or None,
            openai_model=(os.getenv("OPENAI_MODEL") or "").strip() or "gpt-5",
            openai_timeout_seconds=_env_int("OPENAI_TIMEOUT_SECONDS", 30),
            demo_mode=_env_flag("DEMO_MODE"),
            max_message_length=_env_int("MAX_MESSAGE_LENGTH", 2000),
            chat_rate_limit=_env_int("CHAT_RATE_LIMIT", 20),
            chat_rate_window_seconds=_env_int("CHAT_RATE_WINDOW_SECONDS", 60),
            cors_origins=_env_list("CORS_ORIGINS", "http://localhost:3000,http://localhost:8501"),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
            debug=bool(os.getenv("DEBUG")),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
