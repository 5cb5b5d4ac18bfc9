"""Application configuration with safe defaults.

Environment variables override all defaults.
Secrets (GROQ_API_KEY, CATALOG_API_TOKEN, TELEGRAM_BOT_TOKEN) are read from .env, never from code.
"""

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Load .env for local development (no-op when the file is absent)
_BACKEND_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=_BACKEND_DIR / ".env", override=False)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = ENVIRONMENT == "development"

    # Session state storage (conversation memory, pending operations)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./catalog_copilot.db")
    # "sql" persists sessions in DATABASE_URL, "memory" keeps them in-process
    SESSION_BACKEND: str = os.getenv("SESSION_BACKEND", "sql")

    # CORS (specific origins only, no wildcards)
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Telegram Bot (Must be set via .env, never in code)
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

    # Groq LLM
    GROQ_API_KEY: str = os.getenv("GROQ_API_KEY", "")
    GROQ_MODEL: str = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
    LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "500"))
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
    LLM_MAX_RETRIES: int = int(os.getenv("LLM_MAX_RETRIES", "3"))
    # Let the model phrase tool results (deterministic text is used when off)
    AI_NATURAL_RESPONSES: bool = _env_bool("AI_NATURAL_RESPONSES", "true")

    # Catalog REST service (source of truth for products)
    CATALOG_API_URL: str = os.getenv("CATALOG_API_URL", "http://localhost:3000")
    CATALOG_API_TOKEN: str = os.getenv("CATALOG_API_TOKEN", "")
    CATALOG_API_TIMEOUT_SECONDS: float = float(os.getenv("CATALOG_API_TIMEOUT_SECONDS", "10"))

    # Single-shop deployments bind every chat to this shop
    SHOP_ID: str = os.getenv("SHOP_ID", "")
    SHOP_NAME: str = os.getenv("SHOP_NAME", "Shop")

    # Per-session command limits
    AI_RATE_LIMIT_COMMANDS: int = int(os.getenv("AI_RATE_LIMIT_COMMANDS", "10"))
    AI_RATE_LIMIT_WINDOW_SECONDS: int = int(os.getenv("AI_RATE_LIMIT_WINDOW_SECONDS", "60"))

    # Conversation memory
    CONVERSATION_MAX_MESSAGES: int = int(os.getenv("CONVERSATION_MAX_MESSAGES", "40"))
    CONVERSATION_TIMEOUT_SECONDS: int = int(os.getenv("CONVERSATION_TIMEOUT_SECONDS", str(2 * 60 * 60)))
    PENDING_OPERATION_TTL_SECONDS: int = int(os.getenv("PENDING_OPERATION_TTL_SECONDS", "300"))

    # Streaming throttle
    STREAM_THROTTLE_MS: int = int(os.getenv("STREAM_THROTTLE_MS", "500"))
    STREAM_WORDS_PER_UPDATE: int = int(os.getenv("STREAM_WORDS_PER_UPDATE", "15"))

    # HTTP rate limiting
    RATE_LIMIT_REQUESTS: int = int(os.getenv("RATE_LIMIT_REQUESTS", "100"))
    RATE_LIMIT_WINDOW_SECONDS: int = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))


settings = Settings()
