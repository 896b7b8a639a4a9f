# backend/flowershop/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    """Positive integer from the environment; anything else means default."""
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/flowershop.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///flowershop.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        ).split(",")
        if origin.strip()
    ]

    SESSION_ABSOLUTE_TIMEOUT_HOURS = _env_int("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24)
    SESSION_IDLE_TIMEOUT_HOURS = _env_int("SESSION_IDLE_TIMEOUT_HOURS", 8)

    # Deleting an EXPENSE removes its stock again without a floor check unless enabled.
    EXPENSE_REVERSAL_FLOOR_CHECK = _env_bool("EXPENSE_REVERSAL_FLOOR_CHECK", False)

    # Natural-language parser. Without a model id only the fallback parser runs.
    AI_MODEL_ID = os.environ.get("AI_MODEL_ID") or None
    AWS_REGION = os.environ.get("AWS_REGION", "us-east-1")
    AI_RETRY_ATTEMPTS = _env_int("AI_RETRY_ATTEMPTS", 1)
    AI_MAX_PROMPT_CHARS = _env_int("AI_MAX_PROMPT_CHARS", 600)
    AI_MAX_RESPONSE_TOKENS = _env_int("AI_MAX_RESPONSE_TOKENS", 320)
    AI_MAX_CONTEXT_ITEMS = _env_int("AI_MAX_CONTEXT_ITEMS", 40)


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "DEBUG"
    EXPENSE_REVERSAL_FLOOR_CHECK = False
    AI_MODEL_ID = None
