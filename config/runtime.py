from __future__ import annotations

# config/runtime.py
import os
from pathlib import Path


def get_port(default: int = 10000) -> int:
    """
    Returns the port for the aiohttp health server.
    Hosting platforms provide $PORT; locally we fall back to 10000.
    """
    try:
        return int(os.getenv("PORT", str(default)))
    except ValueError:
        return default


def get_env_name(default: str = "dev") -> str:
    return os.getenv("ENV_NAME", default)


def get_bot_name(default: str = "Rolekeeper") -> str:
    return os.getenv("BOT_NAME", default)


def get_log_level(default: str = "INFO") -> str:
    value = (os.getenv("LOG_LEVEL") or "").strip().upper()
    return value or default


def get_data_dir(default: str = "data") -> Path:
    """
    Directory holding the persisted JSON documents.
    Relative paths resolve against the working directory.
    """
    raw = (os.getenv("DATA_DIR") or "").strip()
    return Path(raw or default)


def _coerce_int(value: str | None, fallback: int) -> int:
    try:
        if value is None:
            raise TypeError
        return int(value)
    except (TypeError, ValueError):
        return fallback


def get_prereq_notice_seconds(default: int = 10) -> int:
    """
    Lifetime of the channel notice posted when a reaction is missing its
    prerequisite role. Override via PREREQ_NOTICE_SECONDS (minimum 1).
    """
    return max(1, _coerce_int(os.getenv("PREREQ_NOTICE_SECONDS"), default))
