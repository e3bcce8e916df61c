"""Runtime configuration helpers for the bot process."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Dict, Optional

from config import runtime as _runtime
from shared.redaction import mask_secret, sanitize_text

__all__ = [
    "GitHubMirrorSettings",
    "get_bot_name",
    "get_command_prefix",
    "get_config_snapshot",
    "get_data_dir",
    "get_discord_token",
    "get_env_name",
    "get_github_mirror",
    "get_log_channel_id",
    "get_owner_id",
    "get_prereq_notice_seconds",
    "redact_value",
]

log = logging.getLogger("rolekeeper.config")

_SECRET_VALUE = "set"
_MISSING_VALUE = "—"
_INT_RE = re.compile(r"\d+")

_SNAPSHOT_KEYS = (
    "ENV_NAME",
    "BOT_NAME",
    "OWNER_ID",
    "COMMAND_PREFIX",
    "DATA_DIR",
    "LOG_CHANNEL_ID",
    "LOG_LEVEL",
    "PORT",
    "PREREQ_NOTICE_SECONDS",
    "DISCORD_TOKEN",
    "GITHUB_TOKEN",
    "GITHUB_OWNER",
    "GITHUB_REPO",
    "GITHUB_BRANCH",
)

_log_channel_warning_emitted = False

get_env_name = _runtime.get_env_name
get_bot_name = _runtime.get_bot_name
get_data_dir = _runtime.get_data_dir
get_prereq_notice_seconds = _runtime.get_prereq_notice_seconds


@dataclass(frozen=True, slots=True)
class GitHubMirrorSettings:
    owner: str
    repo: str
    token: str
    branch: str = "main"


def redact_value(key: str, value: object) -> str:
    """Best-effort redaction for config snapshots."""

    if value in (None, "", [], (), {}):
        return _MISSING_VALUE
    text = str(value).strip()
    if not text:
        return _MISSING_VALUE

    key_upper = str(key).upper()
    if "TOKEN" in key_upper or "SECRET" in key_upper or "CREDENTIAL" in key_upper:
        masked = sanitize_text(text)
        if isinstance(masked, str) and masked != text:
            return masked
        return mask_secret(text)
    return str(sanitize_text(text))


def _first_int(raw: str | None) -> Optional[int]:
    if not raw:
        return None
    match = _INT_RE.search(raw)
    if match is None:
        return None
    try:
        return int(match.group(0))
    except (TypeError, ValueError):
        return None


def _env_text(name: str) -> str:
    return (os.getenv(name) or "").strip()


def get_discord_token() -> str:
    token = _env_text("DISCORD_TOKEN")
    if not token:
        raise RuntimeError("Missing required environment variable: DISCORD_TOKEN")
    return token


def get_owner_id() -> Optional[str]:
    """Return the owner identity as a string snowflake, if configured."""

    owner = _first_int(_env_text("OWNER_ID"))
    return str(owner) if owner is not None else None


def get_command_prefix() -> str:
    return _env_text("COMMAND_PREFIX") or "!"


def get_log_channel_id() -> Optional[int]:
    """Return the Discord log channel id and warn once when it is missing."""

    global _log_channel_warning_emitted

    channel_id = _first_int(_env_text("LOG_CHANNEL_ID"))
    if channel_id is None:
        if not _log_channel_warning_emitted:
            log.warning(
                "Log channel disabled; set LOG_CHANNEL_ID to enable Discord log posting."
            )
            _log_channel_warning_emitted = True
    else:
        _log_channel_warning_emitted = False
    return channel_id


def get_github_mirror() -> Optional[GitHubMirrorSettings]:
    """Return mirror settings when token, owner and repo are all present."""

    token = _env_text("GITHUB_TOKEN")
    owner = _env_text("GITHUB_OWNER")
    repo = _env_text("GITHUB_REPO")
    if not (token and owner and repo):
        return None
    branch = _env_text("GITHUB_BRANCH") or "main"
    return GitHubMirrorSettings(owner=owner, repo=repo, token=token, branch=branch)


def get_config_snapshot() -> Dict[str, str]:
    """Return a redacted view of every recognised configuration key."""

    snapshot: Dict[str, str] = {}
    for key in _SNAPSHOT_KEYS:
        raw = os.getenv(key)
        if key == "DISCORD_TOKEN" and raw:
            snapshot[key] = _SECRET_VALUE
            continue
        snapshot[key] = redact_value(key, raw)
    return snapshot
