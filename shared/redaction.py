"""Secret redaction helpers for config snapshots and log lines."""

from __future__ import annotations

import hashlib
import re
from typing import Any, Mapping

__all__ = [
    "mask_secret",
    "sanitize_data",
    "sanitize_text",
]


_DISCORD_TOKEN_RE = re.compile(r"[A-Za-z0-9_-]{24}\.[A-Za-z0-9_-]{6}\.[A-Za-z0-9_-]{27,}")
_GITHUB_TOKEN_RE = re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{20,}|github_pat_[A-Za-z0-9_]{20,})\b")
_WEBHOOK_RE = re.compile(r"https://(?:ptb\.|canary\.)?discord(?:app)?\.com/api/webhooks/\d+/\S+", re.I)
_AUTH_HEADER_RE = re.compile(r"(?P<prefix>(?:token|bearer)\s+)(?P<secret>[^\s,;]{8,})", re.IGNORECASE)
_SECRET_FIELD_RE = re.compile(
    r"(?P<prefix>(token|secret|credential|key)\s*[=:]\s*)(?P<secret>[^\s,;]+)",
    re.IGNORECASE,
)


def _stable_suffix(text: str) -> str:
    digest = hashlib.sha1(text.encode("utf-8", "ignore")).hexdigest()
    return digest[:4]


def mask_secret(text: str) -> str:
    suffix = _stable_suffix(text)
    return f"***{suffix}"


def _replace(pattern: re.Pattern[str], text: str, replacer) -> str:
    return pattern.sub(lambda match: replacer(match.group(0), match), text)


def sanitize_text(value: Any) -> Any:
    if value is None:
        return value
    text = str(value)
    if not text:
        return text

    def generic(mask_target: str, _match: re.Match[str]) -> str:
        return mask_secret(mask_target)

    sanitized = _replace(_WEBHOOK_RE, text, generic)
    sanitized = _replace(_DISCORD_TOKEN_RE, sanitized, generic)
    sanitized = _replace(_GITHUB_TOKEN_RE, sanitized, generic)
    sanitized = _replace(
        _AUTH_HEADER_RE,
        sanitized,
        lambda _seg, match: f"{match.group('prefix')}{mask_secret(match.group('secret'))}",
    )
    sanitized = _replace(
        _SECRET_FIELD_RE,
        sanitized,
        lambda _seg, match: f"{match.group('prefix')}{mask_secret(match.group('secret'))}",
    )
    return sanitized


def sanitize_data(value: Any) -> Any:
    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, Mapping):
        return {key: sanitize_data(val) for key, val in value.items()}
    if isinstance(value, tuple):
        return tuple(sanitize_data(item) for item in value)
    if isinstance(value, list):
        return [sanitize_data(item) for item in value]
    return value
