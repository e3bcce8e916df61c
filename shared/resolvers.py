"""Argument resolvers for roles, channels and message ids.

Each resolver tries an ordered list of strategies and returns the first match:

* roles: mention ``<@&id>`` -> raw id -> exact name -> case-insensitive name
* channels: mention ``<#id>`` -> raw id (cache, then API) -> exact name ->
  case-insensitive name
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Iterable, Optional, Sequence, Tuple

import discord

__all__ = [
    "CHANNEL_STRATEGIES",
    "ROLE_STRATEGIES",
    "parse_snowflake",
    "resolve_channel",
    "resolve_role",
    "split_role_arguments",
]

log = logging.getLogger("rolekeeper.resolvers")

_ROLE_MENTION_RE = re.compile(r"^<@&(\d+)>$")
_CHANNEL_MENTION_RE = re.compile(r"^<#(\d+)>$")
_SNOWFLAKE_RE = re.compile(r"^\d{5,25}$")
_MESSAGE_LINK_RE = re.compile(
    r"^https?://(?:ptb\.|canary\.)?discord(?:app)?\.com/channels/(?:\d+|@me)/\d+/(\d+)/?$"
)

RoleStrategy = Callable[[Sequence[discord.Role], str], Optional[discord.Role]]


def _role_by_id(roles: Iterable[discord.Role], role_id: int) -> Optional[discord.Role]:
    for role in roles:
        if getattr(role, "id", None) == role_id:
            return role
    return None


def _role_by_mention(roles: Sequence[discord.Role], text: str) -> Optional[discord.Role]:
    match = _ROLE_MENTION_RE.match(text)
    if not match:
        return None
    return _role_by_id(roles, int(match.group(1)))


def _role_by_raw_id(roles: Sequence[discord.Role], text: str) -> Optional[discord.Role]:
    if not text.isdigit():
        return None
    return _role_by_id(roles, int(text))


def _role_by_exact_name(roles: Sequence[discord.Role], text: str) -> Optional[discord.Role]:
    for role in roles:
        if getattr(role, "name", None) == text:
            return role
    return None


def _role_by_folded_name(roles: Sequence[discord.Role], text: str) -> Optional[discord.Role]:
    folded = text.casefold()
    for role in roles:
        name = getattr(role, "name", None)
        if isinstance(name, str) and name.casefold() == folded:
            return role
    return None


ROLE_STRATEGIES: Tuple[Tuple[str, RoleStrategy], ...] = (
    ("mention", _role_by_mention),
    ("id", _role_by_raw_id),
    ("name", _role_by_exact_name),
    ("name_casefold", _role_by_folded_name),
)


def resolve_role(guild: Optional[discord.Guild], raw: object) -> Optional[discord.Role]:
    """Return the guild role referenced by ``raw`` or ``None``."""

    if guild is None or raw is None:
        return None
    if isinstance(raw, discord.Role):
        return raw
    text = str(raw).strip()
    if not text:
        return None
    roles = list(getattr(guild, "roles", None) or [])
    for label, strategy in ROLE_STRATEGIES:
        role = strategy(roles, text)
        if role is not None:
            log.debug("role resolved", extra={"arg": text, "strategy": label, "role_id": role.id})
            return role
    return None


def split_role_arguments(
    guild: Optional[discord.Guild], tokens: Sequence[str]
) -> Tuple[str, Optional[str]]:
    """Split trailing ``<give_role> [require_role]`` tokens.

    The last token is treated as the prerequisite only when both it and the
    remaining tokens resolve to roles; otherwise every token belongs to the
    role to grant (role names may contain spaces).
    """

    cleaned = [str(token) for token in tokens if str(token).strip()]
    if not cleaned:
        return "", None
    if len(cleaned) == 1:
        return cleaned[0], None

    give_text = " ".join(cleaned[:-1])
    require_text = cleaned[-1]
    if resolve_role(guild, require_text) is not None and resolve_role(guild, give_text) is not None:
        return give_text, require_text
    return " ".join(cleaned), None


def parse_snowflake(raw: object) -> Optional[int]:
    """Parse a bare id or a message link into a snowflake."""

    text = str(raw or "").strip()
    if not text:
        return None
    if _SNOWFLAKE_RE.match(text):
        return int(text)
    match = _MESSAGE_LINK_RE.match(text)
    if match:
        return int(match.group(1))
    return None


async def _channel_by_id(guild: discord.Guild, channel_id: int):
    channel = guild.get_channel(channel_id)
    if channel is not None:
        return channel
    fetcher = getattr(guild, "fetch_channel", None)
    if fetcher is None:
        return None
    try:
        return await fetcher(channel_id)
    except (discord.NotFound, discord.Forbidden):
        return None
    except discord.HTTPException as exc:
        log.debug("channel fetch failed", extra={"channel_id": channel_id, "error": str(exc)})
        return None


def _channel_by_name(guild: discord.Guild, text: str, *, folded: bool):
    name = text.lstrip("#")
    target = name.casefold() if folded else name
    for channel in getattr(guild, "channels", None) or []:
        candidate = getattr(channel, "name", None)
        if not isinstance(candidate, str):
            continue
        if (candidate.casefold() if folded else candidate) == target:
            return channel
    return None


CHANNEL_STRATEGIES: Tuple[str, ...] = ("mention", "id", "name", "name_casefold")


async def resolve_channel(guild: Optional[discord.Guild], raw: object):
    """Return the guild channel referenced by ``raw`` or ``None``."""

    if guild is None or raw is None:
        return None
    if isinstance(raw, discord.abc.GuildChannel):
        return raw
    text = str(raw).strip()
    if not text:
        return None

    match = _CHANNEL_MENTION_RE.match(text)
    if match:
        return await _channel_by_id(guild, int(match.group(1)))
    if text.isdigit():
        channel = await _channel_by_id(guild, int(text))
        if channel is not None:
            return channel
    channel = _channel_by_name(guild, text, folded=False)
    if channel is not None:
        return channel
    return _channel_by_name(guild, text, folded=True)
