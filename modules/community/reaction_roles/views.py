"""Claim-role button components attached to reaction-role messages."""

from __future__ import annotations

import urllib.parse
from dataclasses import dataclass
from typing import Iterable, Optional

import discord

from shared.emoji import parse_emoji

from .store import RoleGrantRule

__all__ = ["ClaimTarget", "build_custom_id", "claim_view", "parse_custom_id"]

CUSTOM_ID_PREFIX = "rr"
_MAX_BUTTONS = 25
_MAX_CUSTOM_ID = 100


@dataclass(frozen=True, slots=True)
class ClaimTarget:
    message_id: str
    emoji_key: str
    role_id: str


def build_custom_id(message_id: object, emoji_key: str, role_id: object) -> str:
    encoded = urllib.parse.quote(emoji_key, safe="")
    return f"{CUSTOM_ID_PREFIX}|{message_id}|{encoded}|{role_id}"


def parse_custom_id(custom_id: object) -> Optional[ClaimTarget]:
    if not isinstance(custom_id, str):
        return None
    parts = custom_id.split("|")
    if len(parts) != 4 or parts[0] != CUSTOM_ID_PREFIX:
        return None
    _, message_id, encoded, role_id = parts
    emoji_key = urllib.parse.unquote(encoded)
    if not (message_id.isdigit() and role_id.isdigit() and emoji_key):
        return None
    return ClaimTarget(message_id=message_id, emoji_key=emoji_key, role_id=role_id)


def claim_view(message_id: object, rules: Iterable[RoleGrantRule]) -> Optional[discord.ui.View]:
    """Return a view with one "Claim role" button per distinct (emoji, role).

    Clicks are handled by the cog's ``on_interaction`` listener so buttons keep
    working across restarts; the view is stopped before it is returned and
    never enters the client's view store.
    """

    view = discord.ui.View(timeout=None)
    seen: set[tuple[str, str]] = set()
    for rule in rules:
        key = (rule.emoji_key, rule.target_role_id)
        if key in seen:
            continue
        custom_id = build_custom_id(message_id, rule.emoji_key, rule.target_role_id)
        if len(custom_id) > _MAX_CUSTOM_ID:
            continue
        seen.add(key)
        emoji = parse_emoji(rule.emoji_key)
        view.add_item(
            discord.ui.Button(
                label="Claim role",
                style=discord.ButtonStyle.primary,
                custom_id=custom_id,
                emoji=emoji.reaction() if emoji is not None else None,
            )
        )
        if len(seen) >= _MAX_BUTTONS:
            break
    if not seen:
        return None
    view.stop()
    return view
