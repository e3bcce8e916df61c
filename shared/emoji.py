"""Emoji identity used by reaction-role rules.

Rules, reaction payloads and claim buttons all refer to emoji in slightly
different shapes (``🔥``, ``fire:123``, ``<:fire:123>``, ``<a:fire:123>`` or a
:class:`discord.PartialEmoji`). Everything is parsed into one of two variants
so comparisons never depend on string markup.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Union

import discord

__all__ = [
    "CustomEmoji",
    "EmojiKey",
    "UnicodeEmoji",
    "from_partial",
    "normalize_emoji_input",
    "parse_emoji",
]

_CUSTOM_RE = re.compile(r"^(?:<a?:)?(?P<name>[A-Za-z0-9_]+):(?P<id>\d+)>?$")


@dataclass(frozen=True, slots=True)
class UnicodeEmoji:
    """A literal unicode grapheme such as ``🔥``."""

    value: str

    @property
    def key(self) -> str:
        return self.value

    def reaction(self) -> str:
        return self.value

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class CustomEmoji:
    """A guild emoji; equality is by id so renamed emoji still match."""

    name: str = field(compare=False)
    id: int

    @property
    def key(self) -> str:
        return f"{self.name}:{self.id}"

    def reaction(self) -> discord.PartialEmoji:
        return discord.PartialEmoji(name=self.name, id=self.id)

    def __str__(self) -> str:
        return f"<:{self.name}:{self.id}>"


EmojiKey = Union[UnicodeEmoji, CustomEmoji]


def parse_emoji(raw: str | EmojiKey | None) -> EmojiKey | None:
    """Parse user input or a stored ``emojiId`` into an :data:`EmojiKey`.

    Returns ``None`` for blank input. Anything that does not look like a custom
    emoji reference is treated as a unicode grapheme.
    """

    if isinstance(raw, (UnicodeEmoji, CustomEmoji)):
        return raw
    text = (raw or "").strip()
    if not text:
        return None
    match = _CUSTOM_RE.match(text)
    if match:
        return CustomEmoji(name=match.group("name"), id=int(match.group("id")))
    return UnicodeEmoji(text)


def from_partial(emoji: discord.PartialEmoji | discord.Emoji) -> EmojiKey:
    """Convert the emoji carried by a reaction event."""

    if emoji.id:
        return CustomEmoji(name=emoji.name or "", id=int(emoji.id))
    return UnicodeEmoji(emoji.name or "")


def normalize_emoji_input(raw: str) -> str:
    """Return the persisted string form of ``raw`` (``name:id`` or the grapheme)."""

    parsed = parse_emoji(raw)
    return parsed.key if parsed is not None else ""
