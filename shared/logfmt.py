"""Human-friendly logging helpers and templates for Discord posts."""

from __future__ import annotations

from typing import Optional, Sequence

import discord

__all__ = [
    "LOG_EMOJI",
    "channel_label",
    "user_label",
    "role_label",
    "guild_label",
    "fmt_count",
    "human_reason",
    "LogTemplates",
    "chunk_lines",
]

LOG_EMOJI = {
    "lifecycle": "📘",
    "security": "🔐",
    "reaction": "🎭",
    "cleanup": "🧹",
    "warning": "⚠️",
}


def _clean_name(name: Optional[str], default: str) -> str:
    if not name:
        return default
    text = str(name).strip()
    return text or default


def channel_label(guild: Optional[discord.Guild], cid: Optional[int]) -> str:
    """Return a human-friendly label for a guild channel or thread."""

    if guild is None or cid is None:
        return "#unknown"

    channel = guild.get_channel(cid)
    if channel is None:
        getter = getattr(guild, "get_thread", None)
        channel = getter(cid) if callable(getter) else None

    if isinstance(channel, discord.Thread):
        parent = getattr(channel, "parent", None)
        parent_name = _clean_name(getattr(parent, "name", None), "unknown")
        thread_name = _clean_name(channel.name, "thread")
        return f"#{parent_name} › {thread_name}"

    if channel is not None:
        name = _clean_name(getattr(channel, "name", None), "channel")
        category = getattr(channel, "category", None)
        if category is not None:
            cat_name = _clean_name(getattr(category, "name", None), "category")
            return f"#{cat_name} › {name}"
        return f"#{name}"

    return "#unknown"


def user_label(guild: Optional[discord.Guild], uid: Optional[int]) -> str:
    """Return a human label for a guild user/member."""

    if uid is None or guild is None:
        return "unknown"
    getter = getattr(guild, "get_member", None)
    member = getter(uid) if callable(getter) else None
    if member is None:
        return f"user {uid}"
    return _clean_name(getattr(member, "display_name", None), "unknown")


def role_label(guild: Optional[discord.Guild], rid: Optional[int | str]) -> str:
    """Return ``@name`` for a role, or the raw id when it no longer exists."""

    if rid is None:
        return "-"
    try:
        role_id = int(rid)
    except (TypeError, ValueError):
        return str(rid)
    getter = getattr(guild, "get_role", None) if guild is not None else None
    role = getter(role_id) if callable(getter) else None
    if role is None:
        return f"role {role_id}"
    return f"@{_clean_name(getattr(role, 'name', None), 'role')}"


def guild_label(bot: discord.Client, gid: Optional[int]) -> str:
    """Return a human label for a guild known to the bot."""

    if gid is None:
        return "unknown guild"
    guild = bot.get_guild(gid)
    if guild is None:
        return "unknown guild"
    return _clean_name(getattr(guild, "name", None), "guild")


def fmt_count(value: Optional[int]) -> str:
    if value is None:
        return "-"
    try:
        return f"{int(value):,}"
    except (TypeError, ValueError):
        return "-"


_HTTP_ERROR_CODES = {
    10008: "Unknown Message",
    10011: "Unknown Role",
    50001: "Missing Access",
    50013: "Missing Permissions",
    50034: "Message Too Old",
    50035: "Invalid Form Body",
}


def human_reason(exc_or_msg: object) -> str:
    """Normalize Discord HTTP errors to human-friendly text."""

    if exc_or_msg is None:
        return "-"
    if isinstance(exc_or_msg, str):
        text = " ".join(exc_or_msg.split())
        return text or "-"
    if isinstance(exc_or_msg, discord.HTTPException):
        status = getattr(exc_or_msg, "status", None)
        code = getattr(exc_or_msg, "code", None)
        base = _HTTP_ERROR_CODES.get(code, exc_or_msg.__class__.__name__)
        suffix = ""
        if status or code:
            suffix = f" ({status or '?'}" + (f"/{code}" if code else "") + ")"
        detail = " ".join(str(getattr(exc_or_msg, "text", "")).split())
        if detail:
            return f"{base}{suffix}: {detail}"
        return f"{base}{suffix}".strip()
    if isinstance(exc_or_msg, Exception):
        text = " ".join(str(exc_or_msg).split())
        label = exc_or_msg.__class__.__name__
        return f"{label}: {text}" if text else label
    return "-"


class LogTemplates:
    """Factory helpers for humanized log messages."""

    @staticmethod
    def startup(*, bot_name: str, env: str, guilds: Sequence[str]) -> str:
        names = ", ".join(guilds) if guilds else "-"
        return (
            f"{LOG_EMOJI['lifecycle']} **{bot_name}** online • env={env or '-'} "
            f"• guilds={names}"
        )

    @staticmethod
    def cmd_error(*, command: str, user: str, reason: str) -> str:
        return (
            f"{LOG_EMOJI['warning']} **Command error** • cmd={command or '-'} "
            f"• user={user or '-'} • reason={reason or '-'}"
        )

    @staticmethod
    def permission_change(*, command: str, role: str, action: str, actor: str) -> str:
        return (
            f"{LOG_EMOJI['security']} **Permissions** • cmd={command} • role={role} "
            f"• action={action} • by={actor}"
        )

    @staticmethod
    def reaction_role(*, action: str, actor: str, role: str, message_id: str) -> str:
        return (
            f"{LOG_EMOJI['reaction']} **Reaction role** • {action} • role={role} "
            f"• message={message_id} • by={actor}"
        )

    @staticmethod
    def cleanup(*, channel: str, deleted: int, failed: int, actor: str) -> str:
        emoji = LOG_EMOJI["cleanup"] if not failed else LOG_EMOJI["warning"]
        return (
            f"{emoji} **Cleanup** • channel={channel} • deleted={fmt_count(deleted)} "
            f"• failed={fmt_count(failed)} • by={actor}"
        )


def chunk_lines(lines: Sequence[str], *, limit: int = 1900, header: str = "") -> list[str]:
    """Pack ``lines`` into messages that stay under Discord's length limit."""

    chunks: list[str] = []
    current = f"{header}\n" if header else ""
    for line in lines:
        if len(line) + 1 > limit:
            line = f"{line[: limit - 2]}…"
        if current and len(current) + len(line) + 1 > limit:
            chunks.append(current.rstrip("\n"))
            current = ""
        current += f"{line}\n"
    if current.strip():
        chunks.append(current.rstrip("\n"))
    return chunks
