"""Shared reply and logging policy for prefix command failures."""

from __future__ import annotations

import logging

import discord
from discord.ext import commands

from modules.common import runtime as runtime_helpers
from modules.ops.command_permissions import CommandPermissionDenied
from shared.logfmt import LogTemplates, human_reason, user_label

__all__ = [
    "GENERIC_FAILURE",
    "PERMISSION_DENIED",
    "handle_command_error",
    "usage_text",
]

log = logging.getLogger("rolekeeper.commands")

PERMISSION_DENIED = "You do not have permission to use this command."
GENERIC_FAILURE = "An error occurred while processing your command."
GUILD_ONLY = "This command can only be used inside a server."

_USAGE_ERRORS = (
    commands.MissingRequiredArgument,
    commands.BadArgument,
    commands.TooManyArguments,
    commands.BadUnionArgument,
    commands.ArgumentParsingError,
)


def usage_text(ctx: commands.Context) -> str:
    command = getattr(ctx, "command", None)
    usage = getattr(command, "usage", None)
    if usage:
        return f"Usage: {usage}"
    prefix = getattr(ctx, "clean_prefix", None) or "!"
    name = getattr(command, "qualified_name", None) or "command"
    signature = getattr(command, "signature", "") or ""
    return f"Usage: {prefix}{name} {signature}".rstrip()


async def _reply(ctx: commands.Context, content: str) -> None:
    try:
        await ctx.reply(content, mention_author=False)
    except discord.HTTPException:
        log.debug("command error reply failed", exc_info=True)


async def handle_command_error(ctx: commands.Context, error: Exception) -> None:
    """Answer the invoker and log unexpected failures.

    Authorization and usage problems are expected outcomes and only get a
    reply. Anything else is logged with its traceback, mirrored to the log
    channel, and answered with a generic failure message.
    """

    if isinstance(error, CommandPermissionDenied):
        await _reply(ctx, PERMISSION_DENIED)
        return
    if isinstance(error, commands.NoPrivateMessage):
        await _reply(ctx, GUILD_ONLY)
        return
    if isinstance(error, _USAGE_ERRORS):
        await _reply(ctx, usage_text(ctx))
        return
    if isinstance(error, commands.CheckFailure):
        await _reply(ctx, PERMISSION_DENIED)
        return

    original = getattr(error, "original", error)
    command_name = getattr(ctx.command, "qualified_name", None) or "-"
    log.error(
        "command failed",
        exc_info=(type(original), original, original.__traceback__),
        extra={
            "command": command_name,
            "user_id": getattr(ctx.author, "id", None),
            "guild_id": getattr(ctx.guild, "id", None),
        },
    )
    await _reply(ctx, GENERIC_FAILURE)
    try:
        await runtime_helpers.send_log_message(
            LogTemplates.cmd_error(
                command=command_name,
                user=user_label(getattr(ctx, "guild", None), getattr(ctx.author, "id", None)),
                reason=human_reason(original),
            )
        )
    except Exception:
        log.exception("failed to send command error to log channel")
