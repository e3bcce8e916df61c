"""App-level administrative commands registered under the cogs namespace."""

from __future__ import annotations

import logging
from typing import Optional

import discord
from discord.ext import commands

from modules.common import runtime as runtime_helpers
from modules.common.command_errors import handle_command_error
from modules.housekeeping.cleanup import clear_messages, parse_clear_count
from modules.ops.command_permissions import PermissionOutcome, PermissionStore, ensure_permitted
from shared.logfmt import LogTemplates, channel_label, chunk_lines, role_label, user_label
from shared.resolvers import resolve_channel, resolve_role

log = logging.getLogger("rolekeeper.admin")

SET_USAGE = (
    "!set <command> <role_name_or_id_or_mention> | !set <command> <role> remove | !set list"
)
MSG_USAGE = "!msg <#channel|channel_id|channel-name> <message>"
CLR_USAGE = "!clr <#channel|channel_id> <number|all>"


def _can_send(channel: object) -> bool:
    return callable(getattr(channel, "send", None))


class AppAdmin(commands.Cog):
    """Permission management, message relay and channel clearing."""

    def __init__(self, bot: commands.Bot, *, permissions: PermissionStore) -> None:
        self.bot = bot
        self.permissions = permissions

    async def cog_check(self, ctx: commands.Context) -> bool:  # type: ignore[override]
        return ensure_permitted(self.permissions, ctx)

    async def cog_command_error(self, ctx: commands.Context, error: Exception) -> None:  # type: ignore[override]
        await handle_command_error(ctx, error)

    @commands.command(
        name="set",
        usage=SET_USAGE,
        help="List, grant or revoke the roles allowed to run each command.",
    )
    @commands.guild_only()
    async def set_command(self, ctx: commands.Context, *args: str) -> None:
        if len(args) == 1 and args[0].lower() == "list":
            await self._send_permission_list(ctx)
            return

        if not self.permissions.is_owner(ctx.author.id):
            await ctx.reply("Only the bot owner can manage command permissions.", mention_author=False)
            return

        removing = len(args) >= 2 and args[-1].lower() == "remove"
        role_tokens = args[1:-1] if removing else args[1:]
        if len(args) < 2 or not role_tokens:
            await ctx.reply(f"Usage: {SET_USAGE}", mention_author=False)
            return

        command = args[0].lower()
        role = resolve_role(ctx.guild, " ".join(role_tokens))
        if role is None:
            await ctx.reply("Role not found.", mention_author=False)
            return

        if removing:
            outcome = await self.permissions.remove_role(command, role.id)
            if outcome is PermissionOutcome.NOT_PRESENT:
                await ctx.reply(
                    f"Role {role.name} was not permitted for command `{command}`.",
                    mention_author=False,
                )
                return
            reply = f"Removed role {role.name} from permitted list for `{command}`."
        else:
            outcome = await self.permissions.add_role(command, role.id)
            if outcome is PermissionOutcome.ALREADY_PRESENT:
                await ctx.reply(
                    f"Role {role.name} is already permitted to use `{command}`.",
                    mention_author=False,
                )
                return
            reply = f"Added role {role.name} to permitted list for `{command}`."

        await ctx.reply(reply, mention_author=False)
        await runtime_helpers.send_log_message(
            LogTemplates.permission_change(
                command=command,
                role=role_label(ctx.guild, role.id),
                action=outcome.value,
                actor=user_label(ctx.guild, ctx.author.id),
            )
        )

    async def _send_permission_list(self, ctx: commands.Context) -> None:
        entries = self.permissions.list_all()
        if not entries:
            await ctx.reply("No command restrictions have been set.", mention_author=False)
            return

        lines: list[str] = []
        for command, role_ids in entries:
            names = []
            for role_id in role_ids:
                role = ctx.guild.get_role(int(role_id)) if role_id.isdigit() else None
                names.append(f"{role.name} (<@&{role_id}>)" if role else f"(deleted role: {role_id})")
            lines.append(f"{command} → {', '.join(names)}")

        for chunk in chunk_lines(lines, header="**Current command restrictions:**"):
            await ctx.send(chunk, allowed_mentions=discord.AllowedMentions.none())

    @commands.command(name="msg", usage=MSG_USAGE, help="Relay a message to another channel.")
    @commands.guild_only()
    async def msg(
        self,
        ctx: commands.Context,
        target: Optional[str] = None,
        *,
        text: Optional[str] = None,
    ) -> None:
        if not target or not text:
            await ctx.reply(f"Usage: {MSG_USAGE}", mention_author=False)
            return

        channel = await resolve_channel(ctx.guild, target)
        if channel is None or not _can_send(channel):
            await ctx.reply("Channel not found in this server.", mention_author=False)
            return
        if not channel.permissions_for(ctx.guild.me).send_messages:
            await ctx.reply(
                "I do not have permission to send messages in that channel.",
                mention_author=False,
            )
            return

        try:
            await channel.send(text)
        except discord.HTTPException as exc:
            log.warning(
                "message relay failed",
                extra={"channel_id": channel.id, "error": str(exc)},
            )
            await ctx.reply(
                "Failed to send message. Check permissions and channel type.",
                mention_author=False,
            )
            return
        await ctx.reply(f"✅ Sent your message to <#{channel.id}>", mention_author=False)

    @commands.command(name="clr", usage=CLR_USAGE, help="Delete recent messages from a channel.")
    @commands.guild_only()
    async def clr(
        self,
        ctx: commands.Context,
        target: Optional[str] = None,
        count: Optional[str] = None,
    ) -> None:
        if not target or not count:
            await ctx.reply(f"Usage: {CLR_USAGE}", mention_author=False)
            return
        author_perms = getattr(ctx.author, "guild_permissions", None)
        if not getattr(author_perms, "manage_messages", False):
            await ctx.reply(
                "You need the Manage Messages permission to use this command.",
                mention_author=False,
            )
            return

        channel = await resolve_channel(ctx.guild, target)
        if channel is None or not callable(getattr(channel, "history", None)):
            await ctx.reply("Channel not found in this server.", mention_author=False)
            return
        perms = channel.permissions_for(ctx.guild.me)
        if not (perms.view_channel and perms.read_message_history and perms.manage_messages):
            await ctx.reply(
                "I need View Channel, Read Message History and Manage Messages permissions "
                "in that channel to clear messages.",
                mention_author=False,
            )
            return

        amount = parse_clear_count(count)
        if amount is None:
            await ctx.reply(
                "Please provide a valid number greater than 0, or use `all`.",
                mention_author=False,
            )
            return

        result = await clear_messages(
            channel,
            limit=None if amount == "all" else amount,
            exclude_ids=[ctx.message.id],
            reason=f"clr by {ctx.author} ({ctx.author.id})",
        )
        summary = f"Deleted {result.deleted} message(s) from <#{channel.id}>."
        if result.failed:
            summary += f" {result.failed} deletion(s) failed; check my permissions."
        await ctx.reply(summary, mention_author=False)
        await runtime_helpers.send_log_message(
            LogTemplates.cleanup(
                channel=channel_label(ctx.guild, channel.id),
                deleted=result.deleted,
                failed=result.failed,
                actor=user_label(ctx.guild, ctx.author.id),
            )
        )

    @commands.Cog.listener()
    async def on_guild_role_delete(self, role: discord.Role) -> None:
        try:
            await self.permissions.purge_role(role.id)
        except Exception:
            log.exception("permission cleanup failed", extra={"role_id": role.id})


async def setup(bot: commands.Bot) -> None:
    runtime = runtime_helpers.get_active_runtime()
    if runtime is None:
        raise RuntimeError("admin commands need an active runtime to reach the permission store")
    await bot.add_cog(AppAdmin(bot, permissions=runtime.permissions))
