"""Reaction-role commands, reaction listeners and the claim-role button."""

from __future__ import annotations

import logging
from typing import NamedTuple, Optional, Sequence

import discord
from discord.ext import commands

from modules.common import runtime as runtime_helpers
from modules.common.command_errors import handle_command_error
from modules.ops.command_permissions import PermissionStore, ensure_permitted
from shared.config import get_prereq_notice_seconds
from shared.emoji import EmojiKey, from_partial, parse_emoji
from shared.logfmt import LogTemplates, chunk_lines, role_label, user_label
from shared.resolvers import parse_snowflake, resolve_role, split_role_arguments

from .evaluator import (
    GrantAction,
    GrantDecision,
    authority_for,
    evaluate_grant,
    member_role_ids,
    role_positions,
)
from .store import ReactionRoleStore, RoleGrantRule, RuleOutcome
from .views import ClaimTarget, claim_view, parse_custom_id

__all__ = ["ReactionRolesCog", "RuleResult"]

log = logging.getLogger("rolekeeper.reaction_roles")

MSGROLE_USAGE = (
    "!msgrole <message_id> <emoji> <give_role_name_or_mention_or_id> "
    "[require_role_name_or_mention_or_id] or !msgrole list or "
    "!msgrole remove <message_id> <emoji>"
)
REMOVE_USAGE = "!msgrole remove <message_id> <emoji>"

_NEEDS_MANAGE_ROLES = "You need the Manage Roles permission to use this command."

_CLAIM_DENIALS = {
    GrantDecision.DENIED_ROLE_NOT_FOUND: "Target role not found (it may have been deleted).",
    GrantDecision.DENIED_BOT_LACKS_PERMISSION: "I do not have permission to manage roles.",
    GrantDecision.DENIED_HIERARCHY: "I cannot assign that role due to role hierarchy.",
}


class RuleResult(NamedTuple):
    rule: RoleGrantRule
    decision: GrantDecision
    failed: bool = False


def _role_name(guild: Optional[discord.Guild], role_id: Optional[str]) -> str:
    getter = getattr(guild, "get_role", None)
    role = getter(int(role_id)) if callable(getter) and role_id else None
    if role is None:
        return f"role ID {role_id}"
    return role.name


def _actor_manages_roles(ctx: commands.Context) -> bool:
    perms = getattr(ctx.author, "guild_permissions", None)
    return bool(getattr(perms, "manage_roles", False))


class ReactionRolesCog(commands.Cog):
    """Maps (message, emoji) pairs to roles and applies them on reaction."""

    def __init__(
        self,
        bot: commands.Bot,
        *,
        store: ReactionRoleStore,
        permissions: PermissionStore,
        notice_seconds: Optional[int] = None,
    ) -> None:
        self.bot = bot
        self.store = store
        self.permissions = permissions
        self.notice_seconds = notice_seconds or get_prereq_notice_seconds()

    async def cog_check(self, ctx: commands.Context) -> bool:  # type: ignore[override]
        return ensure_permitted(self.permissions, ctx)

    async def cog_command_error(self, ctx: commands.Context, error: Exception) -> None:  # type: ignore[override]
        await handle_command_error(ctx, error)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    @commands.group(
        name="msgrole",
        invoke_without_command=True,
        usage=MSGROLE_USAGE,
        help="Register a reaction role on a message, optionally gated by a prerequisite role.",
    )
    @commands.guild_only()
    async def msgrole(
        self,
        ctx: commands.Context,
        message_ref: Optional[str] = None,
        emoji: Optional[str] = None,
        *role_args: str,
    ) -> None:
        if not message_ref or not emoji or not role_args:
            await ctx.reply(f"Usage: {MSGROLE_USAGE}", mention_author=False)
            return
        if not _actor_manages_roles(ctx):
            await ctx.reply(_NEEDS_MANAGE_ROLES, mention_author=False)
            return

        guild = ctx.guild
        message_id = parse_snowflake(message_ref)
        emoji_key = parse_emoji(emoji)
        if message_id is None or emoji_key is None:
            await ctx.reply(f"Usage: {MSGROLE_USAGE}", mention_author=False)
            return

        give_text, require_text = split_role_arguments(guild, role_args)
        give_role = resolve_role(guild, give_text)
        if give_role is None:
            await ctx.reply(
                "Give role not found. Use a role mention, role ID, or exact role name.",
                mention_author=False,
            )
            return
        require_role = None
        if require_text is not None:
            require_role = resolve_role(guild, require_text)
            if require_role is None:
                await ctx.reply(
                    "Require role not found. Use a role mention, role ID, or exact role name.",
                    mention_author=False,
                )
                return

        target = await self._find_message(guild, message_id, hint=ctx.channel)
        if target is None:
            await ctx.reply(
                "Could not find that message in this server. Make sure the message ID is "
                "correct and the bot can view the channel.",
                mention_author=False,
            )
            return

        authority = authority_for(guild)
        if not authority.can_manage_roles:
            await ctx.reply("I need the Manage Roles permission to assign roles.", mention_author=False)
            return
        if give_role.position >= authority.top_role_position:
            await ctx.reply(
                "I cannot assign that role because it is equal or higher than my highest role.",
                mention_author=False,
            )
            return

        rule = RoleGrantRule(
            emoji_key=emoji_key.key,
            target_role_id=str(give_role.id),
            require_role_id=str(require_role.id) if require_role is not None else None,
        )
        outcome = await self.store.add_rule(message_id, target.channel.id, rule)
        if outcome is RuleOutcome.DUPLICATE_EXISTS:
            await ctx.reply(
                "This emoji-role mapping already exists for that message with the same requirement.",
                mention_author=False,
            )
            return

        await self._add_reaction(target, emoji_key)
        await self._attach_claim_buttons(target, message_id)

        suffix = f" (requires <@&{require_role.id}>)." if require_role is not None else "."
        await ctx.reply(
            f"Registered reaction-role: react with `{emoji}` on message {message_id} "
            f"to get role <@&{give_role.id}>{suffix}",
            mention_author=False,
            allowed_mentions=discord.AllowedMentions.none(),
        )
        await runtime_helpers.send_log_message(
            LogTemplates.reaction_role(
                action="registered",
                actor=user_label(guild, ctx.author.id),
                role=role_label(guild, give_role.id),
                message_id=str(message_id),
            )
        )

    @msgrole.command(name="list", help="List every reaction-role mapping for this server.")
    async def msgrole_list(self, ctx: commands.Context) -> None:
        guild = ctx.guild
        entries = self.store.list_all()
        if not entries:
            await ctx.reply("No reaction-role mappings registered.", mention_author=False)
            return

        lines: list[str] = []
        for message_id, rule in entries:
            give_role = guild.get_role(int(rule.target_role_id)) if guild is not None else None
            if give_role is None:
                continue
            channel_id = rule.source_channel_id or str(ctx.channel.id)
            link = f"https://discord.com/channels/{guild.id}/{channel_id}/{message_id}"
            require = ""
            if rule.require_role_id:
                require_name = _role_name(guild, rule.require_role_id)
                require = f" (requires {require_name} <@&{rule.require_role_id}>)"
            lines.append(
                f"<{link}> `{rule.emoji_key}` → {give_role.name} (<@&{give_role.id}>){require}"
            )

        if not lines:
            await ctx.reply("No reaction-role mappings found for this server.", mention_author=False)
            return
        for chunk in chunk_lines(lines):
            await ctx.send(chunk, allowed_mentions=discord.AllowedMentions.none())

    @msgrole.command(name="remove", usage=REMOVE_USAGE, help="Remove the mappings for an emoji on a message.")
    async def msgrole_remove(
        self,
        ctx: commands.Context,
        message_ref: Optional[str] = None,
        emoji: Optional[str] = None,
    ) -> None:
        if not message_ref or not emoji:
            await ctx.reply(f"Usage: {REMOVE_USAGE}", mention_author=False)
            return
        if not _actor_manages_roles(ctx):
            await ctx.reply(_NEEDS_MANAGE_ROLES, mention_author=False)
            return

        message_id = parse_snowflake(message_ref)
        existing = self.store.lookup(message_id) if message_id is not None else []
        if not existing:
            await ctx.reply("No mappings found for that message ID.", mention_author=False)
            return

        outcome = await self.store.remove_rule(message_id, emoji)
        if outcome is RuleOutcome.NO_SUCH_MAPPING:
            await ctx.reply(
                "No mapping found for that emoji on the specified message.",
                mention_author=False,
            )
            return

        await self._refresh_claim_buttons(ctx.guild, existing[0].source_channel_id, message_id)
        await ctx.reply(
            f"Removed mapping for emoji `{emoji}` on message {message_id}.",
            mention_author=False,
        )

    # ------------------------------------------------------------------
    # Message helpers
    # ------------------------------------------------------------------
    async def _find_message(
        self,
        guild: discord.Guild,
        message_id: int,
        *,
        hint: Optional[discord.abc.Messageable] = None,
    ) -> Optional[discord.Message]:
        me = guild.me
        candidates: list[discord.abc.Messageable] = []
        if hint is not None and getattr(hint, "guild", None) is guild:
            candidates.append(hint)
        # Threads cover forum posts; voice and stage channels carry their own chat.
        searchable = [
            *guild.text_channels,
            *guild.threads,
            *guild.voice_channels,
            *guild.stage_channels,
        ]
        for channel in searchable:
            if channel in candidates:
                continue
            perms = channel.permissions_for(me)
            if perms.view_channel and perms.read_message_history:
                candidates.append(channel)

        for channel in candidates:
            try:
                return await channel.fetch_message(message_id)
            except (discord.NotFound, discord.Forbidden):
                continue
            except discord.HTTPException as exc:
                log.debug(
                    "message fetch failed",
                    extra={"channel_id": getattr(channel, "id", None), "error": str(exc)},
                )
        return None

    @staticmethod
    async def _add_reaction(message: discord.Message, emoji: EmojiKey) -> None:
        try:
            await message.add_reaction(emoji.reaction())
        except discord.HTTPException as exc:
            log.warning(
                "could not add reaction to mapped message",
                extra={"message_id": message.id, "emoji": emoji.key, "error": str(exc)},
            )

    async def _attach_claim_buttons(self, message: discord.Message, message_id: int) -> None:
        view = claim_view(message_id, self.store.lookup(message_id))
        if view is None:
            return
        try:
            await message.edit(view=view)
            return
        except discord.HTTPException:
            log.debug("claim buttons cannot be attached in place", extra={"message_id": message_id})
        try:
            await message.reply("Click the button to claim the role:", view=view, mention_author=False)
        except discord.HTTPException as exc:
            log.warning(
                "could not add claim button",
                extra={"message_id": message_id, "error": str(exc)},
            )

    async def _refresh_claim_buttons(
        self,
        guild: Optional[discord.Guild],
        channel_id: Optional[str],
        message_id: int,
    ) -> None:
        if guild is None or channel_id is None:
            return
        channel = guild.get_channel(int(channel_id))
        if channel is None:
            return
        view = claim_view(message_id, self.store.lookup(message_id))
        try:
            await channel.get_partial_message(message_id).edit(view=view)
        except discord.HTTPException:
            # Buttons posted as a separate reply stay until a moderator removes them.
            log.debug("claim buttons not refreshed", extra={"message_id": message_id})

    # ------------------------------------------------------------------
    # Grant flow
    # ------------------------------------------------------------------
    async def _apply_rules(
        self,
        guild: discord.Guild,
        member: discord.Member,
        rules: Sequence[RoleGrantRule],
        action: GrantAction,
        *,
        reason: str,
    ) -> list[RuleResult]:
        held = member_role_ids(member)
        positions = role_positions(guild)
        authority = authority_for(guild)
        results: list[RuleResult] = []
        for rule in rules:
            decision = evaluate_grant(
                rule,
                member_role_ids=held,
                role_positions=positions,
                authority=authority,
                action=action,
            )
            if not decision.mutates:
                if decision.denied:
                    log.info(
                        "reaction-role denied",
                        extra={
                            "decision": decision.value,
                            "user_id": member.id,
                            "role_id": rule.target_role_id,
                            "require_role_id": rule.require_role_id,
                        },
                    )
                results.append(RuleResult(rule, decision))
                continue

            role = guild.get_role(int(rule.target_role_id))
            try:
                if decision is GrantDecision.GRANTED:
                    await member.add_roles(role, reason=reason)
                    held.add(rule.target_role_id)
                else:
                    await member.remove_roles(role, reason=reason)
                    held.discard(rule.target_role_id)
            except discord.HTTPException:
                log.exception(
                    "reaction-role mutation failed",
                    extra={
                        "action": action.value,
                        "user_id": member.id,
                        "role_id": rule.target_role_id,
                    },
                )
                results.append(RuleResult(rule, decision, failed=True))
                continue

            log.info(
                f"🎭 reaction-roles: {'grant' if decision is GrantDecision.GRANTED else 'revoke'}",
                extra={
                    "user_id": member.id,
                    "role_id": rule.target_role_id,
                    "emoji": rule.emoji_key,
                },
            )
            results.append(RuleResult(rule, decision))
        return results

    async def _resolve_member(
        self, guild: discord.Guild, payload: discord.RawReactionActionEvent
    ) -> Optional[discord.Member]:
        member = payload.member or guild.get_member(payload.user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(payload.user_id)
        except discord.NotFound:
            return None
        except discord.HTTPException as exc:
            log.debug(
                "member fetch failed",
                extra={"user_id": payload.user_id, "error": str(exc)},
            )
            return None

    async def _handle_reaction(
        self,
        payload: discord.RawReactionActionEvent,
        action: GrantAction,
    ) -> None:
        if payload.guild_id is None:
            return
        if payload.user_id == getattr(self.bot.user, "id", None):
            return
        rules = self.store.find(payload.message_id, from_partial(payload.emoji))
        if not rules:
            return
        guild = self.bot.get_guild(payload.guild_id)
        if guild is None:
            return
        member = await self._resolve_member(guild, payload)
        if member is None or member.bot:
            return

        results = await self._apply_rules(
            guild,
            member,
            rules,
            action,
            reason=f"reaction-role: message={payload.message_id}",
        )
        if action is GrantAction.ADD:
            await self._maybe_notify_prerequisite(guild, payload, member, results)

    async def _maybe_notify_prerequisite(
        self,
        guild: discord.Guild,
        payload: discord.RawReactionActionEvent,
        member: discord.Member,
        results: Sequence[RuleResult],
    ) -> None:
        held = member_role_ids(member)
        satisfied = any(
            result.decision in (GrantDecision.GRANTED, GrantDecision.NOOP_ALREADY_GRANTED)
            for result in results
        )
        missing = [
            result.rule
            for result in results
            if result.decision is GrantDecision.DENIED_MISSING_PREREQUISITE
            and result.rule.target_role_id not in held
        ]
        if satisfied or not missing:
            return

        channel = guild.get_channel_or_thread(payload.channel_id)
        if channel is None:
            return
        try:
            await channel.get_partial_message(payload.message_id).remove_reaction(payload.emoji, member)
        except discord.HTTPException as exc:
            log.debug("could not remove gated reaction", extra={"error": str(exc)})

        required = _role_name(guild, missing[0].require_role_id)
        try:
            await channel.send(
                f"{member.mention}, you need the **{required}** role before claiming this role.",
                delete_after=self.notice_seconds,
                allowed_mentions=discord.AllowedMentions(users=[member], roles=False, everyone=False),
            )
        except discord.HTTPException as exc:
            log.debug("could not post prerequisite notice", extra={"error": str(exc)})

    async def _handle_claim(self, interaction: discord.Interaction, target: ClaimTarget) -> None:
        rules = [
            rule
            for rule in self.store.find(target.message_id, target.emoji_key)
            if rule.target_role_id == target.role_id
        ]
        if not rules:
            await interaction.response.send_message("This role mapping no longer exists.", ephemeral=True)
            return
        guild = interaction.guild
        if guild is None:
            await interaction.response.send_message("Guild context not available.", ephemeral=True)
            return
        member = interaction.user if isinstance(interaction.user, discord.Member) else None
        if member is None:
            member = guild.get_member(interaction.user.id)
        if member is None:
            await interaction.response.send_message("Member info not available.", ephemeral=True)
            return

        results = await self._apply_rules(
            guild,
            member,
            rules,
            GrantAction.ADD,
            reason=f"reaction-role claim: message={target.message_id}",
        )
        await interaction.response.send_message(
            self._claim_reply(guild, target.role_id, results), ephemeral=True
        )

    @staticmethod
    def _claim_reply(guild: discord.Guild, role_id: str, results: Sequence[RuleResult]) -> str:
        role_name = _role_name(guild, role_id)
        decisions = [result.decision for result in results if not result.failed]
        if GrantDecision.GRANTED in decisions:
            return f"You have been given the role **{role_name}**."
        if GrantDecision.NOOP_ALREADY_GRANTED in decisions:
            return f"You already have the role **{role_name}**."
        if any(result.failed for result in results):
            return "I could not update your roles. Please try again later."
        first = results[0]
        if first.decision is GrantDecision.DENIED_MISSING_PREREQUISITE:
            required = _role_name(guild, first.rule.require_role_id)
            return f"You need the role **{required}** before you can claim this role."
        return _CLAIM_DENIALS.get(first.decision, "This role cannot be claimed right now.")

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        try:
            await self._handle_reaction(payload, GrantAction.ADD)
        except Exception:
            log.exception("reaction add handler failed", extra={"message_id": payload.message_id})

    @commands.Cog.listener()
    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent) -> None:
        try:
            await self._handle_reaction(payload, GrantAction.REMOVE)
        except Exception:
            log.exception("reaction remove handler failed", extra={"message_id": payload.message_id})

    @commands.Cog.listener()
    async def on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent) -> None:
        try:
            await self.store.on_message_deleted(payload.message_id)
        except Exception:
            log.exception("message delete cleanup failed", extra={"message_id": payload.message_id})

    @commands.Cog.listener()
    async def on_raw_bulk_message_delete(self, payload: discord.RawBulkMessageDeleteEvent) -> None:
        for message_id in payload.message_ids:
            try:
                await self.store.on_message_deleted(message_id)
            except Exception:
                log.exception("message delete cleanup failed", extra={"message_id": message_id})

    @commands.Cog.listener()
    async def on_guild_role_delete(self, role: discord.Role) -> None:
        try:
            await self.store.on_role_deleted(role.id)
        except Exception:
            log.exception("role delete cleanup failed", extra={"role_id": role.id})

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type is not discord.InteractionType.component:
            return
        data = interaction.data or {}
        target = parse_custom_id(data.get("custom_id"))
        if target is None:
            return
        try:
            await self._handle_claim(interaction, target)
        except Exception:
            log.exception("claim button handler failed", extra={"custom_id": data.get("custom_id")})
            if not interaction.response.is_done():
                try:
                    await interaction.response.send_message("An error occurred.", ephemeral=True)
                except discord.HTTPException:
                    log.debug("claim error reply failed", exc_info=True)
