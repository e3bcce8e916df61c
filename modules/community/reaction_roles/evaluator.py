"""Decide whether a reaction-role rule may grant or revoke its role."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Collection, Mapping, Optional

import discord

from .store import RoleGrantRule

__all__ = [
    "BotAuthority",
    "GrantAction",
    "GrantDecision",
    "authority_for",
    "evaluate_grant",
    "member_role_ids",
    "role_positions",
]


class GrantAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"


class GrantDecision(str, Enum):
    DENIED_MISSING_PREREQUISITE = "denied_missing_prerequisite"
    DENIED_ROLE_NOT_FOUND = "denied_role_not_found"
    DENIED_BOT_LACKS_PERMISSION = "denied_bot_lacks_permission"
    DENIED_HIERARCHY = "denied_hierarchy"
    NOOP_ALREADY_GRANTED = "noop_already_granted"
    GRANTED = "granted"
    REVOKED = "revoked"
    NOOP_NOT_GRANTED = "noop_not_granted"

    @property
    def denied(self) -> bool:
        return self.value.startswith("denied_")

    @property
    def mutates(self) -> bool:
        return self in (GrantDecision.GRANTED, GrantDecision.REVOKED)


@dataclass(frozen=True, slots=True)
class BotAuthority:
    can_manage_roles: bool
    top_role_position: int


def evaluate_grant(
    rule: RoleGrantRule,
    *,
    member_role_ids: Collection[str],
    role_positions: Mapping[str, int],
    authority: BotAuthority,
    action: GrantAction = GrantAction.ADD,
) -> GrantDecision:
    """Return the outcome of applying ``rule`` to a member.

    Checks run in a fixed order and the first failure wins: prerequisite,
    target role exists, bot can manage roles, role hierarchy. The
    prerequisite only gates adds; a member may always drop a role they hold.
    Nothing is mutated here.
    """

    held = {str(role_id) for role_id in member_role_ids}
    if action is GrantAction.ADD and rule.require_role_id and rule.require_role_id not in held:
        return GrantDecision.DENIED_MISSING_PREREQUISITE

    position = role_positions.get(rule.target_role_id)
    if position is None:
        return GrantDecision.DENIED_ROLE_NOT_FOUND
    if not authority.can_manage_roles:
        return GrantDecision.DENIED_BOT_LACKS_PERMISSION
    if position >= authority.top_role_position:
        return GrantDecision.DENIED_HIERARCHY

    has_role = rule.target_role_id in held
    if action is GrantAction.ADD:
        return GrantDecision.NOOP_ALREADY_GRANTED if has_role else GrantDecision.GRANTED
    return GrantDecision.REVOKED if has_role else GrantDecision.NOOP_NOT_GRANTED


def authority_for(guild: Optional[discord.Guild]) -> BotAuthority:
    me = getattr(guild, "me", None)
    if me is None:
        return BotAuthority(can_manage_roles=False, top_role_position=0)
    perms = getattr(me, "guild_permissions", None)
    top_role = getattr(me, "top_role", None)
    return BotAuthority(
        can_manage_roles=bool(getattr(perms, "manage_roles", False)),
        top_role_position=int(getattr(top_role, "position", 0) or 0),
    )


def role_positions(guild: Optional[discord.Guild]) -> dict[str, int]:
    return {
        str(role.id): int(role.position)
        for role in (getattr(guild, "roles", None) or [])
    }


def member_role_ids(member: object) -> set[str]:
    return {str(role.id) for role in (getattr(member, "roles", None) or [])}
