"""Reaction roles backed by the persisted message -> rule index."""

import logging

from modules.common import runtime as runtime_helpers

from .cog import ReactionRolesCog
from .evaluator import BotAuthority, GrantAction, GrantDecision, evaluate_grant
from .store import ReactionRoleStore, RoleGrantRule, RuleOutcome

log = logging.getLogger("rolekeeper.reaction_roles")

__all__ = [
    "BotAuthority",
    "GrantAction",
    "GrantDecision",
    "ReactionRoleStore",
    "ReactionRolesCog",
    "RoleGrantRule",
    "RuleOutcome",
    "evaluate_grant",
    "setup",
]


async def setup(bot):
    runtime = runtime_helpers.get_active_runtime()
    if runtime is None:
        raise RuntimeError("reaction roles need an active runtime to reach their stores")
    await bot.add_cog(
        ReactionRolesCog(bot, store=runtime.reaction_roles, permissions=runtime.permissions)
    )
    log.info("reaction roles extension loaded")
