from __future__ import annotations

import asyncio
import logging
import os

import discord
from discord.ext import commands

from shared.config import (
    get_bot_name,
    get_command_prefix,
    get_config_snapshot,
    get_discord_token,
    get_env_name,
)
from shared.logfmt import LogTemplates, guild_label, human_reason, user_label
from shared import health as healthmod
from modules.common.runtime import Runtime

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("rolekeeper.app")

INTENTS = discord.Intents.default()
INTENTS.message_content = True
INTENTS.members = True
INTENTS.guild_reactions = True

COMMAND_PREFIX = get_command_prefix()

bot = commands.Bot(
    command_prefix=COMMAND_PREFIX,
    intents=INTENTS,
    allowed_mentions=discord.AllowedMentions(everyone=False, roles=False, users=True),
)
bot.remove_command("help")

runtime = Runtime(bot)


@bot.event
async def on_ready():
    healthmod.set_component("discord", True)
    log.info(
        "Bot ready as %s | env=%s | prefix=%s",
        bot.user,
        get_env_name(),
        COMMAND_PREFIX,
    )
    await runtime.send_log_message(
        LogTemplates.startup(
            bot_name=get_bot_name(),
            env=get_env_name(),
            guilds=[guild_label(bot, guild.id) for guild in bot.guilds],
        )
    )


@bot.event
async def on_connect():
    healthmod.set_component("discord", True)


@bot.event
async def on_resumed():
    healthmod.set_component("discord", True)


@bot.event
async def on_disconnect():
    healthmod.set_component("discord", False)


@bot.event
async def on_message(message: discord.Message):
    if message.author.bot:
        return
    await bot.process_commands(message)


@bot.event
async def on_command_error(ctx: commands.Context, error: Exception):
    if isinstance(error, commands.CommandNotFound):
        return
    cog = getattr(ctx, "cog", None)
    if cog is not None and cog.has_error_handler():
        return
    log.warning(
        "cmd error: cmd=%s user=%s err=%r",
        getattr(ctx.command, "name", None),
        getattr(ctx.author, "id", None),
        error,
    )
    try:
        await runtime.send_log_message(
            LogTemplates.cmd_error(
                command=getattr(ctx.command, "name", None) or "-",
                user=user_label(getattr(ctx, "guild", None), getattr(ctx.author, "id", None)),
                reason=human_reason(error),
            )
        )
    except Exception:
        log.exception("failed to send command error to log channel")


async def main() -> None:
    token = get_discord_token()
    log.info("starting", extra=get_config_snapshot())
    try:
        await runtime.start(token)
    finally:
        await runtime.close()


if __name__ == "__main__":
    asyncio.run(main())
