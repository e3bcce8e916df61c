import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import discord
from discord.ext import commands
import pytest

from cogs import app_admin as app_admin_module
from cogs.app_admin import AppAdmin
from modules.common import runtime as runtime_helpers
from modules.common.command_errors import GENERIC_FAILURE, PERMISSION_DENIED
from modules.housekeeping.cleanup import ClearResult
from modules.ops.command_permissions import CommandPermissionDenied, PermissionStore

OWNER_ID = 1000


class FakeChannel:
    def __init__(self, channel_id: int, name: str, *, can_send=True, can_manage=True) -> None:
        self.id = channel_id
        self.name = name
        self.mention = f"<#{channel_id}>"
        self.sent: list[str] = []
        self._can_send = can_send
        self._can_manage = can_manage

    def permissions_for(self, _member):
        return SimpleNamespace(
            send_messages=self._can_send,
            view_channel=True,
            read_message_history=True,
            manage_messages=self._can_manage,
        )

    async def send(self, content):
        self.sent.append(content)

    async def history(self, limit=None):
        for message in ():
            yield message


class FakeGuild:
    def __init__(self) -> None:
        self.id = 1
        self.me = SimpleNamespace(id=999)
        self.roles = [
            SimpleNamespace(id=501, name="Moderators"),
            SimpleNamespace(id=502, name="Helpers"),
        ]
        self.channels = [
            FakeChannel(10, "announcements"),
            FakeChannel(11, "locked", can_send=False, can_manage=False),
        ]

    def get_role(self, role_id):
        for role in self.roles:
            if role.id == role_id:
                return role
        return None

    def get_member(self, _user_id):
        return None

    def get_channel(self, channel_id):
        for channel in self.channels:
            if channel.id == channel_id:
                return channel
        return None

    async def fetch_channel(self, channel_id):
        raise discord.NotFound(SimpleNamespace(status=404, reason="Not Found"), "Unknown Channel")


def _ctx(guild, *, author_id=OWNER_ID, manage_messages=True, command="set"):
    author = SimpleNamespace(
        id=author_id,
        roles=[],
        guild_permissions=SimpleNamespace(manage_messages=manage_messages),
    )
    return SimpleNamespace(
        guild=guild,
        author=author,
        message=SimpleNamespace(id=777),
        command=SimpleNamespace(name=command, qualified_name=command, root_parent=None, usage=None),
        reply=AsyncMock(),
        send=AsyncMock(),
    )


@pytest.fixture(autouse=True)
def _quiet_log_channel(monkeypatch):
    monkeypatch.setattr(runtime_helpers, "send_log_message", AsyncMock())


def _cog(documents):
    permissions = PermissionStore(documents, owner_id=str(OWNER_ID))
    return AppAdmin(SimpleNamespace(), permissions=permissions), permissions


def _replies(ctx):
    return [call.args[0] for call in ctx.reply.call_args_list]


def test_set_add_and_remove_by_owner(documents):
    cog, permissions = _cog(documents)
    guild = FakeGuild()
    ctx = _ctx(guild)

    async def runner():
        await cog.set_command.callback(cog, ctx, "CLR", "Moderators")
        await cog.set_command.callback(cog, ctx, "clr", "<@&501>")
        await cog.set_command.callback(cog, ctx, "clr", "502")
        await cog.set_command.callback(cog, ctx, "clr", "Moderators", "remove")
        await cog.set_command.callback(cog, ctx, "clr", "Moderators", "remove")

    asyncio.run(runner())

    assert _replies(ctx) == [
        "Added role Moderators to permitted list for `clr`.",
        "Role Moderators is already permitted to use `clr`.",
        "Added role Helpers to permitted list for `clr`.",
        "Removed role Moderators from permitted list for `clr`.",
        "Role Moderators was not permitted for command `clr`.",
    ]
    assert permissions.snapshot() == {"clr": ["502"]}
    assert runtime_helpers.send_log_message.await_count == 3


def test_set_mutations_are_owner_only(documents):
    cog, permissions = _cog(documents)
    ctx = _ctx(FakeGuild(), author_id=42)

    asyncio.run(cog.set_command.callback(cog, ctx, "clr", "Moderators"))

    assert _replies(ctx) == ["Only the bot owner can manage command permissions."]
    assert permissions.snapshot() == {}


def test_set_usage_and_unknown_role(documents):
    cog, _permissions = _cog(documents)
    ctx = _ctx(FakeGuild())

    async def runner():
        await cog.set_command.callback(cog, ctx)
        await cog.set_command.callback(cog, ctx, "clr")
        await cog.set_command.callback(cog, ctx, "clr", "remove")
        await cog.set_command.callback(cog, ctx, "clr", "Ghosts")

    asyncio.run(runner())

    replies = _replies(ctx)
    assert all(reply.startswith("Usage:") for reply in replies[:3])
    assert replies[3] == "Role not found."


def test_set_list_shows_deleted_roles(documents):
    cog, permissions = _cog(documents)
    ctx = _ctx(FakeGuild(), author_id=42)

    async def runner():
        await cog.set_command.callback(cog, ctx, "list")
        await permissions.add_role("msg", 501)
        await permissions.add_role("msg", 4040)
        await cog.set_command.callback(cog, ctx, "list")

    asyncio.run(runner())

    assert _replies(ctx) == ["No command restrictions have been set."]
    (listing,) = [call.args[0] for call in ctx.send.call_args_list]
    assert listing.startswith("**Current command restrictions:**")
    assert "msg → Moderators (<@&501>), (deleted role: 4040)" in listing


def test_msg_relays_to_resolved_channel(documents):
    cog, _permissions = _cog(documents)
    guild = FakeGuild()
    ctx = _ctx(guild, command="msg")

    async def runner():
        await cog.msg.callback(cog, ctx, "<#10>", text="Raid at 8pm")
        await cog.msg.callback(cog, ctx, "#locked", text="hello")
        await cog.msg.callback(cog, ctx, "nowhere", text="hello")
        await cog.msg.callback(cog, ctx, "announcements")

    asyncio.run(runner())

    assert guild.channels[0].sent == ["Raid at 8pm"]
    assert guild.channels[1].sent == []
    replies = _replies(ctx)
    assert replies[0] == "✅ Sent your message to <#10>"
    assert replies[1] == "I do not have permission to send messages in that channel."
    assert replies[2] == "Channel not found in this server."
    assert replies[3].startswith("Usage:")


def test_clr_deletes_with_command_message_excluded(documents, monkeypatch):
    cog, _permissions = _cog(documents)
    guild = FakeGuild()
    ctx = _ctx(guild, command="clr")
    fake_clear = AsyncMock(return_value=ClearResult(deleted=12, failed=0))
    monkeypatch.setattr(app_admin_module, "clear_messages", fake_clear)

    async def runner():
        await cog.clr.callback(cog, ctx, "10", "12")
        await cog.clr.callback(cog, ctx, "10", "all")

    asyncio.run(runner())

    first, second = fake_clear.await_args_list
    assert first.args[0] is guild.channels[0]
    assert first.kwargs["limit"] == 12
    assert first.kwargs["exclude_ids"] == [777]
    assert second.kwargs["limit"] is None
    assert _replies(ctx)[0] == "Deleted 12 message(s) from <#10>."


def test_clr_permission_and_argument_checks(documents, monkeypatch):
    cog, _permissions = _cog(documents)
    guild = FakeGuild()
    fake_clear = AsyncMock()
    monkeypatch.setattr(app_admin_module, "clear_messages", fake_clear)
    no_perms = _ctx(guild, manage_messages=False, command="clr")
    ctx = _ctx(guild, command="clr")

    async def runner():
        await cog.clr.callback(cog, no_perms, "10", "5")
        await cog.clr.callback(cog, ctx, "11", "5")
        await cog.clr.callback(cog, ctx, "10", "zero")
        await cog.clr.callback(cog, ctx, "10")

    asyncio.run(runner())

    assert _replies(no_perms) == ["You need the Manage Messages permission to use this command."]
    replies = _replies(ctx)
    assert replies[0].startswith("I need View Channel, Read Message History and Manage Messages")
    assert replies[1] == "Please provide a valid number greater than 0, or use `all`."
    assert replies[2].startswith("Usage:")
    fake_clear.assert_not_awaited()


def test_role_delete_purges_permissions(documents):
    cog, permissions = _cog(documents)

    async def runner():
        await permissions.add_role("clr", 501)
        await cog.on_guild_role_delete(SimpleNamespace(id=501))

    asyncio.run(runner())

    assert permissions.snapshot() == {}


def test_gate_and_error_replies(documents):
    cog, _permissions = _cog(documents)
    guild = FakeGuild()
    stranger = _ctx(guild, author_id=42, command="clr")

    with pytest.raises(CommandPermissionDenied):
        asyncio.run(cog.cog_check(stranger))

    async def runner():
        await cog.cog_command_error(stranger, CommandPermissionDenied("clr"))
        boom = commands.CommandInvokeError(RuntimeError("boom"))
        await cog.cog_command_error(stranger, boom)

    asyncio.run(runner())

    assert _replies(stranger) == [PERMISSION_DENIED, GENERIC_FAILURE]
    runtime_helpers.send_log_message.assert_awaited_once()
