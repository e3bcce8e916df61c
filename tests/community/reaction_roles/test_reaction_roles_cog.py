import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import discord
import pytest

from modules.common import runtime as runtime_helpers
from modules.community.reaction_roles import cog as cog_module
from modules.community.reaction_roles.cog import ReactionRolesCog
from modules.community.reaction_roles.store import ReactionRoleStore, RoleGrantRule
from modules.community.reaction_roles.views import build_custom_id
from modules.ops.command_permissions import CommandPermissionDenied, PermissionStore

GUILD_ID = 1
CHANNEL_ID = 10
MESSAGE_ID = 123456789012
BOT_ID = 999


class FakeRole:
    def __init__(self, role_id: int, name: str, position: int) -> None:
        self.id = role_id
        self.name = name
        self.position = position


class FakeMember:
    def __init__(self, user_id: int, roles=(), *, bot: bool = False) -> None:
        self.id = user_id
        self.bot = bot
        self.roles = list(roles)
        self.mention = f"<@{user_id}>"
        self.display_name = f"member-{user_id}"
        self.added: list[tuple[int, str]] = []
        self.removed: list[tuple[int, str]] = []

    async def add_roles(self, role, *, reason=None):
        self.roles.append(role)
        self.added.append((role.id, reason))

    async def remove_roles(self, role, *, reason=None):
        self.roles = [r for r in self.roles if r.id != role.id]
        self.removed.append((role.id, reason))


class FakePartialMessage:
    def __init__(self, channel, message_id):
        self.channel = channel
        self.id = message_id

    async def remove_reaction(self, emoji, member):
        self.channel.removed_reactions.append((self.id, emoji, member.id))

    async def edit(self, *, view=None):
        self.channel.edits.append((self.id, view))


class FakeMessage:
    def __init__(self, channel, message_id):
        self.channel = channel
        self.id = message_id
        self.add_reaction = AsyncMock()
        self.edit = AsyncMock()
        self.reply = AsyncMock()


class FakeChannel:
    def __init__(self, guild, channel_id=CHANNEL_ID):
        self.guild = guild
        self.id = channel_id
        self.messages: dict[int, FakeMessage] = {}
        self.sent: list[tuple[str, dict]] = []
        self.removed_reactions: list[tuple] = []
        self.edits: list[tuple] = []

    def permissions_for(self, _member):
        return SimpleNamespace(view_channel=True, read_message_history=True)

    async def fetch_message(self, message_id):
        message = self.messages.get(message_id)
        if message is None:
            raise discord.NotFound(SimpleNamespace(status=404, reason="Not Found"), "Unknown Message")
        return message

    def get_partial_message(self, message_id):
        return FakePartialMessage(self, message_id)

    async def send(self, content, **kwargs):
        self.sent.append((content, kwargs))


class FakeGuild:
    def __init__(self, *, can_manage=True, top_position=10):
        self.id = GUILD_ID
        self.roles = [
            FakeRole(5001, "Raiders", 3),
            FakeRole(5002, "Verified", 2),
            FakeRole(5003, "Admins", 20),
        ]
        self.me = SimpleNamespace(
            id=BOT_ID,
            guild_permissions=SimpleNamespace(manage_roles=can_manage),
            top_role=SimpleNamespace(position=top_position),
        )
        self.members: dict[int, FakeMember] = {}
        self.channel = FakeChannel(self)
        self.text_channels = [self.channel]
        self.threads: list[FakeChannel] = []
        self.voice_channels: list[FakeChannel] = []
        self.stage_channels: list[FakeChannel] = []

    def get_role(self, role_id):
        for role in self.roles:
            if role.id == role_id:
                return role
        return None

    def get_member(self, user_id):
        return self.members.get(user_id)

    async def fetch_member(self, user_id):
        raise discord.NotFound(SimpleNamespace(status=404, reason="Not Found"), "Unknown Member")

    def get_channel(self, channel_id):
        return self.channel if channel_id == self.channel.id else None

    get_channel_or_thread = get_channel


def _setup(documents, guild=None):
    guild = guild or FakeGuild()
    bot = SimpleNamespace(user=SimpleNamespace(id=BOT_ID), get_guild=lambda gid: guild)
    store = ReactionRoleStore(documents)
    permissions = PermissionStore(documents, owner_id="1000")
    cog = ReactionRolesCog(bot, store=store, permissions=permissions, notice_seconds=10)
    return cog, store, guild


def _payload(member, emoji="🔥", *, user_id=None):
    return SimpleNamespace(
        guild_id=GUILD_ID,
        channel_id=CHANNEL_ID,
        message_id=MESSAGE_ID,
        user_id=user_id if user_id is not None else member.id,
        member=member,
        emoji=discord.PartialEmoji(name=emoji),
    )


def _ctx(guild, *, manage_roles=True, author_id=1000):
    author = SimpleNamespace(
        id=author_id,
        roles=[],
        guild_permissions=SimpleNamespace(manage_roles=manage_roles),
    )
    return SimpleNamespace(
        guild=guild,
        channel=guild.channel,
        author=author,
        reply=AsyncMock(),
        send=AsyncMock(),
        command=SimpleNamespace(name="msgrole", root_parent=None),
    )


@pytest.fixture(autouse=True)
def _quiet_log_channel(monkeypatch):
    monkeypatch.setattr(runtime_helpers, "send_log_message", AsyncMock())


def test_reaction_add_grants_mapped_role(documents):
    cog, store, guild = _setup(documents)
    member = FakeMember(50)

    async def runner():
        await store.add_rule(MESSAGE_ID, CHANNEL_ID, RoleGrantRule("🔥", "5001"))
        await cog.on_raw_reaction_add(_payload(member))

    asyncio.run(runner())

    assert [role_id for role_id, _ in member.added] == [5001]
    assert guild.channel.sent == []


def test_reaction_remove_revokes_even_without_prerequisite(documents):
    cog, store, guild = _setup(documents)
    member = FakeMember(50, roles=[guild.get_role(5001)])

    async def runner():
        await store.add_rule(MESSAGE_ID, CHANNEL_ID, RoleGrantRule("🔥", "5001", require_role_id="5002"))
        await cog.on_raw_reaction_remove(_payload(member))

    asyncio.run(runner())

    assert [role_id for role_id, _ in member.removed] == [5001]


def test_missing_prerequisite_strips_reaction_and_posts_notice(documents):
    cog, store, guild = _setup(documents)
    member = FakeMember(50)

    async def runner():
        await store.add_rule(MESSAGE_ID, CHANNEL_ID, RoleGrantRule("🔥", "5001", require_role_id="5002"))
        await cog.on_raw_reaction_add(_payload(member))

    asyncio.run(runner())

    assert member.added == []
    assert [(mid, uid) for mid, _, uid in guild.channel.removed_reactions] == [(MESSAGE_ID, 50)]
    (content, kwargs), = guild.channel.sent
    assert "Verified" in content
    assert kwargs["delete_after"] == 10


def test_satisfied_alternative_rule_keeps_reaction(documents):
    cog, store, guild = _setup(documents)
    member = FakeMember(50)

    async def runner():
        await store.add_rule(MESSAGE_ID, CHANNEL_ID, RoleGrantRule("🔥", "5001", require_role_id="5002"))
        await store.add_rule(MESSAGE_ID, CHANNEL_ID, RoleGrantRule("🔥", "5001"))
        await cog.on_raw_reaction_add(_payload(member))

    asyncio.run(runner())

    assert [role_id for role_id, _ in member.added] == [5001]
    assert guild.channel.removed_reactions == []


def test_own_and_unmapped_reactions_are_ignored(documents):
    cog, store, guild = _setup(documents)
    member = FakeMember(50)
    bot_member = FakeMember(BOT_ID, bot=True)

    async def runner():
        await store.add_rule(MESSAGE_ID, CHANNEL_ID, RoleGrantRule("🔥", "5001"))
        await cog.on_raw_reaction_add(_payload(bot_member))
        await cog.on_raw_reaction_add(_payload(member, emoji="✅"))

    asyncio.run(runner())

    assert bot_member.added == []
    assert member.added == []


def test_hierarchy_denial_does_not_mutate(documents):
    cog, store, guild = _setup(documents)
    member = FakeMember(50)

    async def runner():
        await store.add_rule(MESSAGE_ID, CHANNEL_ID, RoleGrantRule("🔥", "5003"))
        await cog.on_raw_reaction_add(_payload(member))

    asyncio.run(runner())

    assert member.added == []
    assert guild.channel.sent == []


def test_delete_listeners_clean_store(documents):
    cog, store, guild = _setup(documents)

    async def runner():
        await store.add_rule(MESSAGE_ID, CHANNEL_ID, RoleGrantRule("🔥", "5001"))
        await store.add_rule(222222222, CHANNEL_ID, RoleGrantRule("✅", "5002"))
        await store.add_rule(333333333, CHANNEL_ID, RoleGrantRule("⭐", "5001"))
        await cog.on_raw_message_delete(SimpleNamespace(message_id=MESSAGE_ID))
        await cog.on_raw_bulk_message_delete(SimpleNamespace(message_ids={222222222}))
        await cog.on_guild_role_delete(guild.get_role(5001))

    asyncio.run(runner())

    assert len(store) == 0


def _interaction(guild, member, custom_id):
    return SimpleNamespace(
        type=discord.InteractionType.component,
        data={"custom_id": custom_id},
        guild=guild,
        user=SimpleNamespace(id=member.id),
        response=SimpleNamespace(send_message=AsyncMock(), is_done=lambda: False),
    )


def test_claim_button_grants_and_replies_ephemerally(documents):
    cog, store, guild = _setup(documents)
    member = FakeMember(50)
    guild.members[50] = member
    interaction = _interaction(guild, member, build_custom_id(MESSAGE_ID, "🔥", 5001))

    async def runner():
        await store.add_rule(MESSAGE_ID, CHANNEL_ID, RoleGrantRule("🔥", "5001"))
        await cog.on_interaction(interaction)

    asyncio.run(runner())

    assert [role_id for role_id, _ in member.added] == [5001]
    args, kwargs = interaction.response.send_message.call_args
    assert "Raiders" in args[0]
    assert kwargs["ephemeral"] is True


def test_claim_button_reports_missing_prerequisite(documents):
    cog, store, guild = _setup(documents)
    member = FakeMember(50)
    guild.members[50] = member
    interaction = _interaction(guild, member, build_custom_id(MESSAGE_ID, "🔥", 5001))

    async def runner():
        await store.add_rule(MESSAGE_ID, CHANNEL_ID, RoleGrantRule("🔥", "5001", require_role_id="5002"))
        await cog.on_interaction(interaction)

    asyncio.run(runner())

    assert member.added == []
    args, _ = interaction.response.send_message.call_args
    assert "Verified" in args[0]


def test_claim_button_for_removed_mapping(documents):
    cog, _store, guild = _setup(documents)
    member = FakeMember(50)
    interaction = _interaction(guild, member, build_custom_id(MESSAGE_ID, "🔥", 5001))

    asyncio.run(cog.on_interaction(interaction))

    args, _ = interaction.response.send_message.call_args
    assert args[0] == "This role mapping no longer exists."


def test_msgrole_registers_rule_and_decorates_message(documents):
    cog, store, guild = _setup(documents)
    message = FakeMessage(guild.channel, MESSAGE_ID)
    guild.channel.messages[MESSAGE_ID] = message
    ctx = _ctx(guild)

    async def runner():
        await cog.msgrole.callback(cog, ctx, str(MESSAGE_ID), "🔥", "Raiders", "Verified")

    asyncio.run(runner())

    (rule,) = store.lookup(MESSAGE_ID)
    assert (rule.emoji_key, rule.target_role_id, rule.require_role_id) == ("🔥", "5001", "5002")
    assert rule.source_channel_id == str(CHANNEL_ID)
    message.add_reaction.assert_awaited_once_with("🔥")
    view = message.edit.call_args.kwargs["view"]
    assert [item.custom_id for item in view.children] == [build_custom_id(MESSAGE_ID, "🔥", "5001")]
    reply = ctx.reply.call_args.args[0]
    assert reply.startswith("Registered reaction-role")
    assert "(requires <@&5002>)" in reply
    runtime_helpers.send_log_message.assert_awaited()


@pytest.mark.parametrize("kind", ["threads", "voice_channels"])
def test_msgrole_finds_messages_outside_text_channels(documents, kind):
    cog, store, guild = _setup(documents)
    elsewhere = FakeChannel(guild, channel_id=777)
    getattr(guild, kind).append(elsewhere)
    message = FakeMessage(elsewhere, MESSAGE_ID)
    elsewhere.messages[MESSAGE_ID] = message
    ctx = _ctx(guild)

    asyncio.run(cog.msgrole.callback(cog, ctx, str(MESSAGE_ID), "🔥", "Raiders"))

    (rule,) = store.lookup(MESSAGE_ID)
    assert rule.source_channel_id == "777"
    message.add_reaction.assert_awaited_once_with("🔥")
    assert ctx.reply.call_args.args[0].startswith("Registered reaction-role")


def test_msgrole_rejects_duplicates_and_missing_roles(documents):
    cog, store, guild = _setup(documents)
    guild.channel.messages[MESSAGE_ID] = FakeMessage(guild.channel, MESSAGE_ID)
    ctx = _ctx(guild)

    async def runner():
        await cog.msgrole.callback(cog, ctx, str(MESSAGE_ID), "🔥", "Raiders")
        await cog.msgrole.callback(cog, ctx, str(MESSAGE_ID), "🔥", "Raiders")
        await cog.msgrole.callback(cog, ctx, str(MESSAGE_ID), "🔥", "Nobody")
        await cog.msgrole.callback(cog, ctx, str(MESSAGE_ID), "🔥", "Admins")

    asyncio.run(runner())

    replies = [call.args[0] for call in ctx.reply.call_args_list]
    assert replies[1].startswith("This emoji-role mapping already exists")
    assert replies[2].startswith("Give role not found")
    assert replies[3].startswith("I cannot assign that role")
    assert len(store.lookup(MESSAGE_ID)) == 1


def test_msgrole_requires_manage_roles_and_message(documents):
    cog, store, guild = _setup(documents)
    denied = _ctx(guild, manage_roles=False)
    allowed = _ctx(guild)

    async def runner():
        await cog.msgrole.callback(cog, denied, str(MESSAGE_ID), "🔥", "Raiders")
        await cog.msgrole.callback(cog, allowed, str(MESSAGE_ID), "🔥", "Raiders")
        await cog.msgrole.callback(cog, allowed, str(MESSAGE_ID), "🔥")

    asyncio.run(runner())

    assert denied.reply.call_args.args[0] == cog_module._NEEDS_MANAGE_ROLES
    replies = [call.args[0] for call in allowed.reply.call_args_list]
    assert replies[0].startswith("Could not find that message")
    assert replies[1].startswith("Usage:")
    assert len(store) == 0


def test_msgrole_list_renders_deep_links(documents):
    cog, store, guild = _setup(documents)
    ctx = _ctx(guild)

    async def runner():
        await store.add_rule(MESSAGE_ID, CHANNEL_ID, RoleGrantRule("🔥", "5001", require_role_id="5002"))
        await store.add_rule(444444444, CHANNEL_ID, RoleGrantRule("✅", "7777"))
        await cog.msgrole_list.callback(cog, ctx)

    asyncio.run(runner())

    (chunk,) = [call.args[0] for call in ctx.send.call_args_list]
    assert f"https://discord.com/channels/{GUILD_ID}/{CHANNEL_ID}/{MESSAGE_ID}" in chunk
    assert "Raiders (<@&5001>)" in chunk
    assert "requires Verified <@&5002>" in chunk
    assert "444444444" not in chunk


def test_msgrole_remove_outcomes(documents):
    cog, store, guild = _setup(documents)
    ctx = _ctx(guild)

    async def runner():
        await store.add_rule(MESSAGE_ID, CHANNEL_ID, RoleGrantRule("🔥", "5001"))
        await cog.msgrole_remove.callback(cog, ctx, "555555555", "🔥")
        await cog.msgrole_remove.callback(cog, ctx, str(MESSAGE_ID), "✅")
        await cog.msgrole_remove.callback(cog, ctx, str(MESSAGE_ID), "🔥")

    asyncio.run(runner())

    replies = [call.args[0] for call in ctx.reply.call_args_list]
    assert replies == [
        "No mappings found for that message ID.",
        "No mapping found for that emoji on the specified message.",
        f"Removed mapping for emoji `🔥` on message {MESSAGE_ID}.",
    ]
    assert store.lookup(MESSAGE_ID) == []
    assert guild.channel.edits == [(MESSAGE_ID, None)]


def test_cog_check_uses_permission_store(documents):
    cog, _store, guild = _setup(documents)

    with pytest.raises(CommandPermissionDenied):
        asyncio.run(cog.cog_check(_ctx(guild, author_id=42)))

    assert asyncio.run(cog.cog_check(_ctx(guild, author_id=1000))) is True
