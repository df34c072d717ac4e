from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from ticketbox.chat.discord_transport import (
    DiscordChatTransport,
    apply_patch,
    to_discord_embed,
    to_discord_view,
)
from ticketbox.chat.transport import (
    ButtonSpec,
    EmbedCard,
    MessagePayload,
    OverwriteTarget,
    PermissionPatch,
    TransportFailure,
    TransportNotFound,
)


def _http_error(kind, status, message):
    return kind(response=MagicMock(status=status, reason=message), message=message)


class FakeMember:
    def __init__(self, member_id: int) -> None:
        self.id = member_id
        self.roles: list[object] = []
        self.add_roles = AsyncMock()
        self.remove_roles = AsyncMock()


class FakeGuild:
    def __init__(self, guild_id: int = 1) -> None:
        self.id = guild_id
        self.members: dict[int, FakeMember] = {}
        self.roles: dict[int, object] = {}
        self.fetch_member = AsyncMock(side_effect=_http_error(discord.NotFound, 404, "Unknown Member"))

    def get_member(self, member_id: int):
        return self.members.get(member_id)

    def get_role(self, role_id: int):
        return self.roles.get(role_id)


class FakeChannel:
    def __init__(self, guild: FakeGuild, channel_id: int = 55) -> None:
        self.id = channel_id
        self.guild = guild
        self.overwrites: dict[object, discord.PermissionOverwrite] = {}
        self.set_permissions = AsyncMock()
        self.fetch_message = AsyncMock()

    def overwrites_for(self, target):
        return self.overwrites.get(target, discord.PermissionOverwrite())


class FakeClient:
    def __init__(self, channel: FakeChannel) -> None:
        self.channel = channel
        self.user = FakeMember(999)

    def get_channel(self, channel_id: int):
        return self.channel if channel_id == self.channel.id else None

    def get_guild(self, guild_id: int):
        return self.channel.guild if guild_id == self.channel.guild.id else None

    async def fetch_channel(self, channel_id: int):
        raise _http_error(discord.NotFound, 404, "Unknown Channel")


@pytest.fixture
def guild():
    return FakeGuild()


@pytest.fixture
def channel(guild):
    return FakeChannel(guild)


@pytest.fixture
def transport(channel):
    return DiscordChatTransport(FakeClient(channel))


def test_apply_patch_only_touches_given_flags():
    overwrite = discord.PermissionOverwrite(view_channel=True, send_messages=True, attach_files=True)

    apply_patch(overwrite, PermissionPatch(send=False, manage=True))

    assert overwrite.view_channel is True
    assert overwrite.send_messages is False
    assert overwrite.attach_files is True
    assert overwrite.manage_channels is True
    assert overwrite.manage_messages is True
    assert overwrite.read_message_history is None


def test_embed_conversion():
    card = EmbedCard(title="🧾 Ticket Audit", description="Ticket `abc123`", footer="footer", colour=0x123456)
    card.add_field("Status", "`OPEN`", inline=True)

    embed = to_discord_embed(card)

    assert embed.title == "🧾 Ticket Audit"
    assert embed.fields[0].name == "Status"
    assert embed.fields[0].inline is True
    assert embed.footer.text == "footer"


@pytest.mark.asyncio
async def test_button_rows_become_a_persistent_view():
    view = to_discord_view(
        [
            [ButtonSpec("ticket:user_resolve", "Resolve", style="primary")],
            [ButtonSpec("ticket:mod_close", "Close", style="danger", disabled=True)],
        ]
    )

    assert view.timeout is None
    assert [item.custom_id for item in view.children] == ["ticket:user_resolve", "ticket:mod_close"]
    assert [item.row for item in view.children] == [0, 1]
    assert view.children[1].disabled is True
    assert to_discord_view([]) is None


@pytest.mark.asyncio
async def test_edit_overwrite_merges_existing_flags(transport, guild, channel):
    member = FakeMember(500)
    guild.members[500] = member
    channel.overwrites[member] = discord.PermissionOverwrite(view_channel=True, read_message_history=True)

    await transport.edit_overwrite("55", OverwriteTarget.member("500"), PermissionPatch(send=False))

    target, = channel.set_permissions.await_args.args
    overwrite = channel.set_permissions.await_args.kwargs["overwrite"]
    assert target is member
    assert overwrite.view_channel is True
    assert overwrite.read_message_history is True
    assert overwrite.send_messages is False


@pytest.mark.asyncio
async def test_edit_overwrite_for_departed_member_is_not_found(transport, channel):
    with pytest.raises(TransportNotFound):
        await transport.edit_overwrite("55", OverwriteTarget.member("500"), PermissionPatch(view=True))

    channel.set_permissions.assert_not_awaited()


@pytest.mark.asyncio
async def test_forbidden_becomes_transport_failure(transport, guild, channel):
    guild.members[500] = FakeMember(500)
    channel.set_permissions.side_effect = _http_error(discord.Forbidden, 403, "Missing Permissions")

    with pytest.raises(TransportFailure) as exc:
        await transport.edit_overwrite("55", OverwriteTarget.member("500"), PermissionPatch(view=True))

    assert not isinstance(exc.value, TransportNotFound)


@pytest.mark.asyncio
async def test_delete_overwrite(transport, channel):
    member = FakeMember(500)
    channel.overwrites[member] = discord.PermissionOverwrite(view_channel=True)

    assert await transport.delete_overwrite("55", OverwriteTarget.member("500")) is True
    channel.set_permissions.assert_awaited_once_with(member, overwrite=None)

    assert await transport.delete_overwrite("55", OverwriteTarget.member("501")) is False


@pytest.mark.asyncio
async def test_missing_message_is_none(transport, channel):
    channel.fetch_message.side_effect = _http_error(discord.NotFound, 404, "Unknown Message")

    assert await transport.fetch_message("55", "1234") is None


@pytest.mark.asyncio
async def test_fetch_message_converts_to_chat_message(transport, channel):
    author = MagicMock(id=100, display_name="alice")
    attachment = MagicMock(url="https://cdn.example.test/t.html")
    attachment.filename = "t.html"
    channel.fetch_message.return_value = MagicMock(
        id=1234,
        channel=channel,
        author=author,
        content="hello",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        attachments=[attachment],
    )

    message = await transport.fetch_message("55", "1234")

    assert message.id == "1234"
    assert message.author_id == "100"
    assert message.author_name == "alice"
    assert message.attachments[0].filename == "t.html"


@pytest.mark.asyncio
async def test_unknown_channel_is_not_a_category(transport):
    assert await transport.is_category("1", "77") is False


@pytest.mark.asyncio
async def test_current_user_id(transport):
    assert await transport.current_user_id() == "999"


@pytest.mark.asyncio
async def test_set_member_role_adds_and_removes_once(transport, guild):
    role = MagicMock(id=77)
    guild.roles[77] = role
    member = FakeMember(500)
    guild.members[500] = member

    await transport.set_member_role("1", "500", "77", present=True)
    member.add_roles.assert_awaited_once()
    assert member.add_roles.await_args.args == (role,)

    member.roles.append(role)
    await transport.set_member_role("1", "500", "77", present=True)
    member.add_roles.assert_awaited_once()

    await transport.set_member_role("1", "500", "77", present=False)
    member.remove_roles.assert_awaited_once()


@pytest.mark.asyncio
async def test_set_member_role_for_unknown_role_is_not_found(transport, guild):
    guild.members[500] = FakeMember(500)

    with pytest.raises(TransportNotFound):
        await transport.set_member_role("1", "500", "77", present=True)


@pytest.mark.asyncio
async def test_edit_without_content_keeps_message_text(transport, channel):
    partial = MagicMock()
    partial.edit = AsyncMock(
        return_value=MagicMock(
            id=1234,
            channel=channel,
            author=MagicMock(id=999, display_name="Ticketbox"),
            content="<@100> <@&10>",
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            attachments=[],
        )
    )
    channel.get_partial_message = MagicMock(return_value=partial)

    message = await transport.edit_message("55", "1234", MessagePayload(embeds=[EmbedCard(title="🎫 Ticket")]))

    assert "content" not in partial.edit.await_args.kwargs
    assert message.content == "<@100> <@&10>"
