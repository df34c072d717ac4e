from __future__ import annotations

from dataclasses import replace

import pytest

from ticketbox.tickets.audit import AuditSynchronizer
from ticketbox.tickets.errors import AuditSyncError
from ticketbox.tickets.rendering import UserNameCache, render_participants

from tests.conftest import CREATOR, MODERATOR


@pytest.fixture
def audit(repository, transport):
    return AuditSynchronizer(repository, transport)


def _audit_embed(transport, message_id):
    return transport.payloads[message_id].embeds[0]


@pytest.mark.asyncio
async def test_ensure_is_idempotent(audit, repository, transport, guild_settings, opened):
    first = await audit.ensure(opened, guild_settings)
    second = await audit.ensure(opened, guild_settings)

    assert first == second == opened.audit_message_id
    assert len(transport.messages["audit"]) == 1
    assert (await repository.get_by_id(opened.id)).audit_message_id == first


@pytest.mark.asyncio
async def test_ensure_recreates_deleted_record(audit, repository, transport, guild_settings, opened):
    transport.messages["audit"].clear()

    message_id = await audit.ensure(opened, guild_settings)

    assert message_id != opened.audit_message_id
    assert (await repository.get_by_id(opened.id)).audit_message_id == message_id


@pytest.mark.asyncio
async def test_ensure_does_not_duplicate_when_lookup_fails(audit, transport, guild_settings, opened):
    transport.fail_message_lookup = True

    with pytest.raises(AuditSyncError):
        await audit.ensure(opened, guild_settings)

    assert len(transport.messages["audit"]) == 1


@pytest.mark.asyncio
async def test_ensure_raises_when_record_cannot_be_created(audit, repository, transport, guild_settings, opened):
    await repository.write_audit_message_id(opened.id, None)
    transport.failing_channels.add("audit")

    with pytest.raises(AuditSyncError):
        await audit.ensure(opened, guild_settings)


@pytest.mark.asyncio
async def test_no_audit_channel_is_a_silent_noop(audit, transport, guild_settings, opened):
    settings = replace(guild_settings, audit_channel_id=None)
    sent_before = len(transport.sent)

    assert await audit.ensure(opened, settings) is None
    assert await audit.update(opened, settings) is None
    assert len(transport.sent) == sent_before


@pytest.mark.asyncio
async def test_update_renders_current_state(audit, repository, transport, guild_settings, opened):
    await repository.write_closed(opened.id, MODERATOR)

    message_id = await audit.update(opened, guild_settings)

    embed = _audit_embed(transport, message_id)
    assert embed.field_value("Subject") == "Printer is on fire"
    assert embed.field_value("Closed by") == f"mona (<@{MODERATOR}>)"
    assert embed.field_value("Opened by") == f"alice (<@{CREATOR}>)"


@pytest.mark.asyncio
async def test_update_swallows_edit_failures(audit, transport, guild_settings, opened):
    original = transport.payloads[opened.audit_message_id]
    transport.failing_channels.add("audit")

    assert await audit.update(opened, guild_settings) == opened.audit_message_id
    assert transport.payloads[opened.audit_message_id] is original


@pytest.mark.asyncio
async def test_unknown_users_render_with_id_suffix(transport):
    names = UserNameCache(transport)
    assert await names.describe("987654321") == "Unknown#4321 (<@987654321>)"


def test_participant_list_is_capped():
    lines = [f"user{index} (<@{index:018d}>)" for index in range(100)]

    rendered = render_participants(lines)

    assert rendered.endswith("…")
    assert len(rendered) < 1024
    assert render_participants([]) == "—"
