from __future__ import annotations

import pytest

from ticketbox.tickets.permissions import AccessControlManager
from ticketbox.tickets.participants import ParticipantRegistry

from tests.conftest import ADMIN, CREATOR, HELPER, MODERATOR


@pytest.fixture
def registry(repository, transport, metrics):
    return ParticipantRegistry(repository, AccessControlManager(transport, metrics=metrics), transport)


@pytest.mark.asyncio
async def test_add_grants_access_and_persists(registry, repository, transport, opened):
    change = await registry.add(opened, HELPER)

    assert change.changed
    assert change.ticket.participants == [HELPER]
    assert (await repository.get_by_id(opened.id)).participants == [HELPER]
    assert transport.permissions(opened.channel_id, HELPER) == {"view": True, "send": True, "read_history": True}


@pytest.mark.asyncio
async def test_add_is_idempotent_on_the_list(registry, repository, opened):
    first = await registry.add(opened, HELPER)
    second = await registry.add(first.ticket, HELPER)

    assert not second.changed
    assert (await repository.get_by_id(opened.id)).participants == [HELPER]


@pytest.mark.asyncio
async def test_add_never_stores_owner(registry, repository, transport, opened):
    change = await registry.add(opened, CREATOR)

    assert not change.changed
    assert (await repository.get_by_id(opened.id)).participants == []
    assert transport.permissions(opened.channel_id, CREATOR)["send"] is True


@pytest.mark.asyncio
async def test_add_then_remove_restores_state(registry, repository, transport, guild_settings, opened):
    added = await registry.add(opened, HELPER)
    removed = await registry.remove(added.ticket, HELPER, guild_settings)

    assert removed.changed
    assert (await repository.get_by_id(opened.id)).participants == []
    assert transport.permissions(opened.channel_id, HELPER) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("user_id", [CREATOR, MODERATOR, ADMIN])
async def test_protected_members_are_silently_kept(registry, transport, guild_settings, opened, user_id):
    before = transport.permissions(opened.channel_id, user_id)

    change = await registry.remove(opened, user_id, guild_settings)

    assert change.protected
    assert not change.changed
    assert transport.permissions(opened.channel_id, user_id) == before


@pytest.mark.asyncio
async def test_departed_participant_can_be_removed(registry, repository, transport, guild_settings, opened):
    added = await registry.add(opened, HELPER)
    del transport.members[HELPER]

    change = await registry.remove(added.ticket, HELPER, guild_settings)

    assert change.changed
    assert (await repository.get_by_id(opened.id)).participants == []
