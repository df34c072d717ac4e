from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import asyncpg
import pytest

from ticketbox.tickets.errors import TicketPersistenceError
from ticketbox.tickets.models import Ticket
from ticketbox.tickets.repository import TicketRepository
from ticketbox.tickets.state import TicketState


class DummyAcquire:
    def __init__(self, connection):
        self._connection = connection

    async def __aenter__(self):
        return self._connection

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummyPool:
    def __init__(self, connection):
        self._connection = connection

    def acquire(self):
        return DummyAcquire(self._connection)


def _row(**overrides):
    now = datetime.now(timezone.utc)
    row = {
        "id": "lx3k9a",
        "guild_id": "1",
        "channel_id": "55",
        "creator_user_id": "100",
        "target_user_id": "100",
        "subject": "Printer",
        "state": "OPEN",
        "created_at": now,
        "updated_at": now,
        "closed_at": None,
        "closed_by_user_id": None,
        "archived_at": None,
        "archived_by_user_id": None,
        "added_participants": '["500"]',
        "header_message_id": None,
        "audit_message_id": None,
        "transcript_url": None,
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
async def test_ensure_schema_creates_tickets_table():
    connection = AsyncMock()
    repository = TicketRepository(DummyPool(connection))

    await repository.ensure_schema()

    executed = [call.args[0] for call in connection.execute.await_args_list]
    assert any("CREATE TABLE IF NOT EXISTS tickets" in stmt for stmt in executed)
    assert any("channel_id TEXT NOT NULL UNIQUE" in stmt for stmt in executed)


@pytest.mark.asyncio
async def test_insert_encodes_participants_and_state():
    now = datetime.now(timezone.utc)
    connection = AsyncMock()
    connection.fetchrow = AsyncMock(return_value=_row(added_participants="[]"))
    repository = TicketRepository(DummyPool(connection))
    ticket = Ticket(
        id="lx3k9a",
        guild_id="1",
        channel_id="55",
        creator_id="100",
        target_id="100",
        subject="Printer",
        state=TicketState.OPEN,
        created_at=now,
        updated_at=now,
    )

    stored = await repository.insert(ticket)

    args = connection.fetchrow.await_args.args
    assert args[7] == "OPEN"
    assert args[9] == "[]"
    assert stored.participants == []


@pytest.mark.asyncio
async def test_get_by_channel_maps_row():
    connection = AsyncMock()
    connection.fetchrow = AsyncMock(return_value=_row(state="CLOSED", closed_by_user_id="200"))
    repository = TicketRepository(DummyPool(connection))

    ticket = await repository.get_by_channel("55")

    assert ticket is not None
    assert ticket.state is TicketState.CLOSED
    assert ticket.closed_by == "200"
    assert ticket.participants == ["500"]
    assert connection.fetchrow.await_args.args[1] == "55"


@pytest.mark.asyncio
async def test_unreadable_participants_decode_as_empty():
    connection = AsyncMock()
    connection.fetchrow = AsyncMock(return_value=_row(added_participants="{not json"))
    repository = TicketRepository(DummyPool(connection))

    ticket = await repository.get_by_id("lx3k9a")

    assert ticket is not None
    assert ticket.participants == []


@pytest.mark.asyncio
async def test_write_returns_none_for_unknown_ticket():
    connection = AsyncMock()
    connection.fetchrow = AsyncMock(return_value=None)
    repository = TicketRepository(DummyPool(connection))

    assert await repository.set_state("missing", TicketState.CLOSED) is None


@pytest.mark.asyncio
async def test_write_closed_keeps_first_value():
    at = datetime(2024, 5, 1, tzinfo=timezone.utc)
    connection = AsyncMock()
    connection.fetchrow = AsyncMock(return_value=_row(closed_at=at, closed_by_user_id="200"))
    repository = TicketRepository(DummyPool(connection))

    await repository.write_closed("lx3k9a", "300", at=at)

    sql, ticket_id, user_id, timestamp = connection.fetchrow.await_args.args
    assert "COALESCE(closed_by_user_id, $2)" in sql
    assert (ticket_id, user_id, timestamp) == ("lx3k9a", "300", at)


@pytest.mark.asyncio
async def test_list_tickets_filters_by_state():
    connection = AsyncMock()
    connection.fetch = AsyncMock(return_value=[_row(state="ARCHIVED")])
    repository = TicketRepository(DummyPool(connection))

    tickets = await repository.list_tickets(state=TicketState.ARCHIVED)

    assert [ticket.state for ticket in tickets] == [TicketState.ARCHIVED]
    assert connection.fetch.await_args.args[1] == "ARCHIVED"


@pytest.mark.asyncio
async def test_driver_errors_become_persistence_errors():
    connection = AsyncMock()
    connection.fetchrow = AsyncMock(side_effect=asyncpg.InterfaceError("connection reset"))
    repository = TicketRepository(DummyPool(connection))

    with pytest.raises(TicketPersistenceError):
        await repository.write_participants("lx3k9a", ["500"])
