from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Mapping

import asyncpg

from .errors import TicketPersistenceError
from .models import Ticket, decode_participants, encode_participants
from .state import TicketState

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, guild_id, channel_id, creator_user_id, target_user_id, subject, state,
    created_at, updated_at, closed_at, closed_by_user_id, archived_at, archived_by_user_id,
    added_participants, header_message_id, audit_message_id, transcript_url
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketRepository:
    """Data access layer for ticket records.

    Every write touches ``updated_at`` and returns the refreshed ticket, or
    ``None`` when no ticket has the given id.
    """

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        guild_id TEXT NOT NULL,
        channel_id TEXT NOT NULL UNIQUE,
        creator_user_id TEXT NOT NULL,
        target_user_id TEXT NOT NULL,
        subject TEXT NULL,
        state TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        closed_at TIMESTAMPTZ NULL,
        closed_by_user_id TEXT NULL,
        archived_at TIMESTAMPTZ NULL,
        archived_by_user_id TEXT NULL,
        added_participants TEXT NOT NULL DEFAULT '[]',
        header_message_id TEXT NULL,
        audit_message_id TEXT NULL,
        transcript_url TEXT NULL
    )
    """

    _CREATE_STATE_INDEX_SQL = """
    CREATE INDEX IF NOT EXISTS tickets_guild_state_idx ON tickets (guild_id, state)
    """

    _INSERT_TICKET_SQL = f"""
    INSERT INTO tickets (
        id, guild_id, channel_id, creator_user_id, target_user_id, subject, state,
        created_at, updated_at, added_participants
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $8, $9)
    RETURNING {_COLUMNS}
    """

    _SELECT_BY_ID_SQL = f"""
    SELECT {_COLUMNS}
    FROM tickets
    WHERE id = $1
    """

    _SELECT_BY_CHANNEL_SQL = f"""
    SELECT {_COLUMNS}
    FROM tickets
    WHERE channel_id = $1
    """

    _LIST_TICKETS_SQL = f"""
    SELECT {_COLUMNS}
    FROM tickets
    ORDER BY created_at DESC
    """

    _LIST_TICKETS_BY_STATE_SQL = f"""
    SELECT {_COLUMNS}
    FROM tickets
    WHERE state = $1
    ORDER BY created_at DESC
    """

    _UPDATE_STATE_SQL = f"""
    UPDATE tickets
    SET state = $2,
        updated_at = $3
    WHERE id = $1
    RETURNING {_COLUMNS}
    """

    # closed/archived markers are written once and never overwritten.
    _WRITE_CLOSED_SQL = f"""
    UPDATE tickets
    SET closed_at = COALESCE(closed_at, $3),
        closed_by_user_id = COALESCE(closed_by_user_id, $2),
        updated_at = $3
    WHERE id = $1
    RETURNING {_COLUMNS}
    """

    _WRITE_ARCHIVED_SQL = f"""
    UPDATE tickets
    SET archived_at = COALESCE(archived_at, $3),
        archived_by_user_id = COALESCE(archived_by_user_id, $2),
        updated_at = $3
    WHERE id = $1
    RETURNING {_COLUMNS}
    """

    _WRITE_PARTICIPANTS_SQL = f"""
    UPDATE tickets
    SET added_participants = $2,
        updated_at = $3
    WHERE id = $1
    RETURNING {_COLUMNS}
    """

    _WRITE_HEADER_SQL = f"""
    UPDATE tickets
    SET header_message_id = $2,
        updated_at = $3
    WHERE id = $1
    RETURNING {_COLUMNS}
    """

    _WRITE_AUDIT_SQL = f"""
    UPDATE tickets
    SET audit_message_id = $2,
        updated_at = $3
    WHERE id = $1
    RETURNING {_COLUMNS}
    """

    _WRITE_TRANSCRIPT_SQL = f"""
    UPDATE tickets
    SET transcript_url = $2,
        updated_at = $3
    WHERE id = $1
    RETURNING {_COLUMNS}
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Any]:
        try:
            async with self._pool.acquire() as connection:
                yield connection
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            logger.error("Ticket store operation failed: %s", exc)
            raise TicketPersistenceError(str(exc)) from exc

    async def ensure_schema(self) -> None:
        async with self._connection() as connection:
            await connection.execute(self._CREATE_TICKETS_SQL)
            await connection.execute(self._CREATE_STATE_INDEX_SQL)

    async def insert(self, ticket: Ticket) -> Ticket:
        async with self._connection() as connection:
            row = await connection.fetchrow(
                self._INSERT_TICKET_SQL,
                ticket.id,
                ticket.guild_id,
                ticket.channel_id,
                ticket.creator_id,
                ticket.target_id,
                ticket.subject,
                ticket.state.value,
                ticket.created_at,
                encode_participants(ticket.participants),
            )
        if row is None:
            raise TicketPersistenceError("Failed to insert ticket")
        return self._row_to_ticket(row)

    async def get_by_id(self, ticket_id: str) -> Ticket | None:
        async with self._connection() as connection:
            row = await connection.fetchrow(self._SELECT_BY_ID_SQL, ticket_id)
        return self._row_to_ticket(row) if row is not None else None

    async def get_by_channel(self, channel_id: str) -> Ticket | None:
        async with self._connection() as connection:
            row = await connection.fetchrow(self._SELECT_BY_CHANNEL_SQL, channel_id)
        return self._row_to_ticket(row) if row is not None else None

    async def list_tickets(self, *, state: TicketState | None = None) -> list[Ticket]:
        async with self._connection() as connection:
            if state is None:
                rows = await connection.fetch(self._LIST_TICKETS_SQL)
            else:
                rows = await connection.fetch(self._LIST_TICKETS_BY_STATE_SQL, state.value)
        return [self._row_to_ticket(row) for row in rows]

    async def set_state(self, ticket_id: str, state: TicketState, *, at: datetime | None = None) -> Ticket | None:
        return await self._update(self._UPDATE_STATE_SQL, ticket_id, state.value, at)

    async def write_closed(self, ticket_id: str, user_id: str, *, at: datetime | None = None) -> Ticket | None:
        return await self._update(self._WRITE_CLOSED_SQL, ticket_id, user_id, at)

    async def write_archived(self, ticket_id: str, user_id: str, *, at: datetime | None = None) -> Ticket | None:
        return await self._update(self._WRITE_ARCHIVED_SQL, ticket_id, user_id, at)

    async def write_participants(
        self, ticket_id: str, participants: list[str], *, at: datetime | None = None
    ) -> Ticket | None:
        return await self._update(self._WRITE_PARTICIPANTS_SQL, ticket_id, encode_participants(participants), at)

    async def write_header_message_id(
        self, ticket_id: str, message_id: str | None, *, at: datetime | None = None
    ) -> Ticket | None:
        return await self._update(self._WRITE_HEADER_SQL, ticket_id, message_id, at)

    async def write_audit_message_id(
        self, ticket_id: str, message_id: str | None, *, at: datetime | None = None
    ) -> Ticket | None:
        return await self._update(self._WRITE_AUDIT_SQL, ticket_id, message_id, at)

    async def write_transcript_url(
        self, ticket_id: str, url: str | None, *, at: datetime | None = None
    ) -> Ticket | None:
        return await self._update(self._WRITE_TRANSCRIPT_SQL, ticket_id, url, at)

    async def _update(self, sql: str, ticket_id: str, value: Any, at: datetime | None) -> Ticket | None:
        async with self._connection() as connection:
            row = await connection.fetchrow(sql, ticket_id, value, at or _utcnow())
        if row is None:
            return None
        return self._row_to_ticket(row)

    @staticmethod
    def _row_to_ticket(row: Mapping[str, Any]) -> Ticket:
        return Ticket(
            id=str(row["id"]),
            guild_id=str(row["guild_id"]),
            channel_id=str(row["channel_id"]),
            creator_id=str(row["creator_user_id"]),
            target_id=str(row["target_user_id"]),
            subject=row["subject"],
            state=TicketState(str(row["state"])),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            participants=decode_participants(row["added_participants"]),
            closed_at=row["closed_at"],
            closed_by=row["closed_by_user_id"],
            archived_at=row["archived_at"],
            archived_by=row["archived_by_user_id"],
            header_message_id=row["header_message_id"],
            audit_message_id=row["audit_message_id"],
            transcript_url=row["transcript_url"],
        )
