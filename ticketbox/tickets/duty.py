"""Duty roster: which staff members are pinged for new tickets."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

import asyncpg

from ticketbox.settings.guild import GuildSettings

from .errors import TicketPersistenceError
from .rendering import role_mention, user_mention


@dataclass(frozen=True, slots=True)
class DutyChange:
    user_id: str
    on_duty: bool
    # None when no on-duty role is configured.
    role_synced: bool | None = None


class DutyRoster(Protocol):
    async def set_on_duty(self, guild_id: str, user_id: str, on_duty: bool) -> None: ...

    async def on_duty_user_ids(self, guild_id: str) -> list[str]: ...


class DutyRepository:
    """Persist duty toggles in the ``duty`` table."""

    _CREATE_DUTY_SQL = """
    CREATE TABLE IF NOT EXISTS duty (
        guild_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        is_on_duty BOOLEAN NOT NULL DEFAULT FALSE,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (guild_id, user_id)
    )
    """

    _UPSERT_DUTY_SQL = """
    INSERT INTO duty (guild_id, user_id, is_on_duty, updated_at)
    VALUES ($1, $2, $3, $4)
    ON CONFLICT (guild_id, user_id) DO UPDATE
    SET is_on_duty = EXCLUDED.is_on_duty,
        updated_at = EXCLUDED.updated_at
    """

    _SELECT_ON_DUTY_SQL = """
    SELECT user_id
    FROM duty
    WHERE guild_id = $1 AND is_on_duty
    ORDER BY updated_at ASC, user_id ASC
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_DUTY_SQL)

    async def set_on_duty(self, guild_id: str, user_id: str, on_duty: bool) -> None:
        try:
            async with self._pool.acquire() as connection:
                await connection.execute(
                    self._UPSERT_DUTY_SQL, guild_id, user_id, on_duty, datetime.now(timezone.utc)
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise TicketPersistenceError(str(exc)) from exc

    async def on_duty_user_ids(self, guild_id: str) -> list[str]:
        try:
            async with self._pool.acquire() as connection:
                rows = await connection.fetch(self._SELECT_ON_DUTY_SQL, guild_id)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise TicketPersistenceError(str(exc)) from exc
        return [str(row["user_id"]) for row in rows]


def notify_mentions(on_duty_ids: list[str], settings: GuildSettings) -> list[str]:
    """Mentions for a staff ping: on-duty users, else the moderator roles if the guild allows it."""

    if on_duty_ids:
        return [user_mention(user_id) for user_id in on_duty_ids]
    if settings.fallback_ping_moderators:
        return [role_mention(role_id) for role_id in settings.moderator_role_ids]
    return []
