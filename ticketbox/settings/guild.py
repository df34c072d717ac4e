"""Per-guild ticket settings."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Mapping, Protocol

import asyncpg

from ticketbox.core.config import Settings
from ticketbox.tickets.errors import TicketPersistenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GuildSettings:
    """Read-only configuration the ticket core consults for one guild."""

    moderator_role_ids: tuple[str, ...] = ()
    tickets_category_id: str | None = None
    archive_category_id: str | None = None
    audit_channel_id: str | None = None
    log_channel_id: str | None = None
    transcripts_enabled: bool = True
    on_duty_role_id: str | None = None
    fallback_ping_moderators: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> GuildSettings:
        return cls(
            moderator_role_ids=tuple(str(role_id) for role_id in settings.moderator_role_ids),
            tickets_category_id=settings.tickets_category_id or None,
            archive_category_id=settings.archive_category_id or None,
            audit_channel_id=settings.audit_channel_id or None,
            log_channel_id=settings.log_channel_id or None,
            transcripts_enabled=settings.transcripts_enabled,
            on_duty_role_id=settings.on_duty_role_id or None,
            fallback_ping_moderators=settings.fallback_ping_moderators,
        )


class GuildSettingsProvider(Protocol):
    async def get(self, guild_id: str) -> GuildSettings: ...


class StaticGuildSettingsProvider:
    """Serve the same settings for every guild."""

    def __init__(self, settings: GuildSettings) -> None:
        self._settings = settings

    async def get(self, guild_id: str) -> GuildSettings:
        return self._settings


def _parse_role_ids(raw: Any) -> tuple[str, ...] | None:
    if raw is None:
        return None
    try:
        value = json.loads(raw) if isinstance(raw, str) else raw
    except ValueError:
        logger.warning("Ignoring unreadable moderator role list: %r", raw)
        return None
    if not isinstance(value, list):
        return None
    return tuple(str(item) for item in value if str(item))


class GuildSettingsRepository:
    """Read per-guild overrides from ``guild_config``.

    Columns left NULL fall back to the process-wide defaults.
    """

    _CREATE_GUILD_CONFIG_SQL = """
    CREATE TABLE IF NOT EXISTS guild_config (
        guild_id TEXT PRIMARY KEY,
        moderator_role_ids TEXT NULL,
        tickets_category_id TEXT NULL,
        tickets_archive_category_id TEXT NULL,
        audit_log_channel_id TEXT NULL,
        log_channel_id TEXT NULL,
        transcript_enabled BOOLEAN NULL,
        on_duty_role_id TEXT NULL,
        fallback_ping_mod_if_no_on_duty BOOLEAN NULL
    )
    """

    _SELECT_GUILD_CONFIG_SQL = """
    SELECT guild_id, moderator_role_ids, tickets_category_id, tickets_archive_category_id,
           audit_log_channel_id, log_channel_id, transcript_enabled, on_duty_role_id,
           fallback_ping_mod_if_no_on_duty
    FROM guild_config
    WHERE guild_id = $1
    """

    def __init__(self, pool: asyncpg.Pool, *, defaults: GuildSettings) -> None:
        self._pool = pool
        self._defaults = defaults

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_GUILD_CONFIG_SQL)

    async def get(self, guild_id: str) -> GuildSettings:
        try:
            async with self._pool.acquire() as connection:
                row = await connection.fetchrow(self._SELECT_GUILD_CONFIG_SQL, guild_id)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise TicketPersistenceError(str(exc)) from exc
        if row is None:
            return self._defaults
        return self._merge(row)

    def _merge(self, row: Mapping[str, Any]) -> GuildSettings:
        overrides: dict[str, Any] = {}
        role_ids = _parse_role_ids(row["moderator_role_ids"])
        if role_ids is not None:
            overrides["moderator_role_ids"] = role_ids
        for field_name, column in (
            ("tickets_category_id", "tickets_category_id"),
            ("archive_category_id", "tickets_archive_category_id"),
            ("audit_channel_id", "audit_log_channel_id"),
            ("log_channel_id", "log_channel_id"),
            ("on_duty_role_id", "on_duty_role_id"),
        ):
            value = row[column]
            if value:
                overrides[field_name] = str(value).strip()
        if row["transcript_enabled"] is not None:
            overrides["transcripts_enabled"] = bool(row["transcript_enabled"])
        if row["fallback_ping_mod_if_no_on_duty"] is not None:
            overrides["fallback_ping_moderators"] = bool(row["fallback_ping_mod_if_no_on_duty"])
        return replace(self._defaults, **overrides)
