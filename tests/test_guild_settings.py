from __future__ import annotations

from unittest.mock import AsyncMock

import asyncpg
import pytest

from ticketbox.core.config import Settings
from ticketbox.settings.guild import GuildSettings, GuildSettingsRepository
from ticketbox.tickets.errors import TicketPersistenceError

from tests.test_ticket_repository import DummyPool

DEFAULTS = GuildSettings(
    moderator_role_ids=("10",),
    tickets_category_id="20",
    archive_category_id="30",
    audit_channel_id="40",
    log_channel_id=None,
    transcripts_enabled=True,
)


def _row(**overrides):
    row = {
        "guild_id": "1",
        "moderator_role_ids": None,
        "tickets_category_id": None,
        "tickets_archive_category_id": None,
        "audit_log_channel_id": None,
        "log_channel_id": None,
        "transcript_enabled": None,
        "on_duty_role_id": None,
        "fallback_ping_mod_if_no_on_duty": None,
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
async def test_missing_row_returns_defaults():
    connection = AsyncMock()
    connection.fetchrow.return_value = None
    repository = GuildSettingsRepository(DummyPool(connection), defaults=DEFAULTS)

    assert await repository.get("1") == DEFAULTS
    connection.fetchrow.assert_awaited_once()
    assert connection.fetchrow.await_args.args[1] == "1"


@pytest.mark.asyncio
async def test_row_overrides_defaults_field_by_field():
    connection = AsyncMock()
    connection.fetchrow.return_value = _row(
        moderator_role_ids='["11", "12"]',
        audit_log_channel_id="41",
        log_channel_id="50",
        transcript_enabled=False,
    )
    repository = GuildSettingsRepository(DummyPool(connection), defaults=DEFAULTS)

    settings = await repository.get("1")

    assert settings.moderator_role_ids == ("11", "12")
    assert settings.tickets_category_id == "20"
    assert settings.archive_category_id == "30"
    assert settings.audit_channel_id == "41"
    assert settings.log_channel_id == "50"
    assert settings.transcripts_enabled is False


@pytest.mark.asyncio
async def test_unreadable_role_list_falls_back():
    connection = AsyncMock()
    connection.fetchrow.return_value = _row(moderator_role_ids="{oops")
    repository = GuildSettingsRepository(DummyPool(connection), defaults=DEFAULTS)

    assert (await repository.get("1")).moderator_role_ids == ("10",)


@pytest.mark.asyncio
async def test_driver_errors_are_wrapped():
    connection = AsyncMock()
    connection.fetchrow.side_effect = asyncpg.InterfaceError("connection closed")
    repository = GuildSettingsRepository(DummyPool(connection), defaults=DEFAULTS)

    with pytest.raises(TicketPersistenceError):
        await repository.get("1")


@pytest.mark.asyncio
async def test_ensure_schema_creates_table():
    connection = AsyncMock()
    repository = GuildSettingsRepository(DummyPool(connection), defaults=DEFAULTS)

    await repository.ensure_schema()

    assert "CREATE TABLE IF NOT EXISTS guild_config" in connection.execute.await_args.args[0]


def test_defaults_come_from_process_settings():
    settings = Settings(
        moderator_role_ids=("10", "11"),
        tickets_category_id="20",
        archive_category_id="",
        audit_channel_id="40",
        transcripts_enabled=False,
    )

    defaults = GuildSettings.from_settings(settings)

    assert defaults.moderator_role_ids == ("10", "11")
    assert defaults.archive_category_id is None
    assert defaults.audit_channel_id == "40"
    assert defaults.transcripts_enabled is False


@pytest.mark.asyncio
async def test_duty_columns_override_defaults():
    connection = AsyncMock()
    connection.fetchrow.return_value = _row(on_duty_role_id=" 60 ", fallback_ping_mod_if_no_on_duty=False)
    repository = GuildSettingsRepository(DummyPool(connection), defaults=DEFAULTS)

    settings = await repository.get("1")

    assert settings.on_duty_role_id == "60"
    assert settings.fallback_ping_moderators is False
    assert DEFAULTS.on_duty_role_id is None
    assert DEFAULTS.fallback_ping_moderators is True
