from __future__ import annotations

import pytest
import pytest_asyncio

from ticketbox.metrics import MetricsRegistry, register_default_metrics
from ticketbox.settings.guild import GuildSettings, StaticGuildSettingsProvider
from ticketbox.tickets.creation import TicketFactory
from ticketbox.tickets.service import TicketLifecycleService
from ticketbox.tickets.transcript import HistoryLimits

from tests.fakes import FakeChatTransport, InMemoryDutyRoster, InMemoryTicketRepository

GUILD_ID = "1"
CREATOR = "100"
MODERATOR = "200"
ADMIN = "300"
BYSTANDER = "400"
HELPER = "500"
MOD_ROLE = "mod-role"


@pytest.fixture
def guild_settings() -> GuildSettings:
    return GuildSettings(
        moderator_role_ids=(MOD_ROLE,),
        tickets_category_id="cat-open",
        archive_category_id="cat-archive",
        audit_channel_id="audit",
        log_channel_id="log",
        transcripts_enabled=True,
    )


@pytest.fixture
def transport() -> FakeChatTransport:
    fake = FakeChatTransport()
    fake.add_member(CREATOR, "alice")
    fake.add_member(MODERATOR, "mona", roles=[MOD_ROLE])
    fake.add_member(ADMIN, "root", admin=True)
    fake.add_member(BYSTANDER, "bob")
    fake.add_member(HELPER, "hal")
    fake.categories.update({"cat-open", "cat-archive"})
    return fake


@pytest.fixture
def repository() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def duty() -> InMemoryDutyRoster:
    return InMemoryDutyRoster()


@pytest.fixture
def metrics() -> MetricsRegistry:
    return register_default_metrics(MetricsRegistry())


@pytest.fixture
def lifecycle(repository, transport, guild_settings, metrics, duty) -> TicketLifecycleService:
    return TicketLifecycleService.build(
        repository,
        transport,
        StaticGuildSettingsProvider(guild_settings),
        limits=HistoryLimits(page_size=5, max_pages=3),
        metrics=metrics,
        duty=duty,
    )


@pytest.fixture
def factory(lifecycle) -> TicketFactory:
    return TicketFactory(lifecycle)


@pytest_asyncio.fixture
async def opened(factory):
    result = await factory.open_ticket(GUILD_ID, CREATOR, subject="Printer is on fire")
    return result.ticket
