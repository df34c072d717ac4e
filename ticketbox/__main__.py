"""Run the ticket bot: ``python -m ticketbox``."""

from __future__ import annotations

import asyncio
import logging

from ticketbox.bot.client import TicketBot
from ticketbox.bot.handlers import InteractionHandlers
from ticketbox.chat.discord_transport import DiscordChatTransport
from ticketbox.core.config import get_settings
from ticketbox.core.logging import configure_logging, init_tracer, shutdown_tracer
from ticketbox.services.postgres import create_pool
from ticketbox.settings.guild import GuildSettings, GuildSettingsRepository
from ticketbox.tickets.creation import TicketFactory
from ticketbox.tickets.duty import DutyRepository
from ticketbox.tickets.repository import TicketRepository
from ticketbox.tickets.service import TicketLifecycleService
from ticketbox.tickets.transcript import HistoryLimits

logger = logging.getLogger("ticketbox")


async def run() -> None:
    settings = get_settings()
    configure_logging(settings)
    tracer_provider = init_tracer(settings)
    if not settings.discord_token:
        raise SystemExit("DISCORD_TOKEN is not set")

    pool = await create_pool(
        settings.postgres_dsn,
        min_size=settings.postgres_pool_min_size,
        max_size=settings.postgres_pool_max_size,
    )
    try:
        repository = TicketRepository(pool)
        await repository.ensure_schema()
        guild_settings = GuildSettingsRepository(pool, defaults=GuildSettings.from_settings(settings))
        await guild_settings.ensure_schema()
        duty = DutyRepository(pool)
        await duty.ensure_schema()

        bot = TicketBot(settings)
        lifecycle = TicketLifecycleService.build(
            repository,
            DiscordChatTransport(bot),
            guild_settings,
            limits=HistoryLimits(page_size=settings.history_page_size, max_pages=settings.history_max_pages),
            duty=duty,
        )
        bot.attach(InteractionHandlers(lifecycle, TicketFactory(lifecycle)))
        async with bot:
            await bot.start(settings.discord_token)
    finally:
        await pool.close()
        shutdown_tracer(tracer_provider)


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
