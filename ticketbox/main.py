from contextlib import asynccontextmanager

from fastapi import FastAPI

from ticketbox.api.routes import metrics, ping, tickets
from ticketbox.core.config import get_settings
from ticketbox.core.logging import configure_logging, init_tracer, shutdown_tracer
from ticketbox.services.postgres import PostgresConnectionTester, create_pool
from ticketbox.tickets.repository import TicketRepository


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    app.state.ticket_repository = None
    pool = None
    try:
        pool = await create_pool(
            settings.postgres_dsn,
            min_size=settings.postgres_pool_min_size,
            max_size=settings.postgres_pool_max_size,
        )
        repository = TicketRepository(pool)
        await repository.ensure_schema()
        app.state.ticket_repository = repository
    except Exception:
        logger.exception("Ticket store unavailable; ticket routes will answer 503")
    app.state.postgres_tester = PostgresConnectionTester(dsn=settings.postgres_dsn, _pool=pool)
    try:
        yield
    finally:
        await app.state.postgres_tester.close()
        if pool is not None:
            await pool.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=f"{settings.app_name} operations", lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(metrics.router)
    return app


app = create_app()
