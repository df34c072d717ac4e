"""Logging and tracing utilities for Ticketbox."""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from logging.config import dictConfig
from typing import Iterator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from ticketbox.core.config import Settings

_TRACER_INITIALISED = False

# discord.py is chatty at INFO about gateway events.
_DISCORD_LOGGERS = ("discord", "discord.gateway", "discord.client", "discord.http")

_NO_CONTEXT = "-"

# (guild_id, ticket_id) of the ticket operation running in this task.
_ticket_context: contextvars.ContextVar[tuple[str, str]] = contextvars.ContextVar(
    "ticket_context", default=(_NO_CONTEXT, _NO_CONTEXT)
)


@contextmanager
def bind_ticket_context(ticket_id: str, guild_id: str) -> Iterator[None]:
    """Tag every log record emitted inside the block with the ticket and guild."""

    token = _ticket_context.set((guild_id, ticket_id))
    try:
        yield
    finally:
        _ticket_context.reset(token)


class TicketContextFilter(logging.Filter):
    """Expose ``guild_id`` and ``ticket_id`` to format strings."""

    def filter(self, record: logging.LogRecord) -> bool:
        guild_id, ticket_id = _ticket_context.get()
        if not hasattr(record, "guild_id"):
            record.guild_id = guild_id
        if not hasattr(record, "ticket_id"):
            record.ticket_id = ticket_id
        return True


def _parse_headers(header_string: str | None) -> dict[str, str]:
    if not header_string:
        return {}
    headers: dict[str, str] = {}
    for item in header_string.split(","):
        if not item or "=" not in item:
            continue
        key, value = item.split("=", 1)
        headers[key.strip()] = value.strip()
    return headers


def _level(name: str, default: int) -> int:
    value = getattr(logging, name.upper(), None)
    return value if isinstance(value, int) else default


def configure_logging(settings: Settings) -> logging.Logger:
    """Install the ticket-aware stream handler and set logger levels."""

    level = _level(settings.log_level, logging.INFO)
    discord_level = _level(settings.discord_log_level, logging.WARNING)
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"ticket_context": {"()": TicketContextFilter}},
            "formatters": {"default": {"format": settings.log_format}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["ticket_context"],
                    "level": level,
                }
            },
            "loggers": {name: {"level": discord_level} for name in _DISCORD_LOGGERS},
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )

    logger = logging.getLogger(settings.app_name)
    logger.setLevel(level)
    return logger


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Initialise the OpenTelemetry tracer if enabled in settings."""

    global _TRACER_INITIALISED

    if _TRACER_INITIALISED or not settings.otel_enabled:
        return None

    resource = Resource(
        attributes={
            "service.name": settings.otel_service_name,
            "deployment.environment": settings.environment,
        }
    )
    provider = TracerProvider(resource=resource)

    exporter_kwargs: dict[str, object] = {}
    if settings.otel_exporter_otlp_endpoint:
        exporter_kwargs["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = _parse_headers(settings.otel_exporter_otlp_headers)
    if headers:
        exporter_kwargs["headers"] = headers

    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**exporter_kwargs)))

    trace.set_tracer_provider(provider)
    _TRACER_INITIALISED = True
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Shut down the configured tracer provider."""

    if provider is None:
        return

    global _TRACER_INITIALISED
    provider.shutdown()
    _TRACER_INITIALISED = False
