import logging

from ticketbox.core.config import Settings
from ticketbox.core.logging import (
    TicketContextFilter,
    _parse_headers,
    bind_ticket_context,
    configure_logging,
    init_tracer,
)


def _record(message: str = "hello") -> logging.LogRecord:
    return logging.LogRecord("ticketbox.test", logging.INFO, __file__, 1, message, None, None)


def test_parse_headers_skips_malformed_items():
    assert _parse_headers("authorization=Bearer x, tenant = ops,broken,") == {
        "authorization": "Bearer x",
        "tenant": "ops",
    }
    assert _parse_headers(None) == {}


def test_configure_logging_quiets_gateway_loggers():
    logger = configure_logging(Settings(log_level="debug"))

    assert logger.level == logging.DEBUG
    assert logging.getLogger("discord.gateway").level == logging.WARNING


def test_discord_log_level_is_configurable():
    configure_logging(Settings(log_level="info", discord_log_level="error"))

    assert logging.getLogger("discord").level == logging.ERROR
    assert logging.getLogger("discord.http").level == logging.ERROR


def test_unknown_level_names_fall_back_to_defaults():
    logger = configure_logging(Settings(log_level="loud", discord_log_level="verbose"))

    assert logger.level == logging.INFO
    assert logging.getLogger("discord.client").level == logging.WARNING


def test_context_filter_tags_records_inside_a_ticket_block():
    context_filter = TicketContextFilter()

    with bind_ticket_context("abc123", "42"):
        inside = _record()
        assert context_filter.filter(inside) is True
    outside = _record()
    context_filter.filter(outside)

    assert (inside.guild_id, inside.ticket_id) == ("42", "abc123")
    assert (outside.guild_id, outside.ticket_id) == ("-", "-")


def test_nested_ticket_blocks_restore_the_outer_context():
    context_filter = TicketContextFilter()

    with bind_ticket_context("outer", "1"):
        with bind_ticket_context("inner", "1"):
            pass
        record = _record()
        context_filter.filter(record)

    assert record.ticket_id == "outer"


def test_default_format_renders_the_ticket_fields():
    settings = Settings()
    formatter = logging.Formatter(settings.log_format)
    record = _record("Ticket moved")

    with bind_ticket_context("abc123", "42"):
        TicketContextFilter().filter(record)

    assert "[42/abc123] Ticket moved" in formatter.format(record)


def test_tracer_disabled_by_default():
    assert init_tracer(Settings(otel_enabled=False)) is None
