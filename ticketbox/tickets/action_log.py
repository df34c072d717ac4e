"""Staff-facing event log posted to an optional guild channel."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum

from ticketbox.chat.transport import ChatTransport, EmbedCard, EmbedField, MessagePayload, TransportFailure
from ticketbox.settings.guild import GuildSettings

logger = logging.getLogger(__name__)


class LogEvent(str, Enum):
    OPEN = "OPEN"
    OPEN_FOR = "OPEN_FOR"
    USER_RESOLVED = "USER_RESOLVED"
    USER_REOPEN_REQUEST = "USER_REOPEN_REQUEST"
    MOD_RESOLVE = "MOD_RESOLVE"
    MOD_CLOSE = "MOD_CLOSE"
    MOD_ARCHIVE = "MOD_ARCHIVE"
    MOD_REOPEN = "MOD_REOPEN"
    ADD_PARTICIPANT = "ADD_PARTICIPANT"
    REMOVE_PARTICIPANT = "REMOVE_PARTICIPANT"


_STYLES: dict[LogEvent, tuple[str, int]] = {
    LogEvent.OPEN: ("Ticket Opened", 0x4B9FFF),
    LogEvent.OPEN_FOR: ("Ticket Opened (for user)", 0x4B9FFF),
    LogEvent.USER_RESOLVED: ("User Marked Resolved", 0x9AA0A6),
    LogEvent.USER_REOPEN_REQUEST: ("User Requested Reopen", 0xFBBC04),
    LogEvent.MOD_RESOLVE: ("Moderator Set Resolved (Pending Review)", 0x9AA0A6),
    LogEvent.MOD_CLOSE: ("Ticket Closed", 0xDB4437),
    LogEvent.MOD_ARCHIVE: ("Ticket Archived", 0x5F6368),
    LogEvent.MOD_REOPEN: ("Ticket Reopened", 0x34A853),
    LogEvent.ADD_PARTICIPANT: ("Participant Added", 0x7BAAF7),
    LogEvent.REMOVE_PARTICIPANT: ("Participant Removed", 0xA0A0A0),
}


def build_event_embed(event: LogEvent, fields: list[EmbedField]) -> EmbedCard:
    title, colour = _STYLES[event]
    return EmbedCard(
        title=f"🧾 {title}",
        colour=colour,
        fields=list(fields),
        timestamp=datetime.now(timezone.utc),
    )


class ActionLog:
    def __init__(self, transport: ChatTransport) -> None:
        self._transport = transport

    async def record(self, settings: GuildSettings, event: LogEvent, fields: list[EmbedField]) -> bool:
        """Post ``event`` to the log channel; failures never reach the caller."""

        channel_id = settings.log_channel_id
        if not channel_id:
            return False
        try:
            await self._transport.send_message(channel_id, MessagePayload(embeds=[build_event_embed(event, fields)]))
        except TransportFailure as exc:
            logger.warning("Could not post %s to log channel %s: %s", event.value, channel_id, exc)
            return False
        return True
