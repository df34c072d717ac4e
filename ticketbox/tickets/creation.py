"""Open a ticket: its channel and its record are created together."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ticketbox.chat.transport import (
    EmbedField,
    InitialOverwrite,
    OverwriteTarget,
    PermissionPatch,
    TransportFailure,
)
from ticketbox.core.logging import bind_ticket_context
from ticketbox.metrics.definitions import TICKETS_OPENED_TOTAL
from ticketbox.settings.guild import GuildSettings

from .action_log import LogEvent
from .errors import AuditSyncError, TicketAuthorizationError, TicketPersistenceError
from .models import Ticket, generate_ticket_id
from .permissions import PARTICIPANT_ACCESS, STAFF_ACCESS, is_moderator
from .rendering import channel_mention, user_mention
from .service import TicketLifecycleService
from .state import TicketStateMachine

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9-]")
_REPEATED_DASHES = re.compile(r"-{2,}")
MAX_NAME_SUFFIX = 20


def channel_name(ticket_id: str, username: str) -> str:
    safe = _UNSAFE_NAME_CHARS.sub("-", username.lower())[:MAX_NAME_SUFFIX]
    safe = _REPEATED_DASHES.sub("-", safe).strip("-") or "user"
    return f"ticket-{ticket_id}-{safe}"


@dataclass(slots=True)
class OpenedTicket:
    ticket: Ticket
    warnings: list[str] = field(default_factory=list)
    audit_error: str | None = None


class TicketFactory:
    """Create ticket channels and their records for the lifecycle service."""

    def __init__(self, lifecycle: TicketLifecycleService) -> None:
        self._lifecycle = lifecycle

    async def open_ticket(
        self,
        guild_id: str,
        creator_id: str,
        *,
        target_id: str | None = None,
        subject: str | None = None,
    ) -> OpenedTicket:
        lifecycle = self._lifecycle
        transport = lifecycle.transport
        target = target_id or creator_id
        settings = await lifecycle.settings_provider.get(guild_id)

        if target != creator_id:
            member = await transport.fetch_member(guild_id, creator_id)
            if not is_moderator(member, settings):
                raise TicketAuthorizationError("Only moderators can open tickets for other users.")

        warnings: list[str] = []
        parent_id = await self._preflight(guild_id, settings, warnings)

        ticket_id = generate_ticket_id()
        display_name = await transport.fetch_display_name(target) or target
        overwrites = await self._initial_overwrites(guild_id, target, settings)
        channel_id = await transport.create_text_channel(
            guild_id, channel_name(ticket_id, display_name), parent_id=parent_id, overwrites=overwrites
        )

        now = datetime.now(timezone.utc)
        draft = Ticket(
            id=ticket_id,
            guild_id=guild_id,
            channel_id=channel_id,
            creator_id=creator_id,
            target_id=target,
            subject=(subject or "").strip() or None,
            state=TicketStateMachine.initial_state(),
            created_at=now,
            updated_at=now,
        )
        try:
            ticket = await lifecycle.repository.insert(draft)
        except TicketPersistenceError:
            await self._discard_channel(channel_id)
            raise

        with bind_ticket_context(ticket.id, guild_id):
            return await self._announce(ticket, settings, warnings)

    async def _announce(self, ticket: Ticket, settings: GuildSettings, warnings: list[str]) -> OpenedTicket:
        lifecycle = self._lifecycle
        guild_id, channel_id = ticket.guild_id, ticket.channel_id
        creator_id, target = ticket.creator_id, ticket.target_id
        opened = OpenedTicket(ticket=ticket, warnings=warnings)
        staff = await lifecycle.staff_mentions(guild_id, settings)
        header_error = await lifecycle.refresh_header(ticket, content=" ".join([user_mention(target), *staff]))
        if header_error:
            warnings.append(f"Header message could not be posted: {header_error}")
        try:
            await lifecycle.audit.ensure(ticket, settings)
        except AuditSyncError as exc:
            logger.error("Audit record for new ticket %s failed: %s", ticket.id, exc)
            opened.audit_error = str(exc)

        fields = [
            EmbedField("Ticket", channel_mention(channel_id)),
            EmbedField("Opened by", user_mention(creator_id), inline=True),
        ]
        if target != creator_id:
            fields.append(EmbedField("For", user_mention(target), inline=True))
        if ticket.subject:
            fields.append(EmbedField("Subject", ticket.subject))
        await lifecycle.action_log.record(
            settings, LogEvent.OPEN_FOR if target != creator_id else LogEvent.OPEN, fields
        )
        lifecycle.metrics.counter(TICKETS_OPENED_TOTAL).inc()
        logger.info("Opened ticket in channel %s for %s", channel_id, target)

        opened.ticket = await lifecycle.repository.get_by_id(ticket.id) or ticket
        return opened

    async def _preflight(self, guild_id: str, settings: GuildSettings, warnings: list[str]) -> str | None:
        category_id = settings.tickets_category_id
        if not category_id:
            warnings.append("No tickets category is configured; the channel was created at the server root.")
            return None
        try:
            valid = await self._lifecycle.transport.is_category(guild_id, category_id)
        except TransportFailure as exc:
            logger.warning("Could not check tickets category %s: %s", category_id, exc)
            valid = False
        if not valid:
            warnings.append(f"Configured tickets category {category_id} is not a category; using the server root.")
            return None
        return category_id

    async def _initial_overwrites(
        self, guild_id: str, target_id: str, settings: GuildSettings
    ) -> list[InitialOverwrite]:
        overwrites = [InitialOverwrite(OverwriteTarget.default_role(guild_id), PermissionPatch(view=False))]
        overwrites.extend(
            InitialOverwrite(OverwriteTarget.role(role_id), STAFF_ACCESS) for role_id in settings.moderator_role_ids
        )
        overwrites.append(InitialOverwrite(OverwriteTarget.member(target_id), PARTICIPANT_ACCESS))
        bot_id = await self._lifecycle.transport.current_user_id()
        overwrites.append(InitialOverwrite(OverwriteTarget.member(bot_id), STAFF_ACCESS))
        return overwrites

    async def _discard_channel(self, channel_id: str) -> None:
        try:
            await self._lifecycle.transport.delete_channel(channel_id)
        except TransportFailure as exc:
            logger.error("Could not delete orphaned ticket channel %s: %s", channel_id, exc)
