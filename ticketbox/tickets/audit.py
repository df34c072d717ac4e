"""Keeps exactly one audit message per ticket in the audit channel."""

from __future__ import annotations

import logging
from typing import Iterable

from ticketbox.chat.transport import (
    ChatMessage,
    ChatTransport,
    FileUpload,
    MessagePayload,
    TransportFailure,
)
from ticketbox.settings.guild import GuildSettings

from .errors import AuditSyncError
from .models import Ticket
from .rendering import UserNameCache, audit_embed
from .repository import TicketRepository

logger = logging.getLogger(__name__)


class AuditSynchronizer:
    """Create, render and edit the audit record of a ticket.

    :meth:`ensure` only guarantees the record exists; :meth:`render` only
    builds its content; :meth:`update` combines the two.
    """

    def __init__(self, repository: TicketRepository, transport: ChatTransport) -> None:
        self._repository = repository
        self._transport = transport

    async def render(
        self,
        ticket: Ticket,
        *,
        participant_ids: Iterable[str] | None = None,
        history_truncated: bool = False,
    ) -> MessagePayload:
        names = UserNameCache(self._transport)
        embed = await audit_embed(
            ticket, names, participant_ids=participant_ids, history_truncated=history_truncated
        )
        return MessagePayload(embeds=[embed])

    async def ensure(self, ticket: Ticket, settings: GuildSettings) -> str | None:
        """Return the audit message id, creating the record if it is missing."""

        channel_id = settings.audit_channel_id
        if not channel_id:
            return None

        current = await self._repository.get_by_id(ticket.id) or ticket
        if current.audit_message_id:
            try:
                existing = await self._transport.fetch_message(channel_id, current.audit_message_id)
            except TransportFailure as exc:
                # Never risk a duplicate record when the lookup itself failed.
                raise AuditSyncError(f"Could not verify audit record for ticket {ticket.id}: {exc}") from exc
            if existing is not None:
                return existing.id
            logger.info("Audit record %s for ticket %s is gone, recreating", current.audit_message_id, ticket.id)

        payload = await self.render(current)
        try:
            message = await self._transport.send_message(channel_id, payload)
        except TransportFailure as exc:
            raise AuditSyncError(f"Could not create audit record for ticket {ticket.id}: {exc}") from exc
        await self._repository.write_audit_message_id(ticket.id, message.id)
        logger.info("Created audit record %s for ticket %s", message.id, ticket.id)
        return message.id

    async def update(
        self,
        ticket: Ticket,
        settings: GuildSettings,
        *,
        participant_ids: Iterable[str] | None = None,
        history_truncated: bool = False,
    ) -> str | None:
        """Ensure the record exists and re-render it from the stored ticket."""

        channel_id = settings.audit_channel_id
        if not channel_id:
            return None

        message_id = await self.ensure(ticket, settings)
        if message_id is None:
            return None
        current = await self._repository.get_by_id(ticket.id) or ticket
        payload = await self.render(
            current, participant_ids=participant_ids, history_truncated=history_truncated
        )
        try:
            await self._transport.edit_message(channel_id, message_id, payload)
        except TransportFailure as exc:
            logger.warning("Could not edit audit record %s for ticket %s: %s", message_id, ticket.id, exc)
        return message_id

    async def attach(self, ticket: Ticket, settings: GuildSettings, upload: FileUpload) -> ChatMessage:
        """Replace the file attached to the audit record."""

        channel_id = settings.audit_channel_id
        if not channel_id:
            raise AuditSyncError("No audit channel configured")
        message_id = await self.ensure(ticket, settings)
        if message_id is None:
            raise AuditSyncError(f"No audit record for ticket {ticket.id}")
        current = await self._repository.get_by_id(ticket.id) or ticket
        payload = await self.render(current)
        payload.files = [upload]
        try:
            return await self._transport.edit_message(channel_id, message_id, payload)
        except TransportFailure as exc:
            raise AuditSyncError(f"Could not attach {upload.filename} to ticket {ticket.id}: {exc}") from exc
