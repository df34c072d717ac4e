from __future__ import annotations

import logging
from dataclasses import dataclass

from ticketbox.chat.transport import ChatTransport, OverwriteTarget
from ticketbox.settings.guild import GuildSettings

from .errors import TicketNotFoundError
from .models import Ticket
from .permissions import AccessControlManager, OverwriteResult, is_moderator
from .repository import TicketRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ParticipantChange:
    """Outcome of a participant add or remove."""

    ticket: Ticket
    user_id: str
    changed: bool
    protected: bool = False
    overwrite: OverwriteResult | None = None


class ParticipantRegistry:
    """Maintain the explicit participant list on top of creator and target.

    Callers must reject changes on archived tickets before calling in.
    """

    def __init__(
        self,
        repository: TicketRepository,
        access: AccessControlManager,
        transport: ChatTransport,
    ) -> None:
        self._repository = repository
        self._access = access
        self._transport = transport

    async def add(self, ticket: Ticket, user_id: str) -> ParticipantChange:
        overwrite = await self._access.grant_participant(ticket.channel_id, user_id)
        if ticket.is_owner(user_id) or user_id in ticket.participants:
            return ParticipantChange(ticket=ticket, user_id=user_id, changed=False, overwrite=overwrite)

        updated = await self._repository.write_participants(ticket.id, [*ticket.participants, user_id])
        if updated is None:
            raise TicketNotFoundError(f"Ticket {ticket.id} not found")
        logger.info("Added participant %s to ticket %s", user_id, ticket.id)
        return ParticipantChange(ticket=updated, user_id=user_id, changed=True, overwrite=overwrite)

    async def remove(self, ticket: Ticket, user_id: str, settings: GuildSettings) -> ParticipantChange:
        if await self.is_protected(ticket, user_id, settings):
            logger.info("Refusing to remove protected member %s from ticket %s", user_id, ticket.id)
            return ParticipantChange(ticket=ticket, user_id=user_id, changed=False, protected=True)

        overwrite = await self._access.remove_overwrite(ticket.channel_id, OverwriteTarget.member(user_id))
        if user_id not in ticket.participants:
            return ParticipantChange(ticket=ticket, user_id=user_id, changed=False, overwrite=overwrite)

        remaining = [participant for participant in ticket.participants if participant != user_id]
        updated = await self._repository.write_participants(ticket.id, remaining)
        if updated is None:
            raise TicketNotFoundError(f"Ticket {ticket.id} not found")
        logger.info("Removed participant %s from ticket %s", user_id, ticket.id)
        return ParticipantChange(ticket=updated, user_id=user_id, changed=True, overwrite=overwrite)

    async def is_protected(self, ticket: Ticket, user_id: str, settings: GuildSettings) -> bool:
        if ticket.is_owner(user_id):
            return True
        # A member who left the guild has no roles left to protect them.
        member = await self._transport.fetch_member(ticket.guild_id, user_id)
        return is_moderator(member, settings)
