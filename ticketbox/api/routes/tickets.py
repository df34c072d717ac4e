from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from ticketbox.dependencies.tickets import StaffUser, get_ticket_repository
from ticketbox.tickets.models import Ticket
from ticketbox.tickets.repository import TicketRepository
from ticketbox.tickets.state import TicketState

router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    guild_id: str
    channel_id: str
    creator_id: str
    target_id: str
    subject: str | None
    state: TicketState
    participants: list[str]
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None
    closed_by: str | None
    archived_at: datetime | None
    archived_by: str | None
    audit_message_id: str | None
    transcript_url: str | None


TicketRepositoryDep = Annotated[TicketRepository, Depends(get_ticket_repository)]


def _to_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


@router.get("", response_model=list[TicketResponse])
async def list_tickets(
    repository: TicketRepositoryDep,
    _: StaffUser,
    state: TicketState | None = Query(default=None),
) -> list[TicketResponse]:
    tickets = await repository.list_tickets(state=state)
    return [_to_response(ticket) for ticket in tickets]


@router.get("/by-channel/{channel_id}", response_model=TicketResponse)
async def get_ticket_by_channel(channel_id: str, repository: TicketRepositoryDep, _: StaffUser) -> TicketResponse:
    ticket = await repository.get_by_channel(channel_id)
    if ticket is None:
        raise HTTPException(status_code=404, detail=f"No ticket is bound to channel {channel_id}")
    return _to_response(ticket)


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: str, repository: TicketRepositoryDep, _: StaffUser) -> TicketResponse:
    ticket = await repository.get_by_id(ticket_id)
    if ticket is None:
        raise HTTPException(status_code=404, detail=f"Ticket {ticket_id} not found")
    return _to_response(ticket)
