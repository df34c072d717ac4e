from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from ticketbox.dependencies.auth import Role, User, role_required
from ticketbox.tickets.repository import TicketRepository

require_staff = role_required(Role.STAFF)
require_admin = role_required(Role.ADMIN)

StaffUser = Annotated[User, Depends(require_staff)]
AdminUser = Annotated[User, Depends(require_admin)]


async def get_ticket_repository(request: Request) -> TicketRepository:
    repository = getattr(request.app.state, "ticket_repository", None)
    if repository is None:
        raise HTTPException(status_code=503, detail="Ticket store is not configured")
    return repository
