"""Ticket lifecycle domain models and errors."""

from .errors import (
    AuditSyncError,
    InvalidTicketTransitionError,
    TicketArchivedError,
    TicketAuthorizationError,
    TicketNotFoundError,
    TicketPersistenceError,
    TicketServiceError,
    TranscriptError,
)
from .models import Ticket
from .state import TicketAction, TicketState, TicketStateMachine

__all__ = [
    "AuditSyncError",
    "InvalidTicketTransitionError",
    "Ticket",
    "TicketAction",
    "TicketArchivedError",
    "TicketAuthorizationError",
    "TicketNotFoundError",
    "TicketPersistenceError",
    "TicketServiceError",
    "TicketState",
    "TicketStateMachine",
    "TranscriptError",
]
