from __future__ import annotations

from ticketbox.chat.transport import TransportFailure, TransportNotFound


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class TicketNotFoundError(TicketServiceError):
    """Raised when a ticket could not be located."""


class TicketAuthorizationError(TicketServiceError):
    """Raised when the actor may not perform the requested action."""


class InvalidTicketTransitionError(TicketServiceError):
    """Raised when attempting an action the current state does not allow."""


class TicketArchivedError(InvalidTicketTransitionError):
    """Raised when mutating the membership of an archived ticket."""


class TicketPersistenceError(TicketServiceError):
    """Raised when the ticket store cannot complete a read or write."""


class AuditSyncError(TicketServiceError):
    """Raised when the audit record cannot be created or attached to."""


class TranscriptError(TicketServiceError):
    """Raised when a transcript could not be produced or stored."""


__all__ = [
    "AuditSyncError",
    "InvalidTicketTransitionError",
    "TicketArchivedError",
    "TicketAuthorizationError",
    "TicketNotFoundError",
    "TicketPersistenceError",
    "TicketServiceError",
    "TranscriptError",
    "TransportFailure",
    "TransportNotFound",
]
