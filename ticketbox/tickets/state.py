from __future__ import annotations

from enum import Enum


class TicketState(str, Enum):
    """Supported states for a ticket's lifecycle."""

    OPEN = "OPEN"
    RESOLVED_PENDING_REVIEW = "RESOLVED_PENDING_REVIEW"
    CLOSED = "CLOSED"
    ARCHIVED = "ARCHIVED"


class TicketAction(str, Enum):
    """Lifecycle actions a user or moderator can request."""

    RESOLVE = "RESOLVE"
    CLOSE = "CLOSE"
    ARCHIVE = "ARCHIVE"
    REOPEN = "REOPEN"


class TicketStateMachine:
    """Validate ticket lifecycle transitions."""

    _TRANSITIONS: dict[TicketAction, dict[TicketState, TicketState]] = {
        TicketAction.RESOLVE: {
            TicketState.OPEN: TicketState.RESOLVED_PENDING_REVIEW,
        },
        TicketAction.REOPEN: {
            TicketState.RESOLVED_PENDING_REVIEW: TicketState.OPEN,
            TicketState.CLOSED: TicketState.OPEN,
        },
        TicketAction.CLOSE: {
            TicketState.OPEN: TicketState.CLOSED,
            TicketState.RESOLVED_PENDING_REVIEW: TicketState.CLOSED,
        },
        TicketAction.ARCHIVE: {
            TicketState.CLOSED: TicketState.ARCHIVED,
        },
    }

    # Ticket owners may only mark their issue resolved; everything else is staff only.
    _OWNER_ACTIONS: frozenset[TicketAction] = frozenset({TicketAction.RESOLVE})

    @classmethod
    def initial_state(cls) -> TicketState:
        return TicketState.OPEN

    @classmethod
    def target_state(cls, current: TicketState, action: TicketAction) -> TicketState | None:
        return cls._TRANSITIONS.get(action, {}).get(current)

    @classmethod
    def is_authorized(cls, action: TicketAction, *, is_owner: bool, is_moderator: bool) -> bool:
        if is_moderator:
            return True
        return is_owner and action in cls._OWNER_ACTIONS
