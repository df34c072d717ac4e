from __future__ import annotations

import json
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime

from .state import TicketState

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a support ticket bound to one chat channel."""

    id: str
    guild_id: str
    channel_id: str
    creator_id: str
    target_id: str
    subject: str | None
    state: TicketState
    created_at: datetime
    updated_at: datetime
    participants: list[str] = field(default_factory=list)
    closed_at: datetime | None = None
    closed_by: str | None = None
    archived_at: datetime | None = None
    archived_by: str | None = None
    header_message_id: str | None = None
    audit_message_id: str | None = None
    transcript_url: str | None = None

    @property
    def is_archived(self) -> bool:
        return self.state is TicketState.ARCHIVED

    def is_owner(self, user_id: str) -> bool:
        return user_id in (self.creator_id, self.target_id)

    def members(self) -> list[str]:
        """Creator, target and explicit participants without duplicates."""

        seen: dict[str, None] = {self.creator_id: None, self.target_id: None}
        for participant in self.participants:
            seen.setdefault(participant, None)
        return list(seen)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_ticket_id() -> str:
    """Return a six character id: four time-derived and two random base36 chars."""

    stamp = _to_base36(int(time.time())).rjust(4, "0")[-4:]
    suffix = "".join(secrets.choice(_BASE36) for _ in range(2))
    return stamp + suffix


def encode_participants(participants: list[str]) -> str:
    return json.dumps(list(participants))


def decode_participants(raw: str | None) -> list[str]:
    """Parse the stored participant list, treating bad data as empty."""

    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring unreadable participant list: %r", raw)
        return []
    if not isinstance(value, list):
        return []
    result: list[str] = []
    for item in value:
        text = str(item)
        if text and text not in result:
            result.append(text)
    return result
