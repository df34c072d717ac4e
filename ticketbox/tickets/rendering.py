"""Embeds and button rows shown in ticket and audit channels."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

from ticketbox.chat.transport import ButtonSpec, ChatTransport, EmbedCard, MessagePayload, TransportFailure

from .models import Ticket
from .state import TicketState

logger = logging.getLogger(__name__)

PARTICIPANT_FIELD_LIMIT = 900
TRUNCATION_MARK = "…"
EMPTY_VALUE = "—"

USER_RESOLVE = "ticket:user_resolve"
USER_NOT_RESOLVED = "ticket:user_not_resolved"
MOD_RESOLVE = "ticket:mod_resolve"
MOD_CLOSE = "ticket:mod_close"
MOD_ARCHIVE = "ticket:mod_archive"
MOD_REOPEN = "ticket:mod_reopen"
MOD_ADD = "ticket:mod_add"
MOD_REMOVE = "ticket:mod_remove"
ADD_SELECT = "ticket:add_select"
REMOVE_SELECT = "ticket:remove_select"

HOW_IT_WORKS = (
    "• When your problem is fixed, press **“My issue is resolved.”**\n"
    "• If it wasn’t actually fixed, press **“My issue isn’t resolved.”** to request a reopen.\n"
    "• Controls labelled **🛡️ Staff** are visible to everyone but only moderators can use them."
)


def status_pill(state: TicketState) -> str:
    return f"`{state.value}`"


def user_mention(user_id: str) -> str:
    return f"<@{user_id}>"


def role_mention(role_id: str) -> str:
    return f"<@&{role_id}>"


def channel_mention(channel_id: str) -> str:
    return f"<#{channel_id}>"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class UserNameCache:
    """Resolve display names once per render."""

    def __init__(self, transport: ChatTransport) -> None:
        self._transport = transport
        self._names: dict[str, str] = {}

    async def name_for(self, user_id: str) -> str:
        if user_id in self._names:
            return self._names[user_id]
        try:
            name = await self._transport.fetch_display_name(user_id)
        except TransportFailure as exc:
            logger.debug("Could not resolve user %s: %s", user_id, exc)
            name = None
        resolved = name or f"Unknown#{user_id[-4:]}"
        self._names[user_id] = resolved
        return resolved

    async def describe(self, user_id: str) -> str:
        return f"{await self.name_for(user_id)} ({user_mention(user_id)})"


def header_buttons(state: TicketState) -> list[list[ButtonSpec]]:
    is_open = state is TicketState.OPEN
    pending = state is TicketState.RESOLVED_PENDING_REVIEW
    closed = state is TicketState.CLOSED
    archived = state is TicketState.ARCHIVED

    user_row = [
        ButtonSpec(
            custom_id=USER_RESOLVE if is_open else USER_NOT_RESOLVED,
            label="My issue is resolved" if is_open else "My issue isn't resolved",
            style="primary" if is_open else "secondary",
            disabled=archived,
        )
    ]
    mod_row = [
        ButtonSpec(MOD_RESOLVE, "🛡️ Staff: Resolve", "secondary" if pending else "primary", not is_open),
        ButtonSpec(MOD_CLOSE, "🛡️ Staff: Close", "danger", archived or closed),
        ButtonSpec(MOD_ARCHIVE, "🛡️ Staff: Archive", "secondary", not closed),
        ButtonSpec(MOD_REOPEN, "🛡️ Staff: Reopen", "success", not (closed or pending)),
    ]
    participant_row = [
        ButtonSpec(MOD_ADD, "🛡️ Staff: Add Participant", "secondary", archived),
        ButtonSpec(MOD_REMOVE, "🛡️ Staff: Remove Participant", "secondary", archived),
    ]
    return [user_row, mod_row, participant_row]


def header_payload(ticket: Ticket, *, content: str | None = None) -> MessagePayload:
    embed = EmbedCard(
        title="🎫 Ticket Created",
        description=f"**Subject:** {ticket.subject}" if ticket.subject else "Use this channel to describe your issue.",
        footer="A moderator will assist you shortly.",
        timestamp=_now(),
    )
    if ticket.creator_id == ticket.target_id:
        embed.add_field("Opened by", user_mention(ticket.target_id), inline=True)
    else:
        embed.add_field("Opened by (mod)", user_mention(ticket.creator_id), inline=True)
        embed.add_field("Target user", user_mention(ticket.target_id), inline=True)
    embed.add_field("Status", status_pill(ticket.state), inline=True)
    embed.add_field("How this works", HOW_IT_WORKS)
    return MessagePayload(content=content, embeds=[embed], components=header_buttons(ticket.state))


def render_participants(lines: Iterable[str]) -> str:
    rendered: list[str] = []
    for line in lines:
        rendered.append(line)
        if len("\n".join(rendered)) > PARTICIPANT_FIELD_LIMIT:
            rendered.append(TRUNCATION_MARK)
            break
    return "\n".join(rendered) if rendered else EMPTY_VALUE


async def audit_embed(
    ticket: Ticket,
    names: UserNameCache,
    *,
    participant_ids: Iterable[str] | None = None,
    history_truncated: bool = False,
) -> EmbedCard:
    """Summary of a ticket for the audit channel.

    ``participant_ids`` overrides the default creator/target/participants set,
    used after archival to list everyone who wrote in the channel.
    """

    ids = list(participant_ids) if participant_ids is not None else ticket.members()
    participants = render_participants([await names.describe(user_id) for user_id in ids])

    embed = EmbedCard(title="🧾 Ticket Audit", description=f"Ticket `{ticket.id}`", timestamp=_now())
    embed.add_field("Ticket", channel_mention(ticket.channel_id), inline=True)
    embed.add_field("Status", status_pill(ticket.state), inline=True)
    embed.add_field("Subject", ticket.subject or EMPTY_VALUE, inline=True)
    embed.add_field("Opened by", await names.describe(ticket.creator_id), inline=True)
    embed.add_field("Target user", await names.describe(ticket.target_id), inline=True)
    embed.add_field("Participants (ever involved)", participants)
    if ticket.transcript_url:
        link = f"[HTML transcript]({ticket.transcript_url})"
        if history_truncated:
            link += " (history truncated)"
        embed.add_field("Transcript", link)
    if ticket.closed_at and ticket.closed_by:
        embed.add_field("Closed by", await names.describe(ticket.closed_by), inline=True)
    if ticket.archived_at and ticket.archived_by:
        embed.add_field("Archived by", await names.describe(ticket.archived_by), inline=True)
    return embed
