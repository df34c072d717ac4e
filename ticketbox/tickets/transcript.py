"""Archive transcripts built from a bounded scan of channel history."""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field

from ticketbox.chat.transport import ChatMessage, ChatTransport, FileUpload, TransportFailure
from ticketbox.settings.guild import GuildSettings

from .audit import AuditSynchronizer
from .errors import AuditSyncError, TicketNotFoundError, TicketPersistenceError, TranscriptError
from .models import Ticket
from .repository import TicketRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HistoryLimits:
    """Bounds of a history scan: pages of ``page_size`` messages, at most ``max_pages``."""

    page_size: int = 100
    max_pages: int = 40

    @property
    def max_messages(self) -> int:
        return self.page_size * self.max_pages


@dataclass(slots=True)
class HistoryScan:
    messages: list[ChatMessage] = field(default_factory=list)
    truncated: bool = False

    def author_ids(self) -> list[str]:
        seen: dict[str, None] = {}
        for message in self.messages:
            seen.setdefault(message.author_id, None)
        return list(seen)


@dataclass(slots=True)
class TranscriptOutcome:
    filename: str
    url: str
    message_count: int
    truncated: bool
    participant_ids: list[str]


def transcript_filename(ticket: Ticket) -> str:
    return f"transcript-{ticket.id}.html"


def render_html(ticket: Ticket, scan: HistoryScan) -> str:
    """Static HTML document with one block per message, oldest first."""

    title = html.escape(f"Ticket {ticket.id}")
    parts = [
        "<!DOCTYPE html>",
        '<html lang="en">',
        "<head>",
        '<meta charset="utf-8">',
        f"<title>{title}</title>",
        "<style>body{font-family:sans-serif;margin:2em}"
        ".msg{border-bottom:1px solid #ddd;padding:.5em 0}"
        ".meta{color:#666;font-size:.85em}"
        ".truncated{background:#fff3cd;padding:.5em;border:1px solid #f0c36d}"
        ".content{white-space:pre-wrap}</style>",
        "</head>",
        "<body>",
        f"<h1>{title}</h1>",
    ]
    if ticket.subject:
        parts.append(f"<p><strong>Subject:</strong> {html.escape(ticket.subject)}</p>")
    if scan.truncated:
        parts.append(
            '<p class="truncated">History truncated: only the most recent '
            f"{len(scan.messages)} messages are included.</p>"
        )
    for message in scan.messages:
        author = html.escape(message.author_name or message.author_id)
        parts.append('<div class="msg">')
        parts.append(
            f'<div class="meta">{html.escape(message.created_at.isoformat())} '
            f"&middot; <strong>{author}</strong> ({html.escape(message.author_id)})</div>"
        )
        if message.content:
            parts.append(f'<div class="content">{html.escape(message.content)}</div>')
        for attachment in message.attachments:
            parts.append(
                f'<div class="attachment"><a href="{html.escape(attachment.url, quote=True)}">'
                f"{html.escape(attachment.filename)}</a></div>"
            )
        parts.append("</div>")
    parts.extend(["</body>", "</html>"])
    return "\n".join(parts)


class TranscriptGenerator:
    def __init__(
        self,
        repository: TicketRepository,
        transport: ChatTransport,
        audit: AuditSynchronizer,
        *,
        limits: HistoryLimits | None = None,
    ) -> None:
        self._repository = repository
        self._transport = transport
        self._audit = audit
        self.limits = limits or HistoryLimits()

    async def scan_history(self, channel_id: str) -> HistoryScan:
        """Walk history backwards in pages and return it oldest first."""

        collected: list[ChatMessage] = []
        before: str | None = None
        capped = False
        for page in range(self.limits.max_pages):
            batch = await self._transport.fetch_history(channel_id, limit=self.limits.page_size, before=before)
            collected.extend(batch)
            if len(batch) < self.limits.page_size:
                break
            before = batch[-1].id
            capped = page == self.limits.max_pages - 1

        truncated = False
        if capped:
            older = await self._transport.fetch_history(channel_id, limit=1, before=before)
            truncated = bool(older)
            if truncated:
                logger.info(
                    "History of channel %s exceeds %d messages, transcript truncated",
                    channel_id,
                    self.limits.max_messages,
                )
        collected.reverse()
        return HistoryScan(messages=collected, truncated=truncated)

    async def generate(self, ticket: Ticket, settings: GuildSettings) -> TranscriptOutcome | None:
        """Render, attach and link a transcript; ``None`` when there is no audit channel."""

        if not settings.audit_channel_id:
            logger.info("Skipping transcript for ticket %s: no audit channel configured", ticket.id)
            return None

        try:
            scan = await self.scan_history(ticket.channel_id)
        except TransportFailure as exc:
            raise TranscriptError(f"Could not read history of ticket {ticket.id}: {exc}") from exc

        filename = transcript_filename(ticket)
        upload = FileUpload(filename=filename, data=render_html(ticket, scan).encode("utf-8"))
        try:
            message = await self._audit.attach(ticket, settings, upload)
        except AuditSyncError as exc:
            raise TranscriptError(str(exc)) from exc

        url = next((item.url for item in message.attachments if item.filename == filename), None)
        if url is None:
            raise TranscriptError(f"Audit record for ticket {ticket.id} has no {filename} attachment")

        try:
            updated = await self._repository.write_transcript_url(ticket.id, url)
        except TicketPersistenceError as exc:
            raise TranscriptError(f"Could not store transcript link for ticket {ticket.id}: {exc}") from exc
        if updated is None:
            raise TicketNotFoundError(f"Ticket {ticket.id} not found")

        participant_ids = list(dict.fromkeys([*updated.members(), *scan.author_ids()]))
        try:
            await self._audit.update(
                updated, settings, participant_ids=participant_ids, history_truncated=scan.truncated
            )
        except AuditSyncError as exc:
            raise TranscriptError(str(exc)) from exc

        logger.info("Stored transcript for ticket %s (%d messages)", ticket.id, len(scan.messages))
        return TranscriptOutcome(
            filename=filename,
            url=url,
            message_count=len(scan.messages),
            truncated=scan.truncated,
            participant_ids=participant_ids,
        )
