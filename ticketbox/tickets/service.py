from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from opentelemetry import trace

from ticketbox.chat.transport import ChatTransport, EmbedField, MessagePayload, TransportFailure, TransportNotFound
from ticketbox.core.logging import bind_ticket_context
from ticketbox.metrics import MetricsRegistry, metrics_registry
from ticketbox.metrics.definitions import (
    PARTICIPANT_CHANGES_TOTAL,
    TRANSCRIPTS_TOTAL,
    TRANSITION_DURATION,
    TRANSITIONS_TOTAL,
)
from ticketbox.settings.guild import GuildSettings, GuildSettingsProvider

from .action_log import ActionLog, LogEvent
from .audit import AuditSynchronizer
from .duty import DutyChange, DutyRoster, notify_mentions
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
from .locks import KeyedLock
from .models import Ticket
from .participants import ParticipantChange, ParticipantRegistry
from .permissions import AccessControlManager, AccessReport, is_moderator
from .rendering import channel_mention, header_payload, status_pill, user_mention
from .repository import TicketRepository
from .state import TicketAction, TicketState, TicketStateMachine
from .transcript import HistoryLimits, TranscriptGenerator, TranscriptOutcome

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class TransitionResult:
    """What a committed transition did.

    Failures after the state was committed are reported here rather than
    raised; the new state stands regardless.
    """

    ticket: Ticket
    action: TicketAction
    from_state: TicketState
    to_state: TicketState
    access: AccessReport = field(default_factory=AccessReport)
    header_error: str | None = None
    audit_error: str | None = None
    transcript: TranscriptOutcome | None = None
    transcript_error: str | None = None
    transcript_skipped: bool = False


@dataclass(slots=True)
class TicketLifecycleService:
    """High level orchestration for ticket lifecycle operations."""

    repository: TicketRepository
    transport: ChatTransport
    settings_provider: GuildSettingsProvider
    access: AccessControlManager
    participants: ParticipantRegistry
    audit: AuditSynchronizer
    transcripts: TranscriptGenerator
    action_log: ActionLog
    duty: DutyRoster | None = None
    metrics: MetricsRegistry = field(default_factory=lambda: metrics_registry)
    locks: KeyedLock = field(default_factory=KeyedLock)

    @classmethod
    def build(
        cls,
        repository: TicketRepository,
        transport: ChatTransport,
        settings_provider: GuildSettingsProvider,
        *,
        limits: HistoryLimits | None = None,
        metrics: MetricsRegistry | None = None,
        duty: DutyRoster | None = None,
    ) -> TicketLifecycleService:
        registry = metrics or metrics_registry
        access = AccessControlManager(transport, metrics=registry)
        audit = AuditSynchronizer(repository, transport)
        return cls(
            repository=repository,
            transport=transport,
            settings_provider=settings_provider,
            access=access,
            participants=ParticipantRegistry(repository, access, transport),
            audit=audit,
            transcripts=TranscriptGenerator(repository, transport, audit, limits=limits),
            action_log=ActionLog(transport),
            duty=duty,
            metrics=registry,
        )

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self.repository.get_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def get_ticket_by_channel(self, channel_id: str) -> Ticket:
        ticket = await self.repository.get_by_channel(channel_id)
        if ticket is None:
            raise TicketNotFoundError(f"No ticket is bound to channel {channel_id}")
        return ticket

    async def list_tickets(self, *, state: TicketState | None = None) -> list[Ticket]:
        return await self.repository.list_tickets(state=state)

    async def resolve(self, channel_id: str, actor_id: str) -> TransitionResult:
        return await self.transition(channel_id, actor_id, TicketAction.RESOLVE)

    async def close(self, channel_id: str, actor_id: str) -> TransitionResult:
        return await self.transition(channel_id, actor_id, TicketAction.CLOSE)

    async def archive(self, channel_id: str, actor_id: str) -> TransitionResult:
        return await self.transition(channel_id, actor_id, TicketAction.ARCHIVE)

    async def reopen(self, channel_id: str, actor_id: str) -> TransitionResult:
        return await self.transition(channel_id, actor_id, TicketAction.REOPEN)

    async def transition(self, channel_id: str, actor_id: str, action: TicketAction) -> TransitionResult:
        found = await self.get_ticket_by_channel(channel_id)
        settings = await self.settings_provider.get(found.guild_id)

        with bind_ticket_context(found.id, found.guild_id), tracer.start_as_current_span("ticket.transition") as span:
            span.set_attribute("ticket.id", found.id)
            span.set_attribute("ticket.action", action.value)
            async with self.locks.hold(found.id):
                ticket = await self.get_ticket(found.id)
                actor_is_moderator = await self._is_moderator(ticket, actor_id, settings)
                if not TicketStateMachine.is_authorized(
                    action, is_owner=ticket.is_owner(actor_id), is_moderator=actor_is_moderator
                ):
                    self._count_transition(action, "unauthorized")
                    raise TicketAuthorizationError(f"{actor_id} may not {action.value.lower()} ticket {ticket.id}")

                target = TicketStateMachine.target_state(ticket.state, action)
                if target is None:
                    self._count_transition(action, "invalid")
                    raise InvalidTicketTransitionError(
                        f"Cannot {action.value.lower()} ticket {ticket.id} while {ticket.state.value}"
                    )

                with self.metrics.time_distribution(TRANSITION_DURATION, labels={"action": action.value}):
                    result = await self._commit(ticket, target, action, actor_id, settings)
                span.set_attribute("ticket.state", target.value)

            await self._log_transition(result, actor_id, actor_is_moderator, settings)
            logger.info("Ticket %s -> %s by %s", result.from_state.value, result.to_state.value, actor_id)
        self._count_transition(action, "success")
        return result

    async def _commit(
        self,
        ticket: Ticket,
        target: TicketState,
        action: TicketAction,
        actor_id: str,
        settings: GuildSettings,
    ) -> TransitionResult:
        access = await self.access.apply_state(ticket, target, settings)
        if not access.ok:
            logger.warning("Ticket %s: %d permission changes failed", ticket.id, len(access.failures))

        now = _utcnow()
        updated = await self.repository.set_state(ticket.id, target, at=now)
        if action is TicketAction.CLOSE:
            updated = await self.repository.write_closed(ticket.id, actor_id, at=now)
        elif action is TicketAction.ARCHIVE:
            updated = await self.repository.write_archived(ticket.id, actor_id, at=now)
        if updated is None:
            raise TicketNotFoundError(f"Ticket {ticket.id} not found")

        result = TransitionResult(
            ticket=updated, action=action, from_state=ticket.state, to_state=target, access=access
        )
        if target is TicketState.ARCHIVED:
            result.access.merge(await self.access.seal_archive(updated, settings))

        result.header_error = await self.refresh_header(updated)
        try:
            await self.audit.update(updated, settings)
        except AuditSyncError as exc:
            logger.error("Audit sync for ticket %s failed: %s", ticket.id, exc)
            result.audit_error = str(exc)

        if target is TicketState.ARCHIVED:
            await self._archive_transcript(updated, settings, result)

        result.ticket = await self.repository.get_by_id(ticket.id) or updated
        return result

    async def _archive_transcript(self, ticket: Ticket, settings: GuildSettings, result: TransitionResult) -> None:
        if not settings.transcripts_enabled:
            result.transcript_skipped = True
            self._count_transcript("disabled")
            return
        try:
            outcome = await self.transcripts.generate(ticket, settings)
        except TranscriptError as exc:
            logger.error("Transcript for ticket %s failed: %s", ticket.id, exc)
            result.transcript_error = str(exc)
            self._count_transcript("failed")
            return
        if outcome is None:
            result.transcript_skipped = True
            self._count_transcript("skipped")
            return
        result.transcript = outcome
        self._count_transcript("generated")

    async def refresh_header(self, ticket: Ticket, *, content: str | None = None) -> str | None:
        """Edit the header in place, or post a new one; returns an error message on failure.

        ``content`` carries the opening pings. Edits without it keep the text
        already on the message.
        """

        payload = header_payload(ticket, content=content)
        if ticket.header_message_id:
            try:
                await self.transport.edit_message(ticket.channel_id, ticket.header_message_id, payload)
                return None
            except TransportNotFound:
                logger.info("Header %s of ticket %s is gone, reposting", ticket.header_message_id, ticket.id)
            except TransportFailure as exc:
                logger.warning("Could not refresh header of ticket %s: %s", ticket.id, exc)
                return str(exc)
        try:
            message = await self.transport.send_message(ticket.channel_id, payload)
        except TransportFailure as exc:
            logger.warning("Could not post header for ticket %s: %s", ticket.id, exc)
            return str(exc)
        await self.repository.write_header_message_id(ticket.id, message.id)
        return None

    async def add_participant(self, channel_id: str, actor_id: str, user_id: str) -> ParticipantChange:
        return await self._change_participant(channel_id, actor_id, user_id, adding=True)

    async def remove_participant(self, channel_id: str, actor_id: str, user_id: str) -> ParticipantChange:
        return await self._change_participant(channel_id, actor_id, user_id, adding=False)

    async def _change_participant(
        self, channel_id: str, actor_id: str, user_id: str, *, adding: bool
    ) -> ParticipantChange:
        operation = "add" if adding else "remove"
        found = await self.get_ticket_by_channel(channel_id)
        settings = await self.settings_provider.get(found.guild_id)

        with bind_ticket_context(found.id, found.guild_id):
            async with self.locks.hold(found.id):
                ticket = await self.get_ticket(found.id)
                if not await self._is_moderator(ticket, actor_id, settings):
                    self._count_participant(operation, "unauthorized")
                    raise TicketAuthorizationError(f"{actor_id} may not change participants of ticket {ticket.id}")
                if ticket.is_archived:
                    self._count_participant(operation, "archived")
                    raise TicketArchivedError(f"Ticket {ticket.id} is archived")

                if adding:
                    change = await self.participants.add(ticket, user_id)
                else:
                    change = await self.participants.remove(ticket, user_id, settings)

                if change.changed:
                    try:
                        await self.audit.update(change.ticket, settings)
                    except AuditSyncError as exc:
                        logger.error("Audit sync for ticket %s failed: %s", ticket.id, exc)
                    await self.action_log.record(
                        settings,
                        LogEvent.ADD_PARTICIPANT if adding else LogEvent.REMOVE_PARTICIPANT,
                        [
                            EmbedField("Ticket", channel_mention(ticket.channel_id)),
                            EmbedField("User", user_mention(user_id), inline=True),
                            EmbedField("Moderator", user_mention(actor_id), inline=True),
                        ],
                    )

        outcome = "protected" if change.protected else ("changed" if change.changed else "unchanged")
        self._count_participant(operation, outcome)
        return change

    async def request_reopen(self, channel_id: str, actor_id: str) -> Ticket:
        """Ping on-duty staff that the ticket owner wants the ticket reopened."""

        ticket = await self.get_ticket_by_channel(channel_id)
        settings = await self.settings_provider.get(ticket.guild_id)
        if not ticket.is_owner(actor_id):
            raise TicketAuthorizationError("Only the ticket owner can request reopening.")
        if ticket.is_archived:
            raise TicketArchivedError("This ticket is archived and cannot be reopened.")
        if ticket.state is TicketState.OPEN:
            raise InvalidTicketTransitionError("Ticket is already open.")

        text = f"📣 {user_mention(actor_id)} requested to reopen this ticket."
        mentions = await self.staff_mentions(ticket.guild_id, settings)
        if mentions:
            text += " Notifying: " + " ".join(mentions)
        await self.transport.send_message(ticket.channel_id, MessagePayload(content=text))
        await self.action_log.record(
            settings,
            LogEvent.USER_REOPEN_REQUEST,
            [
                EmbedField("Ticket", channel_mention(ticket.channel_id)),
                EmbedField("User", user_mention(actor_id), inline=True),
                EmbedField("State", status_pill(ticket.state), inline=True),
            ],
        )
        return ticket

    async def staff_mentions(self, guild_id: str, settings: GuildSettings) -> list[str]:
        """Who to ping for a ticket: on-duty staff, else the moderator roles."""

        on_duty: list[str] = []
        if self.duty is not None:
            try:
                on_duty = await self.duty.on_duty_user_ids(guild_id)
            except TicketPersistenceError as exc:
                logger.warning("Duty roster unavailable for guild %s, pinging roles: %s", guild_id, exc)
        return notify_mentions(on_duty, settings)

    async def set_duty(self, guild_id: str, user_id: str, on_duty: bool) -> DutyChange:
        if self.duty is None:
            raise TicketServiceError("The duty roster is not enabled.")
        settings = await self.settings_provider.get(guild_id)
        member = await self.transport.fetch_member(guild_id, user_id)
        if not is_moderator(member, settings):
            raise TicketAuthorizationError("Only staff can go on duty.")

        await self.duty.set_on_duty(guild_id, user_id, on_duty)
        role_synced: bool | None = None
        if settings.on_duty_role_id:
            try:
                await self.transport.set_member_role(guild_id, user_id, settings.on_duty_role_id, present=on_duty)
                role_synced = True
            except TransportFailure as exc:
                logger.warning("Could not sync on-duty role for %s: %s", user_id, exc)
                role_synced = False
        logger.info("%s is now %s duty in guild %s", user_id, "on" if on_duty else "off", guild_id)
        return DutyChange(user_id=user_id, on_duty=on_duty, role_synced=role_synced)

    async def duty_status(self, guild_id: str) -> list[str]:
        """User ids currently on duty."""

        if self.duty is None:
            raise TicketServiceError("The duty roster is not enabled.")
        return await self.duty.on_duty_user_ids(guild_id)

    async def regenerate_transcript(self, channel_id: str, actor_id: str) -> TranscriptOutcome:
        found = await self.get_ticket_by_channel(channel_id)
        settings = await self.settings_provider.get(found.guild_id)

        with bind_ticket_context(found.id, found.guild_id):
            async with self.locks.hold(found.id):
                ticket = await self.get_ticket(found.id)
                if not await self._is_moderator(ticket, actor_id, settings):
                    raise TicketAuthorizationError(f"{actor_id} may not regenerate transcripts")
                if not ticket.is_archived:
                    raise InvalidTicketTransitionError(f"Ticket {ticket.id} is not archived")
                if not settings.transcripts_enabled:
                    raise TranscriptError("Transcripts are disabled for this server")
                try:
                    outcome = await self.transcripts.generate(ticket, settings)
                except TranscriptError:
                    self._count_transcript("failed")
                    raise
                if outcome is None:
                    self._count_transcript("skipped")
                    raise TranscriptError("No audit channel is configured")
        self._count_transcript("generated")
        return outcome

    async def _is_moderator(self, ticket: Ticket, user_id: str, settings: GuildSettings) -> bool:
        member = await self.transport.fetch_member(ticket.guild_id, user_id)
        return is_moderator(member, settings)

    async def _log_transition(
        self, result: TransitionResult, actor_id: str, actor_is_moderator: bool, settings: GuildSettings
    ) -> None:
        ticket = result.ticket
        if result.action is TicketAction.RESOLVE:
            by_owner = ticket.is_owner(actor_id) and not actor_is_moderator
            event = LogEvent.USER_RESOLVED if by_owner else LogEvent.MOD_RESOLVE
        else:
            event = {
                TicketAction.CLOSE: LogEvent.MOD_CLOSE,
                TicketAction.ARCHIVE: LogEvent.MOD_ARCHIVE,
                TicketAction.REOPEN: LogEvent.MOD_REOPEN,
            }[result.action]
        fields = [
            EmbedField("Ticket", channel_mention(ticket.channel_id)),
            EmbedField("By", user_mention(actor_id), inline=True),
            EmbedField("State", status_pill(result.to_state), inline=True),
        ]
        if result.transcript is not None:
            fields.append(EmbedField("Transcript", f"[HTML transcript]({result.transcript.url})"))
        await self.action_log.record(settings, event, fields)

    def _count_transition(self, action: TicketAction, outcome: str) -> None:
        self.metrics.counter(TRANSITIONS_TOTAL, label_names=("action", "outcome")).inc(
            labels={"action": action.value, "outcome": outcome}
        )

    def _count_participant(self, operation: str, outcome: str) -> None:
        self.metrics.counter(PARTICIPANT_CHANGES_TOTAL, label_names=("operation", "outcome")).inc(
            labels={"operation": operation, "outcome": outcome}
        )

    def _count_transcript(self, outcome: str) -> None:
        self.metrics.counter(TRANSCRIPTS_TOTAL, label_names=("outcome",)).inc(labels={"outcome": outcome})
