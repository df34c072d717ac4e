"""Channel permission changes driven by ticket state.

The chat platform is remote and unreliable, so nothing in this module raises
on a transport failure. Each call reports what happened instead and the
lifecycle engine decides what to surface.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from ticketbox.chat.transport import (
    ChatMember,
    ChatTransport,
    OverwriteTarget,
    PermissionPatch,
    TransportFailure,
    TransportNotFound,
)
from ticketbox.metrics import MetricsRegistry, metrics_registry
from ticketbox.metrics.definitions import OVERWRITE_FAILURES_TOTAL
from ticketbox.settings.guild import GuildSettings

from .models import Ticket
from .state import TicketState

logger = logging.getLogger(__name__)

PARTICIPANT_ACCESS = PermissionPatch(view=True, send=True, read_history=True)
LOCKED_ACCESS = PermissionPatch(view=True, send=False)
OPEN_ACCESS = PermissionPatch(view=True, send=True)
STAFF_ACCESS = PermissionPatch(view=True, send=True, read_history=True, manage=True)


def is_moderator(member: ChatMember | None, settings: GuildSettings) -> bool:
    """Members holding a moderator role or the administrator capability."""

    if member is None:
        return False
    if member.is_administrator:
        return True
    return any(role_id in member.role_ids for role_id in settings.moderator_role_ids)


class OverwriteOutcome(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class OverwriteResult:
    operation: str
    target_id: str | None
    outcome: OverwriteOutcome
    detail: str | None = None

    @property
    def failed(self) -> bool:
        return self.outcome is OverwriteOutcome.FAILED


@dataclass(slots=True)
class AccessReport:
    """Collected results of a multi-step permission change."""

    results: list[OverwriteResult] = field(default_factory=list)

    def add(self, result: OverwriteResult) -> OverwriteResult:
        self.results.append(result)
        return result

    def merge(self, other: AccessReport) -> AccessReport:
        self.results.extend(other.results)
        return self

    @property
    def failures(self) -> list[OverwriteResult]:
        return [result for result in self.results if result.failed]

    @property
    def ok(self) -> bool:
        return not self.failures


class AccessControlManager:
    """Idempotent permission operations over a ticket channel."""

    def __init__(self, transport: ChatTransport, *, metrics: MetricsRegistry | None = None) -> None:
        self._transport = transport
        self._metrics = metrics or metrics_registry

    # Single overwrite operations

    async def grant_view(self, channel_id: str, target: OverwriteTarget) -> OverwriteResult:
        return await self._edit("grant_view", channel_id, target, PermissionPatch(view=True))

    async def revoke_view(self, channel_id: str, target: OverwriteTarget) -> OverwriteResult:
        return await self._edit("revoke_view", channel_id, target, PermissionPatch(view=False))

    async def grant_send(self, channel_id: str, target: OverwriteTarget) -> OverwriteResult:
        return await self._edit("grant_send", channel_id, target, PermissionPatch(send=True))

    async def revoke_send(self, channel_id: str, target: OverwriteTarget) -> OverwriteResult:
        return await self._edit("revoke_send", channel_id, target, PermissionPatch(send=False))

    async def grant_participant(self, channel_id: str, user_id: str) -> OverwriteResult:
        return await self._edit("grant_participant", channel_id, OverwriteTarget.member(user_id), PARTICIPANT_ACCESS)

    async def lock_user(self, channel_id: str, user_id: str) -> OverwriteResult:
        return await self._edit("lock_user", channel_id, OverwriteTarget.member(user_id), LOCKED_ACCESS)

    async def remove_overwrite(self, channel_id: str, target: OverwriteTarget) -> OverwriteResult:
        try:
            removed = await self._transport.delete_overwrite(channel_id, target)
        except TransportFailure as exc:
            return self._failed("remove_overwrite", channel_id, target.id, exc)
        if not removed:
            return OverwriteResult("remove_overwrite", target.id, OverwriteOutcome.SKIPPED, "no overwrite present")
        return OverwriteResult("remove_overwrite", target.id, OverwriteOutcome.APPLIED)

    # Bulk operations

    async def read_only_for_all(self, channel_id: str, guild_id: str, settings: GuildSettings) -> AccessReport:
        report = AccessReport()
        report.add(await self.revoke_send(channel_id, OverwriteTarget.default_role(guild_id)))
        for role_id in settings.moderator_role_ids:
            report.add(await self.revoke_send(channel_id, OverwriteTarget.role(role_id)))
        return report

    async def open_for(self, channel_id: str, user_id: str, settings: GuildSettings) -> AccessReport:
        report = AccessReport()
        report.add(await self._edit("open_for", channel_id, OverwriteTarget.member(user_id), OPEN_ACCESS))
        for role_id in settings.moderator_role_ids:
            report.add(await self.grant_send(channel_id, OverwriteTarget.role(role_id)))
        return report

    async def strip_members(self, channel_id: str, user_ids: Iterable[str]) -> AccessReport:
        report = AccessReport()
        seen: set[str] = set()
        for user_id in user_ids:
            if user_id in seen:
                continue
            seen.add(user_id)
            report.add(await self.remove_overwrite(channel_id, OverwriteTarget.member(user_id)))
        return report

    async def relocate_to_archive(self, channel_id: str, guild_id: str, settings: GuildSettings) -> OverwriteResult:
        category_id = settings.archive_category_id
        if not category_id:
            return OverwriteResult("relocate", None, OverwriteOutcome.SKIPPED, "no archive category configured")
        try:
            if not await self._transport.is_category(guild_id, category_id):
                logger.warning("Archive category %s in guild %s is not a category", category_id, guild_id)
                return OverwriteResult("relocate", category_id, OverwriteOutcome.SKIPPED, "not a category")
            await self._transport.set_parent(channel_id, category_id)
        except TransportFailure as exc:
            return self._failed("relocate", channel_id, category_id, exc)
        return OverwriteResult("relocate", category_id, OverwriteOutcome.APPLIED)

    async def apply_state(self, ticket: Ticket, state: TicketState, settings: GuildSettings) -> AccessReport:
        """Apply the permission delta for a ticket entering ``state``."""

        report = AccessReport()
        if state is TicketState.OPEN:
            report.merge(await self.open_for(ticket.channel_id, ticket.target_id, settings))
        else:
            report.merge(await self.read_only_for_all(ticket.channel_id, ticket.guild_id, settings))
            if state is not TicketState.ARCHIVED:
                report.add(await self.lock_user(ticket.channel_id, ticket.target_id))
        return report

    async def seal_archive(self, ticket: Ticket, settings: GuildSettings) -> AccessReport:
        """Drop every member overwrite and move the channel to the archive."""

        report = await self.strip_members(ticket.channel_id, ticket.members())
        report.add(await self.relocate_to_archive(ticket.channel_id, ticket.guild_id, settings))
        return report

    async def _edit(
        self, operation: str, channel_id: str, target: OverwriteTarget, patch: PermissionPatch
    ) -> OverwriteResult:
        try:
            await self._transport.edit_overwrite(channel_id, target, patch)
        except TransportNotFound as exc:
            logger.info("Skipping %s for %s in %s: %s", operation, target.id, channel_id, exc)
            return OverwriteResult(operation, target.id, OverwriteOutcome.SKIPPED, str(exc))
        except TransportFailure as exc:
            return self._failed(operation, channel_id, target.id, exc)
        return OverwriteResult(operation, target.id, OverwriteOutcome.APPLIED)

    def _failed(self, operation: str, channel_id: str, target_id: str | None, exc: Exception) -> OverwriteResult:
        logger.warning("Permission change %s for %s in %s failed: %s", operation, target_id, channel_id, exc)
        self._metrics.counter(OVERWRITE_FAILURES_TOTAL, label_names=("operation",)).inc(
            labels={"operation": operation}
        )
        return OverwriteResult(operation, target_id, OverwriteOutcome.FAILED, str(exc))
