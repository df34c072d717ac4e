"""Map Discord interactions onto the ticket lifecycle."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

import discord

from ticketbox.chat.transport import TransportFailure
from ticketbox.tickets import rendering
from ticketbox.tickets.creation import OpenedTicket, TicketFactory
from ticketbox.tickets.errors import (
    InvalidTicketTransitionError,
    TicketArchivedError,
    TicketAuthorizationError,
    TicketNotFoundError,
    TicketServiceError,
)
from ticketbox.tickets.service import TicketLifecycleService, TransitionResult
from ticketbox.tickets.state import TicketAction

logger = logging.getLogger(__name__)

_TRANSITION_BUTTONS: dict[str, TicketAction] = {
    rendering.USER_RESOLVE: TicketAction.RESOLVE,
    rendering.MOD_RESOLVE: TicketAction.RESOLVE,
    rendering.MOD_CLOSE: TicketAction.CLOSE,
    rendering.MOD_ARCHIVE: TicketAction.ARCHIVE,
    rendering.MOD_REOPEN: TicketAction.REOPEN,
}

_TRANSITION_REPLIES: dict[TicketAction, str] = {
    TicketAction.RESOLVE: "✅ Marked as **resolved**. A moderator will review and close the ticket.",
    TicketAction.CLOSE: "🔒 **Closed**. The channel is now read-only.",
    TicketAction.ARCHIVE: "📦 **Archived**. Only staff retain access.",
    TicketAction.REOPEN: "🔓 **Reopened**. The ticket owner can write again.",
}


def describe_error(exc: Exception) -> str:
    """Short user-facing text for a failed ticket action."""

    if isinstance(exc, TicketNotFoundError):
        return "This channel is not a ticket."
    if isinstance(exc, TicketAuthorizationError):
        return str(exc) if str(exc).endswith(".") else "You are not allowed to do that here."
    if isinstance(exc, TicketArchivedError):
        return "This ticket is archived."
    if isinstance(exc, InvalidTicketTransitionError):
        return f"Not possible right now: {exc}"
    return f"Failed: {exc}"


def describe_transition(result: TransitionResult) -> str:
    lines = [_TRANSITION_REPLIES[result.action]]
    if result.audit_error:
        lines.append("⚠️ The audit record could not be updated.")
    if result.transcript_error:
        lines.append("⚠️ The transcript could not be generated.")
    if result.access.failures:
        lines.append(f"⚠️ {len(result.access.failures)} permission change(s) failed.")
    return "\n".join(lines)


def describe_opened(opened: OpenedTicket) -> str:
    lines = [f"🎫 Ticket created: {rendering.channel_mention(opened.ticket.channel_id)}"]
    lines.extend(f"⚠️ {warning}" for warning in opened.warnings)
    return "\n".join(lines)


class InteractionHandlers:
    """Translate buttons, selects and slash commands into service calls."""

    def __init__(self, lifecycle: TicketLifecycleService, factory: TicketFactory) -> None:
        self._lifecycle = lifecycle
        self._factory = factory

    async def open_ticket(
        self,
        interaction: discord.Interaction,
        *,
        target: discord.abc.User | None = None,
        subject: str | None = None,
    ) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        if interaction.guild_id is None:
            await interaction.followup.send("Tickets can only be opened inside a server.", ephemeral=True)
            return
        try:
            opened = await self._factory.open_ticket(
                str(interaction.guild_id),
                str(interaction.user.id),
                target_id=str(target.id) if target is not None else None,
                subject=subject,
            )
        except (TicketServiceError, TransportFailure) as exc:
            await interaction.followup.send(describe_error(exc), ephemeral=True)
            return
        await interaction.followup.send(describe_opened(opened), ephemeral=True)

    async def set_duty(self, interaction: discord.Interaction, *, on_duty: bool) -> None:
        await interaction.response.defer(ephemeral=True)
        if interaction.guild_id is None:
            await interaction.followup.send("Use this in a server.", ephemeral=True)
            return
        try:
            change = await self._lifecycle.set_duty(str(interaction.guild_id), str(interaction.user.id), on_duty)
        except (TicketServiceError, TransportFailure) as exc:
            await interaction.followup.send(describe_error(exc), ephemeral=True)
            return
        reply = (
            "You are now **On Duty**. You’ll be pinged for new tickets."
            if change.on_duty
            else "You are now **Off Duty**. You will not be pinged."
        )
        if change.role_synced is False:
            reply += "\n⚠️ The on-duty role could not be updated."
        await interaction.followup.send(reply, ephemeral=True)

    async def duty_status(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True)
        if interaction.guild_id is None:
            await interaction.followup.send("Use this in a server.", ephemeral=True)
            return
        try:
            user_ids = await self._lifecycle.duty_status(str(interaction.guild_id))
        except TicketServiceError as exc:
            await interaction.followup.send(describe_error(exc), ephemeral=True)
            return
        if user_ids:
            reply = "On-Duty: " + ", ".join(rendering.user_mention(user_id) for user_id in user_ids)
        else:
            reply = "No one is currently On-Duty."
        await interaction.followup.send(reply, ephemeral=True)

    async def handle_component(self, interaction: discord.Interaction) -> bool:
        """Handle a ticket button or select; returns False for foreign components."""

        data = interaction.data or {}
        custom_id = str(data.get("custom_id", ""))
        if not custom_id.startswith("ticket:"):
            return False
        if custom_id in (rendering.MOD_ADD, rendering.MOD_REMOVE):
            await self._prompt_user_select(interaction, adding=custom_id == rendering.MOD_ADD)
            return True

        handler = self._resolve_handler(custom_id, data)
        if handler is None:
            return False
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            reply = await handler(str(interaction.channel_id), str(interaction.user.id))
        except (TicketServiceError, TransportFailure) as exc:
            reply = describe_error(exc)
        await interaction.followup.send(reply, ephemeral=True)
        return True

    def _resolve_handler(
        self, custom_id: str, data: dict
    ) -> Callable[[str, str], Awaitable[str]] | None:
        if custom_id in _TRANSITION_BUTTONS:
            action = _TRANSITION_BUTTONS[custom_id]

            async def transition(channel_id: str, actor_id: str) -> str:
                return describe_transition(await self._lifecycle.transition(channel_id, actor_id, action))

            return transition

        if custom_id == rendering.USER_NOT_RESOLVED:

            async def request_reopen(channel_id: str, actor_id: str) -> str:
                await self._lifecycle.request_reopen(channel_id, actor_id)
                return "✅ Your reopen request was posted to the channel."

            return request_reopen

        if custom_id in (rendering.ADD_SELECT, rendering.REMOVE_SELECT):
            values = data.get("values") or []
            if not values:
                return None
            user_id = str(values[0])
            adding = custom_id == rendering.ADD_SELECT

            async def change(channel_id: str, actor_id: str) -> str:
                if adding:
                    await self._lifecycle.add_participant(channel_id, actor_id, user_id)
                    return f"✅ Added {rendering.user_mention(user_id)}."
                result = await self._lifecycle.remove_participant(channel_id, actor_id, user_id)
                if result.protected:
                    return f"{rendering.user_mention(user_id)} is the ticket owner or staff and cannot be removed."
                return f"✅ Removed {rendering.user_mention(user_id)}."

            return change
        return None

    async def _prompt_user_select(self, interaction: discord.Interaction, *, adding: bool) -> None:
        view = discord.ui.View(timeout=120)
        view.add_item(
            discord.ui.UserSelect(
                custom_id=rendering.ADD_SELECT if adding else rendering.REMOVE_SELECT,
                placeholder="Select a user to add" if adding else "Select a user to remove",
                min_values=1,
                max_values=1,
            )
        )
        await interaction.response.send_message(
            "Choose a user to add to this ticket." if adding else "Choose a participant to remove.",
            view=view,
            ephemeral=True,
        )
