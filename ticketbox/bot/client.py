from __future__ import annotations

import logging

import discord
from discord import app_commands

from ticketbox.core.config import Settings

from .handlers import InteractionHandlers

logger = logging.getLogger(__name__)


def build_ticket_commands(handlers: InteractionHandlers) -> app_commands.Group:
    group = app_commands.Group(name="ticket", description="Support tickets", guild_only=True)

    @group.command(name="open", description="Open a private support ticket")
    @app_commands.describe(subject="Short description of your issue")
    async def open_ticket(interaction: discord.Interaction, subject: str | None = None) -> None:
        await handlers.open_ticket(interaction, subject=subject)

    @group.command(name="openfor", description="Staff: open a ticket on behalf of a member")
    @app_commands.describe(user="Member the ticket is for", subject="Short description of the issue")
    async def open_for(
        interaction: discord.Interaction, user: discord.Member, subject: str | None = None
    ) -> None:
        await handlers.open_ticket(interaction, target=user, subject=subject)

    return group


def build_duty_commands(handlers: InteractionHandlers) -> app_commands.Group:
    group = app_commands.Group(name="duty", description="Staff on-duty roster", guild_only=True)

    @group.command(name="on", description="Go on duty and get pinged for new tickets")
    async def duty_on(interaction: discord.Interaction) -> None:
        await handlers.set_duty(interaction, on_duty=True)

    @group.command(name="off", description="Go off duty")
    async def duty_off(interaction: discord.Interaction) -> None:
        await handlers.set_duty(interaction, on_duty=False)

    @group.command(name="status", description="Show who is on duty")
    async def duty_status(interaction: discord.Interaction) -> None:
        await handlers.duty_status(interaction)

    return group


class TicketBot(discord.Client):
    """Gateway client wiring slash commands and component clicks to the handlers."""

    def __init__(self, settings: Settings, *, intents: discord.Intents | None = None) -> None:
        if intents is None:
            intents = discord.Intents.default()
            intents.members = True
        super().__init__(intents=intents)
        self.settings = settings
        self.tree = app_commands.CommandTree(self)
        self.handlers: InteractionHandlers | None = None

    def attach(self, handlers: InteractionHandlers) -> None:
        self.handlers = handlers
        self.tree.add_command(build_ticket_commands(handlers))
        self.tree.add_command(build_duty_commands(handlers))

    async def setup_hook(self) -> None:
        if self.settings.command_guild_id:
            guild = discord.Object(id=int(self.settings.command_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
        else:
            synced = await self.tree.sync()
        logger.info("Synced %d application commands", len(synced))

    async def on_ready(self) -> None:
        logger.info("Logged in as %s (%s)", self.user, getattr(self.user, "id", "?"))

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type is not discord.InteractionType.component or self.handlers is None:
            return
        try:
            await self.handlers.handle_component(interaction)
        except discord.HTTPException:
            logger.exception("Could not answer interaction %s", interaction.id)
