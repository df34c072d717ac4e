"""discord.py implementation of :class:`~ticketbox.chat.transport.ChatTransport`."""

from __future__ import annotations

import io
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

import discord

from .transport import (
    ButtonSpec,
    ChatAttachment,
    ChatMember,
    ChatMessage,
    EmbedCard,
    InitialOverwrite,
    MessagePayload,
    OverwriteTarget,
    PermissionPatch,
    TransportFailure,
    TransportNotFound,
)

log = logging.getLogger(__name__)


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except discord.NotFound as exc:
        raise TransportNotFound(f"{action}: {exc.text or 'not found'}") from exc
    except discord.HTTPException as exc:
        raise TransportFailure(f"{action}: {exc.status} {exc.text}".strip()) from exc


def apply_patch(overwrite: discord.PermissionOverwrite, patch: PermissionPatch) -> discord.PermissionOverwrite:
    """Merge ``patch`` into ``overwrite`` leaving untouched flags as they were."""

    if patch.view is not None:
        overwrite.view_channel = patch.view
    if patch.send is not None:
        overwrite.send_messages = patch.send
    if patch.read_history is not None:
        overwrite.read_message_history = patch.read_history
    if patch.manage is not None:
        overwrite.manage_channels = patch.manage
        overwrite.manage_messages = patch.manage
    return overwrite


def to_discord_embed(card: EmbedCard) -> discord.Embed:
    embed = discord.Embed(
        title=card.title,
        description=card.description,
        colour=card.colour,
        timestamp=card.timestamp,
    )
    for field in card.fields:
        embed.add_field(name=field.name, value=field.value, inline=field.inline)
    if card.footer:
        embed.set_footer(text=card.footer)
    return embed


def to_discord_view(rows: Sequence[Sequence[ButtonSpec]]) -> discord.ui.View | None:
    if not rows:
        return None
    view = discord.ui.View(timeout=None)
    for index, row in enumerate(rows):
        for spec in row:
            view.add_item(
                discord.ui.Button(
                    custom_id=spec.custom_id,
                    label=spec.label,
                    style=getattr(discord.ButtonStyle, spec.style, discord.ButtonStyle.secondary),
                    disabled=spec.disabled,
                    row=index,
                )
            )
    return view


def to_chat_message(message: discord.Message) -> ChatMessage:
    author = message.author
    return ChatMessage(
        id=str(message.id),
        channel_id=str(message.channel.id),
        author_id=str(author.id),
        author_name=getattr(author, "display_name", None) or author.name,
        content=message.content or "",
        created_at=message.created_at,
        attachments=[ChatAttachment(filename=item.filename, url=item.url) for item in message.attachments],
    )


class DiscordChatTransport:
    """Adapter between the ticket core and a connected discord.py client."""

    def __init__(self, client: discord.Client) -> None:
        self._client = client

    async def current_user_id(self) -> str:
        user = self._client.user
        if user is None:
            raise TransportFailure("Client is not logged in")
        return str(user.id)

    async def _guild(self, guild_id: str) -> discord.Guild:
        guild = self._client.get_guild(int(guild_id))
        if guild is not None:
            return guild
        with _translate_errors(f"fetch guild {guild_id}"):
            return await self._client.fetch_guild(int(guild_id))

    async def _channel(self, channel_id: str) -> Any:
        channel = self._client.get_channel(int(channel_id))
        if channel is not None:
            return channel
        with _translate_errors(f"fetch channel {channel_id}"):
            return await self._client.fetch_channel(int(channel_id))

    async def _resolve_target(self, guild: discord.Guild, target: OverwriteTarget) -> discord.abc.Snowflake:
        if target.is_role:
            role = guild.get_role(int(target.id))
            if role is None:
                raise TransportNotFound(f"Role {target.id} not found")
            return role
        member = guild.get_member(int(target.id))
        if member is not None:
            return member
        with _translate_errors(f"fetch member {target.id}"):
            return await guild.fetch_member(int(target.id))

    async def fetch_member(self, guild_id: str, user_id: str) -> ChatMember | None:
        guild = await self._guild(guild_id)
        member = guild.get_member(int(user_id))
        if member is None:
            try:
                with _translate_errors(f"fetch member {user_id}"):
                    member = await guild.fetch_member(int(user_id))
            except TransportNotFound:
                return None
        return ChatMember(
            id=str(member.id),
            display_name=member.display_name,
            role_ids=frozenset(str(role.id) for role in member.roles),
            is_administrator=member.guild_permissions.administrator,
        )

    async def set_member_role(self, guild_id: str, user_id: str, role_id: str, *, present: bool) -> None:
        guild = await self._guild(guild_id)
        role = guild.get_role(int(role_id))
        if role is None:
            raise TransportNotFound(f"Role {role_id} not found")
        member = await self._resolve_target(guild, OverwriteTarget.member(user_id))
        has_role = any(item.id == role.id for item in member.roles)
        if present and not has_role:
            with _translate_errors(f"add role {role_id} to {user_id}"):
                await member.add_roles(role, reason="Ticket duty toggled on")
        elif not present and has_role:
            with _translate_errors(f"remove role {role_id} from {user_id}"):
                await member.remove_roles(role, reason="Ticket duty toggled off")

    async def fetch_display_name(self, user_id: str) -> str | None:
        user = self._client.get_user(int(user_id))
        if user is None:
            try:
                with _translate_errors(f"fetch user {user_id}"):
                    user = await self._client.fetch_user(int(user_id))
            except TransportNotFound:
                return None
        return user.name

    async def create_text_channel(
        self,
        guild_id: str,
        name: str,
        *,
        parent_id: str | None,
        overwrites: Sequence[InitialOverwrite],
    ) -> str:
        guild = await self._guild(guild_id)
        resolved: dict[Any, discord.PermissionOverwrite] = {}
        for item in overwrites:
            try:
                target = await self._resolve_target(guild, item.target)
            except TransportNotFound:
                log.warning("Skipping initial overwrite for missing %s", item.target.id)
                continue
            resolved[target] = apply_patch(discord.PermissionOverwrite(), item.permissions)
        category = guild.get_channel(int(parent_id)) if parent_id else None
        with _translate_errors(f"create channel {name}"):
            channel = await guild.create_text_channel(
                name,
                category=category if isinstance(category, discord.CategoryChannel) else None,
                overwrites=resolved,
                reason="Ticket opened",
            )
        return str(channel.id)

    async def delete_channel(self, channel_id: str) -> None:
        channel = await self._channel(channel_id)
        with _translate_errors(f"delete channel {channel_id}"):
            await channel.delete(reason="Ticket creation rolled back")

    async def is_category(self, guild_id: str, channel_id: str) -> bool:
        try:
            channel = await self._channel(channel_id)
        except TransportNotFound:
            return False
        return isinstance(channel, discord.CategoryChannel) and str(channel.guild.id) == guild_id

    async def set_parent(self, channel_id: str, parent_id: str) -> None:
        channel = await self._channel(channel_id)
        category = await self._channel(parent_id)
        with _translate_errors(f"move channel {channel_id}"):
            await channel.edit(category=category, sync_permissions=False)

    async def fetch_message(self, channel_id: str, message_id: str) -> ChatMessage | None:
        channel = await self._channel(channel_id)
        try:
            with _translate_errors(f"fetch message {message_id}"):
                message = await channel.fetch_message(int(message_id))
        except TransportNotFound:
            return None
        return to_chat_message(message)

    async def send_message(self, channel_id: str, payload: MessagePayload) -> ChatMessage:
        channel = await self._channel(channel_id)
        kwargs: dict[str, Any] = {"embeds": [to_discord_embed(card) for card in payload.embeds]}
        # Omitting content keeps the pings already on the message.
        if payload.content is not None:
            kwargs["content"] = payload.content
        view = to_discord_view(payload.components)
        if view is not None:
            kwargs["view"] = view
        if payload.files:
            kwargs["files"] = [discord.File(io.BytesIO(item.data), filename=item.filename) for item in payload.files]
        with _translate_errors(f"send message to {channel_id}"):
            message = await channel.send(**kwargs)
        return to_chat_message(message)

    async def edit_message(self, channel_id: str, message_id: str, payload: MessagePayload) -> ChatMessage:
        channel = await self._channel(channel_id)
        kwargs: dict[str, Any] = {"content": payload.content, "embeds": [to_discord_embed(card) for card in payload.embeds]}
        view = to_discord_view(payload.components)
        if view is not None:
            kwargs["view"] = view
        if payload.files is not None:
            kwargs["attachments"] = [
                discord.File(io.BytesIO(item.data), filename=item.filename) for item in payload.files
            ]
        with _translate_errors(f"edit message {message_id}"):
            message = await channel.get_partial_message(int(message_id)).edit(**kwargs)
        return to_chat_message(message)

    async def edit_overwrite(self, channel_id: str, target: OverwriteTarget, patch: PermissionPatch) -> None:
        channel = await self._channel(channel_id)
        resolved = await self._resolve_target(channel.guild, target)
        overwrite = apply_patch(channel.overwrites_for(resolved), patch)
        with _translate_errors(f"edit overwrite {target.id} on {channel_id}"):
            await channel.set_permissions(resolved, overwrite=overwrite)

    async def delete_overwrite(self, channel_id: str, target: OverwriteTarget) -> bool:
        channel = await self._channel(channel_id)
        key = next((item for item in channel.overwrites if str(item.id) == target.id), None)
        if key is None:
            return False
        with _translate_errors(f"delete overwrite {target.id} on {channel_id}"):
            await channel.set_permissions(key, overwrite=None)
        return True

    async def fetch_history(self, channel_id: str, *, limit: int, before: str | None = None) -> list[ChatMessage]:
        channel = await self._channel(channel_id)
        marker = discord.Object(id=int(before)) if before else None
        with _translate_errors(f"read history of {channel_id}"):
            return [to_chat_message(message) async for message in channel.history(limit=limit, before=marker)]
