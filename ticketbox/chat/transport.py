"""Chat platform abstraction used by the ticket lifecycle core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, Sequence


class TransportFailure(RuntimeError):
    """Raised when the chat platform rejects or fails a request."""


class TransportNotFound(TransportFailure):
    """Raised when the referenced channel, message or member does not exist."""


@dataclass(frozen=True, slots=True)
class OverwriteTarget:
    """A user or role that a channel permission overwrite applies to."""

    id: str
    is_role: bool = False

    @classmethod
    def member(cls, user_id: str) -> OverwriteTarget:
        return cls(id=user_id, is_role=False)

    @classmethod
    def role(cls, role_id: str) -> OverwriteTarget:
        return cls(id=role_id, is_role=True)

    @classmethod
    def default_role(cls, guild_id: str) -> OverwriteTarget:
        # The @everyone role shares its id with the guild.
        return cls(id=guild_id, is_role=True)


@dataclass(frozen=True, slots=True)
class PermissionPatch:
    """Partial overwrite; ``None`` leaves the flag untouched."""

    view: bool | None = None
    send: bool | None = None
    read_history: bool | None = None
    manage: bool | None = None


@dataclass(slots=True)
class ChatMember:
    id: str
    display_name: str
    role_ids: frozenset[str] = frozenset()
    is_administrator: bool = False


@dataclass(slots=True)
class ChatAttachment:
    filename: str
    url: str


@dataclass(slots=True)
class ChatMessage:
    id: str
    channel_id: str
    author_id: str
    author_name: str
    content: str
    created_at: datetime
    attachments: list[ChatAttachment] = field(default_factory=list)


@dataclass(slots=True)
class EmbedField:
    name: str
    value: str
    inline: bool = False


@dataclass(slots=True)
class EmbedCard:
    """Platform-neutral rich embed."""

    title: str
    description: str | None = None
    fields: list[EmbedField] = field(default_factory=list)
    colour: int | None = None
    footer: str | None = None
    timestamp: datetime | None = None

    def add_field(self, name: str, value: str, *, inline: bool = False) -> EmbedCard:
        self.fields.append(EmbedField(name=name, value=value, inline=inline))
        return self

    def field_value(self, name: str) -> str | None:
        for item in self.fields:
            if item.name == name:
                return item.value
        return None


@dataclass(frozen=True, slots=True)
class ButtonSpec:
    custom_id: str
    label: str
    style: str = "secondary"
    disabled: bool = False


@dataclass(frozen=True, slots=True)
class FileUpload:
    filename: str
    data: bytes


@dataclass(slots=True)
class MessagePayload:
    """Content of a message to send or edit.

    ``components`` is a list of button rows. ``files`` replaces all existing
    attachments when used in an edit.
    """

    content: str | None = None
    embeds: list[EmbedCard] = field(default_factory=list)
    components: list[list[ButtonSpec]] = field(default_factory=list)
    files: list[FileUpload] | None = None


@dataclass(frozen=True, slots=True)
class InitialOverwrite:
    target: OverwriteTarget
    permissions: PermissionPatch


class ChatTransport(Protocol):
    """Operations the ticket core needs from the chat platform.

    Failures raise :class:`TransportFailure`; methods documented to return
    ``None`` or ``False`` use that to signal a missing object instead.
    """

    async def current_user_id(self) -> str: ...

    async def fetch_member(self, guild_id: str, user_id: str) -> ChatMember | None: ...

    async def set_member_role(self, guild_id: str, user_id: str, role_id: str, *, present: bool) -> None:
        """Add or remove one role; raises :class:`TransportNotFound` if the member or role is gone."""
        ...

    async def fetch_display_name(self, user_id: str) -> str | None: ...

    async def create_text_channel(
        self,
        guild_id: str,
        name: str,
        *,
        parent_id: str | None,
        overwrites: Sequence[InitialOverwrite],
    ) -> str: ...

    async def delete_channel(self, channel_id: str) -> None: ...

    async def is_category(self, guild_id: str, channel_id: str) -> bool: ...

    async def set_parent(self, channel_id: str, parent_id: str) -> None: ...

    async def fetch_message(self, channel_id: str, message_id: str) -> ChatMessage | None: ...

    async def send_message(self, channel_id: str, payload: MessagePayload) -> ChatMessage: ...

    async def edit_message(self, channel_id: str, message_id: str, payload: MessagePayload) -> ChatMessage: ...

    async def edit_overwrite(self, channel_id: str, target: OverwriteTarget, patch: PermissionPatch) -> None: ...

    async def delete_overwrite(self, channel_id: str, target: OverwriteTarget) -> bool: ...

    async def fetch_history(
        self, channel_id: str, *, limit: int, before: str | None = None
    ) -> list[ChatMessage]:
        """Return up to ``limit`` messages older than ``before``, newest first."""
        ...
