"""Wire envelope models and their mapping to the internal ``Message``."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError

from chat_session.application.dto.principal import Principal
from chat_session.application.exceptions import DecodeError
from chat_session.domain.entities.context import ChatContext, DirectContext, GroupContext
from chat_session.domain.entities.message import Message
from chat_session.domain.value_objects.enums import MessageKind

UNKNOWN_USER = "Unknown User"


class ImageModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    downloadUrl: str | None = None


class UserRefModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    username: str | None = None
    image: ImageModel | None = None


class GroupRefModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    groupname: str | None = None


class EnvelopeModel(BaseModel):
    """Broker → client. Every field may be missing on the wire."""

    model_config = ConfigDict(extra="ignore")

    id: int | str | None = None
    content: str | None = None
    type: MessageKind | None = None
    sender: UserRefModel | None = None
    recipient: UserRefModel | None = None
    group: GroupRefModel | None = None
    timestamp: str | None = None
    # JOIN frames published by older clients carry only a bare user id
    userId: int | None = None


class PartyModel(BaseModel):
    id: int
    username: str


class GroupPartyModel(BaseModel):
    id: int
    groupname: str


class OutboundEnvelope(BaseModel):
    """Client → broker."""

    content: str
    type: MessageKind
    sender: PartyModel
    recipient: PartyModel | None = None
    group: GroupPartyModel | None = None
    timestamp: str


class HistoryItemModel(BaseModel):
    """Flat message DTO returned by the history endpoints."""

    model_config = ConfigDict(extra="ignore")

    id: int | str | None = None
    senderId: int | None = None
    senderName: str | None = None
    senderAvatar: str | None = None
    receiverId: int | None = None
    receiverName: str | None = None
    groupId: int | None = None
    content: str | None = None
    timestamp: str | None = None
    type: MessageKind | None = None


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _provisional_id(timestamp: str, sender_id: int | None, scope: str | None = None) -> str:
    parts = [timestamp, str(sender_id)]
    if scope:
        parts.append(scope)
    parts.append(uuid.uuid4().hex[:5])
    return "-".join(parts)


def _status_line(kind: MessageKind, sender_name: str) -> str:
    verb = "joined" if kind == MessageKind.JOIN else "left"
    return f"{sender_name} {verb} the chat."


def decode_envelope(raw: str | bytes) -> Message:
    """Parse a broker frame body into a canonical ``Message``."""
    try:
        env = EnvelopeModel.model_validate_json(raw)
    except PydanticValidationError as exc:
        raise DecodeError(f"Malformed envelope: {exc.error_count()} error(s)") from exc

    kind = env.type or MessageKind.CHAT
    sender = env.sender or UserRefModel(id=env.userId)
    sender_id = sender.id if sender.id is not None else env.userId
    sender_name = sender.username or UNKNOWN_USER
    timestamp = env.timestamp or utc_now_iso()
    recipient = env.recipient if env.recipient is not None and env.recipient.id is not None else None
    group = env.group if env.group is not None and env.group.id is not None else None

    content = env.content or ""
    if not content and kind in (MessageKind.JOIN, MessageKind.LEAVE):
        content = _status_line(kind, sender_name)

    try:
        return Message(
            id=str(env.id) if env.id is not None else _provisional_id(timestamp, sender_id),
            sender_id=sender_id,
            sender_name=sender_name,
            sender_avatar_ref=sender.image.downloadUrl if sender.image else None,
            content=content,
            timestamp=timestamp,
            kind=kind,
            recipient_id=recipient.id if recipient else None,
            recipient_name=recipient.username if recipient else None,
            group_id=group.id if group else None,
            group_name=group.groupname if group else None,
        )
    except ValueError as exc:
        raise DecodeError(str(exc)) from exc


def decode_history_item(data: dict[str, Any], context: ChatContext) -> Message:
    try:
        item = HistoryItemModel.model_validate(data)
    except PydanticValidationError as exc:
        raise DecodeError(f"Malformed history item: {exc.error_count()} error(s)") from exc

    group_id = item.groupId
    if group_id is None and isinstance(context, GroupContext):
        group_id = context.group_id
    timestamp = item.timestamp or utc_now_iso()
    kind = item.type or MessageKind.CHAT
    try:
        return Message(
            id=str(item.id) if item.id is not None else _provisional_id(timestamp, item.senderId, context.key),
            sender_id=item.senderId,
            sender_name=item.senderName or UNKNOWN_USER,
            sender_avatar_ref=item.senderAvatar,
            content=item.content or "",
            timestamp=timestamp,
            kind=kind,
            recipient_id=None if group_id is not None else item.receiverId,
            recipient_name=None if group_id is not None else item.receiverName,
            group_id=group_id,
        )
    except ValueError as exc:
        raise DecodeError(str(exc)) from exc


def build_outbound(
    kind: MessageKind,
    sender: Principal,
    context: ChatContext,
    *,
    content: str = "",
    timestamp: str | None = None,
) -> OutboundEnvelope:
    """Address an outgoing envelope to the given context."""
    recipient = None
    group = None
    if isinstance(context, DirectContext):
        recipient = PartyModel(id=context.peer_id, username=context.peer_name)
    elif isinstance(context, GroupContext):
        group = GroupPartyModel(id=context.group_id, groupname=context.group_name)
    return OutboundEnvelope(
        content=content,
        type=kind,
        sender=PartyModel(id=sender.user_id, username=sender.username),
        recipient=recipient,
        group=group,
        timestamp=timestamp or utc_now_iso(),
    )


def encode_envelope(envelope: OutboundEnvelope) -> str:
    return envelope.model_dump_json()
