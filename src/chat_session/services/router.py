"""Classifies inbound envelopes and dispatches them to session effects."""
from __future__ import annotations

import logging
from typing import Callable, Protocol

from chat_session.application.dto.notice import Notice
from chat_session.application.exceptions import DecodeError
from chat_session.domain.entities.context import ChatContext, DirectContext, GroupContext, PublicContext
from chat_session.domain.entities.message import Message
from chat_session.domain.value_objects.enums import MessageKind, NoticeCategory
from chat_session.infrastructure.codec.envelope import decode_envelope

logger = logging.getLogger(__name__)


def typing_context_key(message: Message, context: ChatContext) -> str | None:
    """Key of the active context if a TYPING envelope is addressed to it."""
    if isinstance(context, DirectContext):
        if message.sender_id == context.peer_id and message.group_id is None:
            return context.key
    elif isinstance(context, GroupContext):
        if message.group_id == context.group_id:
            return context.key
    elif isinstance(context, PublicContext):
        if message.is_public:
            return context.key
    return None


def is_relevant(message: Message, context: ChatContext, self_id: int) -> bool:
    """Whether a non-typing message belongs in the active context's list."""
    if isinstance(context, PublicContext):
        return message.is_public
    if message.kind != MessageKind.CHAT:
        return False
    if isinstance(context, DirectContext):
        if message.group_id is not None:
            return False
        # Own outgoing copy echoed back to our inbox, or the peer writing to us.
        return message.recipient_id == context.peer_id or (
            message.sender_id == context.peer_id and message.recipient_id == self_id
        )
    if isinstance(context, GroupContext):
        return message.group_id == context.group_id
    return False


class RouterEffects(Protocol):
    """What the router may do to the session in response to an envelope."""

    @property
    def context(self) -> ChatContext: ...

    def raise_typing(self, message: Message, context_key: str) -> None: ...
    def deliver(self, message: Message) -> None: ...
    def refresh_roster(self) -> None: ...
    def refresh_groups(self) -> None: ...
    def refresh_group_details(self, group_id: int) -> None: ...
    def notify(self, notice: Notice) -> None: ...


class InboundRouter:
    def __init__(self, effects: RouterEffects, self_id: int) -> None:
        self._effects = effects
        self._self_id = self_id
        self._handlers: dict[MessageKind, Callable[[Message], None]] = {
            MessageKind.TYPING: self._on_typing,
            MessageKind.CHAT: self._on_chat,
            MessageKind.JOIN: self._on_presence,
            MessageKind.LEAVE: self._on_presence,
            MessageKind.GROUP_ADD: self._on_group_change,
            MessageKind.GROUP_REMOVE: self._on_group_change,
        }

    async def route(self, channel: str, raw: str) -> None:
        """Transport-facing entry point for message and typing channels."""
        try:
            message = decode_envelope(raw)
        except DecodeError as exc:
            logger.warning("Dropping malformed envelope on %s: %s", channel, exc.detail)
            self._effects.notify(Notice(NoticeCategory.DECODE, "Error processing message"))
            return
        self.handle(message)

    def handle(self, message: Message) -> None:
        self._handlers[message.kind](message)

    def route_error(self, channel: str, raw: str) -> None:
        """Server-pushed rejection from the error queue. No state change."""
        text = raw.strip() or "WebSocket error occurred"
        logger.warning("Error from server on %s: %s", channel, text)
        self._effects.notify(Notice(NoticeCategory.APPLICATION, text))

    def _on_typing(self, message: Message) -> None:
        if message.sender_id is None or message.sender_id == self._self_id:
            return
        key = typing_context_key(message, self._effects.context)
        if key is not None:
            self._effects.raise_typing(message, key)

    def _deliver_if_relevant(self, message: Message) -> None:
        if is_relevant(message, self._effects.context, self._self_id):
            self._effects.deliver(message)

    def _on_chat(self, message: Message) -> None:
        self._deliver_if_relevant(message)

    def _on_presence(self, message: Message) -> None:
        self._deliver_if_relevant(message)
        self._effects.refresh_roster()

    def _on_group_change(self, message: Message) -> None:
        self._deliver_if_relevant(message)
        self._effects.refresh_groups()
        context = self._effects.context
        if isinstance(context, GroupContext) and message.group_id == context.group_id:
            self._effects.refresh_group_details(context.group_id)
