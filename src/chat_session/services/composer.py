"""Builds and publishes outgoing envelopes for the active context."""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Coroutine

from chat_session.application.dto.principal import Principal
from chat_session.application.exceptions import AppError, AuthError, NotConnectedError, ValidationError
from chat_session.application.ports.auth import AuthBoundary
from chat_session.application.ports.clock import Scheduler, TimerHandle
from chat_session.application.ports.transport import BrokerTransport
from chat_session.domain.entities.context import PUBLIC, ChatContext, DirectContext, GroupContext
from chat_session.domain.entities.message import Message
from chat_session.domain.value_objects.channels import (
    JOIN_DESTINATION,
    LEAVE_DESTINATION,
    PUBLIC_SEND_DESTINATION,
    PUBLIC_TYPING_DESTINATION,
    direct_send_destination,
    group_send_destination,
    typing_destination,
)
from chat_session.domain.value_objects.enums import MessageKind
from chat_session.infrastructure.codec.envelope import build_outbound, encode_envelope

logger = logging.getLogger(__name__)

Spawn = Callable[[Coroutine[Any, Any, None], str], None]


def destination_for_send(context: ChatContext) -> str:
    if isinstance(context, GroupContext):
        return group_send_destination(context.group_id)
    if isinstance(context, DirectContext):
        return direct_send_destination(context.peer_id)
    return PUBLIC_SEND_DESTINATION


def destination_for_typing(context: ChatContext) -> str:
    if isinstance(context, GroupContext):
        return typing_destination(context.group_id)
    if isinstance(context, DirectContext):
        return typing_destination(context.peer_id)
    return PUBLIC_TYPING_DESTINATION


def local_echo_id(sender_id: int) -> str:
    return f"temp-{int(time.time() * 1000)}-{sender_id}-{uuid.uuid4().hex[:5]}"


@dataclass(frozen=True, slots=True)
class PreparedSend:
    echo: Message
    destination: str
    body: str
    headers: dict[str, str]


class OutboundComposer:
    def __init__(
        self,
        transport: BrokerTransport,
        principal: Principal,
        auth: AuthBoundary,
        scheduler: Scheduler,
        *,
        debounce_seconds: float,
        is_connected: Callable[[], bool],
        current_context: Callable[[], ChatContext],
        spawn: Spawn,
        on_error: Callable[[AppError], None],
    ) -> None:
        self._transport = transport
        self._principal = principal
        self._auth = auth
        self._scheduler = scheduler
        self._debounce = debounce_seconds
        self._is_connected = is_connected
        self._current_context = current_context
        self._spawn = spawn
        self._on_error = on_error
        self._typing_timer: TimerHandle | None = None

    def auth_headers(self) -> dict[str, str]:
        token = self._auth.current_credential()
        if not token:
            raise AuthError("No authentication token found")
        return {"Authorization": f"Bearer {token}"}

    async def join(self) -> None:
        await self._publish_control(MessageKind.JOIN, JOIN_DESTINATION)

    async def leave(self) -> None:
        await self._publish_control(MessageKind.LEAVE, LEAVE_DESTINATION)

    def prepare_send(self, content: str, context: ChatContext, message_id: str | None = None) -> PreparedSend:
        """Validate and address a chat message; raises before anything is published."""
        text = content.strip()
        if not text:
            raise ValidationError("Cannot send empty message")
        if not self._is_connected():
            raise NotConnectedError("Cannot send message: not connected")
        headers = self.auth_headers()

        envelope = build_outbound(MessageKind.CHAT, self._principal, context, content=text)
        echo = Message(
            id=message_id or local_echo_id(self._principal.user_id),
            sender_id=self._principal.user_id,
            sender_name=self._principal.username,
            sender_avatar_ref=self._principal.avatar_ref,
            content=text,
            timestamp=envelope.timestamp,
            kind=MessageKind.CHAT,
            recipient_id=context.peer_id if isinstance(context, DirectContext) else None,
            recipient_name=context.peer_name if isinstance(context, DirectContext) else None,
            group_id=context.group_id if isinstance(context, GroupContext) else None,
            group_name=context.group_name if isinstance(context, GroupContext) else None,
            is_local_echo=True,
        )
        return PreparedSend(echo, destination_for_send(context), encode_envelope(envelope), headers)

    async def publish(self, prepared: PreparedSend) -> None:
        await self._transport.publish(prepared.destination, prepared.body, prepared.headers)

    def typing(self) -> None:
        """Record a keystroke; publishes once input pauses for the debounce interval."""
        if not self._is_connected():
            return
        self.cancel_typing()
        self._typing_timer = self._scheduler.call_later(self._debounce, self._fire_typing)

    def cancel_typing(self) -> None:
        if self._typing_timer is not None:
            self._typing_timer.cancel()
            self._typing_timer = None

    def _fire_typing(self) -> None:
        self._typing_timer = None
        if not self._is_connected():
            return
        context = self._current_context()
        try:
            headers = self.auth_headers()
        except AuthError as exc:
            self._on_error(exc)
            return
        body = encode_envelope(build_outbound(
            MessageKind.TYPING, self._principal, context,
            content=f"{self._principal.username} is typing...",
        ))
        self._spawn(self._publish_typing(destination_for_typing(context), body, headers), "typing-publish")

    async def _publish_typing(self, destination: str, body: str, headers: dict[str, str]) -> None:
        try:
            await self._transport.publish(destination, body, headers)
        except AppError as exc:
            self._on_error(exc)

    async def _publish_control(self, kind: MessageKind, destination: str) -> None:
        headers = self.auth_headers()
        body = encode_envelope(build_outbound(kind, self._principal, PUBLIC))
        await self._transport.publish(destination, body, headers)
        logger.debug("Published %s", kind)
