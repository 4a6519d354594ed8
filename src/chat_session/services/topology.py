"""Keeps the broker subscription set in line with the active context."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Coroutine

from chat_session.application.exceptions import TransportError
from chat_session.application.ports.transport import BrokerTransport, SubscriptionHandle
from chat_session.domain.entities.context import PUBLIC, ChatContext, GroupContext, PublicContext
from chat_session.domain.value_objects.channels import PUBLIC_CHANNEL, group_channel, self_channels

logger = logging.getLogger(__name__)

OnChannelFrame = Callable[[str, str], Coroutine[Any, Any, None]]


@dataclass(eq=False, slots=True)
class Subscription:
    channel: str
    handle: SubscriptionHandle | None = None


class SubscriptionTopology:
    """Converges active subscriptions to::

        {inbox, errors, typing} ∪ {public if Public} ∪ {group:{id} if Group}

    Direct contexts need no extra channel; direct delivery arrives on the inbox.
    Frames are passed to ``dispatch(channel, body)`` only while the subscription
    that received them is still the active one for its channel.
    """

    def __init__(self, transport: BrokerTransport, user_id: int, dispatch: OnChannelFrame) -> None:
        self._transport = transport
        self._user_id = user_id
        self._dispatch = dispatch
        self._active: dict[str, Subscription] = {}
        self._desired: ChatContext = PUBLIC
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def active_channels(self) -> frozenset[str]:
        return frozenset(self._active)

    @property
    def desired_context(self) -> ChatContext:
        return self._desired

    def desired_channels(self, context: ChatContext) -> set[str]:
        channels = set(self_channels(self._user_id))
        if isinstance(context, PublicContext):
            channels.add(PUBLIC_CHANNEL)
        elif isinstance(context, GroupContext):
            channels.add(group_channel(context.group_id))
        return channels

    async def establish(self, context: ChatContext) -> None:
        """Subscribe everything for a fresh connection."""
        self._connected = True
        await self.converge(context)

    async def converge(self, context: ChatContext) -> None:
        self._desired = context
        if not self._connected:
            logger.debug("Not connected; recorded desired context %s", context.key)
            return
        async with self._lock:
            # Re-read: a newer converge may have queued behind us.
            desired = self.desired_channels(self._desired)
            for channel in sorted(set(self._active) - desired):
                await self._cancel(self._active.pop(channel))
            for channel in sorted(desired - set(self._active)):
                if not self._connected:
                    return
                await self._open(channel)

    def invalidate(self) -> None:
        """Forget all handles after the transport dropped; keep the desired context."""
        self._connected = False
        if self._active:
            logger.info("Invalidating %d subscription(s) after transport loss", len(self._active))
        self._active.clear()

    async def teardown(self) -> None:
        self._connected = False
        async with self._lock:
            subs = list(self._active.values())
            self._active.clear()
            for sub in subs:
                await self._cancel(sub)

    async def _open(self, channel: str) -> None:
        sub = Subscription(channel)
        self._active[channel] = sub

        async def _handler(body: str) -> None:
            if self._active.get(channel) is not sub:
                logger.debug("Dropping late frame from cancelled subscription %s", channel)
                return
            await self._dispatch(channel, body)

        try:
            sub.handle = await self._transport.subscribe(channel, _handler)
        except TransportError:
            if self._active.get(channel) is sub:
                del self._active[channel]
            raise
        logger.debug("Subscribed %s", channel)

    async def _cancel(self, sub: Subscription) -> None:
        if sub.handle is None:
            return
        try:
            await sub.handle.unsubscribe()
            logger.debug("Unsubscribed %s", sub.channel)
        except Exception:
            logger.warning("Failed to cancel subscription %s", sub.channel, exc_info=True)
