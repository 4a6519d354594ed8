"""Connect / reconnect lifecycle of the broker connection."""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Coroutine

from chat_session.application.dto.notice import Notice
from chat_session.application.dto.principal import Principal
from chat_session.application.exceptions import AppError, AuthError, TransportError
from chat_session.application.ports.auth import AuthBoundary
from chat_session.application.ports.clock import Scheduler, TimerHandle
from chat_session.application.ports.transport import BrokerTransport
from chat_session.config import Settings
from chat_session.domain.entities.context import ChatContext
from chat_session.domain.value_objects.enums import ConnectionState, NoticeCategory
from chat_session.infrastructure.auth.credentials import check_credential
from chat_session.services.composer import OutboundComposer, Spawn
from chat_session.services.topology import SubscriptionTopology

logger = logging.getLogger(__name__)

OnFatal = Callable[[AppError], Coroutine[Any, Any, None]]


class ConnectionStateMachine:
    """DISCONNECTED → CONNECTING → CONNECTED ⇄ RECONNECTING, any → CLOSED.

    Transport loss moves CONNECTED to RECONNECTING and schedules a retry after
    a fixed delay, forever unless the backoff settings say otherwise. CLOSED is
    terminal. Every transport callback is tagged with the connect attempt it
    belongs to, so callbacks from a superseded connection are ignored.
    """

    def __init__(
        self,
        transport: BrokerTransport,
        auth: AuthBoundary,
        principal: Principal,
        topology: SubscriptionTopology,
        composer: OutboundComposer,
        scheduler: Scheduler,
        settings: Settings,
        *,
        current_context: Callable[[], ChatContext],
        spawn: Spawn,
        notify: Callable[[Notice], None],
        on_state: Callable[[ConnectionState], None],
        on_fatal: OnFatal,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._transport = transport
        self._auth = auth
        self._principal = principal
        self._topology = topology
        self._composer = composer
        self._scheduler = scheduler
        self._settings = settings
        self._current_context = current_context
        self._spawn = spawn
        self._notify = notify
        self._on_state = on_state
        self._on_fatal = on_fatal
        self._wall_clock = wall_clock

        self._state = ConnectionState.DISCONNECTED
        self._epoch = 0
        self._attempt = 0
        self._retry_timer: TimerHandle | None = None
        self.close_reason: str | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def attempt(self) -> int:
        return self._attempt

    async def connect(self) -> None:
        if self._state not in (ConnectionState.DISCONNECTED, ConnectionState.RECONNECTING):
            logger.debug("connect() ignored in state %s", self._state)
            return

        token = self._auth.current_credential()
        try:
            check_credential(token, now=self._wall_clock())
            if self._principal.user_id is None:
                raise AuthError("Current user ID is missing. Please log in again.")
        except AuthError as exc:
            await self._on_fatal(exc)
            return

        self._epoch += 1
        epoch = self._epoch
        self._set_state(ConnectionState.CONNECTING)
        headers = {
            "Authorization": f"Bearer {token}",
            "userId": self._principal.correlation_id,
            "content-type": "application/json",
        }
        try:
            await self._transport.connect(headers, lambda reason: self._on_transport_closed(epoch, reason))
        except TransportError as exc:
            if epoch != self._epoch:
                return
            logger.warning("Connect attempt failed: %s", exc.detail)
            self._notify(Notice(NoticeCategory.TRANSPORT, f"WebSocket connection failed: {exc.detail}"))
            self._schedule_reconnect()
            return

        if epoch != self._epoch:
            # Closed while the handshake was in flight.
            await self._close_transport()
            return

        self._attempt = 0
        self._set_state(ConnectionState.CONNECTED)
        try:
            await self._topology.establish(self._current_context())
            await self._composer.join()
        except AuthError as exc:
            await self._on_fatal(exc)
        except TransportError as exc:
            # A dropped transport reports itself through on_close.
            logger.warning("Post-connect setup failed: %s", exc.detail)
            self._notify(Notice(NoticeCategory.TRANSPORT, f"Failed to set up subscriptions: {exc.detail}"))

    async def close(self, reason: str = "logout") -> None:
        if self._state == ConnectionState.CLOSED:
            return
        was_connected = self.is_connected
        self._epoch += 1
        self._cancel_retry()
        self._composer.cancel_typing()
        self.close_reason = reason
        self._set_state(ConnectionState.CLOSED)

        if was_connected:
            try:
                await self._composer.leave()
            except AppError as exc:
                logger.info("LEAVE not published: %s", exc.detail)
        await self._topology.teardown()
        await self._close_transport()

    def _on_transport_closed(self, epoch: int, reason: str) -> None:
        if epoch != self._epoch or self._state not in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return
        logger.warning("Broker connection lost: %s", reason)
        self._topology.invalidate()
        self._notify(Notice(NoticeCategory.TRANSPORT, f"WebSocket closed: {reason}"))
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        self._attempt += 1
        max_attempts = self._settings.RECONNECT_MAX_ATTEMPTS
        if max_attempts is not None and self._attempt > max_attempts:
            logger.error("Giving up after %d reconnect attempt(s)", max_attempts)
            self._spawn(
                self._on_fatal(TransportError(f"Reconnect failed after {max_attempts} attempt(s)")),
                "reconnect-exhausted",
            )
            return
        delay = self._settings.reconnect_delay_seconds(self._attempt)
        self._set_state(ConnectionState.RECONNECTING)
        logger.info("Reconnecting in %.1fs (attempt %d)", delay, self._attempt)
        self._cancel_retry()
        self._retry_timer = self._scheduler.call_later(delay, self._retry)

    def _retry(self) -> None:
        self._retry_timer = None
        if self._state != ConnectionState.RECONNECTING:
            return
        self._spawn(self.connect(), "reconnect")

    def _cancel_retry(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    async def _close_transport(self) -> None:
        try:
            await self._transport.close()
        except TransportError as exc:
            logger.info("Transport close failed: %s", exc.detail)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.info("Connection %s → %s", self._state, state)
        self._state = state
        self._on_state(state)
