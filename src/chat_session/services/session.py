"""The realtime chat session: one broker connection, one active context."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Coroutine, TypeVar

from chat_session.application.dto.notice import Notice
from chat_session.application.dto.principal import Principal
from chat_session.application.exceptions import (
    AppError,
    AuthError,
    BackendError,
    ForbiddenError,
    NotConnectedError,
    TransportError,
)
from chat_session.application.ports.auth import AuthBoundary
from chat_session.application.ports.backend import ChatBackend
from chat_session.application.ports.clock import Scheduler
from chat_session.application.ports.observer import NullObserver, SessionObserver
from chat_session.application.ports.transport import BrokerTransport
from chat_session.config import Settings, settings as default_settings
from chat_session.domain.entities.context import PUBLIC, ChatContext, GroupContext
from chat_session.domain.entities.message import Message
from chat_session.domain.entities.typing_signal import TypingSignal
from chat_session.domain.value_objects.channels import errors_channel
from chat_session.domain.value_objects.enums import ConnectionState, MessageKind, NoticeCategory
from chat_session.infrastructure.scheduling import AsyncioScheduler
from chat_session.services.composer import OutboundComposer
from chat_session.services.connection import ConnectionStateMachine
from chat_session.services.echo import EchoLedger
from chat_session.services.router import InboundRouter
from chat_session.services.timeline import MessageTimeline
from chat_session.services.topology import SubscriptionTopology
from chat_session.services.typing_tracker import TypingTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChatSession:
    """Owns the connection state and the active context of one logged-in user.

    Callers only request transitions (``start``, ``select_context``, ``send``,
    ``notify_typing``, ``close``); derived state is pushed to the observer.
    A closed session is not reusable: log in again with a new instance.
    """

    def __init__(
        self,
        principal: Principal,
        transport: BrokerTransport,
        backend: ChatBackend,
        auth: AuthBoundary,
        *,
        observer: SessionObserver | None = None,
        scheduler: Scheduler | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._principal = principal
        self._backend = backend
        self._auth = auth
        self._observer = observer or NullObserver()
        self._scheduler = scheduler or AsyncioScheduler()
        self._settings = settings or default_settings

        self._context: ChatContext = PUBLIC
        self._generation = 0
        self._closed = False
        self._tasks: set[asyncio.Task[None]] = set()

        self._timeline = MessageTimeline()
        self._echoes = EchoLedger(self._settings.echo_window_seconds) if self._settings.ECHO_RECONCILE else None
        self._typing = TypingTracker(
            self._scheduler, self._settings.typing_expiry_seconds, self._publish_typing,
        )
        self._router = InboundRouter(self, principal.user_id)
        self._topology = SubscriptionTopology(transport, principal.user_id, self._on_frame)
        self._composer = OutboundComposer(
            transport,
            principal,
            auth,
            self._scheduler,
            debounce_seconds=self._settings.typing_debounce_seconds,
            is_connected=lambda: self._connection.is_connected,
            current_context=lambda: self._context,
            spawn=self._spawn,
            on_error=self._on_background_error,
        )
        self._connection = ConnectionStateMachine(
            transport,
            auth,
            principal,
            self._topology,
            self._composer,
            self._scheduler,
            self._settings,
            current_context=lambda: self._context,
            spawn=self._spawn,
            notify=self.notify,
            on_state=self._observer.on_connection_state,
            on_fatal=self._on_fatal,
        )

    # -- read-only state --------------------------------------------------

    @property
    def principal(self) -> Principal:
        return self._principal

    @property
    def context(self) -> ChatContext:
        return self._context

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def close_reason(self) -> str | None:
        return self._connection.close_reason

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._timeline.messages

    @property
    def typing_users(self) -> list[TypingSignal]:
        return self._typing.active(self._context.key)

    @property
    def active_channels(self) -> frozenset[str]:
        return self._topology.active_channels

    # -- transitions ------------------------------------------------------

    async def start(self) -> None:
        """Connect, then load roster, groups and the active context's history.

        History is fetched after the context's subscriptions are in place so
        nothing published in between is lost.
        """
        self.refresh_roster()
        self.refresh_groups()
        generation = self._generation
        await self._connection.connect()
        if not self._closed:
            await self._load_history(self._context, generation)

    async def select_context(self, context: ChatContext) -> None:
        if self._closed:
            logger.warning("select_context() on a closed session ignored")
            return
        self._generation += 1
        generation = self._generation
        # Switch and clear in one step so nothing lands in the wrong list.
        self._context = context
        self._timeline.clear()
        if self._echoes is not None:
            self._echoes.clear()
        self._typing.clear()
        self._composer.cancel_typing()
        self._observer.on_context(context)
        self._observer.on_messages(self._timeline.messages)

        try:
            await self._topology.converge(context)
        except TransportError as exc:
            self.notify(Notice(NoticeCategory.TRANSPORT, f"Failed to subscribe: {exc.detail}"))
        if isinstance(context, GroupContext):
            self.refresh_group_details(context.group_id)
        await self._load_history(context, generation)

    async def send(self, content: str, *, message_id: str | None = None) -> Message | None:
        """Publish a chat message to the active context.

        Blank content raises ``ValidationError`` before anything happens. Other
        failures become notices and return None. The local echo is in
        ``messages`` before the publish completes.
        """
        context = self._context
        try:
            prepared = self._composer.prepare_send(content, context, message_id)
        except NotConnectedError as exc:
            self.notify(Notice(NoticeCategory.TRANSPORT, exc.detail))
            return None
        except AuthError as exc:
            await self._on_fatal(exc)
            return None

        echo = prepared.echo
        self._timeline.append(echo)
        if self._echoes is not None:
            self._echoes.track(echo, context.key, self._scheduler.now())
        self._publish_messages()

        try:
            await self._composer.publish(prepared)
        except TransportError as exc:
            logger.warning("Publish of %s failed: %s", echo.id, exc.detail)
            if self._echoes is not None:
                self._echoes.forget(echo.id)
            if self._timeline.remove(echo.id):
                self._publish_messages()
            self.notify(Notice(NoticeCategory.TRANSPORT, "Failed to send message"))
            return None
        return echo

    def notify_typing(self) -> None:
        """Call on every keystroke in the composer input."""
        self._composer.typing()

    def refresh_roster(self) -> None:
        self._spawn(self._refresh_roster(), "refresh-roster")

    def refresh_groups(self) -> None:
        self._spawn(self._refresh_groups(), "refresh-groups")

    def refresh_group_details(self, group_id: int) -> None:
        self._spawn(self._refresh_members(group_id), f"refresh-members-{group_id}")
        self._spawn(self._refresh_admin(group_id), f"refresh-admin-{group_id}")

    async def close(self, reason: str = "logout") -> None:
        if self._closed:
            return
        self._closed = True
        self._typing.close()
        if self._echoes is not None:
            self._echoes.clear()
        await self._connection.close(reason)
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        logger.info("Session for user %s closed (%s)", self._principal.user_id, reason)

    async def wait_idle(self) -> None:
        """Wait for background fetches and publishes spawned so far."""
        current = asyncio.current_task()
        while True:
            pending = [t for t in self._tasks if t is not current and not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # -- router effects ---------------------------------------------------

    def raise_typing(self, message: Message, context_key: str) -> None:
        assert message.sender_id is not None
        self._typing.refresh(message.sender_id, message.sender_name, context_key)

    def deliver(self, message: Message) -> None:
        if (
            self._echoes is not None
            and message.kind == MessageKind.CHAT
            and message.sender_id == self._principal.user_id
        ):
            key = message.context_key(self._principal.user_id)
            echo = self._echoes.match(message, key, self._scheduler.now())
            if echo is not None:
                if self._timeline.contains(message):
                    # Server copy already listed (history overlap); the echo is redundant.
                    if self._timeline.remove(echo.id):
                        self._publish_messages()
                    return
                if self._timeline.replace(echo.id, echo.confirmed(message)):
                    self._publish_messages()
                    return
        if self._timeline.append(message):
            self._publish_messages()

    def notify(self, notice: Notice) -> None:
        self._observer.on_notice(notice)

    # -- internals --------------------------------------------------------

    async def _on_frame(self, channel: str, body: str) -> None:
        if channel == errors_channel(self._principal.user_id):
            self._router.route_error(channel, body)
        else:
            await self._router.route(channel, body)

    async def _load_history(self, context: ChatContext, generation: int) -> None:
        history = await self._call_backend("load messages", self._backend.fetch_history(context))
        if history is None:
            return
        if generation != self._generation:
            logger.debug("Discarding stale history for %s", context.key)
            return
        if self._echoes is not None:
            for echo in self._echoes.settle(history, context.key, self._scheduler.now()):
                self._timeline.remove(echo.id)
        self._timeline.merge_history(history)
        self._publish_messages()

    async def _refresh_roster(self) -> None:
        users = await self._call_backend("fetch users", self._backend.fetch_active_users())
        if users is not None:
            self._observer.on_roster(users)

    async def _refresh_groups(self) -> None:
        groups = await self._call_backend("fetch groups", self._backend.fetch_user_groups())
        if groups is not None:
            self._observer.on_groups(groups)

    async def _refresh_members(self, group_id: int) -> None:
        members = await self._call_backend("fetch group members", self._backend.fetch_group_members(group_id))
        if members is not None:
            self._observer.on_group_members(group_id, members)

    async def _refresh_admin(self, group_id: int) -> None:
        is_admin = await self._call_backend("check admin status", self._backend.fetch_is_group_admin(group_id))
        if is_admin is not None:
            self._observer.on_group_admin(group_id, is_admin)

    async def _call_backend(self, action: str, call: Awaitable[T]) -> T | None:
        try:
            return await call
        except AuthError as exc:
            await self._on_fatal(exc)
        except (BackendError, ForbiddenError) as exc:
            logger.warning("Failed to %s: %s", action, exc.detail)
            self.notify(Notice(NoticeCategory.BACKEND, exc.detail or f"Failed to {action}"))
        return None

    async def _on_fatal(self, exc: AppError) -> None:
        if self._closed:
            return
        if isinstance(exc, AuthError):
            logger.warning("Authentication failure: %s", exc.detail)
            self.notify(Notice(NoticeCategory.AUTH, exc.detail, fatal=True))
            self._auth.on_auth_failure()
            await self.close(f"auth: {exc.detail}")
        else:
            logger.error("Fatal session error: %s", exc.detail)
            self.notify(Notice(NoticeCategory.TRANSPORT, exc.detail, fatal=True))
            await self.close(exc.detail)

    def _on_background_error(self, exc: AppError) -> None:
        if isinstance(exc, AuthError):
            self._spawn(self._on_fatal(exc), "auth-failure")
        else:
            self.notify(Notice(NoticeCategory.TRANSPORT, exc.detail))

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        if self._closed:
            coro.close()
            return
        task = asyncio.create_task(coro, name=f"chat-session-{name}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task %s failed", task.get_name(), exc_info=task.exception())

    def _publish_messages(self) -> None:
        self._observer.on_messages(self._timeline.messages)

    def _publish_typing(self) -> None:
        self._observer.on_typing(self.typing_users)
