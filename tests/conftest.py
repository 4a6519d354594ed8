"""Shared test fixtures."""
from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

import jwt
import pytest

from chat_session.application.dto.notice import Notice
from chat_session.application.dto.principal import Principal
from chat_session.application.exceptions import AppError, NotConnectedError, TransportError
from chat_session.application.ports.transport import OnClose, OnFrame
from chat_session.config import Settings
from chat_session.domain.entities.context import ChatContext
from chat_session.domain.entities.message import Message
from chat_session.domain.entities.participant import Group, User
from chat_session.domain.value_objects.enums import ConnectionState, MessageKind
from chat_session.services.session import ChatSession

SELF_ID = 1
PEER_ID = 2


def make_token(*, sub: int = SELF_ID, expires_in: int = 3600) -> str:
    return jwt.encode(
        {"sub": str(sub), "exp": int(time.time()) + expires_in},
        "test-secret",
        algorithm="HS256",
    )


def make_envelope(
    *,
    kind: str = "CHAT",
    sender: int = PEER_ID,
    sender_name: str | None = None,
    content: str = "hello",
    recipient: int | None = None,
    group: int | None = None,
    timestamp: str | None = "2024-05-01T10:00:00.000Z",
    **extra: Any,
) -> dict[str, Any]:
    env: dict[str, Any] = {
        "type": kind,
        "content": content,
        "sender": {"id": sender, "username": sender_name or f"user{sender}"},
        "recipient": {"id": recipient, "username": f"user{recipient}"} if recipient is not None else None,
        "group": {"id": group, "groupname": f"group{group}"} if group is not None else None,
    }
    if timestamp is not None:
        env["timestamp"] = timestamp
    env.update(extra)
    return env


def make_message(
    *,
    message_id: str = "m-1",
    sender_id: int = PEER_ID,
    content: str = "hello",
    timestamp: str = "2024-05-01T10:00:00.000Z",
    kind: MessageKind = MessageKind.CHAT,
    recipient_id: int | None = None,
    group_id: int | None = None,
    is_local_echo: bool = False,
) -> Message:
    return Message(
        id=message_id,
        sender_id=sender_id,
        sender_name=f"user{sender_id}",
        sender_avatar_ref=None,
        content=content,
        timestamp=timestamp,
        kind=kind,
        recipient_id=recipient_id,
        group_id=group_id,
        is_local_echo=is_local_echo,
    )


@dataclass(eq=False)
class ManualTimer:
    due: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class ManualScheduler:
    """Deterministic scheduler; time only moves on ``advance``."""

    current: float = 0.0
    _timers: list[ManualTimer] = field(default_factory=list)

    def now(self) -> float:
        return self.current

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.current + delay, callback)
        self._timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        target = self.current + seconds
        while True:
            due = [t for t in self._timers if not t.cancelled and t.due <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self._timers.remove(timer)
            self.current = max(self.current, timer.due)
            timer.callback()
        self.current = target

    @property
    def pending(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled)


@dataclass(eq=False)
class FakeSubscription:
    transport: FakeTransport
    channel: str
    handler: OnFrame
    fail_on_cancel: bool = False

    async def unsubscribe(self) -> None:
        self.transport.unsubscribe_calls.append(self.channel)
        if self in self.transport.subscriptions:
            self.transport.subscriptions.remove(self)
        if self.fail_on_cancel:
            raise TransportError("already torn down")


@dataclass
class FakeTransport:
    connected: bool = False
    closed: bool = False
    fail_connect: int = 0
    fail_publish: bool = False
    on_close: OnClose | None = None
    on_publish: Callable[[str, dict[str, Any]], None] | None = None
    connect_headers: list[dict[str, str]] = field(default_factory=list)
    subscriptions: list[FakeSubscription] = field(default_factory=list)
    subscribe_calls: list[str] = field(default_factory=list)
    unsubscribe_calls: list[str] = field(default_factory=list)
    published: list[tuple[str, dict[str, Any], dict[str, str]]] = field(default_factory=list)

    async def connect(self, headers: Mapping[str, str], on_close: OnClose) -> None:
        self.connect_headers.append(dict(headers))
        if self.fail_connect > 0:
            self.fail_connect -= 1
            raise TransportError("connection refused")
        self.connected = True
        self.on_close = on_close

    async def subscribe(self, channel: str, handler: OnFrame) -> FakeSubscription:
        if not self.connected:
            raise NotConnectedError("not connected")
        sub = FakeSubscription(self, channel, handler)
        self.subscriptions.append(sub)
        self.subscribe_calls.append(channel)
        return sub

    async def publish(self, destination: str, body: str, headers: Mapping[str, str]) -> None:
        if self.fail_publish or not self.connected:
            raise TransportError("publish failed")
        payload = json.loads(body)
        if self.on_publish is not None:
            self.on_publish(destination, payload)
        self.published.append((destination, payload, dict(headers)))

    async def close(self) -> None:
        self.connected = False
        self.closed = True
        self.subscriptions.clear()

    def drop(self, reason: str = "socket closed") -> None:
        """Simulate the broker connection going away."""
        self.connected = False
        self.subscriptions.clear()
        on_close, self.on_close = self.on_close, None
        if on_close is not None:
            on_close(reason)

    async def deliver(self, channel: str, payload: dict[str, Any] | str) -> None:
        body = payload if isinstance(payload, str) else json.dumps(payload)
        for sub in [s for s in self.subscriptions if s.channel == channel]:
            await sub.handler(body)

    @property
    def channels(self) -> list[str]:
        return [s.channel for s in self.subscriptions]

    def published_to(self, destination: str) -> list[dict[str, Any]]:
        return [body for dest, body, _ in self.published if dest == destination]


@dataclass
class FakeBackend:
    users: list[User] = field(default_factory=list)
    groups: list[Group] = field(default_factory=list)
    history: dict[str, list[Message]] = field(default_factory=dict)
    admin: dict[int, bool] = field(default_factory=dict)
    members: dict[int, list[User]] = field(default_factory=dict)
    error: AppError | None = None
    on_fetch_history: Callable[[ChatContext], Awaitable[None]] | None = None
    calls: list[str] = field(default_factory=list)

    def _check(self, call: str) -> None:
        self.calls.append(call)
        if self.error is not None:
            raise self.error

    async def fetch_active_users(self) -> list[User]:
        self._check("users")
        return list(self.users)

    async def fetch_user_groups(self) -> list[Group]:
        self._check("groups")
        return list(self.groups)

    async def fetch_history(self, context: ChatContext) -> list[Message]:
        self._check(f"history:{context.key}")
        hook, self.on_fetch_history = self.on_fetch_history, None
        if hook is not None:
            await hook(context)
        return list(self.history.get(context.key, []))

    async def fetch_is_group_admin(self, group_id: int) -> bool:
        self._check(f"admin:{group_id}")
        return self.admin.get(group_id, False)

    async def fetch_group_members(self, group_id: int) -> list[User]:
        self._check(f"members:{group_id}")
        return list(self.members.get(group_id, []))


@dataclass
class FakeAuth:
    token: str | None = field(default_factory=make_token)
    failures: int = 0

    def current_credential(self) -> str | None:
        return self.token

    def on_auth_failure(self) -> None:
        self.failures += 1
        self.token = None


@dataclass
class RecordingObserver:
    states: list[ConnectionState] = field(default_factory=list)
    contexts: list[ChatContext] = field(default_factory=list)
    message_snapshots: list[list[Message]] = field(default_factory=list)
    typing_snapshots: list[list[int]] = field(default_factory=list)
    notices: list[Notice] = field(default_factory=list)
    rosters: list[list[User]] = field(default_factory=list)
    group_lists: list[list[Group]] = field(default_factory=list)
    members: dict[int, list[User]] = field(default_factory=dict)
    admin: dict[int, bool] = field(default_factory=dict)

    def on_connection_state(self, state: ConnectionState) -> None:
        self.states.append(state)

    def on_context(self, context: ChatContext) -> None:
        self.contexts.append(context)

    def on_messages(self, messages) -> None:
        self.message_snapshots.append(list(messages))

    def on_typing(self, signals) -> None:
        self.typing_snapshots.append([s.sender_id for s in signals])

    def on_notice(self, notice: Notice) -> None:
        self.notices.append(notice)

    def on_roster(self, users) -> None:
        self.rosters.append(list(users))

    def on_groups(self, groups) -> None:
        self.group_lists.append(list(groups))

    def on_group_members(self, group_id: int, members) -> None:
        self.members[group_id] = list(members)

    def on_group_admin(self, group_id: int, is_admin: bool) -> None:
        self.admin[group_id] = is_admin


@pytest.fixture
def principal() -> Principal:
    return Principal(user_id=SELF_ID, username="alice")


@pytest.fixture
def settings() -> Settings:
    return Settings(ECHO_RECONCILE=True, RECONNECT_MAX_ATTEMPTS=None, RECONNECT_BACKOFF_MULTIPLIER=1.0)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def auth() -> FakeAuth:
    return FakeAuth()


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def session(principal, transport, backend, auth, observer, scheduler, settings) -> ChatSession:
    return ChatSession(
        principal,
        transport,
        backend,
        auth,
        observer=observer,
        scheduler=scheduler,
        settings=settings,
    )


async def start_session(session: ChatSession) -> ChatSession:
    await session.start()
    await session.wait_idle()
    return session
