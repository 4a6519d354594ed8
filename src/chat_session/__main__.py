"""Entrypoint: python -m chat_session --user-id 1 --username alice"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
from typing import Sequence

from chat_session.application.dto.notice import Notice
from chat_session.application.dto.principal import Principal
from chat_session.application.ports.observer import NullObserver
from chat_session.config import settings
from chat_session.domain.entities.context import PUBLIC, ChatContext, DirectContext, GroupContext
from chat_session.domain.entities.message import Message
from chat_session.domain.entities.participant import User
from chat_session.domain.value_objects.enums import ConnectionState
from chat_session.infrastructure.auth.credentials import StaticAuthBoundary
from chat_session.infrastructure.bus.redis_broker import RedisBrokerTransport
from chat_session.infrastructure.http.backend import HttpChatBackend
from chat_session.services.session import ChatSession

logger = logging.getLogger("chat_session")


class LoggingObserver(NullObserver):
    """Headless observer: logs what a UI would render."""

    def __init__(self) -> None:
        self._seen: set[str] = set()
        self.closed = asyncio.Event()

    def on_connection_state(self, state: ConnectionState) -> None:
        logger.info("state=%s", state)
        if state == ConnectionState.CLOSED:
            self.closed.set()

    def on_messages(self, messages: Sequence[Message]) -> None:
        for m in messages:
            if m.id in self._seen:
                continue
            self._seen.add(m.id)
            logger.info("[%s] %s: %s", m.kind, m.sender_name, m.content)

    def on_notice(self, notice: Notice) -> None:
        log = logger.error if notice.fatal else logger.warning
        log("%s: %s", notice.category, notice.text)

    def on_roster(self, users: Sequence[User]) -> None:
        logger.info("roster: %s", ", ".join(u.username for u in users) or "-")


def _parse_context(args: argparse.Namespace) -> ChatContext:
    if args.group is not None:
        return GroupContext(args.group)
    if args.peer is not None:
        return DirectContext(args.peer)
    return PUBLIC


async def run_session(args: argparse.Namespace) -> None:
    principal = Principal(user_id=args.user_id, username=args.username)
    auth = StaticAuthBoundary(os.environ.get("CHAT_TOKEN"))
    transport = RedisBrokerTransport(settings.BROKER_URL, heartbeat_seconds=settings.heartbeat_seconds)
    backend = HttpChatBackend(
        settings.API_URL, auth, principal.user_id, timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    observer = LoggingObserver()
    session = ChatSession(principal, transport, backend, auth, observer=observer)

    try:
        await session.start()
        context = _parse_context(args)
        if context != PUBLIC:
            await session.select_context(context)
        await observer.closed.wait()
    except asyncio.CancelledError:
        pass
    finally:
        await session.close()
        await backend.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(prog="chat_session")
    parser.add_argument("--user-id", type=int, required=True)
    parser.add_argument("--username", required=True)
    parser.add_argument("--peer", type=int, help="open a direct conversation with this user id")
    parser.add_argument("--group", type=int, help="open this group")
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run_session(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
