"""Pending local echoes waiting for their server-confirmed copy."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from chat_session.domain.entities.message import Message
from chat_session.domain.value_objects.enums import MessageKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PendingEcho:
    message: Message
    context_key: str
    sent_at: float


class EchoLedger:
    def __init__(self, window_seconds: float) -> None:
        self._window = window_seconds
        self._pending: list[PendingEcho] = []

    def __len__(self) -> int:
        return len(self._pending)

    def track(self, message: Message, context_key: str, now: float) -> None:
        self._pending.append(PendingEcho(message, context_key, now))

    def forget(self, message_id: str) -> None:
        self._pending = [p for p in self._pending if p.message.id != message_id]

    def match(self, incoming: Message, context_key: str, now: float) -> Message | None:
        """Pop the oldest pending echo the incoming copy confirms, if any."""
        self._prune(now)
        for i, pending in enumerate(self._pending):
            echo = pending.message
            if (
                echo.sender_id == incoming.sender_id
                and echo.content == incoming.content
                and pending.context_key == context_key
            ):
                del self._pending[i]
                logger.debug("Local echo %s confirmed by %s", echo.id, incoming.id)
                return echo
        return None

    def settle(self, history: Iterable[Message], context_key: str, now: float) -> list[Message]:
        """Pop every pending echo whose server copy is already in fetched history."""
        settled = []
        for item in history:
            if item.kind != MessageKind.CHAT:
                continue
            echo = self.match(item, context_key, now)
            if echo is not None:
                settled.append(echo)
        return settled

    def clear(self) -> None:
        self._pending.clear()

    def _prune(self, now: float) -> None:
        # Expired echoes stay in the timeline as unconfirmed.
        self._pending = [p for p in self._pending if now - p.sent_at <= self._window]
