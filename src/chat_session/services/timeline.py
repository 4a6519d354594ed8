"""Ordered message list of the active context."""
from __future__ import annotations

from typing import Iterable

from chat_session.domain.entities.message import Message


class MessageTimeline:
    """Messages in receipt order, deduplicated by id and fingerprint."""

    def __init__(self) -> None:
        self._messages: list[Message] = []

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def contains(self, message: Message) -> bool:
        return any(
            m.id == message.id or m.fingerprint == message.fingerprint
            for m in self._messages
        )

    def append(self, message: Message) -> bool:
        if self.contains(message):
            return False
        self._messages.append(message)
        return True

    def replace(self, message_id: str, message: Message) -> bool:
        """Swap the message with ``message_id`` in place. Returns False if absent."""
        for i, m in enumerate(self._messages):
            if m.id == message_id:
                self._messages[i] = message
                return True
        return False

    def remove(self, message_id: str) -> bool:
        before = len(self._messages)
        self._messages = [m for m in self._messages if m.id != message_id]
        return len(self._messages) != before

    def merge_history(self, history: Iterable[Message]) -> None:
        """Put fetched history first, keeping live messages it does not already hold."""
        merged: list[Message] = []
        ids: set[str] = set()
        fingerprints: set[tuple[int | None, str, str]] = set()
        for m in history:
            if m.id in ids or m.fingerprint in fingerprints:
                continue
            merged.append(m)
            ids.add(m.id)
            fingerprints.add(m.fingerprint)
        for m in self._messages:
            if m.id in ids or m.fingerprint in fingerprints:
                continue
            merged.append(m)
        self._messages = merged

    def clear(self) -> None:
        self._messages.clear()
