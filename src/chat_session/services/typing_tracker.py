"""Ephemeral typing indicators with per-key expiry timers."""
from __future__ import annotations

import logging
from typing import Callable

from chat_session.application.ports.clock import Scheduler, TimerHandle
from chat_session.domain.entities.typing_signal import TypingSignal

logger = logging.getLogger(__name__)


class TypingTracker:
    """Tracks who is typing where.

    Each ``(sender_id, context_key)`` owns one expiry timer; a refresh replaces it.
    ``on_change`` runs whenever the set of live signals changes.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        expiry_seconds: float,
        on_change: Callable[[], None],
    ) -> None:
        self._scheduler = scheduler
        self._expiry = expiry_seconds
        self._on_change = on_change
        self._signals: dict[tuple[int, str], TypingSignal] = {}
        self._timers: dict[tuple[int, str], TimerHandle] = {}
        self._closed = False

    def refresh(self, sender_id: int, sender_name: str, context_key: str) -> None:
        if self._closed:
            return
        signal = TypingSignal(sender_id, sender_name, context_key, self._scheduler.now())
        key = signal.key
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        is_new = key not in self._signals
        self._signals[key] = signal
        self._timers[key] = self._scheduler.call_later(self._expiry, lambda: self._expire(key))
        if is_new:
            self._on_change()

    def active(self, context_key: str) -> list[TypingSignal]:
        return [s for s in self._signals.values() if s.context_key == context_key]

    def is_typing(self, sender_id: int, context_key: str) -> bool:
        return (sender_id, context_key) in self._signals

    def clear(self) -> None:
        """Drop every signal and cancel every pending expiry."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        had_signals = bool(self._signals)
        self._signals.clear()
        if had_signals and not self._closed:
            self._on_change()

    def close(self) -> None:
        self.clear()
        self._closed = True

    def _expire(self, key: tuple[int, str]) -> None:
        if self._closed:
            return
        self._timers.pop(key, None)
        if self._signals.pop(key, None) is not None:
            logger.debug("Typing signal expired: %s", key)
            self._on_change()
