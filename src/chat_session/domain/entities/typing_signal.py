from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class TypingSignal:
    sender_id: int
    sender_name: str
    context_key: str
    refreshed_at: float

    @property
    def key(self) -> tuple[int, str]:
        return self.sender_id, self.context_key
