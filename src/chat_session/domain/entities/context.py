"""The conversation scope a client is currently viewing."""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class PublicContext:
    @property
    def key(self) -> str:
        return "public"


@dataclass(frozen=True, slots=True)
class DirectContext:
    peer_id: int
    peer_name: str = field(default="", compare=False)

    @property
    def key(self) -> str:
        return f"direct:{self.peer_id}"


@dataclass(frozen=True, slots=True)
class GroupContext:
    group_id: int
    group_name: str = field(default="", compare=False)

    @property
    def key(self) -> str:
        return f"group:{self.group_id}"


ChatContext = PublicContext | DirectContext | GroupContext

PUBLIC = PublicContext()
