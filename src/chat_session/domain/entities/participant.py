from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class User:
    id: int
    username: str
    email: str | None = None
    online: bool = False
    status: str = "active"
    avatar_ref: str | None = None


@dataclass(frozen=True, slots=True)
class Group:
    id: int
    groupname: str
    creator_id: int | None = None
    members: tuple[User, ...] = ()
    admin_ids: tuple[int, ...] = field(default=())
    avatar_ref: str | None = None

    def has_member(self, user_id: int) -> bool:
        return any(m.id == user_id for m in self.members)
