from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """The logged-in user a session acts for."""

    user_id: int
    username: str
    avatar_ref: str | None = None

    @property
    def correlation_id(self) -> str:
        """Value of the ``userId`` connect header."""
        return str(self.user_id)

    def as_ref(self) -> dict[str, object]:
        return {"id": self.user_id, "username": self.username}
