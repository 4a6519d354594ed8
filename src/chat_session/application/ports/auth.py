from __future__ import annotations

from typing import Protocol


class AuthBoundary(Protocol):
    def current_credential(self) -> str | None: ...

    def on_auth_failure(self) -> None:
        """Force logout: drop stored credentials and leave the session."""
        ...
