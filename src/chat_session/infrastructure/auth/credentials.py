"""Client-side credential checks before connecting."""
from __future__ import annotations

import logging
import time
from typing import Any, Callable

import jwt

from chat_session.application.exceptions import AuthError

logger = logging.getLogger(__name__)


def check_credential(token: str | None, *, now: float | None = None) -> dict[str, Any]:
    """Return the token's claims, or raise ``AuthError`` if it is missing, unreadable or expired.

    The signature is not verified here; the broker does that at connect time.
    A token without ``exp`` is accepted.
    """
    if not token:
        raise AuthError("No authentication token found")
    try:
        claims = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.PyJWTError as exc:
        raise AuthError("Invalid authentication token. Please log in again.") from exc
    exp = claims.get("exp")
    if exp is None:
        return claims
    try:
        expires_at = float(exp)
    except (TypeError, ValueError) as exc:
        raise AuthError("Invalid authentication token. Please log in again.") from exc
    if expires_at < (time.time() if now is None else now):
        raise AuthError("Authentication token expired. Please log in again.")
    return claims


class StaticAuthBoundary:
    """Holds a token in memory; ``on_auth_failure`` drops it and runs an optional hook."""

    def __init__(self, token: str | None, on_failure: Callable[[], None] | None = None) -> None:
        self._token = token
        self._on_failure = on_failure
        self.failed = False

    def current_credential(self) -> str | None:
        return self._token

    def on_auth_failure(self) -> None:
        logger.warning("Authentication failed; discarding credential")
        self._token = None
        self.failed = True
        if self._on_failure is not None:
            self._on_failure()
