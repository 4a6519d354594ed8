from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class AuthError(AppError):
    """Missing, expired or rejected credential. Fatal to the session."""


class TransportError(AppError):
    pass


class NotConnectedError(TransportError):
    pass


class DecodeError(AppError):
    pass


class ValidationError(AppError):
    pass


class ForbiddenError(AppError):
    pass


class BackendError(AppError):
    pass
