"""Error taxonomy for Demoday operations.

Every failure a caller can act on is a :class:`DemodayError` subclass with a
stable ``code`` and the HTTP status the API answers with. Validation errors
(``InvalidAmount``, ``InsufficientFunds``, ``NotAnAngel``) are expected and
carry a user-facing message; ``Internal`` wraps unexpected persistence
failures and only ever shows a generic message.
"""
from __future__ import annotations


class DemodayError(Exception):
    code = "error"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code)


class NotFound(DemodayError):
    """The requested record does not exist."""
    code = "not_found"
    status_code = 404


class PermissionDenied(DemodayError):
    """You are not allowed to do that."""
    code = "permission_denied"
    status_code = 403


class Conflict(DemodayError):
    """The request conflicts with the current state."""
    code = "conflict"
    status_code = 409


class InsufficientFunds(DemodayError):
    """Not enough remaining balance for this investment."""
    code = "insufficient_funds"
    status_code = 422


class InvalidAmount(DemodayError):
    """Amount must be positive with at most 2 decimal places."""
    code = "invalid_amount"
    status_code = 422


class NotAnAngel(DemodayError):
    """Register as an angel investor before investing."""
    code = "not_an_angel"
    status_code = 403


class AlreadyCalculated(DemodayError):
    """Results for this demoday have already been calculated."""
    code = "already_calculated"
    status_code = 409


class NoPitches(DemodayError):
    """No pitches have been submitted for this demoday."""
    code = "no_pitches"
    status_code = 409


class Internal(DemodayError):
    """Something went wrong on our side. Please try again."""
    code = "internal"
    status_code = 500
