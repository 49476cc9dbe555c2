"""
core/errors.py -- Error taxonomy for the authentication workflow.

Every error the core raises on purpose derives from AuthError and carries
the HTTP status and stable error code the API layer responds with. The
exception handler in api/main.py turns any AuthError into the standard
{"error": {...}} envelope, so route handlers never build error responses
by hand.

Deliberately ambiguous errors:
  InvalidCredentials covers both "no such user" and "wrong password".
  InvalidOrExpiredToken covers both "unknown token" and "expired token".
Neither message may be made more specific.
"""

from __future__ import annotations

from typing import Any


class AuthError(Exception):
    """Base class for workflow errors mapped to HTTP responses."""

    status_code: int = 400
    error_code: str = "bad_request"
    default_message: str = "Bad request."

    def __init__(self, message: str | None = None, *, detail: Any = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class ValidationError(AuthError):
    status_code = 400
    error_code = "validation_error"
    default_message = "Request validation failed."


class Conflict(AuthError):
    status_code = 400
    error_code = "conflict"
    default_message = "User already exists."


class InvalidCredentials(AuthError):
    status_code = 401
    error_code = "invalid_credentials"
    default_message = "Invalid credentials."


class NotFound(AuthError):
    status_code = 400
    error_code = "not_found"
    default_message = "User not found."


class InvalidOrExpiredToken(AuthError):
    status_code = 400
    error_code = "invalid_or_expired_token"
    default_message = "Invalid or expired token."


class ServerError(AuthError):
    """Unexpected store or infrastructure failure.

    The message is what the client sees -- keep it generic. The underlying
    exception is chained (raise ... from exc) and logged where it is caught.
    """

    status_code = 500
    error_code = "server_error"
    default_message = "Server error."
