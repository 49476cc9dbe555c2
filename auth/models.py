"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond projections).
Stores and the service do the work.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A registered account.

    hashed_password is the bcrypt hash and must never leave the server in an
    HTTP response. It does travel into the by-email cache projection, which
    is read only by the login path.
    """

    username: str
    email: str
    hashed_password: str
    id: int | None = None
    created_at: str | None = None

    def public_projection(self) -> dict:
        """Cache shape for the user:<id> keyspace (no credential material)."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "created_at": self.created_at,
        }

    def full_projection(self) -> dict:
        """Cache shape for the user:email:<email> keyspace (login lookup)."""
        return {**self.public_projection(), "hashed_password": self.hashed_password}


@dataclass
class ResetToken:
    """A pending password reset.

    token_digest is HMAC-SHA256(SECRET_KEY, raw_token). The raw token exists
    only in the emailed link. expires_at is an absolute UNIX timestamp; rows
    past it are invalid even before the purge task deletes them.
    """

    user_id: int
    token_digest: str
    expires_at: float
    id: int | None = None
