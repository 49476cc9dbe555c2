"""
auth/tokens.py -- Password hashing and password-reset token utilities.

Security design decisions:
  Passwords: bcrypt, used directly (no passlib wrapper). bcrypt is the right
       choice for low-entropy secrets because its cost factor makes
       brute-force expensive. Each hash embeds its own random salt, so
       hashing the same password twice gives two different strings. The
       _DUMMY_HASH constant enables timing equalization on login so response
       time does not reveal whether an email is registered.

  Reset tokens: secrets.token_hex(32) gives 256 bits of entropy. Only
       HMAC-SHA256(SECRET_KEY, raw_token) is persisted, so a leaked database
       cannot be replayed into reset links. The hash is deterministic, which
       lets redeem() find the record with an indexed equality lookup.

  Redemption does not distinguish "no such token" from "expired token":
       both raise InvalidOrExpiredToken with the same message.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import bcrypt

from auth.models import ResetToken
from core.errors import InvalidOrExpiredToken

if TYPE_CHECKING:
    from auth.store import TokenStore

logger = logging.getLogger("gatekeeper.auth")

DEFAULT_ROUNDS = 10
DEFAULT_RESET_TTL = 60 * 60  # 1 hour in seconds

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


# bcrypt only looks at the first 72 bytes. Newer bcrypt releases raise on
# longer input instead of truncating, so truncate here, identically for hash
# and verify.
_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed or empty hash is a non-match, never an exception.
    """
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Login always runs verify_password(), even for
# an unknown email, against this hash.
_DUMMY_HASH: str = hash_password("gatekeeper_timing_dummy")


def burn_verify(plain: str) -> None:
    """Run one bcrypt check against the dummy hash and discard the result."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Reset token primitives
# ---------------------------------------------------------------------------


def generate_reset_token() -> str:
    """Return a new raw reset token: 32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


def digest_token(secret_key: str, raw_token: str) -> str:
    """Return HMAC-SHA256(secret_key, raw_token) as a hex string."""
    return hmac.new(secret_key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Issuer
# ---------------------------------------------------------------------------


class ResetTokenIssuer:
    """Issues and redeems single-use, time-bound password reset tokens.

    The clock is injectable (defaults to time.time) so expiry can be tested
    without sleeping.
    """

    def __init__(
        self,
        store: TokenStore,
        secret_key: str,
        ttl_seconds: int = DEFAULT_RESET_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._secret_key = secret_key
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    async def issue(self, user_id: int) -> str:
        """Persist a digest for a fresh token and return the raw token.

        The raw value is returned exactly once, for embedding in the reset
        link. It cannot be recovered afterwards.
        """
        raw_token = generate_reset_token()
        await self._store.create_token(
            ResetToken(
                user_id=user_id,
                token_digest=digest_token(self._secret_key, raw_token),
                expires_at=self._clock() + self.ttl_seconds,
            )
        )
        logger.info("Reset token issued for user_id=%s", user_id)
        return raw_token

    async def redeem(self, raw_token: str) -> int:
        """Consume a token and return the user id it was issued for.

        Raises InvalidOrExpiredToken if no unexpired record matches. On a
        match the record is deleted, so a second redeem with the same raw
        token fails. Lookup and delete are two separate calls with no
        transaction; two racing redeems can both pass the lookup, and only
        the one whose delete removes the row wins.
        """
        record = await self._store.find_valid(digest_token(self._secret_key, raw_token), self._clock())
        if record is None:
            raise InvalidOrExpiredToken()
        if not await self._store.delete_token(record.id):
            # A concurrent redeem got there first.
            raise InvalidOrExpiredToken()
        return record.user_id
