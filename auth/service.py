"""
auth/service.py -- The authentication workflow: register, login, logout,
forgot-password, reset-password.

AuthService owns the consistency rules between the user cache and the user
store. It receives every collaborator through its constructor -- no module
globals, no connection handles of its own. api/main.py builds one instance
at startup and route handlers call it through request.app.state.

Cache keyspaces (cache-aside, deliberately denormalized):
  user:<id>            public projection (id, username, email, created_at)
  user:email:<email>   full projection incl. hashed_password, login only

Whenever the store is read or written as the source of truth for a user,
both keys are refreshed together. If either write fails, both keys are
deleted so the pair can never disagree; the next login falls back to the
store.

Known races (flagged, not locked):
  register -- the duplicate check and the insert are separate calls. The
      UNIQUE constraints in auth/store.py turn the loser into Conflict.
  reset    -- see ResetTokenIssuer.redeem().

bcrypt is CPU-bound and holds the calling thread for the whole hash, so
every hash and verify runs through asyncio.to_thread. The event loop keeps
serving other requests meanwhile.

Password reset does not revoke other active sessions for the user.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from auth.models import User
from auth.tokens import DEFAULT_ROUNDS, burn_verify, hash_password, verify_password
from core.errors import Conflict, InvalidCredentials, NotFound
from core.mailer import redact_email

if TYPE_CHECKING:
    from auth.sessions import Session, SessionManager
    from auth.store import UserStore
    from auth.tokens import ResetTokenIssuer
    from cache.store import CacheStore
    from core.mailer import Mailer

logger = logging.getLogger("gatekeeper.auth")

RESET_SUBJECT = "Password Reset"


def user_key(user_id: int) -> str:
    return f"user:{user_id}"


def user_email_key(email: str) -> str:
    return f"user:email:{email}"


class AuthService:
    def __init__(
        self,
        users: UserStore,
        cache: CacheStore,
        sessions: SessionManager,
        issuer: ResetTokenIssuer,
        mailer: Mailer,
        *,
        client_url: str = "http://localhost:3000",
        bcrypt_rounds: int = DEFAULT_ROUNDS,
    ) -> None:
        self.users = users
        self.cache = cache
        self.sessions = sessions
        self.issuer = issuer
        self.mailer = mailer
        self.client_url = client_url.rstrip("/")
        self.bcrypt_rounds = bcrypt_rounds

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, username: str, email: str, password: str) -> User:
        """Create an account. Does not log the new user in.

        The duplicate check reads the store, not the cache, so it sees the
        latest committed state.
        """
        if await self.users.find_by_email_or_username(email, username) is not None:
            raise Conflict()

        user = await self.users.create_user(
            User(username=username, email=email, hashed_password=await self._hash(password))
        )
        await self.cache.set(user_key(user.id), user.public_projection())
        logger.info("Registered user_id=%s", user.id)
        return user

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    async def login(
        self, email: str, password: str, current_session_id: Optional[str] = None
    ) -> tuple[User, Session]:
        """Verify credentials and bind a fresh session to the user.

        Unknown email and wrong password raise the same InvalidCredentials,
        and both run one bcrypt check so timing does not tell them apart.
        Any session already attached to the request is discarded first so a
        pre-login session id never becomes an authenticated one.
        """
        user = await self._lookup_for_login(email)
        if user is None:
            await asyncio.to_thread(burn_verify, password)
            raise InvalidCredentials()
        if not await asyncio.to_thread(verify_password, password, user.hashed_password):
            raise InvalidCredentials()

        if current_session_id:
            await self.sessions.destroy(current_session_id)
        session = await self.sessions.create(user_id=user.id)
        logger.info("Login user_id=%s", user.id)
        return user, session

    async def logout(self, session_id: Optional[str]) -> None:
        """End the session. Logging out without a session is not an error."""
        await self.sessions.destroy(session_id)

    async def get_profile(self, user_id: int) -> Optional[dict]:
        """Public projection for a user id, read through the user:<id> key."""
        cached = await self.cache.get(user_key(user_id))
        if isinstance(cached, dict) and cached.get("id") == user_id:
            return cached

        user = await self.users.get_by_id(user_id)
        if user is None:
            return None
        await self._refresh_cache(user)
        return user.public_projection()

    async def _lookup_for_login(self, email: str) -> Optional[User]:
        cached = await self.cache.get(user_email_key(email))
        if cached is not None:
            user = _user_from_cache(cached)
            if user is not None:
                return user
            await self.cache.delete(user_email_key(email))

        user = await self.users.get_by_email(email)
        if user is not None:
            await self._refresh_cache(user)
        return user

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def forgot_password(self, email: str) -> str:
        """Issue a reset token and email the link. Returns the raw token.

        Raises NotFound for an unknown email. Mail delivery is best-effort:
        a failed send is logged by the mailer and the call still succeeds.
        """
        user = await self.users.get_by_email(email)
        if user is None:
            raise NotFound("User with this email does not exist.")

        raw_token = await self.issuer.issue(user.id)
        reset_url = f"{self.client_url}/reset-password/{raw_token}"
        body = f"You requested a password reset. Please make a PUT request to: {reset_url}"
        if not await self.mailer.send(user.email, RESET_SUBJECT, body):
            logger.warning("Reset email to %s was not delivered", redact_email(user.email))
        return raw_token

    async def reset_password(self, raw_token: str, new_password: str) -> User:
        """Redeem a reset token and store the new password hash.

        redeem() deletes the token record, so this is single use even if the
        user lookup below fails.
        """
        user_id = await self.issuer.redeem(raw_token)
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise NotFound()

        user.hashed_password = await self._hash(new_password)
        if not await self.users.update_password(user.id, user.hashed_password):
            raise NotFound()
        await self._refresh_cache(user)
        logger.info("Password reset for user_id=%s", user.id)
        return user

    async def _hash(self, password: str) -> str:
        return await asyncio.to_thread(hash_password, password, self.bcrypt_rounds)

    # ------------------------------------------------------------------
    # Cache coherence
    # ------------------------------------------------------------------

    async def _refresh_cache(self, user: User) -> None:
        """Write both projections, or neither."""
        public_key, email_key = user_key(user.id), user_email_key(user.email)
        if await self.cache.set(public_key, user.public_projection()) and await self.cache.set(
            email_key, user.full_projection()
        ):
            return
        await self.cache.delete(public_key, email_key)


def _user_from_cache(data) -> Optional[User]:
    """Rebuild a User from the full projection; None if the entry is malformed."""
    if not isinstance(data, dict):
        return None
    try:
        return User(
            id=data["id"],
            username=data["username"],
            email=data["email"],
            hashed_password=data["hashed_password"],
            created_at=data.get("created_at"),
        )
    except KeyError:
        return None
