"""
auth/sessions.py -- Server-side sessions keyed by an opaque cookie value.

The cookie carries only the session id (secrets.token_urlsafe(32)); the
record lives in Redis under sess:<id> as JSON with its own TTL, separate
from the per-user cache entries. The record holds the bound user_id (None
while anonymous) and a dict of session-scoped values such as counters.

Unlike cache/store.py, failures here are NOT soft: a login whose session
was never written would look successful to the client and then behave as
logged out. Redis errors, or a missing Redis, raise ServerError.

Cookie attributes:
  httponly=True: JS cannot read the cookie (XSS mitigation).
  samesite="lax": not sent on cross-site POST -- CSRF mitigation for the
      state-changing auth routes.
  secure: only sent over HTTPS when SECURE_COOKIES=true.
  max_age: matches the record TTL so both expire together.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from core.errors import ServerError

logger = logging.getLogger("gatekeeper.sessions")

DEFAULT_SESSION_TTL = 60 * 60 * 24  # 24 hours, same as the cookie
_KEY_PREFIX = "sess:"


@dataclass
class Session:
    session_id: str
    user_id: Optional[int] = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


class SessionManager:
    def __init__(
        self,
        client: Optional[Redis],
        ttl_seconds: int = DEFAULT_SESSION_TTL,
        cookie_name: str = "sid",
        secure_cookies: bool = False,
    ) -> None:
        self._client = client
        self.ttl_seconds = ttl_seconds
        self.cookie_name = cookie_name
        self.secure_cookies = secure_cookies

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def create(self, user_id: Optional[int] = None, data: Optional[dict] = None) -> Session:
        session = Session(session_id=secrets.token_urlsafe(32), user_id=user_id, data=dict(data or {}))
        await self.save(session)
        return session

    async def get(self, session_id: Optional[str]) -> Optional[Session]:
        """Load a session. Unknown, expired, or empty ids return None."""
        if not session_id:
            return None
        client = self._require_client()
        try:
            raw = await client.get(_KEY_PREFIX + session_id)
        except RedisError as exc:
            logger.error("Session read failed: %s", exc)
            raise ServerError() from exc
        if raw is None:
            return None
        try:
            record = json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable session record")
            return None
        return Session(session_id=session_id, user_id=record.get("user_id"), data=record.get("data") or {})

    async def save(self, session: Session) -> None:
        """Write the record and restart its TTL."""
        client = self._require_client()
        payload = json.dumps({"user_id": session.user_id, "data": session.data})
        try:
            await client.setex(_KEY_PREFIX + session.session_id, self.ttl_seconds, payload)
        except RedisError as exc:
            logger.error("Session write failed: %s", exc)
            raise ServerError() from exc

    async def destroy(self, session_id: Optional[str]) -> None:
        """Remove the record. Destroying an absent session is a no-op."""
        if not session_id:
            return
        client = self._require_client()
        try:
            await client.delete(_KEY_PREFIX + session_id)
        except RedisError as exc:
            logger.error("Session delete failed: %s", exc)
            raise ServerError() from exc

    def _require_client(self) -> Redis:
        if self._client is None:
            logger.error("Session store unavailable: Redis is not connected")
            raise ServerError()
        return self._client

    # ------------------------------------------------------------------
    # Cookie helpers
    # ------------------------------------------------------------------

    def set_cookie(self, response, session: Session) -> None:
        """Write the session id as an httpOnly cookie on the response."""
        response.set_cookie(
            self.cookie_name,
            value=session.session_id,
            httponly=True,
            samesite="lax",
            secure=self.secure_cookies,
            max_age=self.ttl_seconds,
        )

    def clear_cookie(self, response) -> None:
        response.delete_cookie(
            self.cookie_name,
            httponly=True,
            samesite="lax",
            secure=self.secure_cookies,
        )
