"""
auth/store.py -- SQLAlchemy Core (async) persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and TokenStore are the repositories; _row_to_user / _row_to_token
are the mappers. Service and route code never touches SQL directly.

Both stores share one AsyncEngine, created by make_engine() at startup and
injected by the caller. The engine owns the connection pool; the stores own
nothing and are safe to share across concurrent requests.

Error policy:
  Any SQLAlchemyError is logged with its traceback and re-raised as
  ServerError -- the store is authoritative, so a failure here aborts the
  operation. The one exception is a UNIQUE violation on user insert, which
  surfaces as Conflict: that is how a lost registration race shows up.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, event, func, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from auth.models import ResetToken, User
from core.errors import Conflict, ServerError

logger = logging.getLogger("gatekeeper.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(254), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_reset_tokens = Table(
    "reset_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("token_digest", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", Float, nullable=False, index=True),  # UNIX seconds
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def make_engine(db_url: str) -> AsyncEngine:
    """Create the shared AsyncEngine for both stores."""
    engine = create_async_engine(db_url, pool_pre_ping=True)
    if db_url.startswith("sqlite"):
        event.listen(engine.sync_engine, "connect", _set_wal_mode)
    return engine


async def create_schema(engine: AsyncEngine) -> None:
    """Create missing tables. Idempotent -- safe to call on every startup."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class _Repository:
    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    @asynccontextmanager
    async def _connect(self, operation: str) -> AsyncIterator[AsyncConnection]:
        """Yield a connection; translate driver failures into ServerError."""
        try:
            async with self.engine.connect() as conn:
                yield conn
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Store operation %s failed", operation)
            raise ServerError() from exc


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore(_Repository):
    """Repository for User records.

    Usage:
        store = UserStore(engine)
        user = await store.create_user(User(username="alice", email="a@x.com", hashed_password=h))
        same = await store.get_by_email("a@x.com")
    """

    async def create_user(self, user: User) -> User:
        """Insert a new user and return it with id and created_at filled in.

        Raises Conflict if the username or email is already taken. The
        caller's existence check and this insert are two round trips; the
        UNIQUE constraints are what catch the loser of a concurrent race.
        """
        created_at = _now_iso()
        try:
            async with self._connect("create_user") as conn:
                result = await conn.execute(
                    _users.insert().values(
                        username=user.username,
                        email=user.email,
                        hashed_password=user.hashed_password,
                        created_at=created_at,
                    )
                )
                await conn.commit()
        except IntegrityError as exc:
            raise Conflict() from exc
        return User(
            id=result.inserted_primary_key[0],
            username=user.username,
            email=user.email,
            hashed_password=user.hashed_password,
            created_at=created_at,
        )

    async def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        async with self._connect("get_by_id") as conn:
            row = (await conn.execute(_users.select().where(_users.c.id == user_id))).fetchone()
        return _row_to_user(row) if row is not None else None

    async def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        async with self._connect("get_by_email") as conn:
            row = (await conn.execute(_users.select().where(_users.c.email == email))).fetchone()
        return _row_to_user(row) if row is not None else None

    async def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        async with self._connect("get_by_username") as conn:
            row = (await conn.execute(_users.select().where(_users.c.username == username))).fetchone()
        return _row_to_user(row) if row is not None else None

    async def find_by_email_or_username(self, email: str, username: str) -> User | None:
        """Return any user holding either identifier -- the registration duplicate check."""
        async with self._connect("find_by_email_or_username") as conn:
            row = (
                await conn.execute(
                    _users.select().where((_users.c.email == email) | (_users.c.username == username)).limit(1)
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    async def update_password(self, user_id: int, hashed_password: str) -> bool:
        """Replace the stored hash. Returns False if user_id was not found."""
        async with self._connect("update_password") as conn:
            result = await conn.execute(
                _users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password)
            )
            await conn.commit()
        return result.rowcount > 0

    async def ping(self) -> bool:
        """Health probe: True if a trivial query succeeds."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True


# ---------------------------------------------------------------------------
# Reset tokens
# ---------------------------------------------------------------------------


class TokenStore(_Repository):
    """Repository for ResetToken records. Stores digests only, never raw tokens."""

    async def create_token(self, token: ResetToken) -> ResetToken:
        async with self._connect("create_token") as conn:
            result = await conn.execute(
                _reset_tokens.insert().values(
                    user_id=token.user_id,
                    token_digest=token.token_digest,
                    expires_at=token.expires_at,
                )
            )
            await conn.commit()
        return ResetToken(
            id=result.inserted_primary_key[0],
            user_id=token.user_id,
            token_digest=token.token_digest,
            expires_at=token.expires_at,
        )

    async def find_valid(self, token_digest: str, now: float) -> ResetToken | None:
        """Return the token with this digest if it has not expired at `now`."""
        async with self._connect("find_valid") as conn:
            row = (
                await conn.execute(
                    _reset_tokens.select().where(
                        (_reset_tokens.c.token_digest == token_digest) & (_reset_tokens.c.expires_at > now)
                    )
                )
            ).fetchone()
        return _row_to_token(row) if row is not None else None

    async def delete_token(self, token_id: int) -> bool:
        """Delete one token. Returns False if it was already gone."""
        async with self._connect("delete_token") as conn:
            result = await conn.execute(_reset_tokens.delete().where(_reset_tokens.c.id == token_id))
            await conn.commit()
        return result.rowcount > 0

    async def count_for_user(self, user_id: int) -> int:
        """Number of outstanding (unredeemed, unpurged) tokens for a user."""
        async with self._connect("count_for_user") as conn:
            result = await conn.execute(
                select(func.count()).select_from(_reset_tokens).where(_reset_tokens.c.user_id == user_id)
            )
            return result.scalar_one()

    async def purge_expired(self, now: float | None = None) -> int:
        """Delete all tokens whose expiry has passed. Returns number of rows removed."""
        cutoff = time.time() if now is None else now
        async with self._connect("purge_expired") as conn:
            result = await conn.execute(_reset_tokens.delete().where(_reset_tokens.c.expires_at <= cutoff))
            await conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        created_at=row.created_at,
    )


def _row_to_token(row) -> ResetToken:
    return ResetToken(
        id=row.id,
        user_id=row.user_id,
        token_digest=row.token_digest,
        expires_at=row.expires_at,
    )
