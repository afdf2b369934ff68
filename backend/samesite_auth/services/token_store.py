"""
Token store – server-side bindings of session tokens to users.

Bindings are keyed by a SHA-256 verifier of the token, never by the raw
token.  Two backends:

    • InMemoryTokenStore  – process-wide dict guarded by a lock.
    • PostgresTokenStore  – ``session_token`` table via asyncpg.

Both insert with insert-if-absent semantics and regenerate the token on
collision instead of overwriting an existing binding.
"""

from __future__ import annotations

import hashlib
import secrets
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import asyncpg

from samesite_auth.core.errors import InvalidUser, StorageUnavailable
from samesite_auth.core.logging import get_logger, token_hint

logger = get_logger(__name__)

TokenFactory = Callable[[], str]
Clock = Callable[[], datetime]

MAX_CREATE_ATTEMPTS = 5


def default_token_factory() -> str:
    return secrets.token_urlsafe(32)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def verifier_for(token: str) -> str:
    """Hash a token into the key it is stored under."""
    return hashlib.sha256(token.encode()).hexdigest()


@dataclass(frozen=True)
class Session:
    """One authenticated session.  Replaced, never mutated, on renewal."""

    user_id: str
    token: str
    expires_at: datetime
    grace_until: datetime | None = None
    created_at: datetime | None = None

    @property
    def live_until(self) -> datetime:
        """Last instant the binding still validates, grace period included."""
        return self.grace_until or self.expires_at


class TokenStore(ABC):
    """create / lookup / revoke contract shared by every backend."""

    def __init__(
        self,
        token_factory: TokenFactory = default_token_factory,
        clock: Clock = utcnow,
    ) -> None:
        self._token_factory = token_factory
        self._clock = clock

    async def create(
        self,
        user_id: str,
        expires_at: datetime,
        *,
        grace_until: datetime | None = None,
    ) -> str:
        """Generate a fresh token, bind it to *user_id*, and return it."""
        if not user_id:
            raise InvalidUser("user id must not be empty")

        for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
            token = self._token_factory()
            session = Session(
                user_id=user_id,
                token=token,
                expires_at=expires_at,
                grace_until=grace_until,
                created_at=self._clock(),
            )
            if await self._insert_if_absent(verifier_for(token), session):
                logger.info(
                    "Session token created",
                    extra={"user_id": user_id, "token_hint": token_hint(token)},
                )
                return token
            logger.warning("Token collision on attempt %d, regenerating", attempt)

        raise StorageUnavailable(
            f"could not store a unique token after {MAX_CREATE_ATTEMPTS} attempts"
        )

    def _now(self) -> datetime:
        # Cookie expirations are whole seconds; compare at the same precision
        return self._clock().replace(microsecond=0)

    async def lookup(
        self, token: str, *, include_expired: bool = False
    ) -> Session | None:
        """
        Return the live session for *token*, or None if absent or expired.

        ``include_expired=True`` also returns bindings past their window so
        callers can tell an expired session from an unknown one.
        """
        session = await self._get(verifier_for(token))
        if session is None:
            return None
        if not include_expired and session.live_until < self._now():
            return None
        return Session(
            user_id=session.user_id,
            token=token,
            expires_at=session.expires_at,
            grace_until=session.grace_until,
            created_at=session.created_at,
        )

    async def revoke(self, token: str) -> None:
        """Remove the binding for *token*.  Absent tokens are a no-op."""
        await self._delete(verifier_for(token))

    async def prepare(self) -> None:
        """Backend setup run once at application startup."""

    @abstractmethod
    async def _insert_if_absent(self, verifier: str, session: Session) -> bool:
        ...

    @abstractmethod
    async def _get(self, verifier: str) -> Session | None:
        ...

    @abstractmethod
    async def _delete(self, verifier: str) -> None:
        ...

    @abstractmethod
    async def list_for_user(self, user_id: str) -> list[Session]:
        """Live sessions for *user_id* (tokens are not recoverable, so blank)."""

    @abstractmethod
    async def revoke_all(self, user_id: str) -> int:
        """Revoke every binding of *user_id*; return how many were removed."""


# ═══════════════════════════════════════════════════════════════════
# In-memory backend
# ═══════════════════════════════════════════════════════════════════


class InMemoryTokenStore(TokenStore):
    """Process-wide token table.  Safe under concurrent callers."""

    def __init__(
        self,
        token_factory: TokenFactory = default_token_factory,
        clock: Clock = utcnow,
    ) -> None:
        super().__init__(token_factory, clock)
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    async def _insert_if_absent(self, verifier: str, session: Session) -> bool:
        stored = Session(
            user_id=session.user_id,
            token="",
            expires_at=session.expires_at,
            grace_until=session.grace_until,
            created_at=session.created_at,
        )
        with self._lock:
            self._purge_expired()
            if verifier in self._sessions:
                return False
            self._sessions[verifier] = stored
            return True

    def _purge_expired(self) -> None:
        # Caller holds the lock
        now = self._now()
        expired = [v for v, s in self._sessions.items() if s.live_until < now]
        for verifier in expired:
            del self._sessions[verifier]
        if expired:
            logger.debug("Dropped %d expired session(s)", len(expired))

    async def _get(self, verifier: str) -> Session | None:
        with self._lock:
            return self._sessions.get(verifier)

    async def _delete(self, verifier: str) -> None:
        with self._lock:
            self._sessions.pop(verifier, None)

    async def list_for_user(self, user_id: str) -> list[Session]:
        now = self._now()
        with self._lock:
            return [
                s
                for s in self._sessions.values()
                if s.user_id == user_id and s.live_until >= now
            ]

    async def revoke_all(self, user_id: str) -> int:
        with self._lock:
            doomed = [v for v, s in self._sessions.items() if s.user_id == user_id]
            for verifier in doomed:
                del self._sessions[verifier]
        logger.info("Revoked %d session(s)", len(doomed), extra={"user_id": user_id})
        return len(doomed)


# ═══════════════════════════════════════════════════════════════════
# Postgres backend
# ═══════════════════════════════════════════════════════════════════

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS session_token (
    verifier    TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    expires_at  TIMESTAMPTZ NOT NULL,
    grace_until TIMESTAMPTZ,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS session_token_user_idx ON session_token (user_id);
"""

# Errors that mean "the backing store is not usable right now"
_STORAGE_ERRORS = (OSError, asyncpg.PostgresError, asyncpg.InterfaceError)


class PostgresTokenStore(TokenStore):
    """Token table in Postgres, one short-lived connection per call."""

    def __init__(
        self,
        database_url: str,
        token_factory: TokenFactory = default_token_factory,
        clock: Clock = utcnow,
    ) -> None:
        super().__init__(token_factory, clock)
        # Strip the SQLAlchemy driver prefix so asyncpg can connect
        self._dsn = database_url.replace("postgresql+asyncpg://", "postgresql://")

    async def _get_conn(self) -> asyncpg.Connection:
        try:
            return await asyncpg.connect(self._dsn)
        except _STORAGE_ERRORS as exc:
            logger.error("Token store connection failed: %s", exc)
            raise StorageUnavailable("token store unreachable") from exc

    async def ensure_schema(self) -> None:
        """Create the ``session_token`` table and index if they are missing."""
        conn = await self._get_conn()
        try:
            await conn.execute(SCHEMA_SQL)
        except _STORAGE_ERRORS as exc:
            logger.error("Token schema setup failed: %s", exc)
            raise StorageUnavailable("token store schema setup failed") from exc
        finally:
            await conn.close()

    async def prepare(self) -> None:
        await self.ensure_schema()

    async def _insert_if_absent(self, verifier: str, session: Session) -> bool:
        conn = await self._get_conn()
        try:
            # Drop the user's dead bindings on every write
            await conn.execute(
                "DELETE FROM session_token "
                "WHERE user_id = $1 AND COALESCE(grace_until, expires_at) < $2",
                session.user_id,
                self._now(),
            )
            row = await conn.fetchrow(
                "INSERT INTO session_token "
                "(verifier, user_id, expires_at, grace_until, created_at) "
                "VALUES ($1, $2, $3, $4, $5) "
                "ON CONFLICT (verifier) DO NOTHING "
                "RETURNING verifier",
                verifier,
                session.user_id,
                session.expires_at,
                session.grace_until,
                session.created_at,
            )
        except _STORAGE_ERRORS as exc:
            logger.error("Token insert failed: %s", exc)
            raise StorageUnavailable("token store write failed") from exc
        finally:
            await conn.close()
        return row is not None

    async def _get(self, verifier: str) -> Session | None:
        conn = await self._get_conn()
        try:
            row = await conn.fetchrow(
                "SELECT user_id, expires_at, grace_until, created_at "
                "FROM session_token WHERE verifier = $1",
                verifier,
            )
        except _STORAGE_ERRORS as exc:
            raise StorageUnavailable("token store read failed") from exc
        finally:
            await conn.close()
        return _row_to_session(row) if row else None

    async def _delete(self, verifier: str) -> None:
        conn = await self._get_conn()
        try:
            await conn.execute("DELETE FROM session_token WHERE verifier = $1", verifier)
        except _STORAGE_ERRORS as exc:
            raise StorageUnavailable("token store write failed") from exc
        finally:
            await conn.close()

    async def list_for_user(self, user_id: str) -> list[Session]:
        conn = await self._get_conn()
        try:
            rows = await conn.fetch(
                "SELECT user_id, expires_at, grace_until, created_at "
                "FROM session_token WHERE user_id = $1 AND COALESCE(grace_until, expires_at) >= $2 "
                "ORDER BY created_at",
                user_id,
                self._now(),
            )
        except _STORAGE_ERRORS as exc:
            raise StorageUnavailable("token store read failed") from exc
        finally:
            await conn.close()
        return [_row_to_session(r) for r in rows]

    async def revoke_all(self, user_id: str) -> int:
        conn = await self._get_conn()
        try:
            status = await conn.execute(
                "DELETE FROM session_token WHERE user_id = $1", user_id
            )
        except _STORAGE_ERRORS as exc:
            raise StorageUnavailable("token store write failed") from exc
        finally:
            await conn.close()
        # asyncpg returns the command tag, e.g. "DELETE 3"
        count = int(status.split()[-1])
        logger.info("Revoked %d session(s)", count, extra={"user_id": user_id})
        return count


def _row_to_session(row) -> Session:
    return Session(
        user_id=row["user_id"],
        token="",
        expires_at=row["expires_at"],
        grace_until=row["grace_until"],
        created_at=row["created_at"],
    )
