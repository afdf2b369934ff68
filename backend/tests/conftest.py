"""Shared fixtures: fixed clock, in-memory store, codec, issuer and a fake asyncpg connection."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from samesite_auth.security.codec import CookieCodec
from samesite_auth.security.cookies import CookieContext
from samesite_auth.services.issuer import IssuerHooks, SessionIssuer
from samesite_auth.services.token_store import InMemoryTokenStore

FIXED_NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
SECRET = "test-secret-0123456789"


def fixed_clock() -> datetime:
    return FIXED_NOW


def make_context(**overrides) -> CookieContext:
    values = dict(
        home_url_scheme="https",
        admin_path="/admin",
        plugins_path="/plugins",
        cookie_path="/",
        site_cookie_path="/",
        domain="example.com",
        request_is_https=True,
    )
    values.update(overrides)
    return CookieContext(**values)


@pytest.fixture
def store() -> InMemoryTokenStore:
    return InMemoryTokenStore(clock=fixed_clock)


@pytest.fixture
def codec() -> CookieCodec:
    return CookieCodec(SECRET)


@pytest.fixture
def make_issuer(store, codec):
    def _make(hooks: IssuerHooks | None = None, **context_overrides) -> SessionIssuer:
        return SessionIssuer(
            store,
            codec,
            make_context(**context_overrides),
            hooks=hooks,
            clock=fixed_clock,
        )

    return _make


@pytest.fixture
def issuer(make_issuer) -> SessionIssuer:
    return make_issuer()


class FakeConnection:
    """Answers the handful of statements PostgresTokenStore sends."""

    def __init__(self, rows: dict) -> None:
        self.rows = rows
        self.statements: list[str] = []
        self.closed = False

    async def execute(self, query: str, *args) -> str:
        self.statements.append(query)
        if query.lstrip().startswith("CREATE TABLE"):
            return "CREATE TABLE"
        if "WHERE verifier = $1" in query:
            doomed = [args[0]] if args[0] in self.rows else []
        elif "COALESCE" in query:
            user_id, now = args
            doomed = [
                v
                for v, r in self.rows.items()
                if r["user_id"] == user_id and (r["grace_until"] or r["expires_at"]) < now
            ]
        elif "WHERE user_id = $1" in query:
            doomed = [v for v, r in self.rows.items() if r["user_id"] == args[0]]
        else:
            raise AssertionError(f"unexpected statement: {query}")
        for verifier in doomed:
            del self.rows[verifier]
        return f"DELETE {len(doomed)}"

    async def fetchrow(self, query: str, *args):
        self.statements.append(query)
        if query.startswith("INSERT"):
            verifier = args[0]
            if verifier in self.rows:
                return None
            self.rows[verifier] = {
                "user_id": args[1],
                "expires_at": args[2],
                "grace_until": args[3],
                "created_at": args[4],
            }
            return {"verifier": verifier}
        return self.rows.get(args[0])

    async def fetch(self, query: str, *args) -> list[dict]:
        self.statements.append(query)
        user_id, now = args
        live = [
            r
            for r in self.rows.values()
            if r["user_id"] == user_id and (r["grace_until"] or r["expires_at"]) >= now
        ]
        return sorted(live, key=lambda r: r["created_at"])

    async def close(self) -> None:
        self.closed = True
