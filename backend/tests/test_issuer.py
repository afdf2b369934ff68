"""SessionIssuer unit tests."""

from __future__ import annotations

from datetime import timedelta

import pytest

from samesite_auth.core.errors import (
    AttributeConflict,
    CookieExpired,
    InvalidRequest,
    InvalidUser,
    SignatureError,
    StorageUnavailable,
)
from samesite_auth.security.codec import LOGGED_IN_SCHEME, SECURE_AUTH_SCHEME
from samesite_auth.services.issuer import IssuerHooks, SessionIssuer
from samesite_auth.services.token_store import InMemoryTokenStore

from conftest import FIXED_NOW, fixed_clock, make_context


def _by_name(directives, name):
    return [d for d in directives if d.name == name]


async def test_basic_issue_produces_three_directives(issuer) -> None:
    directives = await issuer.issue("u1", remember=False, secure=True)

    assert [(d.name, d.path) for d in directives] == [
        ("secure_auth_session", "/admin"),
        ("secure_auth_session", "/plugins"),
        ("logged_in_session", "/"),
    ]
    for d in directives:
        assert d.secure is True
        assert d.http_only is True
        assert d.same_site == "None"
        assert d.expire == 0
        assert d.domain == "example.com"


@pytest.mark.parametrize("remember", [True, False])
async def test_every_directive_is_secure_same_site_none(issuer, remember) -> None:
    directives = await issuer.issue("u1", remember=remember)
    assert directives
    assert all(d.secure and d.same_site == "None" for d in directives)


async def test_remember_expiration_and_grace(issuer, store, codec) -> None:
    directives = await issuer.issue("u1", remember=True)

    payload = codec.decode(directives[0].value, SECURE_AUTH_SCHEME, now=FIXED_NOW)
    assert payload.expires_at - FIXED_NOW == timedelta(days=14)

    session = await store.lookup(payload.token)
    assert session.grace_until - session.expires_at == timedelta(hours=12)
    assert all(d.expire == int(session.grace_until.timestamp()) for d in directives)


async def test_session_only_expiration(issuer, store, codec) -> None:
    directives = await issuer.issue("u1", remember=False)

    payload = codec.decode(directives[-1].value, LOGGED_IN_SCHEME, now=FIXED_NOW)
    assert payload.expires_at - FIXED_NOW == timedelta(days=2)
    assert (await store.lookup(payload.token)).grace_until is None
    assert all(d.expire == 0 for d in directives)


async def test_auth_cookie_duplicated_across_paths_with_same_value(issuer) -> None:
    directives = await issuer.issue("u1")
    auth = _by_name(directives, "secure_auth_session")
    assert len(auth) == 2
    assert auth[0].value == auth[1].value
    assert {d.path for d in auth} == {"/admin", "/plugins"}


async def test_logged_in_cookie_once_when_paths_match(make_issuer) -> None:
    issuer = make_issuer(cookie_path="/", site_cookie_path="/")
    directives = await issuer.issue("u1")
    assert len(_by_name(directives, "logged_in_session")) == 1


async def test_logged_in_cookie_twice_when_paths_differ(make_issuer) -> None:
    issuer = make_issuer(cookie_path="/site/", site_cookie_path="/")
    logged_in = _by_name(await issuer.issue("u1"), "logged_in_session")
    assert len(logged_in) == 2
    assert logged_in[0].value == logged_in[1].value
    assert [d.path for d in logged_in] == ["/site/", "/"]


async def test_reissue_with_same_token_is_byte_identical(issuer) -> None:
    first = await issuer.issue("u1", remember=True, token="existing-token")
    second = await issuer.issue("u1", remember=True, token="existing-token")
    assert [d.value for d in first] == [d.value for d in second]


async def test_renewal_does_not_create_token(issuer, store) -> None:
    await issuer.issue("u1", token="existing-token")
    assert await store.list_for_user("u1") == []


async def test_veto_returns_nothing_but_keeps_token(make_issuer, store, codec) -> None:
    seen = []

    def veto(context):
        seen.append(context)
        return False

    issuer = make_issuer(hooks=IssuerHooks(should_emit=veto))
    assert await issuer.issue("u1", remember=True) == []

    assert len(seen) == 1
    session = await store.lookup(seen[0].token)
    assert session is not None and session.user_id == "u1"
    assert seen[0].scheme == SECURE_AUTH_SCHEME
    assert seen[0].expire == seen[0].expiration + 12 * 3600


@pytest.mark.parametrize("user_id", ["", "   ", " u1", "a|b", None, 42])
async def test_invalid_user_aborts_before_side_effects(issuer, store, user_id) -> None:
    with pytest.raises(InvalidUser):
        await issuer.issue(user_id)
    assert store._sessions == {}


async def test_non_boolean_remember(issuer) -> None:
    with pytest.raises(InvalidRequest):
        await issuer.issue("u1", remember="yes")


async def test_insecure_transport_fails_closed_without_token(make_issuer, store) -> None:
    issuer = make_issuer(request_is_https=False)
    with pytest.raises(AttributeConflict):
        await issuer.issue("u1")
    assert store._sessions == {}


async def test_http_home_url_fails_closed(make_issuer) -> None:
    issuer = make_issuer(home_url_scheme="http")
    with pytest.raises(AttributeConflict):
        await issuer.issue("u1", secure=True)


async def test_request_is_https_override(make_issuer) -> None:
    issuer = make_issuer(request_is_https=False)
    directives = await issuer.issue("u1", request_is_https=True)
    assert len(directives) == 3


async def test_storage_failure_emits_nothing(codec) -> None:
    class BrokenStore(InMemoryTokenStore):
        async def _insert_if_absent(self, verifier, session):
            raise StorageUnavailable("disk on fire")

    issuer = SessionIssuer(BrokenStore(clock=fixed_clock), codec, make_context(), clock=fixed_clock)
    with pytest.raises(StorageUnavailable):
        await issuer.issue("u1")


# ── Hooks ────────────────────────────────────────────────────────


async def test_expiration_length_hook(make_issuer, codec) -> None:
    calls = []

    def one_hour(user_id, remember, default):
        calls.append((user_id, remember, default))
        return 3600

    issuer = make_issuer(hooks=IssuerHooks(expiration_length=one_hour))
    directives = await issuer.issue("u1", remember=False)

    assert calls == [("u1", False, 2 * 24 * 3600)]
    payload = codec.decode(directives[0].value, SECURE_AUTH_SCHEME, now=FIXED_NOW)
    assert payload.expires_at - FIXED_NOW == timedelta(hours=1)


async def test_secure_filter_cannot_bypass_same_site_check(make_issuer, store) -> None:
    issuer = make_issuer(hooks=IssuerHooks(filter_secure=lambda secure, user_id: False))
    with pytest.raises(AttributeConflict):
        await issuer.issue("u1")
    assert store._sessions == {}


async def test_secure_logged_in_filter_receives_auth_flag(make_issuer) -> None:
    received = []

    def keep(secure_logged_in, user_id, secure):
        received.append((secure_logged_in, user_id, secure))
        return secure_logged_in

    issuer = make_issuer(hooks=IssuerHooks(filter_secure_logged_in=keep))
    await issuer.issue("u1")
    assert received == [(True, "u1", True)]


async def test_set_cookie_observers_fire_before_veto(make_issuer) -> None:
    events = []
    hooks = IssuerHooks(should_emit=lambda ctx: False, on_set_cookie=[events.append])
    issuer = make_issuer(hooks=hooks)

    await issuer.issue("u1")

    assert [e.scheme for e in events] == [SECURE_AUTH_SCHEME, LOGGED_IN_SCHEME]
    assert [e.name for e in events] == ["secure_auth_session", "logged_in_session"]
    assert events[0].token == events[1].token


# ── Validation and clearing ──────────────────────────────────────


async def test_validate_round_trip(issuer) -> None:
    directives = await issuer.issue("u1")
    session = await issuer.validate(directives[-1].value, LOGGED_IN_SCHEME)
    assert session.user_id == "u1"


async def test_validate_rejects_revoked_token(issuer, store, codec) -> None:
    directives = await issuer.issue("u1")
    value = directives[-1].value
    token = codec.decode(value, LOGGED_IN_SCHEME, now=FIXED_NOW).token

    await store.revoke(token)
    with pytest.raises(SignatureError):
        await issuer.validate(value, LOGGED_IN_SCHEME)


async def test_validate_expired_cookie(store, codec) -> None:
    current = [FIXED_NOW]
    issuer = SessionIssuer(store, codec, make_context(), clock=lambda: current[0])
    directives = await issuer.issue("u1")

    current[0] = FIXED_NOW + timedelta(days=3)
    with pytest.raises(CookieExpired):
        await issuer.validate(directives[-1].value, LOGGED_IN_SCHEME)


def _clocked_issuer(codec):
    current = [FIXED_NOW]
    store = InMemoryTokenStore(clock=lambda: current[0])
    issuer = SessionIssuer(store, codec, make_context(), clock=lambda: current[0])
    return issuer, current


async def test_validate_sub_second_past_expiry_is_still_live(codec) -> None:
    issuer, current = _clocked_issuer(codec)
    value = (await issuer.issue("u1"))[-1].value
    expires = FIXED_NOW + timedelta(days=2)

    current[0] = expires + timedelta(microseconds=500_000)
    assert (await issuer.validate(value, LOGGED_IN_SCHEME)).user_id == "u1"

    current[0] = expires + timedelta(seconds=1)
    with pytest.raises(CookieExpired):
        await issuer.validate(value, LOGGED_IN_SCHEME)


async def test_validate_grace_applies_to_session_only_cookies(codec) -> None:
    issuer, current = _clocked_issuer(codec)
    value = (await issuer.issue("u1", remember=False))[-1].value
    expires = FIXED_NOW + timedelta(days=2)

    current[0] = expires + timedelta(hours=11)
    assert (await issuer.validate(value, LOGGED_IN_SCHEME, grace=True)).user_id == "u1"
    with pytest.raises(CookieExpired):
        await issuer.validate(value, LOGGED_IN_SCHEME)

    current[0] = expires + timedelta(hours=13)
    with pytest.raises(CookieExpired):
        await issuer.validate(value, LOGGED_IN_SCHEME, grace=True)


async def test_validate_expired_binding_reports_expiry(codec) -> None:
    issuer, current = _clocked_issuer(codec)
    first = (await issuer.issue("u1", remember=False))[-1].value
    token = codec.decode(first, LOGGED_IN_SCHEME, now=FIXED_NOW).token

    # Renewal re-signs a later expiration but leaves the stored binding alone
    current[0] = FIXED_NOW + timedelta(days=1)
    renewed = (await issuer.issue("u1", remember=True, token=token))[-1].value

    current[0] = FIXED_NOW + timedelta(days=3)
    with pytest.raises(CookieExpired):
        await issuer.validate(renewed, LOGGED_IN_SCHEME)


async def test_clear_revokes_and_expires_everything(issuer, store, codec) -> None:
    directives = await issuer.issue("u1")
    token = codec.decode(directives[-1].value, LOGGED_IN_SCHEME, now=FIXED_NOW).token

    cleared = await issuer.clear(token)

    assert await store.lookup(token) is None
    assert {d.name for d in cleared} == {
        "auth_session",
        "secure_auth_session",
        "logged_in_session",
    }
    assert all(d.value == "" for d in cleared)
    assert all(0 < d.expire < int(FIXED_NOW.timestamp()) for d in cleared)
    assert all(d.secure and d.same_site == "None" for d in cleared)


async def test_clear_respects_veto(make_issuer) -> None:
    seen = []

    def veto(context):
        seen.append(context)
        return False

    issuer = make_issuer(hooks=IssuerHooks(should_emit=veto))
    assert await issuer.clear() == []
    assert seen[0].user_id == "" and seen[0].expire == 0
