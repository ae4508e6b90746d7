from __future__ import annotations

import pytest

from calltime.config import Settings
from calltime.errors import AuthenticationError, DonorNotAssignedError
from calltime.sessions import Identity, SessionStore, login_client, login_manager, scoped_donor
from calltime.store import CallTimeStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _build_store(tmp_path) -> CallTimeStore:  # type: ignore[no-untyped-def]
    db_path = tmp_path / "calltime_sessions_test.db"
    store = CallTimeStore(db_path)
    store.init_db()
    return store


def test_issued_token_resolves_until_it_expires() -> None:
    clock = FakeClock()
    sessions = SessionStore(ttl_seconds=60, clock=clock)

    token = sessions.issue(Identity.client(7))
    assert sessions.resolve(token) == Identity.client(7)

    clock.now += 59
    assert sessions.resolve(token).client_id == 7

    clock.now += 1
    with pytest.raises(AuthenticationError, match="expired"):
        sessions.resolve(token)
    assert len(sessions) == 0


def test_missing_and_unknown_tokens_are_rejected() -> None:
    sessions = SessionStore(ttl_seconds=60)

    with pytest.raises(AuthenticationError, match="Missing"):
        sessions.resolve(None)
    with pytest.raises(AuthenticationError, match="Unknown"):
        sessions.resolve("not-a-token")


def test_revoke_and_purge() -> None:
    clock = FakeClock()
    sessions = SessionStore(ttl_seconds=30, clock=clock)
    first = sessions.issue(Identity.manager())
    sessions.issue(Identity.client(1))

    assert sessions.revoke(first) is True
    assert sessions.revoke(first) is False
    assert len(sessions) == 1

    clock.now += 31
    assert sessions.purge_expired() == 1
    assert len(sessions) == 0


def test_issuing_evicts_abandoned_sessions() -> None:
    clock = FakeClock()
    sessions = SessionStore(ttl_seconds=30, clock=clock)
    abandoned = [sessions.issue(Identity.client(client_id)) for client_id in (1, 2, 3)]

    clock.now += 30
    fresh = sessions.issue(Identity.manager())

    assert len(sessions) == 1
    assert sessions.resolve(fresh).is_manager
    with pytest.raises(AuthenticationError, match="Unknown"):
        sessions.resolve(abandoned[0])


def test_non_positive_ttl_is_rejected() -> None:
    with pytest.raises(ValueError):
        SessionStore(ttl_seconds=0)


def test_manager_login_checks_configured_password() -> None:
    sessions = SessionStore(ttl_seconds=60)
    settings = Settings(manager_password="call-time-secret")

    token = login_manager(sessions, settings, "call-time-secret")

    assert sessions.resolve(token).is_manager
    with pytest.raises(AuthenticationError):
        login_manager(sessions, settings, "wrong")
    with pytest.raises(AuthenticationError):
        login_manager(sessions, Settings(), "call-time-secret")


def test_client_login_uses_portal_password(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    sessions = SessionStore(ttl_seconds=60)
    rivera = store.create_client("Friends of Rivera", portal_password="rivera-portal")
    chen = store.create_client("Chen for Council")

    token = login_client(sessions, store, rivera, "rivera-portal")

    assert sessions.resolve(token) == Identity.client(rivera)
    with pytest.raises(AuthenticationError):
        login_client(sessions, store, rivera, "wrong-password")
    with pytest.raises(AuthenticationError):
        login_client(sessions, store, chen, "rivera-portal")
    with pytest.raises(AuthenticationError):
        login_client(sessions, store, 9999, "rivera-portal")


def test_identity_scope_checks() -> None:
    manager = Identity.manager()
    client = Identity.client(3)

    assert manager.require_client(12) == 12
    assert client.require_client(3) == 3
    with pytest.raises(AuthenticationError):
        client.require_client(4)
    with pytest.raises(AuthenticationError):
        client.require_manager()
    manager.require_manager()


def test_scoped_donor_applies_session_scope_before_access_check(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    rivera = store.create_client("Friends of Rivera")
    chen = store.create_client("Chen for Council")
    assigned = store.create_donor({"name": "Dana Whitfield"}, [rivera])
    unassigned = store.create_donor({"name": "Morgan Hale"})
    identity = Identity.client(rivera)

    assert scoped_donor(store, identity, rivera, assigned)["name"] == "Dana Whitfield"
    with pytest.raises(AuthenticationError):
        scoped_donor(store, identity, chen, assigned)
    with pytest.raises(DonorNotAssignedError):
        scoped_donor(store, identity, rivera, unassigned)
    assert scoped_donor(store, Identity.manager(), rivera, assigned)["id"] == assigned
