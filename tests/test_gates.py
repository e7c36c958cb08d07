"""Tests for the viewer/admin gate state machines."""
import time
from datetime import datetime, timedelta

import pytest

from app.festgate import create_app
from app.festgate.constants import MSG_NAME_REQUIRED, MSG_UNAVAILABLE, MSG_WRONG_PASSWORD
from app.festgate.credentials import (
    CredentialStore,
    CredentialVerifier,
    ServerSideCredentialVerifier,
    create_festival,
)
from app.festgate.db import session_scope
from app.festgate.errors import CredentialStoreUnavailable, GateBusy, TenantNotFound
from app.festgate.gate import AdminGate, GateState, ViewerGate
from app.festgate.models import AccessLogEntry, Base, VisitorStats
from app.festgate.sessions import MemorySessionStore, SessionCache, cache_key

T0 = datetime(2026, 10, 18, 10, 0, 0)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class SpyLogger:
    def __init__(self):
        self.calls = []

    def record(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        return True


class SpyVerifier(CredentialVerifier):
    def __init__(self, inner):
        self.inner = inner
        self.calls = 0

    def verify(self, code, kind, attempt):
        self.calls += 1
        return self.inner.verify(code, kind, attempt)


class DownStore:
    def get_tenant(self, code):
        raise CredentialStoreUnavailable("connection refused")


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    app.extensions["festgate_clock"] = Clock(T0)
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        create_festival(
            s,
            code="ABCDEFGH",
            event_name="Spring Fest",
            organiser="Town Council",
            location="Main Square",
            viewer_secret="Festive@123",
            admin_secret="Admin#1",
            now=T0 - timedelta(days=3),
        )
        create_festival(s, code="OPENFEST", event_name="Open Fest", requires_password=False, now=T0)
        create_festival(
            s,
            code="OPENKEYS",
            event_name="Open Fest With Keys",
            viewer_secret="owner-v",
            admin_secret="owner-a",
            requires_password=False,
            now=T0,
        )
    return app


@pytest.fixture()
def cache():
    return SessionCache(MemorySessionStore())


def _viewer(app, cache, *, clock=None, access_logger=None, verifier=None, code="ABCDEFGH"):
    ext = app.extensions
    return ViewerGate(
        code,
        store=ext["festgate_store"],
        verifier=verifier or ext["festgate_verifier"],
        cache=cache,
        clock=clock or Clock(T0),
        access_logger=access_logger or ext["festgate_access_logger"],
    )


def _admin(app, cache, *, clock=None, code="ABCDEFGH", elevated=False):
    ext = app.extensions
    return AdminGate(
        code,
        elevated=elevated,
        store=ext["festgate_store"],
        verifier=ext["festgate_verifier"],
        cache=cache,
        clock=clock or Clock(T0),
    )


def test_viewer_scenario_logs_normalized_name(app, cache):
    gate = _viewer(app, cache)
    out = gate.load()
    assert out.state is GateState.UNAUTHENTICATED
    assert out.festival["organiser"] == "Town Council"

    out = gate.submit("Festive@123", visitor_name=" Alice Smith ")
    assert out.state is GateState.AUTHENTICATED
    assert out.visitor_name == "alice-smith"

    with session_scope(app) as s:
        entry = s.query(AccessLogEntry).one()
        assert entry.visitor_name == "alice-smith"
        assert entry.access_method == "password_modal"
        assert entry.session_id == out.session_id
        stats = s.get(VisitorStats, entry.festival_id)
        assert stats.unique_visitors == 1
        assert stats.total_visits == 1

    record = cache.load("ABCDEFGH", "viewer")
    assert record.visitor_name == "alice-smith"
    assert record.valid_for_date == T0.date()


def test_stored_session_skips_challenge(app, cache):
    _viewer(app, cache).submit("Festive@123", visitor_name="Alice")
    spy = SpyLogger()
    out = _viewer(app, cache, access_logger=spy).load()
    assert out.state is GateState.AUTHENTICATED
    assert out.visitor_name == "alice"
    assert spy.calls == []


def test_rotation_invalidates_session_same_day(app, cache):
    _viewer(app, cache).submit("Festive@123", visitor_name="Alice Smith")
    app.extensions["festgate_store"].rotate_credential("ABCDEFGH", "viewer", "NewPass1", now=T0 + timedelta(hours=1))

    out = _viewer(app, cache, clock=Clock(T0 + timedelta(hours=2))).load()
    assert out.state is GateState.UNAUTHENTICATED
    assert cache.load("ABCDEFGH", "viewer") is None


def test_rotating_viewer_secret_keeps_admin_session(app, cache):
    _admin(app, cache).submit("Admin#1")
    app.extensions["festgate_store"].rotate_credential("ABCDEFGH", "viewer", "NewPass1", now=T0 + timedelta(hours=1))
    assert _admin(app, cache).load().state is GateState.AUTHENTICATED


def test_session_expires_next_day(app, cache):
    _viewer(app, cache).submit("Festive@123", visitor_name="Alice")
    out = _viewer(app, cache, clock=Clock(T0 + timedelta(days=1))).load()
    assert out.state is GateState.UNAUTHENTICATED


def test_no_password_festival_bypasses_gate_without_logging(app, cache):
    spy = SpyLogger()
    gate = _viewer(app, cache, access_logger=spy, code="OPENFEST")
    out = gate.load()
    assert out.state is GateState.AUTHENTICATED
    assert out.requires_password is False
    assert out.access_method == "direct_link"
    assert spy.calls == []
    assert cache.backend.data == {}

    admin_out = _admin(app, cache, code="OPENFEST").load()
    assert admin_out.state is GateState.AUTHENTICATED
    assert cache.backend.data == {}


def test_wrong_password_allows_unlimited_retries(app, cache):
    gate = _viewer(app, cache)
    gate.load()
    for attempt in ("festive@123", "nope", "Festive@123 "):
        out = gate.submit(attempt, visitor_name="Alice")
        assert out.state is GateState.UNAUTHENTICATED
        assert out.message == MSG_WRONG_PASSWORD
        assert out.retry is True
    assert gate.submit("Festive@123", visitor_name="Alice").authenticated
    assert gate.state is GateState.AUTHENTICATED


def test_name_is_required_before_verifying(app, cache):
    verifier = SpyVerifier(app.extensions["festgate_verifier"])
    gate = _viewer(app, cache, verifier=verifier)
    gate.load()
    out = gate.submit("Festive@123", visitor_name="   ")
    assert out.message == MSG_NAME_REQUIRED
    assert verifier.calls == 0


def test_second_submit_while_verifying_is_rejected(app, cache):
    inner = app.extensions["festgate_verifier"]
    seen = []

    class Reentrant(CredentialVerifier):
        def verify(self, code, kind, attempt):
            with pytest.raises(GateBusy):
                gate.submit(attempt, visitor_name="Alice")
            seen.append(gate.state)
            return inner.verify(code, kind, attempt)

    gate = _viewer(app, cache, verifier=Reentrant())
    gate.load()
    out = gate.submit("Festive@123", visitor_name="Alice")
    assert seen == [GateState.VERIFYING]
    assert out.authenticated


def test_verify_resolving_after_close_is_ignored(app, cache):
    inner = app.extensions["festgate_verifier"]
    spy = SpyLogger()

    class ClosesMidFlight(CredentialVerifier):
        def verify(self, code, kind, attempt):
            result = inner.verify(code, kind, attempt)
            gate.close()
            return result

    gate = _viewer(app, cache, verifier=ClosesMidFlight(), access_logger=spy)
    gate.load()
    out = gate.submit("Festive@123", visitor_name="Alice")
    assert out.stale is True
    assert spy.calls == []
    assert cache.backend.data == {}


def test_unreachable_store_fails_closed_on_load(app, cache):
    _viewer(app, cache).submit("Festive@123", visitor_name="Alice")
    gate = ViewerGate(
        "ABCDEFGH",
        store=DownStore(),
        verifier=app.extensions["festgate_verifier"],
        cache=cache,
        clock=Clock(T0),
        access_logger=SpyLogger(),
    )
    out = gate.load()
    assert out.state is GateState.UNAUTHENTICATED
    assert out.message == MSG_UNAVAILABLE
    # the record is not at fault; it is kept for when the store is back
    assert cache.load("ABCDEFGH", "viewer") is not None


def test_unreachable_store_fails_closed_on_submit(app, cache):
    class Down(CredentialVerifier):
        def verify(self, code, kind, attempt):
            raise CredentialStoreUnavailable("timeout")

    gate = _viewer(app, cache, verifier=Down())
    gate.load()
    out = gate.submit("Festive@123", visitor_name="Alice")
    assert out.state is GateState.UNAUTHENTICATED
    assert out.message == MSG_UNAVAILABLE
    assert cache.backend.data == {}


def test_store_call_timeout_raises_unavailable(app):
    store = CredentialStore(sm=app.extensions["sqlalchemy_sessionmaker"], timeout_seconds=0.05)
    with pytest.raises(CredentialStoreUnavailable):
        store._call(lambda s: time.sleep(0.5))


def test_unknown_festival_propagates(app, cache):
    with pytest.raises(TenantNotFound):
        _viewer(app, cache, code="NOPE0000").load()


def test_corrupt_session_falls_through_to_challenge(app):
    backend = MemorySessionStore({cache_key("ABCDEFGH", "viewer"): '{"authenticated": true}'})
    out = _viewer(app, SessionCache(backend)).load()
    assert out.state is GateState.UNAUTHENTICATED
    assert backend.data == {}


def test_admin_gate_stores_record_without_visitor(app, cache):
    gate = _admin(app, cache)
    out = gate.load()
    assert out.state is GateState.UNAUTHENTICATED
    assert out.festival["name"] == "Spring Fest"
    assert out.festival["location"] == "Main Square"

    assert gate.submit("Admin#1").authenticated
    record = cache.load("ABCDEFGH", "admin")
    assert record.visitor_name is None
    assert record.session_id is None


def test_admin_gate_accepts_url_secret(app, cache):
    out = _admin(app, cache).load(url_secret="Admin#1")
    assert out.authenticated
    assert cache.load("ABCDEFGH", "admin") is not None


def test_admin_gate_rejects_viewer_secret(app, cache):
    gate = _admin(app, cache)
    gate.load()
    assert gate.submit("Festive@123").message == MSG_WRONG_PASSWORD


def test_server_side_verifier_compares_in_database(app):
    verifier = ServerSideCredentialVerifier(store=app.extensions["festgate_store"])
    assert verifier.verify("ABCDEFGH", "viewer", "Festive@123").ok is True
    assert verifier.verify("ABCDEFGH", "viewer", "festive@123").ok is False
    assert verifier.verify("ABCDEFGH", "admin", "Festive@123").ok is False


def test_server_side_verifier_token_matches_local(app):
    local = app.extensions["festgate_verifier"]
    server = ServerSideCredentialVerifier(store=app.extensions["festgate_store"])
    assert local.verify("ABCDEFGH", "admin", "Admin#1").version_token == server.verify(
        "ABCDEFGH", "admin", "Admin#1"
    ).version_token


def test_admin_gate_wrong_url_secret_just_shows_challenge(app, cache):
    out = _admin(app, cache).load(url_secret="guess")
    assert out.state is GateState.UNAUTHENTICATED
    assert out.message is None
    assert cache.load("ABCDEFGH", "admin") is None


def test_elevated_admin_gate_ignores_open_festival_bypass(app, cache):
    assert _admin(app, cache, code="OPENKEYS").load().authenticated

    gate = _admin(app, cache, code="OPENKEYS", elevated=True)
    assert gate.load().state is GateState.UNAUTHENTICATED
    assert gate.submit("owner-v").message == MSG_WRONG_PASSWORD
    out = gate.submit("owner-a")
    assert out.authenticated
    assert out.access_method == "password_modal"

    assert _admin(app, cache, code="OPENKEYS", elevated=True).load().authenticated


def test_elevated_admin_gate_without_admin_secret_stays_closed(app, cache):
    gate = _admin(app, cache, code="OPENFEST", elevated=True)
    assert gate.load().state is GateState.UNAUTHENTICATED
    assert not gate.submit("anything").authenticated
