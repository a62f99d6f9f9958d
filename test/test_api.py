import asyncio
import importlib

import pytest
from fastapi.testclient import TestClient
from google.auth.exceptions import RefreshError

from calendar_sync.errors import ReauthorizationRequired
from conftest import FakeEventStore, FakeRefresher, google_event
from integration.calendar_integration import CalendarIntegration
from integration.credentials import CredentialManager


@pytest.fixture
def app_env(monkeypatch, fake_service_factory, fresh_credentials):
    main_mod = importlib.import_module("api.main")
    deps = importlib.import_module("api.dependencies")
    events_mod = importlib.import_module("api.routers.events")

    store = FakeEventStore()
    manager = CredentialManager(FakeRefresher())
    asyncio.run(manager.authorize(fresh_credentials))
    service = fake_service_factory(pages=[[google_event("e1", summary="Kickoff")]])

    monkeypatch.setattr(
        events_mod,
        "CalendarIntegration",
        lambda credentials: CalendarIntegration(credentials, service=service),
        raising=True,
    )

    app = main_mod.app
    app.dependency_overrides[deps.get_event_store] = lambda: store
    app.dependency_overrides[deps.get_credential_manager] = lambda: manager

    yield {
        "client": TestClient(app),
        "store": store,
        "manager": manager,
        "service": service,
        "events_mod": events_mod,
    }

    app.dependency_overrides.clear()


def test_sync_notification_does_not_fetch(app_env):
    r = app_env["client"].post(
        "/notifications", headers={"X-Goog-Resource-State": "sync"}
    )

    assert r.status_code == 200
    assert r.json() == {"status": "sync"}
    assert app_env["service"].events().list_calls == []
    assert app_env["store"].records == {}


def test_change_notification_reconciles_latest_event(app_env):
    r = app_env["client"].post(
        "/notifications", headers={"X-Goog-Resource-State": "exists"}
    )

    assert r.status_code == 200
    body = r.json()
    assert body["action"] == "created"
    assert body["external_id"] == "e1"
    assert app_env["store"].records["e1"].description == "Kickoff"


def test_notification_with_bad_channel_token_rejected(app_env, monkeypatch):
    monkeypatch.setattr(app_env["events_mod"], "WEBHOOK_CHANNEL_TOKEN", "expected")

    r = app_env["client"].post(
        "/notifications",
        headers={"X-Goog-Resource-State": "exists", "X-Goog-Channel-Token": "wrong"},
    )

    assert r.status_code == 403
    assert app_env["store"].records == {}


def test_bulk_sync_inserts_events(app_env):
    r = app_env["client"].post("/google/all/events")

    assert r.status_code == 200
    body = r.json()
    assert body["created"] == 1
    assert body["skipped"] == 0
    assert "e1" in app_env["store"].records


def test_unauthenticated_caller_rejected(app_env):
    asyncio.run(app_env["manager"].disconnect())

    r = app_env["client"].post("/notifications", headers={"X-Goog-Resource-State": "exists"})

    assert r.status_code == 401
    assert app_env["service"].events().list_calls == []


def test_revoked_token_asks_for_reauthorization(app_env, expired_credentials):
    manager = CredentialManager(FakeRefresher(error=ReauthorizationRequired("invalid_grant")))
    asyncio.run(manager.authorize(expired_credentials))
    deps = importlib.import_module("api.dependencies")
    app_env["client"].app.dependency_overrides[deps.get_credential_manager] = lambda: manager

    r = app_env["client"].post("/google/all/events")

    assert r.status_code == 401
    assert r.json()["detail"] == "Reauthorization required"


def test_provider_failure_is_bad_gateway(
    app_env, monkeypatch, fake_service_factory, http_error_factory
):
    failing = fake_service_factory(error=http_error_factory(status=500))
    monkeypatch.setattr(
        app_env["events_mod"],
        "CalendarIntegration",
        lambda credentials: CalendarIntegration(credentials, service=failing),
    )

    r = app_env["client"].post("/notifications", headers={"X-Goog-Resource-State": "exists"})

    assert r.status_code == 502


def test_get_event_roundtrip_and_404(app_env):
    client = app_env["client"]
    client.post("/notifications", headers={"X-Goog-Resource-State": "exists"})

    found = client.get("/events/e1")
    missing = client.get("/events/nope")

    assert found.status_code == 200
    assert found.json()["external_id"] == "e1"
    assert missing.status_code == 404


def test_auth_status_reports_connection(app_env):
    r = app_env["client"].get("/auth/status")

    assert r.status_code == 200
    assert r.json() == {"connected": True, "reauthorization_required": False}


def test_metrics_endpoint_exposes_prometheus_text(app_env):
    app_env["client"].post("/notifications", headers={"X-Goog-Resource-State": "sync"})

    r = app_env["client"].get("/metrics")

    assert r.status_code == 200
    assert "text/plain" in r.headers.get("content-type", "")
    assert "calendar_sync_webhook_notifications_total" in r.text
    assert "calendar_sync_events_reconciled_total" in r.text


def test_auth_redirects_to_consent_screen(app_env, monkeypatch):
    auth_mod = importlib.import_module("api.routers.auth")
    monkeypatch.setattr(auth_mod, "GOOGLE_CLIENT_ID", "client-id")
    monkeypatch.setattr(auth_mod, "GOOGLE_CLIENT_SECRET", "client-secret")

    r = app_env["client"].get("/auth", follow_redirects=False)

    assert r.status_code == 307
    location = r.headers["location"]
    assert location.startswith("https://accounts.google.com/o/oauth2/auth")
    assert "access_type=offline" in location
    assert "prompt=consent" in location
    assert "auth%2Fcalendar" in location


def test_callback_stores_credentials_and_registers_watch(app_env, monkeypatch, fresh_credentials):
    auth_mod = importlib.import_module("api.routers.auth")
    deps = importlib.import_module("api.dependencies")

    class FakeFlow:
        credentials = fresh_credentials

        def fetch_token(self, code):
            assert code == "abc"

    class FakeRegistrar:
        calls = []

        async def register(self, integration, calendar_id):
            self.calls.append(calendar_id)
            return None

    manager = CredentialManager(FakeRefresher())
    monkeypatch.setattr(auth_mod, "_build_flow", lambda: FakeFlow())
    app = app_env["client"].app
    app.dependency_overrides[deps.get_credential_manager] = lambda: manager
    app.dependency_overrides[deps.get_watch_registrar] = lambda: FakeRegistrar()

    r = app_env["client"].get("/auth/callback", params={"code": "abc"})

    assert r.status_code == 200
    assert "Authorization successful" in r.text
    assert manager.is_valid()
    assert FakeRegistrar.calls == ["primary"]


def test_callback_with_provider_error(app_env):
    r = app_env["client"].get("/auth/callback", params={"error": "access_denied"})

    assert r.status_code == 400


def test_token_revoked_during_api_call_is_unauthorized(app_env, monkeypatch, fake_service_factory):
    failing = fake_service_factory(error=RefreshError("invalid_grant: Bad Request"))
    monkeypatch.setattr(
        app_env["events_mod"],
        "CalendarIntegration",
        lambda credentials: CalendarIntegration(credentials, service=failing),
    )

    r = app_env["client"].post("/notifications", headers={"X-Goog-Resource-State": "exists"})

    assert r.status_code == 401
    assert r.json()["detail"] == "Reauthorization required"
