"""Unit tests for the platform-factory app factory and HTTP routes."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from factory_plane.app.db import SupabaseProvisionStore
from factory_plane.app.inmemory import build_inmemory_providers
from factory_plane.app.main import create_app
from factory_plane.app.provisioning.states import COMPLETE, FAILED, INIT
from factory_plane.app.provisioning.store import InMemoryProvisionStore
from factory_plane.app.settings import FactorySettings


class _NoAlerts:
    def __init__(self):
        self.calls = []

    async def send_alert(self, payload):
        self.calls.append(payload)
        return []


async def _no_sleep(seconds):
    return None


def _local_settings(**overrides) -> FactorySettings:
    defaults = {"environment": "local", "stripe_default_price_id": "price_test"}
    defaults.update(overrides)
    return FactorySettings(**defaults)


def _staging_settings(**overrides) -> FactorySettings:
    defaults = {
        "environment": "staging",
        "supabase_url": "https://control.supabase.co",
        "supabase_service_role_key": "test-key-not-real",
        "cron_secret": "cron-secret",
    }
    defaults.update(overrides)
    return FactorySettings(**defaults)


def _seed(store, slug, **fields):
    async def go():
        await store.create(slug)
        if fields:
            await store.update(slug, fields)

    asyncio.run(go())


@pytest.fixture
def store():
    return InMemoryProvisionStore()


@pytest.fixture
def providers():
    return build_inmemory_providers()


@pytest.fixture
def app(store, providers):
    return create_app(
        _local_settings(cron_secret="shh"),
        store=store,
        providers=providers,
        alerts=_NoAlerts(),
        sleep=_no_sleep,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


# ── Factory ─────────────────────────────────────────────────────────


class TestCreateApp:
    def test_local_defaults_to_inmemory(self):
        app = create_app(_local_settings())
        assert isinstance(app.state.deps.store, InMemoryProvisionStore)

    def test_staging_builds_supabase_store(self):
        app = create_app(_staging_settings())
        assert isinstance(app.state.deps.store, SupabaseProvisionStore)

    def test_staging_requires_control_database(self):
        with pytest.raises(ValueError, match="supabase_url"):
            create_app(FactorySettings(environment="staging", cron_secret="x"))

    def test_staging_requires_cron_secret(self):
        with pytest.raises(ValueError, match="cron_secret"):
            create_app(_staging_settings(cron_secret=""))

    def test_injected_store_is_used(self, app, store):
        assert app.state.deps.store is store
        assert app.state.deps.service is not None


class TestInfrastructureRoutes:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "environment": "local"}

    def test_metrics(self, client):
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert "factory_http_requests_total" in resp.text

    def test_request_id_generated(self, client):
        resp = client.get("/health")
        assert len(resp.headers["x-request-id"]) >= 8

    def test_request_id_propagated(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "req-12345678"})
        assert resp.headers["x-request-id"] == "req-12345678"

    def test_malformed_request_id_replaced(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "bad id!"})
        assert resp.headers["x-request-id"] != "bad id!"


# ── Provisioning routes ─────────────────────────────────────────────


class TestStartRoute:
    def test_start_accepted(self, client):
        resp = client.post("/api/provision/start", json={"projectSlug": "acme-42"})
        assert resp.status_code == 202
        body = resp.json()
        assert body["projectSlug"] == "acme-42"
        assert body["state"] == INIT
        assert body["created"] is True

    def test_start_invalid_slug(self, client):
        resp = client.post("/api/provision/start", json={"projectSlug": "Bad Slug"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_project_slug"

    def test_start_missing_slug(self, client):
        resp = client.post("/api/provision/start", json={})
        assert resp.status_code == 422

    def test_start_complete_run_conflicts(self, client, store):
        _seed(store, "acme-42", state=COMPLETE)
        resp = client.post("/api/provision/start", json={"projectSlug": "acme-42"})
        assert resp.status_code == 409
        assert resp.json()["error"] == "run_exists"


class TestStatusRoute:
    def test_status(self, client, store):
        _seed(store, "acme-42")
        resp = client.get("/api/provision/status", params={"projectSlug": "acme-42"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["state"] == INIT
        assert body["progress"] == 0
        assert body["error"] is None

    def test_status_failed_run_shows_error(self, client, store):
        _seed(store, "acme-42", state=FAILED, error="boom", failed_state=INIT)
        body = client.get("/api/provision/status", params={"projectSlug": "acme-42"}).json()
        assert body["error"] == "boom"
        assert body["failedState"] == INIT

    def test_status_not_found(self, client):
        resp = client.get("/api/provision/status", params={"projectSlug": "acme-42"})
        assert resp.status_code == 404
        assert resp.json()["error"] == "run_not_found"


class TestResumeRoute:
    def test_resume_runs_to_completion(self, client, store):
        _seed(store, "acme-42")
        resp = client.post("/api/provision/resume", json={"projectSlug": "acme-42"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["outcome"] == "complete"
        assert body["state"] == COMPLETE
        assert body["metadata"]["stripe"]["price_id"] == "price_test"

    def test_resume_complete_is_noop(self, client, store):
        _seed(store, "acme-42", state=COMPLETE)
        body = client.post("/api/provision/resume", json={"projectSlug": "acme-42"}).json()
        assert body["outcome"] == "noop"

    def test_resume_not_found(self, client):
        resp = client.post("/api/provision/resume", json={"projectSlug": "acme-42"})
        assert resp.status_code == 404


class TestDeleteRoute:
    def test_delete(self, client, store):
        _seed(store, "acme-42", state=COMPLETE)
        resp = client.post("/api/provision/delete", json={"projectSlug": "acme-42"})
        assert resp.status_code == 200
        assert resp.json() == {"projectSlug": "acme-42", "deleted": True}
        resp = client.get("/api/provision/status", params={"projectSlug": "acme-42"})
        assert resp.status_code == 404

    def test_delete_not_found(self, client):
        resp = client.post("/api/provision/delete", json={"projectSlug": "acme-42"})
        assert resp.status_code == 404


class TestOperationsRoutes:
    def test_stale_report(self, client, store):
        _seed(store, "acme-42")
        body = client.get("/api/provision/stale").json()
        assert body["totalScanned"] == 1
        assert body["staleCount"] == 0

    def test_voice_session_requires_agent(self, client, store):
        _seed(store, "acme-42")
        resp = client.get("/api/provision/voice-session", params={"projectSlug": "acme-42"})
        assert resp.status_code == 409
        assert resp.json()["error"] == "voice_agent_not_ready"

    def test_voice_session_after_completion(self, client, store):
        _seed(store, "acme-42")
        client.post("/api/provision/resume", json={"projectSlug": "acme-42"})
        resp = client.get("/api/provision/voice-session", params={"projectSlug": "acme-42"})
        assert resp.status_code == 200
        assert resp.json()["signedUrl"].startswith("wss://")

    def test_cron_requires_secret(self, client):
        resp = client.get("/api/cron/provision")
        assert resp.status_code == 401
        resp = client.get("/api/cron/provision", headers={"Authorization": "Bearer wrong"})
        assert resp.status_code == 401

    def test_cron_dispatches_active_runs(self, client, store):
        _seed(store, "acme-1")
        _seed(store, "acme-2", state=COMPLETE)
        resp = client.get("/api/cron/provision", headers={"Authorization": "Bearer shh"})
        assert resp.status_code == 200
        assert resp.json() == {"dispatched": ["acme-1"], "count": 1}
