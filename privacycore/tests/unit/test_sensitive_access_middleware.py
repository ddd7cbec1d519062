from __future__ import annotations

from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient
import pytest

from privacycore.apps.api.sensitive_access import (
    SensitiveAccessMiddleware,
    extract_resource_id,
    fields_accessed,
    find_route_config,
    requires_reason,
)
from privacycore.domain.enums import DataCategory
from privacycore.services.context import PrivacyCore
from privacycore.tests.utils.headers import accessor_headers
from privacycore.tests.utils.store import refused_session_factory


def _host_app(core) -> FastAPI:
    app = FastAPI()
    app.state.privacy_core = core
    app.add_middleware(SensitiveAccessMiddleware, await_logging=True)

    @app.get("/api/patients/{patient_id}")
    async def get_patient(patient_id: str) -> dict:
        return {"id": patient_id, "name": "Ada"}

    @app.get("/api/patients")
    async def list_patients() -> list:
        return []

    @app.get("/api/customers/{customer_id}")
    async def get_customer(customer_id: str) -> dict:
        return {"id": customer_id}

    @app.post("/api/customers")
    async def create_customer(request: Request) -> dict:
        # Echo the body so tests can see it survived buffering.
        return await request.json()

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


@pytest.fixture
async def host_client(core):
    transport = ASGITransport(app=_host_app(core))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def test_route_helpers() -> None:
    config = find_route_config("/api/patients/123")
    assert config is not None
    assert config.data_category == DataCategory.PHI
    assert find_route_config("/api/patientsx") is None
    assert requires_reason("/api/platform-admin/users/9", find_route_config("/api/platform-admin/users/9"))
    assert not requires_reason("/api/customers/9", find_route_config("/api/customers/9"))
    assert extract_resource_id("/api/patients/123/notes") == "123"
    assert extract_resource_id("/api/patients/0b7c1f0e-5f4a-4c8e-9a51-3d9b2f7f3a10") == (
        "0b7c1f0e-5f4a-4c8e-9a51-3d9b2f7f3a10"
    )
    assert extract_resource_id("/api/customers") is None
    assert fields_accessed("GET", "name, email", b"") == ["name", "email"]
    assert fields_accessed("PATCH", None, b'{"phone": "1", "name": "x"}') == ["phone", "name"]
    assert fields_accessed("POST", None, b"not json") == []


@pytest.mark.asyncio
async def test_phi_without_reason_is_rejected(core, host_client) -> None:
    resp = await host_client.get("/api/patients/123", headers=accessor_headers("u1"))
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "ACCESS_REASON_REQUIRED"
    assert error["details"]["header"] == "X-Access-Reason"
    assert "customer_request" in error["details"]["valid_reasons"]
    assert (await core.audit.get_access_logs()).unwrap().total == 0


@pytest.mark.asyncio
async def test_invalid_reason_is_rejected(host_client) -> None:
    resp = await host_client.get("/api/customers/5", headers=accessor_headers("u1", reason="curiosity"))
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_ACCESS_REASON"


@pytest.mark.asyncio
async def test_phi_with_reason_is_logged(core, host_client) -> None:
    resp = await host_client.get(
        "/api/patients/123?fields=name,dob",
        headers=accessor_headers("u1", role="nurse", reason="customer_request"),
    )
    assert resp.status_code == 200
    assert resp.json() == {"id": "123", "name": "Ada"}

    page = (await core.audit.get_access_logs(accessor_id="u1")).unwrap()
    assert page.total == 1
    entry = page.logs[0]
    assert entry.tenant_id == "t1"
    assert entry.data_category == "phi"
    assert entry.resource_type == "patient"
    assert entry.resource_id == "123"
    assert entry.access_type == "view"
    assert entry.access_reason == "customer_request"
    assert entry.fields_accessed == ["name", "dob"]
    assert entry.accessor_role == "nurse"
    assert entry.risk_level == "medium"


@pytest.mark.asyncio
async def test_phi_collection_without_reason_is_rejected(host_client) -> None:
    resp = await host_client.get("/api/patients", headers=accessor_headers("u1"))
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_pii_defaults_reason(core, host_client) -> None:
    resp = await host_client.get("/api/customers/42", headers=accessor_headers("u1"))
    assert resp.status_code == 200
    entry = (await core.audit.get_access_logs()).unwrap().logs[0]
    assert entry.access_reason == "system_maintenance"
    assert entry.data_category == "pii"
    assert entry.risk_level == "low"


@pytest.mark.asyncio
async def test_post_body_is_replayed_and_fields_recorded(core, host_client) -> None:
    resp = await host_client.post(
        "/api/customers",
        json={"name": "Ada", "email": "ada@example.com"},
        headers=accessor_headers("u1", reason="support_ticket"),
    )
    assert resp.status_code == 200
    assert resp.json() == {"name": "Ada", "email": "ada@example.com"}

    entry = (await core.audit.get_access_logs()).unwrap().logs[0]
    assert entry.access_type == "modify"
    assert entry.resource_id == "unknown"
    assert entry.fields_accessed == ["name", "email"]


@pytest.mark.asyncio
async def test_unidentified_and_non_sensitive_requests_pass_through(core, host_client) -> None:
    assert (await host_client.get("/api/customers/42")).status_code == 200
    assert (await host_client.get("/health", headers=accessor_headers("u1"))).status_code == 200
    assert (await core.audit.get_access_logs()).unwrap().total == 0


@pytest.mark.asyncio
async def test_request_succeeds_when_audit_store_is_down(settings) -> None:
    core = PrivacyCore(settings=settings, session_factory=refused_session_factory())
    transport = ASGITransport(app=_host_app(core))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        phi = await client.get("/api/patients/55", headers=accessor_headers("u1", reason="debugging"))
        pii = await client.get("/api/customers/7", headers=accessor_headers("u1"))
    assert phi.status_code == 200
    assert phi.json() == {"id": "55", "name": "Ada"}
    assert pii.status_code == 200


@pytest.mark.asyncio
async def test_unexpected_audit_error_does_not_fail_request(core, host_client, monkeypatch, caplog) -> None:
    async def explode(params):
        raise RuntimeError("audit writer crashed")

    monkeypatch.setattr(core.audit, "log_sensitive_access", explode)
    resp = await host_client.get("/api/customers/7", headers=accessor_headers("u1"))
    assert resp.status_code == 200
    assert resp.json() == {"id": "7"}
    assert "sensitive_access_audit_failed" in caplog.text
