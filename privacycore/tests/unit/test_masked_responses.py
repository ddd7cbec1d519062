from __future__ import annotations

from fastapi import APIRouter, FastAPI
from httpx import ASGITransport, AsyncClient
import pytest

from privacycore.apps.api.masking import mask_payload, masked_route_class
from privacycore.domain.enums import MaskingType
from privacycore.tests.utils.headers import accessor_headers


def _host_app(core) -> FastAPI:
    app = FastAPI()
    app.state.privacy_core = core
    router = APIRouter(route_class=masked_route_class("customer"))

    @router.get("/customers/{customer_id}")
    async def get_customer(customer_id: str) -> dict:
        return {"id": customer_id, "email": "john.doe@example.com", "ssn": "123-45-6789"}

    @router.get("/customers")
    async def list_customers() -> dict:
        return {"items": [{"id": "1", "ssn": "111-22-3333"}], "total": 1, "limit": 50, "offset": 0}

    app.include_router(router)
    return app


@pytest.fixture
async def host_client(core):
    transport = ASGITransport(app=_host_app(core))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_role_specific_rules_mask_response(core, host_client) -> None:
    await core.masking.create_rule(
        resource_type="customer", field_name="ssn", masking_type=MaskingType.REDACT, role_name="support"
    )
    await core.masking.create_rule(resource_type="customer", field_name="email", role_name="support")

    masked = await host_client.get("/customers/7", headers=accessor_headers("u1", role="support"))
    assert masked.status_code == 200
    assert masked.json() == {"id": "7", "email": "j******e@example.com", "ssn": "[REDACTED]"}

    unmasked = await host_client.get("/customers/7", headers=accessor_headers("u2", role="dpo"))
    assert unmasked.json()["ssn"] == "123-45-6789"


@pytest.mark.asyncio
async def test_anonymous_role_and_pages(core, host_client) -> None:
    await core.masking.create_rule(
        resource_type="customer", field_name="ssn", masking_type=MaskingType.FULL, role_name="anonymous"
    )
    resp = await host_client.get("/customers")
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 1
    assert body["items"][0]["ssn"] == "***********"


@pytest.mark.asyncio
async def test_mask_payload_handles_envelopes(core) -> None:
    await core.masking.create_rule(resource_type="customer", field_name="name", masking_type=MaskingType.REDACT)
    envelope = {"data": [{"name": "Ada"}, {"name": "Grace"}], "meta": {"request_id": "r1", "api_version": "v1"}}
    result = await mask_payload(core.masking, envelope, "customer", "support", None)
    assert result.ok
    assert result.value["data"] == [{"name": "[REDACTED]"}, {"name": "[REDACTED]"}]
    assert result.value["meta"] == envelope["meta"]

    scalar = await mask_payload(core.masking, "plain", "customer", "support", None)
    assert scalar.value == "plain"
