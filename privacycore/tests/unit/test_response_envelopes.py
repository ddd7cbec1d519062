from __future__ import annotations

from datetime import datetime, timezone

from fastapi import Request

from privacycore.apps.api.response import Page, privacy_error_response, success_response
from privacycore.core.errors import IllegalTransitionError


def _request(path: str, request_id: str = "req-1") -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": path,
            "query_string": b"",
            "headers": [(b"x-request-id", request_id.encode())],
        }
    )


def test_page_build_converts_each_row() -> None:
    page = Page[str].build([1, 2], lambda row: f"row-{row}", total=7, limit=2, offset=4)
    assert page.model_dump() == {"items": ["row-1", "row-2"], "total": 7, "limit": 2, "offset": 4}


def test_privacy_error_response_encodes_details() -> None:
    deadline = datetime(2026, 4, 4, 10, tzinfo=timezone.utc)
    exc = IllegalTransitionError("Cannot complete a rejected request", details={"deadline": deadline})
    body = privacy_error_response(request=_request("/v1/privacy/dsar/1"), exc=exc)
    assert body["error"]["code"] == exc.code
    assert body["error"]["details"] == {"deadline": "2026-04-04T10:00:00+00:00"}
    assert body["meta"]["request_id"] == "req-1"


def test_host_routes_keep_their_own_shape() -> None:
    assert success_response(request=_request("/api/customers/1"), data={"id": "1"}) == {"id": "1"}
    wrapped = success_response(request=_request("/v1/privacy/breaches"), data=[])
    assert wrapped == {"data": [], "meta": {"request_id": "req-1", "api_version": "v1"}}
