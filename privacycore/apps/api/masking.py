from __future__ import annotations

import json
import logging
from typing import Any, Callable, Coroutine

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from privacycore.apps.api.deps import ANONYMOUS_ROLE, resolve_accessor
from privacycore.apps.api.response import API_VERSION
from privacycore.core.result import Ok, Result
from privacycore.services.context import PrivacyCore
from privacycore.services.masking import MaskingEngine


logger = logging.getLogger(__name__)


def _is_envelope(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and "data" in payload
        and isinstance(payload.get("meta"), dict)
        and payload["meta"].get("api_version") == API_VERSION
    )


async def mask_payload(
    engine: MaskingEngine,
    payload: Any,
    resource_type: str,
    role_name: str,
    tenant_id: str | None,
) -> Result[Any]:
    """Mask a JSON payload: an object, a list of objects, a page or an envelope.

    Scalars and non-object list items pass through unchanged.
    """
    if _is_envelope(payload):
        inner = await mask_payload(engine, payload["data"], resource_type, role_name, tenant_id)
        if not inner.ok:
            return inner
        if inner.value is payload["data"]:
            return Ok(payload)
        return Ok({**payload, "data": inner.value})
    if isinstance(payload, list):
        return await engine.apply_masking_many(payload, resource_type, role_name, tenant_id)
    if isinstance(payload, dict):
        items = payload.get("items")
        if isinstance(items, list) and "total" in payload:
            masked_items = await engine.apply_masking_many(items, resource_type, role_name, tenant_id)
            if not masked_items.ok:
                return masked_items
            return Ok({**payload, "items": masked_items.value})
        return await engine.apply_masking(payload, resource_type, role_name, tenant_id)
    return Ok(payload)


def masked_route_class(resource_type: str) -> type[APIRoute]:
    """Build an APIRoute class that masks successful JSON responses for ``resource_type``.

    Masking uses the accessor's role (``anonymous`` when unknown) and tenant. When
    rules cannot be resolved the response is withheld with 503 instead of being
    sent unmasked.
    """

    class MaskedRoute(APIRoute):
        def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
            original_handler = super().get_route_handler()

            async def masked_handler(request: Request) -> Response:
                response = await original_handler(request)
                if response.status_code >= 400 or response.media_type != "application/json":
                    return response
                raw_body = getattr(response, "body", None)
                if not raw_body:
                    return response
                try:
                    payload = json.loads(raw_body)
                except (TypeError, ValueError):
                    return response
                core: PrivacyCore = request.app.state.privacy_core
                accessor = resolve_accessor(request, core.settings)
                role = accessor.masking_role if accessor else ANONYMOUS_ROLE
                tenant_id = accessor.tenant_id if accessor else None
                masked = await mask_payload(core.masking, payload, resource_type, role, tenant_id)
                if not masked.ok:
                    logger.warning(
                        "response_masking_failed resource_type=%s path=%s code=%s",
                        resource_type,
                        request.url.path,
                        masked.error.code,
                    )
                    # Re-raised so the error handlers render the typed failure.
                    masked.unwrap()
                if masked.value is payload:
                    return response
                masked_response = JSONResponse(content=masked.value, status_code=response.status_code)
                for key, value in response.headers.items():
                    if key.lower() in {"content-length", "content-type"}:
                        continue
                    masked_response.headers[key] = value
                return masked_response

            return masked_handler

    MaskedRoute.__name__ = f"MaskedRoute[{resource_type}]"
    return MaskedRoute
