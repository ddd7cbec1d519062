from __future__ import annotations

from typing import Any, Callable, Generic, Iterable, TypeVar
from uuid import uuid4

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from privacycore.core.errors import PrivacyCoreError


API_VERSION = "v1"
REQUEST_ID_HEADER = "X-Request-Id"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    # Request id ties an envelope to the access-log and service log lines it produced.
    request_id: str
    api_version: str = Field(default=API_VERSION)


class ErrorDetail(BaseModel):
    # Stable privacy error codes (ACCESS_REASON_REQUIRED, DSAR_ILLEGAL_TRANSITION, ...).
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


class Page(BaseModel, Generic[T]):
    # Paginated audit/DSAR/breach listing; the masking route class masks each of ``items``.
    items: list[T]
    total: int
    limit: int
    offset: int

    @classmethod
    def build(
        cls,
        rows: Iterable[Any],
        convert: Callable[[Any], T],
        *,
        total: int,
        limit: int,
        offset: int,
    ) -> "Page[T]":
        return cls(items=[convert(row) for row in rows], total=total, limit=limit, offset=offset)


def get_request_id(request: Request) -> str:
    # Reuse the id assigned by the request middleware or sent by the caller.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get(REQUEST_ID_HEADER)
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def is_versioned_request(request: Request) -> bool:
    # Host application routes (/api/...) keep their own response shape.
    return request.url.path.startswith(f"/{API_VERSION}")


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    if not is_versioned_request(request):
        return data
    meta = ResponseMeta(request_id=get_request_id(request))
    return {"data": data, "meta": meta.model_dump()}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    meta = ResponseMeta(request_id=get_request_id(request))
    error = ErrorDetail(code=code, message=message, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": meta.model_dump()}


def privacy_error_response(*, request: Request, exc: PrivacyCoreError) -> dict[str, Any]:
    # Details may carry datetimes or enums from the service layer.
    details = jsonable_encoder(exc.details) if exc.details else None
    return error_response(request=request, code=exc.code, message=exc.message, details=details)
