from __future__ import annotations

import uuid
from typing import Any

from fastapi import Request

from ingest_catalog.app.errors import CatalogError, rolled_back_steps


STATUS_BY_CODE = {
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "VALIDATION_ERROR": 400,
    "GRANULE_PUBLISHED": 400,
    "AMBIGUOUS_MATCH": 500,
    "STORE_UNAVAILABLE": 503,
}


def request_id(request: Request) -> str:
    existing = request.headers.get("x-request-id")
    return existing if existing else str(uuid.uuid4())


def success_envelope(req_id: str, data: Any) -> dict[str, Any]:
    return {
        "request_id": req_id,
        "status": "success",
        "data": data,
        "error": None,
    }


def error_envelope(
    req_id: str,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    retryable: bool = False,
) -> dict[str, Any]:
    return {
        "request_id": req_id,
        "status": "error",
        "data": None,
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
            "retryable": retryable,
        },
    }


def error_details(exc: BaseException) -> dict[str, Any]:
    """Error details plus whether any store was touched before rollback."""
    details = dict(exc.details) if isinstance(exc, CatalogError) else {}
    steps = rolled_back_steps(exc)
    if steps:
        details["outcome"] = "rolled_back"
        details["rolled_back_steps"] = list(steps)
    else:
        details["outcome"] = "no_change"
    return details


def status_code_for(exc: CatalogError) -> int:
    return STATUS_BY_CODE.get(exc.code, 500)
