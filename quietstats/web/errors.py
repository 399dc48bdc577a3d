from __future__ import annotations

from typing import Dict

from fastapi.responses import JSONResponse

from quietstats.core.errors import QuietstatsError


STATUS_BY_CODE: Dict[str, int] = {
    "validation_error": 400,
    "invalid_event_name": 400,
    "invalid_properties": 400,
    "origin_not_allowed": 403,
    "site_not_found": 404,
    "site_exists": 409,
    "payload_too_large": 413,
    "rate_limited": 429,
}


def status_for(err: QuietstatsError) -> int:
    return STATUS_BY_CODE.get(err.code, 500)


def error_response(err: QuietstatsError) -> JSONResponse:
    status = status_for(err)
    # internal details never reach the client
    detail = err.user_message if status < 500 else "Internal server error."
    return JSONResponse(status_code=status, content={"detail": detail, "code": err.code if status < 500 else "internal_error"})
