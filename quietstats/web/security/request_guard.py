from __future__ import annotations

import json
from typing import Any, Mapping, Optional

from quietstats.core.errors import PayloadTooLargeError, ValidationError


def json_depth(obj: Any, max_depth: int = 10) -> int:
    """
    Computes JSON nesting depth. Raises ValidationError if max_depth exceeded.
    """
    stack = [(obj, 1)]
    seen_max = 1
    while stack:
        cur, d = stack.pop()
        if d > max_depth:
            raise ValidationError("JSON body too deeply nested")
        seen_max = max(seen_max, d)
        if isinstance(cur, dict):
            stack.extend((v, d + 1) for v in cur.values())
        elif isinstance(cur, list):
            stack.extend((v, d + 1) for v in cur)
    return seen_max


def declared_length(headers: Mapping[str, str]) -> Optional[int]:
    raw = headers.get("content-length")
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError("Invalid Content-Length header") from e


def enforce_body_limits(body: Optional[bytes], *, max_bytes: int, declared: Optional[int] = None) -> None:
    if declared is not None and declared > int(max_bytes):
        raise PayloadTooLargeError("Payload too large", declared=declared, limit=int(max_bytes))
    if body is None:
        return
    if len(body) > int(max_bytes):
        raise PayloadTooLargeError("Payload too large", size=len(body), limit=int(max_bytes))
    if b"\x00" in body:
        raise ValidationError("Binary payload rejected")


def parse_json_body(body: bytes) -> Any:
    if not body:
        return None
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError("Malformed JSON body") from e
