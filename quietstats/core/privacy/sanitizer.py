from __future__ import annotations

"""
Property sanitization (data minimization before anything leaves the caller).

Order of operations:
1. deep copy (caller's mapping is never mutated)
2. drop PII keys (case-insensitive substring match)
3. drop direct utm_* tracking keys
4. strip utm_* from a `url` property and drop one trailing slash
5. hash userId/customerId/accountId to "sha256:<hex>" (when enabled)

sanitize() never raises; malformed sub-fields are left as they were.
"""

import copy
import html
import re
from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from quietstats.core.privacy.crypto import IdentifierHasher, is_tagged_digest


PII_INDICATORS = ("email", "phone", "name", "address", "ip", "password", "ssn")
TRACKING_PARAMS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")
HASHED_ID_FIELDS = ("userId", "customerId", "accountId")

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def is_pii_key(key: Any) -> bool:
    k = str(key).lower()
    return any(ind in k for ind in PII_INDICATORS)


def strip_tracking_params(url: str) -> Optional[str]:
    """
    Returns the cleaned URL, or None when `url` is not a valid absolute URL.
    """
    try:
        parts = urlsplit(url)
        _ = parts.port  # raises ValueError on a malformed port
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in TRACKING_PARAMS]
    path = parts.path or "/"
    out = urlunsplit((parts.scheme.lower(), parts.netloc, path, urlencode(query), parts.fragment))
    if out.endswith("/"):
        out = out[:-1]
    return out


class Sanitizer:
    def __init__(self, *, hasher: Optional[IdentifierHasher] = None, hash_user_ids: bool = True):
        self.hasher = hasher or IdentifierHasher()
        self.hash_user_ids = bool(hash_user_ids)

    def sanitize(self, properties: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        if not isinstance(properties, Mapping):
            return {}
        try:
            out: Dict[str, Any] = copy.deepcopy(dict(properties))
        except (TypeError, copy.Error):
            out = dict(properties)

        for key in [k for k in out if is_pii_key(k)]:
            del out[key]

        for param in TRACKING_PARAMS:
            out.pop(param, None)

        url = out.get("url")
        if isinstance(url, str) and url:
            cleaned = strip_tracking_params(url)
            if cleaned is not None:
                out["url"] = cleaned

        if self.hash_user_ids:
            self.hash_identifiers(out)
        return out

    def hash_identifiers(self, props: Dict[str, Any]) -> Dict[str, Any]:
        for field in HASHED_ID_FIELDS:
            value = props.get(field)
            if value is None or value == "":
                continue
            # already hashed upstream (client side or a previous pass)
            if is_tagged_digest(value):
                continue
            props[field] = self.hasher.tagged(value)
        return props

    def stored_user_ref(self, user_id: Any) -> str:
        """Form of a plaintext user id as it appears in stored properties."""
        if not self.hash_user_ids or is_tagged_digest(user_id):
            return str(user_id)
        return self.hasher.tagged(user_id)


def sanitize_text(value: Any, *, max_length: int = 200) -> str:
    """Trim, drop control characters and HTML-escape free text (site name/domain)."""
    s = _CONTROL_CHARS.sub("", str(value or "")).strip()
    return html.escape(s, quote=True)[:max_length]


def sanitize_url(url: Any) -> Optional[str]:
    """
    http/https URLs only; credentials are removed. None when invalid.
    """
    if not url or not isinstance(url, str):
        return None
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
        port = parts.port
    except ValueError:
        return None
    if parts.scheme.lower() not in {"http", "https"} or not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    netloc = host if port is None else f"{host}:{port}"
    return urlunsplit((parts.scheme.lower(), netloc, parts.path or "/", parts.query, parts.fragment))
