from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import requests

from quietstats.core.errors import ConfigError, DeliveryError


class HttpEventSender:
    """POST one event to `{endpoint}/events`. HTTPS endpoints only."""

    def __init__(self, *, endpoint: str, site_id: str, timeout_seconds: float = 5.0, session: Optional[requests.Session] = None):
        parts = urlsplit(str(endpoint or ""))
        if parts.scheme != "https" or not parts.netloc:
            raise ConfigError("API endpoint must use HTTPS", endpoint=str(endpoint))
        if not site_id:
            raise ConfigError("site_id is required")
        self.endpoint = str(endpoint).rstrip("/")
        self.site_id = str(site_id)
        self.timeout_seconds = float(timeout_seconds)
        self._session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.endpoint}{path}"

    def send(self, event: Dict[str, Any]) -> None:
        try:
            r = self._session.post(
                self._url("/events"),
                json=event,
                headers={"X-Site-ID": self.site_id},
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as e:
            raise DeliveryError("Event delivery failed.", error=type(e).__name__) from e
        if not 200 <= r.status_code < 300:
            raise DeliveryError(f"HTTP error! status: {r.status_code}", status=r.status_code)

    def close(self) -> None:
        self._session.close()
