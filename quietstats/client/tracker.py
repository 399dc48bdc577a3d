from __future__ import annotations

"""
Client-side tracker.

track() validates first, then hands the event to the consent gate. Events are
sanitized (PII keys dropped, ids hashed, utm_* stripped) only when they are
about to be sent, so a queued event never leaves the process before consent.
"""

import uuid
from concurrent.futures import Executor
from typing import Any, Callable, Dict, Mapping, Optional

from quietstats.client.transport import HttpEventSender
from quietstats.core.errors import DeliveryError
from quietstats.core.logger import get_logger
from quietstats.core.privacy.consent import ConsentGate, ConsentState, ConsentStore
from quietstats.core.privacy.crypto import IdentifierHasher
from quietstats.core.privacy.sanitizer import Sanitizer, sanitize_url, strip_tracking_params
from quietstats.core.privacy.validation import validate_event, validate_tracker_config
from quietstats.core.storage.models import to_iso, utc_now


DEFAULT_ENDPOINT = "https://api.quietstats.io/v1"
FALLBACK_URL = "https://localhost"


class Tracker:
    def __init__(
        self,
        config: Mapping[str, Any],
        *,
        sender: Any = None,
        consent_store: Optional[ConsentStore] = None,
        executor: Optional[Executor] = None,
        current_url: Optional[Callable[[], str]] = None,
        logger: Any = None,
    ):
        validate_tracker_config(config)
        self.config: Dict[str, Any] = {
            "endpoint": DEFAULT_ENDPOINT,
            "consent_required": True,
            "hash_user_ids": True,
            "automatic_page_views": False,
            "hash_salt": "",
            **dict(config),
        }
        self.site_id = str(self.config["site_id"])
        self.logger = logger or get_logger("tracker")
        self.sender = sender or HttpEventSender(endpoint=self.config["endpoint"], site_id=self.site_id)
        self.sanitizer = Sanitizer(
            hasher=IdentifierHasher(salt=str(self.config.get("hash_salt") or "")),
            hash_user_ids=bool(self.config["hash_user_ids"]),
        )
        self._current_url = current_url
        self._session_id: Optional[str] = None
        self.gate = ConsentGate(
            dispatch=self._send,
            store=consent_store,
            consent_required=bool(self.config["consent_required"]),
            executor=executor,
            logger=self.logger,
        )

    # ---- lifecycle ----
    @property
    def state(self) -> ConsentState:
        return self.gate.state

    def init(self) -> ConsentState:
        state = self.gate.init()
        if self.config.get("automatic_page_views"):
            self.track_page_view()
        return state

    def enable_tracking(self) -> None:
        self.gate.enable_tracking()

    def disable_tracking(self) -> None:
        self.gate.disable_tracking()

    def close(self) -> None:
        self.gate.close()

    # ---- tracking ----
    def track(self, event_name: str, properties: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Validation errors propagate. Delivery failures do not: the event is
        returned whether it was sent, queued, or dropped after a send error.
        """
        props = {} if properties is None else properties
        validate_event(event_name, props)
        event: Dict[str, Any] = {
            "type": event_name,
            "properties": dict(props),
            "timestamp": to_iso(utc_now()),
            "url": self.current_url(),
            "sessionId": self.session_id,
        }
        self.gate.submit(event)
        return event

    def track_page_view(self, url: Optional[str] = None, referrer: str = "", title: str = "") -> Dict[str, Any]:
        return self.track("pageview", {"url": url or self.current_url(), "referrer": referrer or "", "title": title or ""})

    def track_session(self) -> Dict[str, Any]:
        # the session id travels in the top-level sessionId field only
        return self.track("session_start", {"startTime": to_iso(utc_now())})

    @property
    def session_id(self) -> str:
        if self._session_id is None:
            self._session_id = str(uuid.uuid4())
        return self._session_id

    def current_url(self) -> str:
        raw = None
        if self._current_url is not None:
            try:
                raw = self._current_url()
            except Exception as e:  # noqa: BLE001
                self.logger.warning(f"Current URL unavailable: {e}")
        # never leak credentials embedded in the page URL
        return sanitize_url(raw) or FALLBACK_URL

    # ---- delivery ----
    def _send(self, event: Dict[str, Any]) -> None:
        payload = dict(event)
        payload["properties"] = self.sanitizer.sanitize(event.get("properties") or {})
        url = payload.get("url")
        if isinstance(url, str):
            payload["url"] = strip_tracking_params(url) or url
        try:
            self.sender.send(payload)
        except DeliveryError as e:
            self.logger.error(f"Failed to send event: {e}")
