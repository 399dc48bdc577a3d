from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from quietstats.core.errors import DeliveryError, QuietstatsError, ValidationError
from quietstats.core.privacy.crypto import FieldCipher, IdentifierHasher
from quietstats.core.privacy.sanitizer import Sanitizer
from quietstats.core.privacy.validation import validate_event
from quietstats.core.storage.models import EventRecord, StoredEvent, parse_iso, utc_now
from quietstats.core.storage.repository import EventRepository


def _blank(value: Any) -> bool:
    return value is None or value == ""


class EventPipeline:
    """
    Server-side ingestion: validate -> sanitize -> hash ids -> encrypt metadata -> persist.

    Raw PII never reaches the repository: properties are sanitized before the
    record is built, and ip/user_agent/session_id only leave as ciphertext.
    """

    def __init__(
        self,
        *,
        repository: EventRepository,
        sanitizer: Sanitizer,
        cipher: FieldCipher,
        hasher: Optional[IdentifierHasher] = None,
        ops_logger: Any = None,
        logger: Any = None,
    ):
        self.repository = repository
        self.sanitizer = sanitizer
        self.cipher = cipher
        self.hasher = hasher or sanitizer.hasher
        self.ops_logger = ops_logger
        self.logger = logger

    def session_ref(self, session_id: Any) -> str:
        return self.hasher.hash_identifier(session_id)

    def prepare(
        self,
        *,
        site_id: str,
        event_type: str,
        properties: Optional[Dict[str, Any]] = None,
        timestamp: Any = None,
        session_id: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> EventRecord:
        props = {} if properties is None else properties
        validate_event(event_type, props)
        if not site_id:
            raise ValidationError("Site ID is required")
        try:
            ts = parse_iso(timestamp) if timestamp else utc_now()
        except (TypeError, ValueError) as e:
            raise ValidationError("timestamp must be an ISO-8601 string", field="timestamp") from e

        clean = self.sanitizer.sanitize(props)
        # the session id is only ever stored encrypted, never inside properties
        prop_session = clean.pop("sessionId", None)
        if _blank(session_id) and not _blank(prop_session):
            session_id = str(prop_session)
        user_id = clean.get("userId")
        return EventRecord(
            site_id=str(site_id),
            type=event_type,
            properties=clean,
            timestamp=ts,
            ip=self.cipher.encrypt(ip),
            user_agent=self.cipher.encrypt(user_agent),
            session_id=self.cipher.encrypt(session_id),
            user_ref=(None if _blank(user_id) else str(user_id)),
            session_ref=(None if _blank(session_id) else self.session_ref(session_id)),
        )

    def ingest(self, *, trace_id: str = "", **fields: Any) -> StoredEvent:
        """
        Validation errors propagate to the caller; storage failures are
        logged and surfaced as DeliveryError.
        """
        trace_id = trace_id or uuid.uuid4().hex
        record = self.prepare(**fields)
        try:
            stored = self.repository.create(record)
        except QuietstatsError:
            raise
        except Exception as e:  # noqa: BLE001
            if self.logger:
                self.logger.error(f"Event persistence failed for site {record.site_id}: {e}")
            self._log(trace_id, "event.persist", "failed", {"site_id": record.site_id, "type": record.type, "error": type(e).__name__})
            raise DeliveryError("Event could not be stored.", site_id=record.site_id) from e
        self._log(trace_id, "event.persist", "ok", {"site_id": stored.site_id, "type": stored.type, "event_id": stored.id})
        return stored

    def _log(self, trace_id: str, event: str, outcome: str, details: Dict[str, Any]) -> None:
        if self.ops_logger is None:
            return
        try:
            self.ops_logger.log(trace_id=trace_id, event=event, outcome=outcome, details=details)
        except OSError as e:
            if self.logger:
                self.logger.warning(f"Ops log write failed: {e}")
