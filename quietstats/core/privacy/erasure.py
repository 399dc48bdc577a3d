from __future__ import annotations

import uuid
from typing import Any, Optional

from quietstats.core.errors import ValidationError
from quietstats.core.privacy.pipeline import EventPipeline
from quietstats.core.storage.models import EventFilter
from quietstats.core.storage.repository import EventRepository


class ErasureService:
    """
    On-demand GDPR erasure (Art. 17) for one site.

    The plaintext identifier supplied by the caller is transformed exactly as
    at ingestion before it is used as a delete predicate: userId through the
    sanitizer's hashing rule, sessionId through the session lookup hash.
    """

    def __init__(self, *, events: EventRepository, pipeline: EventPipeline, ops_logger: Any = None, logger: Any = None):
        self.events = events
        self.pipeline = pipeline
        self.ops_logger = ops_logger
        self.logger = logger

    def erase(self, *, site_id: str, user_id: Any = None, session_id: Optional[str] = None, trace_id: str = "") -> int:
        if not site_id:
            raise ValidationError("Site ID is required")
        by_user = user_id is not None and user_id != ""
        by_session = session_id is not None and session_id != ""
        if not by_user and not by_session:
            raise ValidationError("Either userId or sessionId is required")
        trace_id = trace_id or uuid.uuid4().hex

        flt = EventFilter(
            site_id=str(site_id),
            user_ref=(self.pipeline.sanitizer.stored_user_ref(user_id) if by_user else None),
            session_ref=(self.pipeline.session_ref(session_id) if by_session else None),
        )
        deleted = int(self.events.delete_where(flt))
        if self.logger:
            self.logger.info(f"Erasure for site {site_id}: {deleted} events deleted")
        if self.ops_logger is not None:
            try:
                self.ops_logger.log(
                    trace_id=trace_id,
                    event="privacy.erasure",
                    outcome="ok",
                    details={"site_id": str(site_id), "by_user": by_user, "by_session": by_session, "deleted": deleted},
                )
            except OSError as e:
                if self.logger:
                    self.logger.warning(f"Ops log write failed: {e}")
        return deleted
