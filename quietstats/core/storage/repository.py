from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from quietstats.core.storage.models import EventFilter, EventRecord, Site, StoredEvent


class EventRepository(Protocol):
    """
    Durable event store consumed by the pipeline, insights, erasure and retention.

    Writes are append-only; each operation is atomic per event. No cross-event
    transactions are assumed.
    """

    def create(self, event: EventRecord) -> StoredEvent: ...
    def find_many(self, flt: EventFilter) -> List[StoredEvent]: ...
    def group_count_by_type(self, flt: EventFilter) -> Dict[str, int]: ...
    def delete_where(self, flt: EventFilter) -> int: ...


class SiteRepository(Protocol):
    def create_site(self, site: Site) -> Site: ...
    def get_site(self, site_id: str) -> Optional[Site]: ...
    def list_sites(self) -> List[Site]: ...
    def update_site(self, site_id: str, changes: Dict[str, Any]) -> Site: ...
