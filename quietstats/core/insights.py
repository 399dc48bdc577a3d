from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from quietstats.core.errors import ValidationError
from quietstats.core.storage.models import EventFilter, parse_iso, to_iso, utc_now
from quietstats.core.storage.repository import EventRepository


DEFAULT_PERIOD_DAYS = 30
PAGEVIEW_TYPE = "pageview"


def _as_datetime(value: Any, *, field: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    try:
        return parse_iso(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{field} must be an ISO-8601 date", field=field) from e


class InsightsService:
    """Per-type counts over a period (default: the last 30 days)."""

    def __init__(self, *, events: EventRepository):
        self.events = events

    def get_insights(
        self,
        site_id: str,
        *,
        start: Any = None,
        end: Any = None,
        event_types: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        now = now or utc_now()
        start_dt = _as_datetime(start, field="startDate") or (now - timedelta(days=DEFAULT_PERIOD_DAYS))
        end_dt = _as_datetime(end, field="endDate") or now
        if start_dt > end_dt:
            raise ValidationError("startDate must not be after endDate")
        types = [t.strip() for t in (event_types or []) if t and t.strip()] or None

        counts = self.events.group_count_by_type(EventFilter(site_id=site_id, types=types, start=start_dt, end=end_dt))
        # page views are counted over the period regardless of the type filter
        page_views = self.events.group_count_by_type(
            EventFilter(site_id=site_id, types=[PAGEVIEW_TYPE], start=start_dt, end=end_dt)
        ).get(PAGEVIEW_TYPE, 0)

        ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return {
            "events": [{"type": t, "count": n} for t, n in ordered],
            "pageViews": int(page_views),
            "totalEvents": int(sum(counts.values())),
            "period": {"start": to_iso(start_dt), "end": to_iso(end_dt)},
        }
