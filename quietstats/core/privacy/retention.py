from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from quietstats.core.errors import RetentionSweepError
from quietstats.core.storage.models import EventFilter, to_iso, utc_now
from quietstats.core.storage.repository import EventRepository, SiteRepository


@dataclass
class SweepResult:
    ok: bool
    as_of: str
    deleted: int = 0
    per_site: Dict[str, int] = field(default_factory=dict)
    failed_sites: List[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "as_of": self.as_of,
            "deleted": self.deleted,
            "per_site": dict(self.per_site),
            "failed_sites": list(self.failed_sites),
            "skipped": self.skipped,
        }


class RetentionSweeper:
    """
    Deletes events older than each site's retention window.

    - one immediate run on start(), then every interval_seconds
    - runs never overlap: a run that finds another in progress is skipped
    - deletes are predicate-based (timestamp < cutoff), so re-runs are no-ops
      and concurrent ingestion is unaffected
    - a failing site is logged and the sweep moves on to the next site
    """

    def __init__(
        self,
        *,
        events: EventRepository,
        sites: SiteRepository,
        interval_seconds: float = 24 * 60 * 60,
        run_on_start: bool = True,
        ops_logger: Any = None,
        logger: Any = None,
        now_fn: Callable[[], datetime] = utc_now,
    ):
        self.events = events
        self.sites = sites
        self.interval_seconds = max(1.0, float(interval_seconds))
        self.run_on_start = bool(run_on_start)
        self.ops_logger = ops_logger
        self.logger = logger
        self._now = now_fn
        self._running = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_result: Optional[SweepResult] = None

    # ---- lifecycle ----
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="retention-sweeper", daemon=True)
        self._thread.start()
        if self.logger:
            self.logger.info(f"Retention sweeper started (interval={self.interval_seconds:.0f}s)")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def is_running(self) -> bool:
        return self._running.locked()

    def _loop(self) -> None:
        next_run = time.monotonic() if self.run_on_start else time.monotonic() + self.interval_seconds
        while not self._stop.is_set():
            if time.monotonic() >= next_run:
                try:
                    self.run_once()
                except Exception as e:  # noqa: BLE001
                    # never let the timer thread die; next tick retries
                    if self.logger:
                        self.logger.error(f"Retention sweep crashed: {e}")
                next_run = time.monotonic() + self.interval_seconds
            self._stop.wait(timeout=min(1.0, max(0.05, next_run - time.monotonic())))

    # ---- sweep ----
    def run_once(self, *, now: Optional[datetime] = None, trace_id: str = "") -> SweepResult:
        trace_id = trace_id or uuid.uuid4().hex
        as_of = now or self._now()
        if not self._running.acquire(blocking=False):
            if self.logger:
                self.logger.info("Retention sweep already running; skipping.")
            return SweepResult(ok=True, as_of=to_iso(as_of), skipped=True)
        try:
            result = self._sweep(as_of, trace_id=trace_id)
        finally:
            self._running.release()
        self.last_result = result
        if self.logger:
            self.logger.info(f"Cleaned up {result.deleted} old events")
        self._log(trace_id, "retention.sweep", "ok" if result.ok else "partial", result.to_dict())
        return result

    def _sweep(self, as_of: datetime, *, trace_id: str) -> SweepResult:
        result = SweepResult(ok=True, as_of=to_iso(as_of))
        for site in self.sites.list_sites():
            try:
                cutoff = as_of - timedelta(days=int(site.retention_days))
                n = int(self.events.delete_where(EventFilter(site_id=site.site_id, before=cutoff)))
            except Exception as e:  # noqa: BLE001
                err = RetentionSweepError(site_id=site.site_id, error=str(e))
                result.ok = False
                result.failed_sites.append(site.site_id)
                if self.logger:
                    self.logger.error(f"Retention sweep failed for site {site.site_id}: {e}")
                self._log(trace_id, "retention.site_failed", "error", err.to_dict())
                continue
            result.per_site[site.site_id] = n
            result.deleted += n
        return result

    def _log(self, trace_id: str, event: str, outcome: str, details: Dict[str, Any]) -> None:
        if self.ops_logger is None:
            return
        try:
            self.ops_logger.log(trace_id=trace_id, event=event, outcome=outcome, details=details)
        except OSError as e:
            if self.logger:
                self.logger.warning(f"Ops log write failed: {e}")
