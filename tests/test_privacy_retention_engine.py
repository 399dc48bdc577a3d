from __future__ import annotations

import threading
from datetime import timedelta

from quietstats.core.ops_log import OpsLogger
from quietstats.core.privacy.retention import RetentionSweeper
from quietstats.core.storage.models import EventFilter, EventRecord, Site, utc_now

from .helpers.fakes import RecordingLogger


def _site(store, cipher, site_id: str, days: int = 30) -> None:
    store.create_site(Site(site_id=site_id, name=site_id, api_key=cipher.encrypt(site_id), retention_days=days))


def _event(store, site_id: str, age_days: float) -> None:
    store.create(EventRecord(site_id=site_id, type="pageview", timestamp=utc_now() - timedelta(days=age_days)))


def test_expired_events_deleted_recent_kept(store, cipher, tmp_path):
    _site(store, cipher, "s1", days=30)
    _event(store, "s1", 40)
    _event(store, "s1", 1)
    log = RecordingLogger()
    ops = OpsLogger(path=str(tmp_path / "ops.jsonl"))
    sweeper = RetentionSweeper(events=store, sites=store, ops_logger=ops, logger=log)

    res = sweeper.run_once()
    assert res.ok and res.deleted == 1
    assert res.per_site == {"s1": 1}
    assert store.count(EventFilter(site_id="s1")) == 1
    assert "Cleaned up 1 old events" in log.messages("info")
    assert ops.tail(1)[0]["event"] == "retention.sweep"

    # idempotent re-run
    again = sweeper.run_once()
    assert again.deleted == 0
    assert store.count(EventFilter(site_id="s1")) == 1


def test_per_site_retention_windows(store, cipher):
    _site(store, cipher, "short", days=7)
    _site(store, cipher, "long", days=90)
    _event(store, "short", 10)
    _event(store, "long", 10)
    _event(store, "orphan", 400)  # no site row: untouched
    res = RetentionSweeper(events=store, sites=store).run_once()
    assert res.per_site == {"short": 1, "long": 0}
    assert store.count(EventFilter(site_id="long")) == 1
    assert store.count(EventFilter(site_id="orphan")) == 1


class _FlakyEvents:
    def __init__(self, inner, bad_site: str):
        self.inner = inner
        self.bad_site = bad_site

    def delete_where(self, flt):  # noqa: ANN001
        if flt.site_id == self.bad_site:
            raise RuntimeError("db locked")
        return self.inner.delete_where(flt)


def test_site_failure_does_not_stop_sweep(store, cipher):
    _site(store, cipher, "bad")
    _site(store, cipher, "good")
    _event(store, "good", 60)
    log = RecordingLogger()
    res = RetentionSweeper(events=_FlakyEvents(store, "bad"), sites=store, logger=log).run_once()
    assert res.ok is False
    assert res.failed_sites == ["bad"]
    assert res.per_site == {"good": 1}
    assert any("bad" in m for m in log.messages("error"))


class _BlockingEvents:
    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def delete_where(self, flt):  # noqa: ANN001
        self.entered.set()
        self.release.wait(timeout=5)
        return 0


def test_overlapping_runs_are_skipped(store, cipher):
    _site(store, cipher, "s1")
    events = _BlockingEvents()
    sweeper = RetentionSweeper(events=events, sites=store)
    th = threading.Thread(target=sweeper.run_once)
    th.start()
    assert events.entered.wait(timeout=5)
    assert sweeper.is_running()
    second = sweeper.run_once()
    assert second.skipped is True
    events.release.set()
    th.join(timeout=5)
    assert not sweeper.is_running()


def test_start_runs_immediately_and_stops(store, cipher):
    _site(store, cipher, "s1", days=1)
    _event(store, "s1", 5)
    sweeper = RetentionSweeper(events=store, sites=store, interval_seconds=3600)
    sweeper.start()
    try:
        for _ in range(100):
            if sweeper.last_result is not None:
                break
            threading.Event().wait(0.05)
    finally:
        sweeper.stop()
    assert sweeper.last_result is not None
    assert sweeper.last_result.deleted == 1
