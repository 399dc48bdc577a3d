from __future__ import annotations

import json
import os
import sqlite3
import threading
from typing import Any, Dict, List, Optional, Tuple

from quietstats.core.errors import SiteAlreadyExistsError, SiteNotFoundError
from quietstats.core.storage.models import EventFilter, EventRecord, Site, StoredEvent, parse_iso, to_iso, utc_now


_SITE_MUTABLE = {"name", "domain", "settings", "retention_days"}


class SqliteStore:
    """
    Event + site store (SQLite).

    NOTES:
    - properties are stored as a JSON string, already sanitized by the pipeline
    - ip/user_agent/session_id columns only ever hold ciphertext tokens
    - user_ref/session_ref are one-way lookup keys used by erasure
    """

    def __init__(self, *, db_path: str, logger: Any = None):
        self.db_path = str(db_path)
        self.logger = logger
        self._lock = threading.Lock()
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        self._init_db()

    # ---- sqlite helpers ----
    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
        except sqlite3.DatabaseError:
            pass
        return conn

    def _init_db(self) -> None:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS events (
                      id TEXT PRIMARY KEY,
                      site_id TEXT NOT NULL,
                      type TEXT NOT NULL,
                      properties TEXT NOT NULL,
                      timestamp TEXT NOT NULL,
                      ip TEXT,
                      user_agent TEXT,
                      session_id TEXT,
                      user_ref TEXT,
                      session_ref TEXT,
                      created_at TEXT NOT NULL,
                      updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_events_site_type ON events(site_id, type)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_events_timestamp ON events(timestamp)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_events_user_ref ON events(site_id, user_ref)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_events_session_ref ON events(site_id, session_ref)")

                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS sites (
                      id TEXT PRIMARY KEY,
                      site_id TEXT NOT NULL UNIQUE,
                      name TEXT NOT NULL,
                      domain TEXT,
                      settings TEXT NOT NULL,
                      api_key TEXT NOT NULL UNIQUE,
                      retention_days INTEGER NOT NULL DEFAULT 30,
                      created_at TEXT NOT NULL,
                      updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.commit()
            finally:
                conn.close()

    @staticmethod
    def _where(flt: EventFilter) -> Tuple[str, List[Any]]:
        clauses = ["site_id = ?"]
        params: List[Any] = [flt.site_id]
        if flt.types:
            clauses.append(f"type IN ({','.join('?' for _ in flt.types)})")
            params.extend(flt.types)
        if flt.start is not None:
            clauses.append("timestamp >= ?")
            params.append(to_iso(flt.start))
        if flt.end is not None:
            clauses.append("timestamp <= ?")
            params.append(to_iso(flt.end))
        if flt.before is not None:
            clauses.append("timestamp < ?")
            params.append(to_iso(flt.before))
        if flt.user_ref is not None:
            clauses.append("user_ref = ?")
            params.append(flt.user_ref)
        if flt.session_ref is not None:
            clauses.append("session_ref = ?")
            params.append(flt.session_ref)
        return " AND ".join(clauses), params

    @staticmethod
    def _event_from_row(r: sqlite3.Row) -> StoredEvent:
        try:
            props = json.loads(r["properties"] or "{}")
        except json.JSONDecodeError:
            props = {}
        return StoredEvent(
            id=r["id"],
            site_id=r["site_id"],
            type=r["type"],
            properties=props if isinstance(props, dict) else {},
            timestamp=parse_iso(r["timestamp"]),
            ip=r["ip"],
            user_agent=r["user_agent"],
            session_id=r["session_id"],
            user_ref=r["user_ref"],
            session_ref=r["session_ref"],
            created_at=parse_iso(r["created_at"]),
            updated_at=parse_iso(r["updated_at"]),
        )

    @staticmethod
    def _site_from_row(r: sqlite3.Row) -> Site:
        try:
            settings = json.loads(r["settings"] or "{}")
        except json.JSONDecodeError:
            settings = {}
        return Site(
            id=r["id"],
            site_id=r["site_id"],
            name=r["name"],
            domain=r["domain"],
            settings=settings if isinstance(settings, dict) else {},
            api_key=r["api_key"],
            retention_days=int(r["retention_days"]),
            created_at=parse_iso(r["created_at"]),
            updated_at=parse_iso(r["updated_at"]),
        )

    # ---- events ----
    def create(self, event: EventRecord) -> StoredEvent:
        now = utc_now()
        stored = StoredEvent(**event.model_dump(), created_at=now, updated_at=now)
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    """
                    INSERT INTO events(
                      id, site_id, type, properties, timestamp, ip, user_agent,
                      session_id, user_ref, session_ref, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        stored.id,
                        stored.site_id,
                        stored.type,
                        json.dumps(stored.properties, ensure_ascii=False, sort_keys=True, default=str),
                        to_iso(stored.timestamp),
                        stored.ip,
                        stored.user_agent,
                        stored.session_id,
                        stored.user_ref,
                        stored.session_ref,
                        to_iso(stored.created_at),
                        to_iso(stored.updated_at),
                    ),
                )
                conn.commit()
            finally:
                conn.close()
        return stored

    def find_many(self, flt: EventFilter) -> List[StoredEvent]:
        where, params = self._where(flt)
        sql = f"SELECT * FROM events WHERE {where} ORDER BY timestamp ASC"
        if flt.limit:
            sql += " LIMIT ?"
            params.append(int(flt.limit))
        with self._lock:
            conn = self._conn()
            try:
                rows = conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        return [self._event_from_row(r) for r in rows or []]

    def count(self, flt: EventFilter) -> int:
        where, params = self._where(flt)
        with self._lock:
            conn = self._conn()
            try:
                row = conn.execute(f"SELECT COUNT(*) AS n FROM events WHERE {where}", params).fetchone()
            finally:
                conn.close()
        return int(row["n"] if row else 0)

    def group_count_by_type(self, flt: EventFilter) -> Dict[str, int]:
        where, params = self._where(flt)
        with self._lock:
            conn = self._conn()
            try:
                rows = conn.execute(
                    f"SELECT type, COUNT(*) AS n FROM events WHERE {where} GROUP BY type ORDER BY n DESC, type ASC",
                    params,
                ).fetchall()
            finally:
                conn.close()
        return {str(r["type"]): int(r["n"]) for r in rows or []}

    def delete_where(self, flt: EventFilter) -> int:
        where, params = self._where(flt)
        with self._lock:
            conn = self._conn()
            try:
                cur = conn.execute(f"DELETE FROM events WHERE {where}", params)
                conn.commit()
                return int(cur.rowcount or 0)
            finally:
                conn.close()

    # ---- sites ----
    def create_site(self, site: Site) -> Site:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    """
                    INSERT INTO sites(id, site_id, name, domain, settings, api_key, retention_days, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        site.id,
                        site.site_id,
                        site.name,
                        site.domain,
                        json.dumps(site.settings or {}, ensure_ascii=False, sort_keys=True),
                        site.api_key,
                        int(site.retention_days),
                        to_iso(site.created_at),
                        to_iso(site.updated_at),
                    ),
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                raise SiteAlreadyExistsError(f"Site {site.site_id} already exists", site_id=site.site_id) from e
            finally:
                conn.close()
        return site

    def get_site(self, site_id: str) -> Optional[Site]:
        with self._lock:
            conn = self._conn()
            try:
                row = conn.execute("SELECT * FROM sites WHERE site_id=?", (str(site_id),)).fetchone()
            finally:
                conn.close()
        return self._site_from_row(row) if row else None

    def list_sites(self) -> List[Site]:
        with self._lock:
            conn = self._conn()
            try:
                rows = conn.execute("SELECT * FROM sites ORDER BY created_at ASC").fetchall()
            finally:
                conn.close()
        return [self._site_from_row(r) for r in rows or []]

    def update_site(self, site_id: str, changes: Dict[str, Any]) -> Site:
        current = self.get_site(site_id)
        if current is None:
            raise SiteNotFoundError(f"Site {site_id} not found", site_id=site_id)
        patch = {k: v for k, v in (changes or {}).items() if k in _SITE_MUTABLE}
        updated = Site.model_validate({**current.model_dump(), **patch, "updated_at": utc_now()})
        with self._lock:
            conn = self._conn()
            try:
                cur = conn.execute(
                    "UPDATE sites SET name=?, domain=?, settings=?, retention_days=?, updated_at=? WHERE site_id=?",
                    (
                        updated.name,
                        updated.domain,
                        json.dumps(updated.settings or {}, ensure_ascii=False, sort_keys=True),
                        int(updated.retention_days),
                        to_iso(updated.updated_at),
                        updated.site_id,
                    ),
                )
                conn.commit()
                if not cur.rowcount:
                    raise SiteNotFoundError(f"Site {site_id} not found", site_id=site_id)
            finally:
                conn.close()
        return updated
