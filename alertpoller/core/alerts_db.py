"""
alertpoller/core/alerts_db.py

Alert document store.

Two backends:
  - AlertStoreSqlite:   local dev (R-Tree point index when available)
  - AlertStorePostgres: production (PostGIS GIST index)

Factory function `create_alert_store()` auto-selects based on config.

Documents are keyed by `identifier` and written with an upsert, so re-polling
the same alert replaces it instead of duplicating it. Every document is
written on its own; one bad record never blocks the rest of a batch.
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

import orjson

from alertpoller.core.contracts import Alert, PointGeometry, SaveReport
from alertpoller.core.errors import PersistenceFailure
from alertpoller.core.geo import bbox_is_finite, sanitize_point
from alertpoller.core.storage import connect_sqlite, ensure_alerts_schema
from alertpoller.core.time import utc_now_iso

logger = logging.getLogger(__name__)


# ── Documents ────────────────────────────────────────────────────────

def prepare_document(alert: Alert) -> Alert:
    """
    Final validation before a write.

    Geometry is re-sanitized (a persisted alert always has a finite point) and
    a bbox with any non-finite corner is dropped.
    """
    coords = alert.geometry.coordinates if alert.geometry else []
    pt = sanitize_point(coords[0], coords[1]) if len(coords) >= 2 else None
    if pt is None:
        raise PersistenceFailure(alert.identifier, "invalid geometry")

    bbox = alert.bbox
    if bbox is not None and not bbox_is_finite(bbox):
        bbox = None

    return alert.model_copy(update={"geometry": PointGeometry.from_lonlat(pt), "bbox": bbox})


def dump_document(alert: Alert) -> bytes:
    return orjson.dumps(alert.model_dump(mode="json"))


def load_document(blob) -> Alert:
    if isinstance(blob, memoryview):
        blob = blob.tobytes()
    if isinstance(blob, dict):
        return Alert.model_validate(blob)
    return Alert.model_validate(orjson.loads(blob))


# ── Abstract interface ───────────────────────────────────────────────

class AlertStore(ABC):
    """Idempotent, expiring store of canonical alert documents."""

    @abstractmethod
    def upsert(self, alert: Alert) -> None:
        """Insert or replace one document. Raises PersistenceFailure."""
        ...

    @abstractmethod
    def delete_expired(self, now: datetime) -> int:
        """Delete documents whose expiry has passed or is missing."""
        ...

    @abstractmethod
    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete documents sent before `cutoff`."""
        ...

    @abstractmethod
    def get(self, identifier: str) -> Optional[Alert]:
        ...

    @abstractmethod
    def count(self) -> int:
        ...

    @abstractmethod
    def query_bbox(
        self,
        min_lng: float,
        max_lng: float,
        min_lat: float,
        max_lat: float,
        limit: int = 5000,
    ) -> List[Alert]:
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    def save_alerts(self, alerts: Iterable[Alert]) -> SaveReport:
        report = SaveReport()
        for alert in alerts:
            try:
                self.upsert(alert)
            except PersistenceFailure as e:
                report.skipped += 1
                logger.warning("alert save skipped identifier=%s err=%s", e.identifier, e)
                continue
            report.saved += 1
        return report


# ── SQLite backend (local dev) ───────────────────────────────────────

class AlertStoreSqlite(AlertStore):
    """
    Alerts in a local SQLite DB: one row per identifier, orjson document blob,
    indexed expiry/sent timestamps and point coordinates.
    """

    def __init__(self, db_path: str):
        self._path = db_path
        self._conn = connect_sqlite(db_path)
        self._has_rtree = ensure_alerts_schema(self._conn)
        logger.info("alerts sqlite opened path=%s rows=%d rtree=%s", db_path, self.count(), self._has_rtree)

    def upsert(self, alert: Alert) -> None:
        doc = prepare_document(alert)
        lng, lat = doc.geometry.lonlat
        try:
            self._conn.execute(
                """
                INSERT INTO alerts (identifier, source, sent_ts, expires_ts, lng, lat, updated_at, doc_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(identifier) DO UPDATE SET
                    source = excluded.source,
                    sent_ts = excluded.sent_ts,
                    expires_ts = excluded.expires_ts,
                    lng = excluded.lng,
                    lat = excluded.lat,
                    updated_at = excluded.updated_at,
                    doc_json = excluded.doc_json;
                """,
                (
                    doc.identifier,
                    doc.source,
                    doc.sent.timestamp(),
                    doc.expires.timestamp(),
                    lng,
                    lat,
                    utc_now_iso(),
                    dump_document(doc),
                ),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise PersistenceFailure(doc.identifier, str(e)) from e

    def delete_expired(self, now: datetime) -> int:
        cur = self._conn.execute(
            "DELETE FROM alerts WHERE expires_ts IS NULL OR expires_ts <= ?;",
            (now.timestamp(),),
        )
        self._conn.commit()
        return cur.rowcount

    def delete_older_than(self, cutoff: datetime) -> int:
        cur = self._conn.execute(
            "DELETE FROM alerts WHERE sent_ts IS NOT NULL AND sent_ts < ?;",
            (cutoff.timestamp(),),
        )
        self._conn.commit()
        return cur.rowcount

    def get(self, identifier: str) -> Optional[Alert]:
        cur = self._conn.execute("SELECT doc_json FROM alerts WHERE identifier=?;", (identifier,))
        row = cur.fetchone()
        if not row:
            return None
        return load_document(row[0])

    def count(self) -> int:
        cur = self._conn.execute("SELECT COUNT(*) FROM alerts;")
        return cur.fetchone()[0]

    def query_bbox(
        self,
        min_lng: float,
        max_lng: float,
        min_lat: float,
        max_lat: float,
        limit: int = 5000,
    ) -> List[Alert]:
        if self._has_rtree:
            sql = """
                SELECT a.doc_json
                FROM alerts a
                JOIN alerts_rtree r ON a.rowid = r.id
                WHERE r.min_lng <= ? AND r.max_lng >= ?
                  AND r.min_lat <= ? AND r.max_lat >= ?
                ORDER BY a.sent_ts DESC
                LIMIT ?
            """
            params = (max_lng, min_lng, max_lat, min_lat, limit)
        else:
            sql = """
                SELECT doc_json
                FROM alerts
                WHERE lng BETWEEN ? AND ? AND lat BETWEEN ? AND ?
                ORDER BY sent_ts DESC
                LIMIT ?
            """
            params = (min_lng, max_lng, min_lat, max_lat, limit)

        cur = self._conn.execute(sql, params)
        return [load_document(r[0]) for r in cur.fetchall()]

    def close(self) -> None:
        self._conn.close()


# ── Postgres + PostGIS backend (production) ──────────────────────────

class AlertStorePostgres(AlertStore):
    """
    Alerts in Postgres: JSONB document, PostGIS point with a GIST index.
    Uses a connection pool; each write commits or rolls back on its own.
    """

    _SCHEMA = (
        "CREATE EXTENSION IF NOT EXISTS postgis",
        """
        CREATE TABLE IF NOT EXISTS alerts (
            identifier TEXT PRIMARY KEY,
            source TEXT NOT NULL,
            sent TIMESTAMPTZ,
            expires TIMESTAMPTZ,
            geom geometry(Point, 4326) NOT NULL,
            doc JSONB NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_alerts_geom ON alerts USING GIST (geom)",
        "CREATE INDEX IF NOT EXISTS idx_alerts_expires ON alerts (expires)",
        "CREATE INDEX IF NOT EXISTS idx_alerts_sent ON alerts (sent)",
    )

    def __init__(self, database_url: str, min_conn: int = 1, max_conn: int = 5):
        try:
            import psycopg2
            import psycopg2.pool
        except ImportError:
            raise RuntimeError(
                "psycopg2-binary is required for the Postgres alert store. "
                "Install: pip install psycopg2-binary"
            )

        self._psycopg2 = psycopg2
        logger.info("alerts postgres connecting pool=%d-%d", min_conn, max_conn)
        self._pool = psycopg2.pool.ThreadedConnectionPool(min_conn, max_conn, database_url)

        conn = self._pool.getconn()
        try:
            cur = conn.cursor()
            for stmt in self._SCHEMA:
                cur.execute(stmt)
            conn.commit()
            cur.execute("SELECT PostGIS_Version()")
            postgis_ver = cur.fetchone()[0]
            cur.close()
            logger.info("alerts postgres connected postgis=%s", postgis_ver)
        finally:
            self._pool.putconn(conn)

    def _execute(self, sql: str, params: tuple = (), *, fetch: bool = False):
        conn = self._pool.getconn()
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            rows = cur.fetchall() if fetch else None
            n = cur.rowcount
            cur.close()
            conn.commit()
            return rows if fetch else n
        except self._psycopg2.Error:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def upsert(self, alert: Alert) -> None:
        doc = prepare_document(alert)
        lng, lat = doc.geometry.lonlat
        try:
            self._execute(
                """
                INSERT INTO alerts (identifier, source, sent, expires, geom, doc, updated_at)
                VALUES (%s, %s, %s, %s, ST_SetSRID(ST_MakePoint(%s, %s), 4326), %s::jsonb, now())
                ON CONFLICT (identifier) DO UPDATE SET
                    source = EXCLUDED.source,
                    sent = EXCLUDED.sent,
                    expires = EXCLUDED.expires,
                    geom = EXCLUDED.geom,
                    doc = EXCLUDED.doc,
                    updated_at = now()
                """,
                (
                    doc.identifier,
                    doc.source,
                    doc.sent,
                    doc.expires,
                    lng,
                    lat,
                    dump_document(doc).decode("utf-8"),
                ),
            )
        except self._psycopg2.Error as e:
            raise PersistenceFailure(doc.identifier, str(e).strip()) from e

    def delete_expired(self, now: datetime) -> int:
        return self._execute("DELETE FROM alerts WHERE expires IS NULL OR expires <= %s", (now,))

    def delete_older_than(self, cutoff: datetime) -> int:
        return self._execute("DELETE FROM alerts WHERE sent IS NOT NULL AND sent < %s", (cutoff,))

    def get(self, identifier: str) -> Optional[Alert]:
        rows = self._execute("SELECT doc FROM alerts WHERE identifier = %s", (identifier,), fetch=True)
        if not rows:
            return None
        return load_document(rows[0][0])

    def count(self) -> int:
        rows = self._execute("SELECT COUNT(*) FROM alerts", fetch=True)
        return rows[0][0]

    def query_bbox(
        self,
        min_lng: float,
        max_lng: float,
        min_lat: float,
        max_lat: float,
        limit: int = 5000,
    ) -> List[Alert]:
        # ST_MakeEnvelope(xmin, ymin, xmax, ymax)
        rows = self._execute(
            """
            SELECT doc
            FROM alerts
            WHERE geom && ST_MakeEnvelope(%s, %s, %s, %s, 4326)
            ORDER BY sent DESC
            LIMIT %s
            """,
            (min_lng, min_lat, max_lng, max_lat, limit),
            fetch=True,
        )
        return [load_document(r[0]) for r in rows]

    def close(self) -> None:
        self._pool.closeall()


# ── Factory ──────────────────────────────────────────────────────────

def create_alert_store(
    *,
    database_url: str | None = None,
    sqlite_path: str | None = None,
) -> AlertStore:
    """
    Auto-select the alert store backend.

    Priority:
      1. database_url → Postgres+PostGIS
      2. sqlite_path  → local SQLite (created if missing)
    """
    if database_url:
        logger.info("alerts store backend=postgres")
        return AlertStorePostgres(database_url)

    if sqlite_path:
        logger.info("alerts store backend=sqlite path=%s", sqlite_path)
        return AlertStoreSqlite(sqlite_path)

    raise ValueError(
        "No alert store configured. "
        "Set ALERTS_DATABASE_URL for Postgres or ALERTS_DB_PATH for local SQLite."
    )
