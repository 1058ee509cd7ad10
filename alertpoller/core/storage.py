from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Connections
# ──────────────────────────────────────────────────────────────

def connect_sqlite(path: str) -> sqlite3.Connection:
    """
    Open a RW SQLite connection with sane pragmas.

    IMPORTANT:
    - SQLite will NOT create parent directories.
    - WAL mode requires the directory to be writable (creates -wal/-shm).
    """
    if path != ":memory:":
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


# ──────────────────────────────────────────────────────────────
# Schema
# ──────────────────────────────────────────────────────────────

def ensure_alerts_schema(conn: sqlite3.Connection) -> bool:
    """
    Create the alert document table and its indexes.

    Returns True when the R-Tree point index is available; builds without the
    rtree module fall back to the plain (lng, lat) index.
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS alerts (
            identifier TEXT PRIMARY KEY,
            source TEXT NOT NULL,
            sent_ts REAL,
            expires_ts REAL,
            lng REAL NOT NULL,
            lat REAL NOT NULL,
            updated_at TEXT NOT NULL,
            doc_json BLOB NOT NULL
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_alerts_expires ON alerts(expires_ts);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_alerts_sent ON alerts(sent_ts);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_alerts_source ON alerts(source);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_alerts_lnglat ON alerts(lng, lat);")

    has_rtree = _ensure_rtree(conn)
    conn.commit()
    return has_rtree


def _ensure_rtree(conn: sqlite3.Connection) -> bool:
    try:
        conn.execute(
            """
            CREATE VIRTUAL TABLE IF NOT EXISTS alerts_rtree
            USING rtree(id, min_lng, max_lng, min_lat, max_lat);
            """
        )
    except sqlite3.OperationalError as e:
        logger.info("sqlite rtree unavailable err=%s", e)
        return False

    # Keep the point index in step with the document table by rowid.
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS alerts_rtree_ins AFTER INSERT ON alerts BEGIN
            INSERT OR REPLACE INTO alerts_rtree (id, min_lng, max_lng, min_lat, max_lat)
            VALUES (new.rowid, new.lng, new.lng, new.lat, new.lat);
        END;
        """
    )
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS alerts_rtree_upd AFTER UPDATE OF lng, lat ON alerts BEGIN
            UPDATE alerts_rtree
               SET min_lng = new.lng, max_lng = new.lng, min_lat = new.lat, max_lat = new.lat
             WHERE id = new.rowid;
        END;
        """
    )
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS alerts_rtree_del AFTER DELETE ON alerts BEGIN
            DELETE FROM alerts_rtree WHERE id = old.rowid;
        END;
        """
    )
    return True
