"""
OpenDID Database Module
SQLite journal of the events emitted by the gateway and the claims ledger.
"""

import json
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from opendid.config import config
from opendid.services.events import Event


def init_database(db_path: Optional[str] = None):
    """Initialize the database and create tables if they don't exist."""
    if db_path is None:
        config.ensure_data_dir()

    with get_db_connection(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source TEXT NOT NULL,
                name TEXT NOT NULL,
                did TEXT,
                ens_name TEXT,
                payload TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_events_did ON events (did)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_events_ens_name ON events (ens_name)")

        conn.commit()


@contextmanager
def get_db_connection(db_path: Optional[str] = None):
    """Context manager for database connections."""
    conn = sqlite3.connect(db_path or config.DB_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def record_event(source: str, event: Event, db_path: Optional[str] = None) -> int:
    """Append an emitted event to the journal."""
    payload = event.to_dict()
    with get_db_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO events (source, name, did, ens_name, payload)
            VALUES (?, ?, ?, ?, ?)
        """, (source, event.name, payload.get("did"), payload.get("ens_name"),
              json.dumps(payload)))
        conn.commit()
        return cursor.lastrowid


def _rows_to_events(rows) -> List[Dict[str, Any]]:
    events = []
    for row in rows:
        event = dict(row)
        event["payload"] = json.loads(event["payload"])
        events.append(event)
    return events


def get_events_by_did(did: str, db_path: Optional[str] = None) -> List[Dict[str, Any]]:
    """Get all journaled events for a DID, oldest first."""
    with get_db_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT id, source, name, did, ens_name, payload, created_at
            FROM events
            WHERE did = ?
            ORDER BY id ASC
        """, (did,))
        return _rows_to_events(cursor.fetchall())


def get_events_by_ens_name(ens_name: str, db_path: Optional[str] = None) -> List[Dict[str, Any]]:
    """Get all journaled gateway events for an ENS name, oldest first."""
    with get_db_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT id, source, name, did, ens_name, payload, created_at
            FROM events
            WHERE ens_name = ?
            ORDER BY id ASC
        """, (ens_name,))
        return _rows_to_events(cursor.fetchall())
