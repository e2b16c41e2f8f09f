"""
Source collection storage (records the reconciliation engine reads).
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
import json
import uuid

from .base import ChangeType, get_db


def _log_change(conn, collection: str, change_type: ChangeType, record_count: int, now: str):
    conn.execute("""
        INSERT INTO collection_changes (id, collection, change_type, record_count, created_at)
        VALUES (?, ?, ?, ?, ?)
    """, (str(uuid.uuid4()), collection, change_type.value, record_count, now))


def replace_collection(collection: str, records: List[Dict[str, Any]]) -> int:
    """Swap every record of a collection in one transaction. Returns the new count."""
    now = datetime.utcnow().isoformat()

    with get_db() as conn:
        conn.execute("DELETE FROM collection_records WHERE collection = ?", (collection,))
        conn.executemany("""
            INSERT INTO collection_records (id, collection, position, data, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, [
            (str(uuid.uuid4()), collection, position, json.dumps(record), now)
            for position, record in enumerate(records)
        ])
        _log_change(conn, collection, ChangeType.REPLACE, len(records), now)

    return len(records)


def append_record(collection: str, record: Dict[str, Any]) -> int:
    """Add one record at the end of a collection. Returns the new count."""
    now = datetime.utcnow().isoformat()

    with get_db() as conn:
        row = conn.execute(
            "SELECT COUNT(*) AS n, COALESCE(MAX(position), -1) AS last FROM collection_records WHERE collection = ?",
            (collection,)
        ).fetchone()
        conn.execute("""
            INSERT INTO collection_records (id, collection, position, data, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, (str(uuid.uuid4()), collection, row["last"] + 1, json.dumps(record), now))
        count = row["n"] + 1
        _log_change(conn, collection, ChangeType.APPEND, count, now)

    return count


def clear_collection(collection: str) -> int:
    """Delete all records of a collection. Returns how many were removed."""
    now = datetime.utcnow().isoformat()

    with get_db() as conn:
        cursor = conn.execute("DELETE FROM collection_records WHERE collection = ?", (collection,))
        _log_change(conn, collection, ChangeType.CLEAR, 0, now)
        return cursor.rowcount


def fetch_collection(collection: str) -> List[Dict[str, Any]]:
    """Records of a collection in stored order."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT data FROM collection_records WHERE collection = ? ORDER BY position",
            (collection,)
        ).fetchall()
        return [json.loads(row["data"]) for row in rows]


def get_collection_counts() -> Dict[str, int]:
    """Record count per stored collection."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT collection, COUNT(*) AS n FROM collection_records GROUP BY collection"
        ).fetchall()
        return {row["collection"]: row["n"] for row in rows}


def get_last_change(collection: str) -> Optional[Dict[str, Any]]:
    """Most recent write to a collection, or None if it was never written."""
    with get_db() as conn:
        row = conn.execute("""
            SELECT change_type, record_count, created_at FROM collection_changes
            WHERE collection = ? ORDER BY created_at DESC, rowid DESC LIMIT 1
        """, (collection,)).fetchone()
        if row:
            return dict(row)
    return None
