"""
Database base module - connection management, initialization, and enums.
"""
import sqlite3
from contextlib import contextmanager
from enum import Enum
from pathlib import Path

from backend.core.config import settings

# Database location
DB_PATH = Path(settings.DB_PATH)


class ChangeType(str, Enum):
    REPLACE = "replace"
    APPEND = "append"
    CLEAR = "clear"


@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = sqlite3.connect(str(DB_PATH))
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


SCHEMA = """
    -- One row per record of a source collection, JSON encoded
    CREATE TABLE IF NOT EXISTS collection_records (
        id TEXT PRIMARY KEY,
        collection TEXT NOT NULL,
        position INTEGER NOT NULL,
        data TEXT NOT NULL,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    );

    -- Write log: what changed, when, and how many records it left
    CREATE TABLE IF NOT EXISTS collection_changes (
        id TEXT PRIMARY KEY,
        collection TEXT NOT NULL,
        change_type TEXT NOT NULL,
        record_count INTEGER DEFAULT 0,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_records_collection ON collection_records(collection, position);
    CREATE INDEX IF NOT EXISTS idx_changes_collection ON collection_changes(collection);
"""


def init_db():
    """Initialize database tables."""
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    with get_db() as conn:
        # WAL lets API reads run while a collection is being replaced
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        conn.executescript(SCHEMA)
