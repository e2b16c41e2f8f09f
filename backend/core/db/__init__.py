"""
Database package for Stockflow.

All functions are re-exported here:

    from backend.core.db import get_db, replace_collection
"""

# Base - enums, connection, initialization
from .base import (
    DB_PATH,
    ChangeType,
    get_db,
    init_db,
)

# Source collections
from .records import (
    replace_collection,
    append_record,
    clear_collection,
    fetch_collection,
    get_collection_counts,
    get_last_change,
)

__all__ = [
    "DB_PATH",
    "ChangeType",
    "get_db",
    "init_db",
    "replace_collection",
    "append_record",
    "clear_collection",
    "fetch_collection",
    "get_collection_counts",
    "get_last_change",
]
