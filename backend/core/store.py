"""
Database-backed record source and the shared reconciliation engine.

Collections written through the API land in SQLite; every write notifies
the engine, which drops its cached results and recomputes on next read.
"""
import logging
import threading
from typing import Any, Dict, Iterable, List

from stockflow.reconcile import Collection, Config, ReconciliationEngine, default_config, load_config
from stockflow.reconcile.sources import ChangeListener, ListenerRegistry, RecordSource, Unsubscribe

from backend.core.config import get_settings
from backend.core.db import (
    append_record, clear_collection, fetch_collection, replace_collection,
)

logger = logging.getLogger(__name__)


class SqliteRecordSource(RecordSource):
    """
    RecordSource over the collection_records table.

    Writes go through this class so subscribers hear about them; rows
    changed behind its back are only picked up after notify_all().
    """

    def __init__(self):
        self._listeners = ListenerRegistry()

    def fetch(self, collection: Collection) -> List[Dict[str, Any]]:
        return fetch_collection(Collection(collection).value)

    def subscribe(self, collection: Collection, on_change: ChangeListener) -> Unsubscribe:
        return self._listeners.add(collection, on_change)

    def replace(self, collection: Collection, records: Iterable[Dict[str, Any]]) -> int:
        collection = Collection(collection)
        count = replace_collection(collection.value, list(records))
        logger.info(f"Replaced {collection.value} ({count} records)")
        self._listeners.notify(collection, self.fetch(collection))
        return count

    def add(self, collection: Collection, record: Dict[str, Any]) -> int:
        collection = Collection(collection)
        count = append_record(collection.value, record)
        self._listeners.notify(collection, self.fetch(collection))
        return count

    def clear(self, collection: Collection) -> int:
        collection = Collection(collection)
        removed = clear_collection(collection.value)
        logger.info(f"Cleared {collection.value} ({removed} records)")
        self._listeners.notify(collection, [])
        return removed

    def notify_all(self):
        """Tell subscribers every collection may have changed."""
        for collection in Collection:
            self._listeners.notify(collection, self.fetch(collection))


# Shared state (created on first use)
_engine_state: Dict[str, Any] = {
    "source": None,
    "engine": None,
}
_engine_lock = threading.Lock()


def _load_reconcile_config() -> Config:
    path = get_settings().CONFIG_PATH
    if path:
        logger.info(f"Loading reconciliation config from {path}")
        return load_config(path)
    return default_config()


def get_engine() -> ReconciliationEngine:
    """Engine over the database source, built once per process."""
    with _engine_lock:
        if _engine_state["engine"] is None:
            source = SqliteRecordSource()
            _engine_state["source"] = source
            _engine_state["engine"] = ReconciliationEngine(source, _load_reconcile_config())
        return _engine_state["engine"]


def get_source() -> SqliteRecordSource:
    get_engine()
    return _engine_state["source"]


def reset_engine():
    """Drop the shared engine so the next get_engine() builds a fresh one."""
    with _engine_lock:
        current = _engine_state["engine"]
        if current is not None:
            current.close()
        _engine_state["engine"] = None
        _engine_state["source"] = None
