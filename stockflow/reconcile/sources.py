"""
Record Sources - Bridge to the collections the engine reads.

The adapter pattern lets us swap implementations (in-memory for tests,
files for the CLI, a database behind the API) without changing the
reconciliation logic. Sources own change notification; the engine only
registers and unregisters listeners.
"""

import copy
import csv
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Optional

from openpyxl import load_workbook

from .aggregator import first_text, first_value, flatten_lines, item_of, quantity_of
from .config import Config, default_config
from .models import Collection, RequestBatch, RequestLine

logger = logging.getLogger(__name__)

ChangeListener = Callable[[list[dict]], None]
Unsubscribe = Callable[[], None]


class RecordSource(ABC):
    """
    Abstract interface for collection access.

    fetch() returns the current records of a collection. subscribe()
    registers a listener called with the new records after every change
    and returns a function that removes it again.
    """

    @abstractmethod
    def fetch(self, collection: Collection) -> list[dict]:
        pass

    @abstractmethod
    def subscribe(self, collection: Collection, on_change: ChangeListener) -> Unsubscribe:
        pass


class ListenerRegistry:
    """Per-collection listener lists shared by the concrete sources."""

    def __init__(self):
        self._listeners: dict[Collection, list[ChangeListener]] = {}

    def add(self, collection: Collection, listener: ChangeListener) -> Unsubscribe:
        listeners = self._listeners.setdefault(Collection(collection), [])
        listeners.append(listener)

        def unsubscribe():
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def notify(self, collection: Collection, records: list[dict]):
        for listener in list(self._listeners.get(Collection(collection), [])):
            listener(records)

    def count(self, collection: Collection) -> int:
        return len(self._listeners.get(Collection(collection), []))


class InMemoryRecordSource(RecordSource):
    """
    In-memory source for programmatic setup.

    Useful for unit tests and for hosts that already hold the collections.
    """

    def __init__(self, collections: Optional[Mapping[Collection, list[dict]]] = None):
        self._records: dict[Collection, list[dict]] = {c: [] for c in Collection}
        self._listeners = ListenerRegistry()
        for collection, records in (collections or {}).items():
            self._records[Collection(collection)] = [dict(r) for r in records]

    def fetch(self, collection: Collection) -> list[dict]:
        return list(self._records[Collection(collection)])

    def subscribe(self, collection: Collection, on_change: ChangeListener) -> Unsubscribe:
        return self._listeners.add(collection, on_change)

    def replace(self, collection: Collection, records: Iterable[dict]):
        """Swap the whole collection and notify listeners."""
        collection = Collection(collection)
        self._records[collection] = [dict(r) for r in records]
        self._listeners.notify(collection, self.fetch(collection))

    def add(self, collection: Collection, record: dict):
        """Append a single record and notify listeners."""
        collection = Collection(collection)
        self._records[collection].append(dict(record))
        self._listeners.notify(collection, self.fetch(collection))

    def clear(self, collection: Optional[Collection] = None):
        """Empty one collection, or all of them."""
        targets = [Collection(collection)] if collection else list(Collection)
        for target in targets:
            self._records[target] = []
            self._listeners.notify(target, [])


class FileRecordSource(RecordSource):
    """
    Loads collections from a directory of exports.

    Each collection is read from <collection>.json, .csv or .xlsx (first
    match in that order). JSON files hold a list of records; CSV and XLSX
    files have a header row. Missing files are empty collections.

    Files do not change while loaded, so subscribers are only called
    when reload() is asked for.
    """

    SUFFIXES = (".json", ".csv", ".xlsx")

    def __init__(self, data_dir: str | Path):
        self._data_dir = Path(data_dir)
        if not self._data_dir.is_dir():
            raise FileNotFoundError(f"Data directory not found: {self._data_dir}")
        self._records: dict[Collection, list[dict]] = {}
        self._listeners = ListenerRegistry()
        self._load_all()

    def _load_all(self):
        for collection in Collection:
            self._records[collection] = self._load_collection(collection)

    def _load_collection(self, collection: Collection) -> list[dict]:
        for suffix in self.SUFFIXES:
            path = self._data_dir / f"{collection.value}{suffix}"
            if not path.exists():
                continue
            if suffix == ".json":
                records = self._load_json(path)
            elif suffix == ".csv":
                records = self._load_csv(path)
            else:
                records = self._load_xlsx(path)
            logger.debug(f"Loaded {len(records)} {collection.value} records from {path.name}")
            return records
        return []

    def _load_json(self, path: Path) -> list[dict]:
        with open(path, "r") as f:
            data = json.load(f)
        if not isinstance(data, list):
            logger.warning(f"Skipping {path.name}: expected a list of records")
            return []
        return [r for r in data if isinstance(r, dict)]

    def _load_csv(self, path: Path) -> list[dict]:
        with open(path, "r", newline="") as f:
            reader = csv.DictReader(f)
            return [dict(row) for row in reader]

    def _load_xlsx(self, path: Path) -> list[dict]:
        wb = load_workbook(path, read_only=True, data_only=True)
        try:
            ws = wb.worksheets[0]
            rows = ws.iter_rows(values_only=True)
            header = next(rows, None)
            if not header:
                return []
            names = [str(h).strip() if h is not None else "" for h in header]
            records = []
            for row in rows:
                if row is None or all(v is None for v in row):
                    continue
                records.append({
                    name: value for name, value in zip(names, row)
                    if name and value is not None
                })
            return records
        finally:
            wb.close()

    def fetch(self, collection: Collection) -> list[dict]:
        return list(self._records.get(Collection(collection), []))

    def subscribe(self, collection: Collection, on_change: ChangeListener) -> Unsubscribe:
        return self._listeners.add(collection, on_change)

    def reload(self):
        """Re-read every file and notify listeners of each collection."""
        self._load_all()
        for collection in Collection:
            self._listeners.notify(collection, self.fetch(collection))


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Snapshot:
    """
    Immutable copy of every collection for one computation pass.

    documents holds records as fetched; lines holds them flattened to one
    record per item line. Nothing the engine does writes back to sources.
    """
    documents: Mapping[Collection, tuple[dict, ...]] = field(default_factory=dict)
    lines: Mapping[Collection, tuple[dict, ...]] = field(default_factory=dict)

    def docs(self, collection: Collection) -> tuple[dict, ...]:
        return self.documents.get(Collection(collection), ())

    def lines_of(self, collection: Collection) -> tuple[dict, ...]:
        return self.lines.get(Collection(collection), ())

    def counts(self) -> dict[str, dict[str, int]]:
        return {
            c.value: {"documents": len(self.docs(c)), "lines": len(self.lines_of(c))}
            for c in Collection
        }


def build_snapshot(
    collections: Mapping[Collection, Iterable[dict]],
    config: Optional[Config] = None,
) -> Snapshot:
    """Deep-copy and flatten already-fetched collections."""
    config = config or default_config()
    documents = {}
    lines = {}
    for collection in Collection:
        docs = tuple(copy.deepcopy(list(collections.get(collection, []))))
        documents[collection] = docs
        lines[collection] = tuple(flatten_lines(docs, config))
    return Snapshot(documents=MappingProxyType(documents), lines=MappingProxyType(lines))


def take_snapshot(source: RecordSource, config: Optional[Config] = None) -> Snapshot:
    """Fetch every collection from source into a Snapshot."""
    snapshot = build_snapshot({c: source.fetch(c) for c in Collection}, config)
    logger.debug(f"Snapshot taken: {snapshot.counts()}")
    return snapshot


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

def _as_flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "y", "1", "closed")
    return bool(value)


def parse_request_batches(records: Iterable[dict], config: Optional[Config] = None) -> list[RequestBatch]:
    """
    Build RequestBatch objects from indent documents.

    Documents carry their lines in an items list; a flat record is treated
    as a batch with one line. Batches keep their collection position.
    """
    config = config or default_config()
    f = config.fields
    batches = []

    for position, record in enumerate(records):
        if not isinstance(record, Mapping):
            continue
        nested = None
        for name in f.items:
            if isinstance(record.get(name), list):
                nested = record[name]
                break
        raw_lines = nested if nested is not None else [record]

        lines = []
        for raw in raw_lines:
            if not isinstance(raw, Mapping):
                continue
            lines.append(RequestLine(
                item=item_of(raw, config),
                requested_qty=quantity_of(raw, f.requested_qty),
                closed_flag=_as_flag(first_value(raw, f.closed_flag)),
            ))

        batches.append(RequestBatch(
            ref=first_text(record, f.request_ref),
            lines=lines,
            date=first_text(record, f.request_date),
            requested_by=first_text(record, f.requested_by),
            order_ref=first_text(record, f.order_ref),
            position=position,
        ))

    return batches
