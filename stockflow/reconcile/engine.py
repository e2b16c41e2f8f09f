"""
Reconciliation Engine - the public face of the package.

Reads collections from a RecordSource, answers per-item quantity questions
and allocates supply to indents. Results are memoized per pass; any change
reported by the source drops the whole pass and tells our own subscribers,
but nothing is recomputed until someone asks again.
"""

import logging
from collections.abc import Callable, Iterable
from decimal import Decimal
from typing import Optional

from .aggregator import item_of, lookup_ordered_qty, resolve_item
from .allocator import SupplyProvider, allocate
from .cache import ReconciliationCache
from .config import Config, default_config
from .formulas import compute_derived, known_items
from .models import (
    AllocationResult, Collection, DerivedQuantities, ItemRef, ReconciliationEvent, RequestBatch,
)
from .normalize import normalize
from .sources import RecordSource, Snapshot, parse_request_batches, take_snapshot

logger = logging.getLogger(__name__)

EventListener = Callable[[ReconciliationEvent], None]


class EngineSupply(SupplyProvider):
    """
    Closing stock as supply, ordered purchase quantity as incoming.

    Every ref is first resolved to a known item, so AB-12, AB12 and a
    name-only "Hex Bolt" line all draw from the same pool.
    """

    def __init__(self, engine: "ReconciliationEngine"):
        self._engine = engine

    def total_supply(self, item: ItemRef) -> Optional[Decimal]:
        derived = self._engine.derived_for(item)
        if not derived.matched:
            return None
        return derived.closing_stock

    def incoming_qty(self, item: ItemRef) -> Decimal:
        return self._engine.derived_for(item).ordered_total

    def key_for(self, item: ItemRef) -> str:
        return self._engine.resolve_item(item).key


class ReconciliationEngine:
    """
    Stock reconciliation over a live record source.

    Usage:
        engine = ReconciliationEngine(InMemoryRecordSource(...))
        engine.get_derived_quantities("AB-12").closing_stock
        engine.allocate()
    """

    def __init__(self, source: RecordSource, config: Optional[Config] = None):
        self._source = source
        self._config = config or default_config()
        self._cache = ReconciliationCache()
        self._listeners: list[EventListener] = []
        self._unsubscribes = [
            source.subscribe(collection, self._change_handler(collection))
            for collection in Collection
        ]
        self.supply = EngineSupply(self)

    @property
    def config(self) -> Config:
        return self._config

    @property
    def cache(self) -> ReconciliationCache:
        return self._cache

    # -- change handling ---------------------------------------------------

    def _change_handler(self, collection: Collection):
        def on_change(records: list[dict]):
            logger.info(f"{collection.value} changed ({len(records)} records), discarding reconciliation")
            self.invalidate(collection)
        return on_change

    def invalidate(self, collection: Optional[Collection] = None) -> ReconciliationEvent:
        """Drop every derived value and notify subscribers."""
        generation = self._cache.invalidate()
        event = ReconciliationEvent(generation=generation, collection=collection)
        for listener in list(self._listeners):
            listener(event)
        return event

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register for ReconciliationEvents. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self):
        """Stop listening to the source."""
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes = []

    # -- snapshot ------------------------------------------------------------

    @property
    def snapshot(self) -> Snapshot:
        def build():
            logger.info("Taking snapshot of source collections")
            return take_snapshot(self._source, self._config)
        return self._cache.get_or_compute(("snapshot",), build)

    # -- derived quantities --------------------------------------------------

    def resolve_item(self, item: ItemRef) -> ItemRef:
        """The known item a ref points at, or the ref itself when none does."""
        key = ("resolved", normalize(item.code), normalize(item.name))
        return self._cache.get_or_compute(
            key, lambda: resolve_item(item, self.items(), self._config) or item
        )

    def find_item(self, text: str) -> ItemRef:
        """Resolve free text typed by a user, as a code first, then as a name."""
        for item in (ItemRef(code=text), ItemRef(name=text)):
            resolved = resolve_item(item, self.items(), self._config)
            if resolved is not None:
                return resolved
        return ItemRef(code=text, name=text)

    def derived_for(self, item: ItemRef) -> DerivedQuantities:
        item = self.resolve_item(item)
        key = ("derived", normalize(item.code), normalize(item.name))
        return self._cache.get_or_compute(
            key, lambda: compute_derived(item, self.snapshot, self._config)
        )

    def get_derived_quantities(self, item_code: str = "", item_name: str = "") -> DerivedQuantities:
        """Stage formula results for one item."""
        return self.derived_for(ItemRef(code=item_code, name=item_name))

    def items(self) -> list[ItemRef]:
        return self._cache.get_or_compute(("items",), lambda: known_items(self.snapshot, self._config))

    def derived_for_all(self) -> list[DerivedQuantities]:
        """Derived quantities for every item the collections mention."""
        return [self.derived_for(item) for item in self.items()]

    def ordered_qty_for(self, item: ItemRef, po_ref: str = "", request_ref: str = "") -> Decimal:
        """Ordered quantity for a purchase line (PO, then indent, then item)."""
        return lookup_ordered_qty(
            self.snapshot.lines_of(Collection.PURCHASES), item, po_ref, request_ref, self._config
        )

    # -- allocation ----------------------------------------------------------

    def request_batches(self) -> list[RequestBatch]:
        return self._cache.get_or_compute(
            ("batches",),
            lambda: parse_request_batches(self.snapshot.docs(Collection.REQUESTS), self._config),
        )

    def allocate(
        self,
        batches: Optional[Iterable[RequestBatch]] = None,
        supply: Optional[SupplyProvider] = None,
    ) -> list[AllocationResult]:
        """
        Allocate supply to request lines.

        With no arguments the stored indents are allocated against closing
        stock and the result is cached for the pass. Explicit batches or
        supply give a one-off, uncached allocation.
        """
        if batches is None and supply is None:
            return self._cache.get_or_compute(
                ("allocation",), lambda: allocate(self.request_batches(), self.supply)
            )
        if batches is None:
            batches = self.request_batches()
        return allocate(batches, supply or self.supply)

    def allocation_for(self, batch_ref: str, item: ItemRef, line_index: int) -> Optional[AllocationResult]:
        """Stored-indent allocation result for a single line, or None."""
        index = self._cache.get_or_compute(("allocation-index",), self._index_allocation)
        return index.get((normalize(batch_ref), item.key, line_index))

    def _index_allocation(self) -> dict[tuple[str, str, int], AllocationResult]:
        return {
            (normalize(r.batch_ref), r.item.key, r.line_index): r
            for r in self.allocate()
        }

    # -- diagnostics ---------------------------------------------------------

    def diagnose(self) -> dict:
        """
        Collection counts plus items that are requested or issued but match
        no supply source.
        """
        snapshot = self.snapshot
        unmatched: dict[str, ItemRef] = {}
        for collection in (Collection.REQUESTS, Collection.INTERNAL_ISSUES, Collection.VENDOR_ISSUES):
            for record in snapshot.lines_of(collection):
                item = item_of(record, self._config)
                if not item.key or item.key in unmatched:
                    continue
                if not self.derived_for(item).matched:
                    unmatched[item.key] = item
        return {
            "collections": snapshot.counts(),
            "unmatched_items": [{"code": i.code, "name": i.name} for i in unmatched.values()],
            "cache": self._cache.stats(),
        }
