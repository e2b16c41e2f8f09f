"""
Sequential Allocator - hands out supply to request lines in serial order.

Indents are processed by the serial at the end of their reference number
(S-8/25-01 before S-8/25-02), regardless of the order they were stored in.
Each line sees what every earlier line already claimed:

    available_before = total_supply - cumulative_allocated
    is_closed        = available_before >= requested
    allocated        = min(max(0, available_before), requested)
    cumulative      += allocated

The allocated amount is accumulated, not the requested one, so a partly
filled line consumes only what it actually received.
"""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Optional

from .aggregator import to_quantity
from .models import AllocationResult, AllocationStatus, ItemRef, RequestBatch, ZERO
from .normalize import normalize, loose

logger = logging.getLogger(__name__)

_DIGIT_RUN = re.compile(r"[0-9]+")


class SupplyProvider(ABC):
    """
    Where the allocator gets per-item quantities from.

    total_supply() returns None for an item no supply source knows; the
    allocator treats that as zero supply and flags the line UNMATCHED.
    key_for() names the supply pool a ref draws from. Refs that resolve to
    the same pool share one cumulative allocation.
    """

    @abstractmethod
    def total_supply(self, item: ItemRef) -> Optional[Decimal]:
        pass

    def incoming_qty(self, item: ItemRef) -> Decimal:
        """Ordered quantity not yet in stock. Informational only."""
        return ZERO

    def key_for(self, item: ItemRef) -> str:
        return item.key


class MappingSupply(SupplyProvider):
    """
    Supply from plain dicts keyed by item code or name.

    Lookups try the normalized key first, then the alphanumeric-only form.
    Values that are not finite numbers count as 0.
    """

    def __init__(
        self,
        supply: Mapping[str, Decimal | int | float],
        incoming: Optional[Mapping[str, Decimal | int | float]] = None,
    ):
        self._supply = self._index(supply)
        self._incoming = self._index(incoming or {})

    @staticmethod
    def _index(values: Mapping) -> dict[str, tuple[str, Decimal]]:
        """Lookup key -> (pool key, quantity). Loose keys carry a ~ prefix."""
        index: dict[str, tuple[str, Decimal]] = {}
        for raw_key, value in values.items():
            quantity = to_quantity(value)
            if quantity is None:
                quantity = ZERO
            key = normalize(raw_key)
            if not key:
                continue
            index[key] = (key, quantity)
            loose_key = loose(raw_key)
            if loose_key and "~" + loose_key not in index:
                index["~" + loose_key] = (key, quantity)
        return index

    def _lookup(self, index: dict, item: ItemRef) -> Optional[tuple[str, Decimal]]:
        for value in (item.code, item.name):
            key = normalize(value)
            if key and key in index:
                return index[key]
        for value in (item.code, item.name):
            loose_key = loose(value)
            if loose_key and "~" + loose_key in index:
                return index["~" + loose_key]
        return None

    def total_supply(self, item: ItemRef) -> Optional[Decimal]:
        found = self._lookup(self._supply, item)
        return None if found is None else found[1]

    def incoming_qty(self, item: ItemRef) -> Decimal:
        found = self._lookup(self._incoming, item)
        return ZERO if found is None else found[1]

    def key_for(self, item: ItemRef) -> str:
        found = self._lookup(self._supply, item)
        return item.key if found is None else found[0]


def parse_serial(ref) -> Optional[int]:
    """
    Serial number of a reference: its last run of digits.

    >>> parse_serial("S-8/25-02")
    2
    >>> parse_serial("DRAFT") is None
    True
    """
    if isinstance(ref, int) and not isinstance(ref, bool):
        ref = str(ref)
    if not isinstance(ref, str):
        return None
    runs = _DIGIT_RUN.findall(ref)
    if not runs:
        return None
    return int(runs[-1])


def sort_batches(batches: Iterable[RequestBatch]) -> list[RequestBatch]:
    """
    Ascending by serial. Batches without a serial go last. Ties keep
    their input order (sorted() is stable).
    """
    def key(batch: RequestBatch):
        serial = parse_serial(batch.ref)
        return (serial is None, serial or 0)

    ordered = sorted(batches, key=key)
    unparsed = [b.ref for b in ordered if parse_serial(b.ref) is None]
    if unparsed:
        logger.warning(f"No serial in request refs {unparsed}, processing them last")
    return ordered


def allocate(batches: Iterable[RequestBatch], supply: SupplyProvider) -> list[AllocationResult]:
    """
    Allocate supply across every line of every batch.

    Args:
        batches: Request batches in any order
        supply: Per-item supply and incoming quantities

    Returns:
        One AllocationResult per line, in processing order
    """
    cumulative: dict[str, Decimal] = {}
    supply_by_key: dict[str, tuple[Optional[Decimal], Decimal]] = {}
    unmatched_keys: set[str] = set()
    results: list[AllocationResult] = []

    for batch in sort_batches(batches):
        serial = parse_serial(batch.ref)
        for index, line in enumerate(batch.lines):
            item = line.item
            key = supply.key_for(item)
            if key not in supply_by_key:
                supply_by_key[key] = (supply.total_supply(item), supply.incoming_qty(item))
            raw_supply, incoming = supply_by_key[key]

            unmatched = raw_supply is None
            total_supply = ZERO if unmatched else raw_supply
            before = cumulative.get(key, ZERO)
            requested = line.requested_qty
            if not requested.is_finite():
                requested = ZERO
            available_before = total_supply - before

            if requested <= ZERO:
                is_closed = False
                allocated = ZERO
                status = AllocationStatus.SKIPPED
            else:
                is_closed = available_before >= requested
                allocated = min(max(ZERO, available_before), requested)
                cumulative[key] = before + allocated
                if is_closed:
                    status = AllocationStatus.CLOSED
                elif unmatched:
                    status = AllocationStatus.UNMATCHED
                    unmatched_keys.add(key or item.label)
                else:
                    status = AllocationStatus.OPEN

            results.append(AllocationResult(
                batch_ref=batch.ref,
                line_index=index,
                item=item,
                requested_qty=requested,
                total_supply=total_supply,
                incoming_qty=incoming,
                cumulative_allocated_before=before,
                available_before=available_before,
                allocated_amount=allocated,
                is_closed=is_closed,
                net_available=total_supply + incoming - before - requested,
                status=status,
                serial=serial,
                closed_flag=line.closed_flag,
                date=batch.date,
                requested_by=batch.requested_by,
                order_ref=batch.order_ref,
                supply_key=key,
            ))

    if unmatched_keys:
        logger.warning(f"Items with no supply source: {sorted(unmatched_keys)}")
    logger.debug(f"Allocated {len(results)} request lines")
    return results


# ---------------------------------------------------------------------------
# Result helpers
# ---------------------------------------------------------------------------

def partition_by_status(results: list[AllocationResult]) -> tuple[list[AllocationResult], list[AllocationResult]]:
    """Split into (open, closed) lines. Skipped lines are in neither."""
    open_lines = [r for r in results if not r.is_closed and r.status != AllocationStatus.SKIPPED]
    closed_lines = [r for r in results if r.is_closed]
    return open_lines, closed_lines


def filter_by_status(results: list[AllocationResult], status: AllocationStatus) -> list[AllocationResult]:
    return [r for r in results if r.status == status]


def allocated_by_item(results: list[AllocationResult]) -> dict[str, Decimal]:
    """Total allocated per supply key."""
    totals: dict[str, Decimal] = {}
    for result in results:
        key = result.supply_key
        totals[key] = totals.get(key, ZERO) + result.allocated_amount
    return totals


def remaining_supply(item: ItemRef, results: list[AllocationResult], supply: SupplyProvider) -> Decimal:
    """
    Supply plus incoming purchases left for item after all allocations.
    Negative only if supply itself is negative.
    """
    total = supply.total_supply(item) or ZERO
    return total + supply.incoming_qty(item) - allocated_by_item(results).get(supply.key_for(item), ZERO)


def summarize_allocation(results: list[AllocationResult]) -> dict:
    """Generate summary statistics for allocation results."""
    counts = {
        "total": len(results),
        "closed": 0,
        "open": 0,
        "unmatched": 0,
        "skipped": 0,
        "batches": len({r.batch_ref for r in results}),
    }

    for result in results:
        if result.status == AllocationStatus.CLOSED:
            counts["closed"] += 1
        elif result.status == AllocationStatus.OPEN:
            counts["open"] += 1
        elif result.status == AllocationStatus.UNMATCHED:
            counts["unmatched"] += 1
        elif result.status == AllocationStatus.SKIPPED:
            counts["skipped"] += 1

    # Lines still waiting for supply
    counts["outstanding"] = counts["open"] + counts["unmatched"]

    return counts
