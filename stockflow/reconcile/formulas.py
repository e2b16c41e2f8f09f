"""
Stage Formula Engine - derived per-item quantities.

Steps run in a fixed order and each uses only earlier results:

    1. purchase_accepted_gross = PSIR accepted (fallback: received)
    2. purchase_accepted       = max(0, 1 - issues from purchase)
    3. vendor_accepted_gross   = vendor dept ok qty
    4. vendor_accepted         = max(0, 3 - issues from vendor)
    5. vendor_issued_gross     = qty sent out on vendor issues
    6. vendor_returned         = VSIR ok + rework + reject
    7. vendor_issued_net       = max(0, 5 - 6)
    8. closing_stock           = opening + 2 + 4 - issues from raw stock - 7

vendor_issued_net is deducted in step 8 only. Material at a vendor is not
part of vendor_accepted; subtracting it in step 4 as well would count the
same outbound quantity twice.
"""

import logging
from collections.abc import Iterable
from typing import Optional

from .aggregator import (
    MatchTier, aggregate, best_snapshot, first_value, item_of, quantity_of, resolve_item, RecordFilter,
)
from .config import Config, default_config, normalize_category
from .models import Collection, DerivedQuantities, IssueCategory, ItemRef, ZERO
from .sources import Snapshot

logger = logging.getLogger(__name__)

# Collections that can put an item into stock. An item matching none of
# them has no supply at all.
SUPPLY_COLLECTIONS = (
    Collection.STOCK_SNAPSHOTS,
    Collection.PURCHASE_INSPECTIONS,
    Collection.VENDOR_DEPT_ORDERS,
    Collection.VENDOR_INSPECTIONS,
    Collection.PURCHASES,
)


def category_filter(category: IssueCategory, config: Config) -> RecordFilter:
    """Filter for issue lines drawing from the given pool."""
    def accepts(record) -> bool:
        raw = first_value(record, config.fields.issue_category)
        return normalize_category(raw, config) == category
    return accepts


def compute_derived(
    item: ItemRef,
    snapshot: Snapshot,
    config: Optional[Config] = None,
) -> DerivedQuantities:
    """
    Run the stage formulas for one item.

    Args:
        item: Item to compute (code preferred, name as fallback)
        snapshot: Collections for this pass
        config: Field configuration (package default if omitted)

    Returns:
        DerivedQuantities with every intermediate step filled in
    """
    config = config or default_config()
    f = config.fields
    internal = snapshot.lines_of(Collection.INTERNAL_ISSUES)

    def issued(category: IssueCategory):
        return aggregate(internal, item, [f.issued_qty], config, category_filter(category, config))

    snapshot_record = best_snapshot(snapshot.lines_of(Collection.STOCK_SNAPSHOTS), item, config)
    opening_qty = quantity_of(snapshot_record, f.opening_qty) if snapshot_record else ZERO

    # 1-2
    purchase_gross = aggregate(
        snapshot.lines_of(Collection.PURCHASE_INSPECTIONS), item, [f.purchase_accepted_qty], config
    )
    from_purchase = issued(IssueCategory.FROM_PURCHASE)
    purchase_accepted = max(ZERO, purchase_gross.total - from_purchase.total)

    # 3-4
    vendor_dept = snapshot.lines_of(Collection.VENDOR_DEPT_ORDERS)
    vendor_gross = aggregate(vendor_dept, item, [f.vendor_ok_qty], config)
    from_vendor = issued(IssueCategory.FROM_VENDOR)
    vendor_accepted = max(ZERO, vendor_gross.total - from_vendor.total)

    # 5-7
    vendor_issued = aggregate(
        snapshot.lines_of(Collection.VENDOR_ISSUES), item, [f.vendor_issued_qty], config
    )
    vendor_returned = aggregate(
        snapshot.lines_of(Collection.VENDOR_INSPECTIONS),
        item,
        [f.vendor_return_ok_qty, f.vendor_return_rework_qty, f.vendor_return_reject_qty],
        config,
    )
    vendor_issued_net = max(ZERO, vendor_issued.total - vendor_returned.total)

    # 8
    from_raw_stock = issued(IssueCategory.FROM_RAW_STOCK)
    closing_stock = (
        opening_qty
        + purchase_accepted
        + vendor_accepted
        - from_raw_stock.total
        - vendor_issued_net
    )

    vendor_planned = aggregate(vendor_dept, item, [f.vendor_planned_qty], config)
    ordered = aggregate(snapshot.lines_of(Collection.PURCHASES), item, [f.ordered_qty], config)
    requested = aggregate(snapshot.lines_of(Collection.REQUESTS), item, [f.requested_qty], config)
    internal_total = aggregate(internal, item, [f.issued_qty], config)

    matched = snapshot_record is not None or any(
        agg.tier is not None
        for agg in (purchase_gross, vendor_gross, vendor_returned, ordered)
    )

    return DerivedQuantities(
        item=item,
        opening_qty=opening_qty,
        purchase_accepted_gross=purchase_gross.total,
        issued_from_purchase=from_purchase.total,
        purchase_accepted=purchase_accepted,
        vendor_accepted_gross=vendor_gross.total,
        issued_from_vendor=from_vendor.total,
        vendor_accepted=vendor_accepted,
        vendor_issued_gross=vendor_issued.total,
        vendor_returned=vendor_returned.total,
        vendor_issued_net=vendor_issued_net,
        issued_from_raw_stock=from_raw_stock.total,
        closing_stock=closing_stock,
        requested_total=requested.total,
        ordered_total=ordered.total,
        vendor_pending=max(ZERO, vendor_planned.total - vendor_issued.total),
        internal_issued_total=internal_total.total,
        matched=matched,
    )


def known_items(snapshot: Snapshot, config: Optional[Config] = None) -> list[ItemRef]:
    """
    Distinct items referenced by stock snapshots, requests and supply
    records.

    Coded references come first, in first-seen order; codes that agree on
    their loose form are one item, which keeps the first code and the
    first name seen for it. Name-only references follow, unless they name
    a coded item.
    """
    config = config or default_config()
    coded: list[ItemRef] = []
    named: list[ItemRef] = []
    collections: Iterable[Collection] = (Collection.STOCK_SNAPSHOTS, Collection.REQUESTS) + SUPPLY_COLLECTIONS[1:]
    for collection in collections:
        for record in snapshot.lines_of(collection):
            item = item_of(record, config)
            if not item.key:
                continue
            if not item.code:
                named.append(item)
                continue
            current = resolve_item(item, coded, config, max_tier=MatchTier.LOOSE)
            if current is None:
                coded.append(item)
            elif not current.name and item.name:
                coded[coded.index(current)] = ItemRef(code=current.code, name=item.name)

    items = list(coded)
    for item in named:
        if resolve_item(item, items, config, max_tier=MatchTier.LOOSE) is None:
            items.append(item)
    logger.debug(f"Found {len(items)} distinct items")
    return items
