"""
Quantity Aggregator - sums a quantity across records that match an item.

Records reference items by hand-entered codes and names, so matching runs
in tiers of decreasing confidence:

| Tier     | Rule                                                        |
|----------|-------------------------------------------------------------|
| CODE     | normalized item code equals target code                     |
| NAME     | normalized item name equals target name                     |
| LOOSE    | alphanumeric-only code or name equals target code or name   |
| CONTAINS | loose target and any text field contain one another         |

Each record gets the first tier it satisfies and every matched record is
summed. A record whose code matches exactly counts once, by code, whatever
its other fields contain.

Quantities that are missing or unparseable count as 0. Nothing here raises
for bad data.
"""

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import IntEnum
from typing import Any, Optional

from .config import Config, default_config
from .models import ItemRef, ZERO
from .normalize import normalize, loose

Record = Mapping[str, Any]
RecordFilter = Callable[[Record], bool]


class MatchTier(IntEnum):
    """Match confidence, lower is stronger."""
    CODE = 1
    NAME = 2
    LOOSE = 3
    CONTAINS = 4


@dataclass
class Aggregate:
    """Sum over the matched records plus how they were matched."""
    total: Decimal = ZERO
    tier: Optional[MatchTier] = None
    matched: int = 0


# ---------------------------------------------------------------------------
# Field access
# ---------------------------------------------------------------------------

def to_quantity(value) -> Optional[Decimal]:
    """
    Parse a quantity. Returns None when the value is missing or not a
    finite number. Bools are not quantities.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        quantity = value
    elif isinstance(value, (int, float)):
        quantity = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            quantity = Decimal(text)
        except InvalidOperation:
            return None
    else:
        return None
    if not quantity.is_finite():
        return None
    return quantity


def first_quantity(record: Record, field_names: Sequence[str]) -> Optional[Decimal]:
    """First present, numeric candidate field of the record, or None."""
    for name in field_names:
        if name in record:
            quantity = to_quantity(record[name])
            if quantity is not None:
                return quantity
    return None


def quantity_of(record: Record, field_names: Sequence[str]) -> Decimal:
    """Like first_quantity() but 0 when nothing usable is present."""
    quantity = first_quantity(record, field_names)
    return ZERO if quantity is None else quantity


def first_value(record: Record, field_names: Sequence[str]):
    """First candidate field holding a non-blank value, or None."""
    for name in field_names:
        value = record.get(name)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def first_text(record: Record, field_names: Sequence[str]) -> str:
    value = first_value(record, field_names)
    if value is None:
        return ""
    return str(value).strip()


def item_of(record: Record, config: Optional[Config] = None) -> ItemRef:
    """Read the item code and name a record refers to."""
    config = config or default_config()
    return ItemRef(
        code=first_text(record, config.fields.item_code),
        name=first_text(record, config.fields.item_name),
    )


def flatten_lines(records: Iterable[Record], config: Optional[Config] = None) -> list[dict]:
    """
    Expand documents holding an items list into one record per line.

    Document fields (PO number, transaction type, ...) are copied onto each
    line; fields set on the line itself win. Records without an items list
    pass through unchanged. Non-mapping entries are dropped.
    """
    config = config or default_config()
    item_fields = config.fields.items
    lines: list[dict] = []
    for record in records:
        if not isinstance(record, Mapping):
            continue
        nested = None
        for name in item_fields:
            if isinstance(record.get(name), list):
                nested = record[name]
                break
        if nested is None:
            lines.append(dict(record))
            continue
        header = {k: v for k, v in record.items() if k not in item_fields}
        for item in nested:
            if isinstance(item, Mapping):
                lines.append({**header, **item})
    return lines


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MatchTarget:
    """Pre-normalized forms of the item being looked up."""
    code: str
    name: str
    loose_code: str
    loose_name: str

    @classmethod
    def for_item(cls, item: ItemRef) -> "MatchTarget":
        return cls(
            code=normalize(item.code),
            name=normalize(item.name),
            loose_code=loose(item.code),
            loose_name=loose(item.name),
        )

    @property
    def loose_forms(self) -> tuple[str, ...]:
        return tuple(t for t in (self.loose_code, self.loose_name) if t)


def match_tier(record: Record, target: MatchTarget, config: Config) -> Optional[MatchTier]:
    """Strongest tier the record satisfies for target, or None."""
    codes = [record[n] for n in config.fields.item_code if n in record]
    names = [record[n] for n in config.fields.item_name if n in record]

    if target.code and any(normalize(c) == target.code for c in codes):
        return MatchTier.CODE
    if target.name and any(normalize(n) == target.name for n in names):
        return MatchTier.NAME

    loose_forms = target.loose_forms
    if not loose_forms:
        return None
    if any(loose(v) in loose_forms for v in codes + names):
        return MatchTier.LOOSE

    min_length = config.settings.min_contains_length
    for value in record.values():
        if not isinstance(value, str):
            continue
        candidate = loose(value)
        if not candidate:
            continue
        for form in loose_forms:
            if len(form) >= min_length and form in candidate:
                return MatchTier.CONTAINS
            if len(candidate) >= min_length and candidate in form:
                return MatchTier.CONTAINS
    return None


def item_record(item: ItemRef, config: Config) -> dict:
    """An ItemRef as a record, so it can be run through match_tier()."""
    return {config.fields.item_code[0]: item.code, config.fields.item_name[0]: item.name}


def resolve_item(
    item: ItemRef,
    candidates: Iterable[ItemRef],
    config: Optional[Config] = None,
    max_tier: MatchTier = MatchTier.CONTAINS,
) -> Optional[ItemRef]:
    """
    Candidate that item refers to: strongest tier wins, first seen on ties.

    Two refs that both carry a code are only the same item when their
    loose codes agree; a shared name does not merge different codes.
    """
    config = config or default_config()
    target = MatchTarget.for_item(item)
    own_code = loose(item.code)
    best: Optional[ItemRef] = None
    best_tier: Optional[MatchTier] = None

    for candidate in candidates:
        other_code = loose(candidate.code)
        if own_code and other_code and own_code != other_code:
            continue
        tier = match_tier(item_record(candidate, config), target, config)
        if tier is None or tier > max_tier:
            continue
        if best_tier is None or tier < best_tier:
            best, best_tier = candidate, tier
            if tier == MatchTier.CODE:
                break
    return best


def select_matches(
    records: Iterable[Record],
    item: ItemRef,
    config: Optional[Config] = None,
    where: Optional[RecordFilter] = None,
) -> tuple[Optional[MatchTier], list[Record]]:
    """
    Records matching item at any tier.

    Args:
        records: Flat line records
        item: Item being looked up
        config: Field configuration (package default if omitted)
        where: Optional filter applied before matching

    Returns:
        (strongest tier seen or None, matched records in input order)
    """
    config = config or default_config()
    target = MatchTarget.for_item(item)
    strongest: Optional[MatchTier] = None
    matched: list[Record] = []

    for record in records:
        if where is not None and not where(record):
            continue
        tier = match_tier(record, target, config)
        if tier is None:
            continue
        matched.append(record)
        if strongest is None or tier < strongest:
            strongest = tier

    return strongest, matched


def aggregate(
    records: Iterable[Record],
    item: ItemRef,
    field_groups: Sequence[Sequence[str]],
    config: Optional[Config] = None,
    where: Optional[RecordFilter] = None,
) -> Aggregate:
    """
    Sum quantities of every matched record.

    Each entry of field_groups is an ordered candidate list; a record
    contributes the first usable field of every group. One group is the
    common case, several are used when a record splits one quantity over
    distinct fields (ok + rework + reject).
    """
    tier, matched = select_matches(records, item, config, where)
    total = ZERO
    for record in matched:
        for names in field_groups:
            total += quantity_of(record, names)
    return Aggregate(total=max(ZERO, total), tier=tier, matched=len(matched))


def sum_quantity(
    records: Iterable[Record],
    item: ItemRef,
    field_names: Sequence[str],
    config: Optional[Config] = None,
    where: Optional[RecordFilter] = None,
) -> Decimal:
    """Total of field_names over the records matching item. Never negative."""
    return aggregate(records, item, [field_names], config, where).total


# ---------------------------------------------------------------------------
# Stock snapshots
# ---------------------------------------------------------------------------

def closing_like_value(record: Record, config: Optional[Config] = None) -> Decimal:
    """
    Closing-stock-like figure of a snapshot record.

    An explicit closing field wins; otherwise stock qty plus the quantity
    already counted into the store from purchases.
    """
    config = config or default_config()
    explicit = first_quantity(record, config.fields.closing_qty)
    if explicit is not None:
        return explicit
    return (
        quantity_of(record, config.fields.opening_qty)
        + quantity_of(record, config.fields.purchase_store_qty)
    )


def _created_key(record: Record, config: Config) -> tuple:
    """Sort key for recency: numbers and ISO timestamps both order correctly."""
    raw = first_value(record, config.fields.created_at)
    if raw is None:
        return (0, ZERO, "")
    if isinstance(raw, Mapping):
        # Serialized store timestamps: {"seconds": ..., "nanoseconds": ...}
        raw = raw.get("seconds")
    quantity = to_quantity(raw)
    if quantity is not None:
        return (1, quantity, "")
    return (1, ZERO, str(raw))


def choose_best_snapshot(records: Sequence[Record], config: Optional[Config] = None) -> Optional[Record]:
    """Snapshot with the largest closing-like value, newest on ties."""
    config = config or default_config()
    best = None
    best_key = None
    for record in records:
        key = (closing_like_value(record, config), _created_key(record, config))
        if best is None or key > best_key:
            best = record
            best_key = key
    return best


def best_snapshot(
    records: Iterable[Record],
    item: ItemRef,
    config: Optional[Config] = None,
) -> Optional[Record]:
    """
    Best stock snapshot among those matching item, or None.

    Substring matches are only considered when no snapshot matches by
    code, name or loose key.
    """
    config = config or default_config()
    target = MatchTarget.for_item(item)
    direct: list[Record] = []
    fuzzy: list[Record] = []
    for record in records:
        tier = match_tier(record, target, config)
        if tier is None:
            continue
        (fuzzy if tier == MatchTier.CONTAINS else direct).append(record)
    return choose_best_snapshot(direct or fuzzy, config)


# ---------------------------------------------------------------------------
# Purchase lookups
# ---------------------------------------------------------------------------

def lookup_ordered_qty(
    purchases: Iterable[Record],
    item: ItemRef,
    po_ref: str = "",
    request_ref: str = "",
    config: Optional[Config] = None,
) -> Decimal:
    """
    Ordered quantity for one purchase line.

    Looks for the item on the given PO first, then on any PO raised
    against the given request, then on any PO at all. Only exact code or
    name matches count here. Returns 0 when nothing matches.
    """
    config = config or default_config()
    target = MatchTarget.for_item(item)
    po_key = normalize(po_ref)
    request_key = normalize(request_ref)

    candidates = []
    for record in purchases:
        tier = match_tier(record, target, config)
        if tier is not None and tier <= MatchTier.NAME:
            candidates.append(record)

    def ref_matches(record: Record, names: Sequence[str], key: str) -> bool:
        return bool(key) and normalize(first_text(record, names)) == key

    for predicate in (
        lambda r: ref_matches(r, config.fields.po_ref, po_key),
        lambda r: ref_matches(r, config.fields.request_ref, request_key),
        lambda r: True,
    ):
        for record in candidates:
            if predicate(record):
                return quantity_of(record, config.fields.ordered_qty)
    return ZERO
