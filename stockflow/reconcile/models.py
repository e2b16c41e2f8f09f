"""
Data models for stock reconciliation.

All structured data uses dataclasses for type hints, __eq__, and __repr__.
Quantities use Decimal so that repeated sums stay exact.
"""

from dataclasses import dataclass, field, asdict
from decimal import Decimal
from enum import Enum
from typing import Optional

from .normalize import normalize

ZERO = Decimal("0")


class Collection(str, Enum):
    """Source collections maintained outside the engine."""
    REQUESTS = "requests"                          # Indents
    PURCHASES = "purchases"                        # Purchase entries / POs
    PURCHASE_INSPECTIONS = "purchase_inspections"  # PSIR
    VENDOR_INSPECTIONS = "vendor_inspections"      # VSIR
    INTERNAL_ISSUES = "internal_issues"            # In-house issues
    VENDOR_ISSUES = "vendor_issues"                # Material sent to vendor
    VENDOR_DEPT_ORDERS = "vendor_dept_orders"      # Vendor department orders
    STOCK_SNAPSHOTS = "stock_snapshots"            # Manually entered opening stock


class IssueCategory(str, Enum):
    """Which upstream pool an issue draws down."""
    FROM_PURCHASE = "from-purchase"
    FROM_VENDOR = "from-vendor"
    FROM_RAW_STOCK = "from-raw-stock"


class AllocationStatus(str, Enum):
    """
    Outcome of allocating supply to one request line.

    CLOSED and OPEN follow the isClosed flag. UNMATCHED lines reference an
    item no supply source knows about; SKIPPED lines requested nothing.
    """
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    UNMATCHED = "UNMATCHED"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class ItemRef:
    """
    An item as referenced by a record: code first, name as fallback.

    Refs spelled differently can still be one item; SupplyProvider.key_for
    decides which.
    """
    code: str = ""
    name: str = ""

    @property
    def key(self) -> str:
        """Normalized key of the ref as written. Allocation joins on the supply key."""
        return normalize(self.code) or normalize(self.name)

    @property
    def label(self) -> str:
        if self.code and self.name:
            return f"{self.code} ({self.name})"
        return self.code or self.name


@dataclass
class RequestLine:
    """A single line of an indent."""
    item: ItemRef
    requested_qty: Decimal
    closed_flag: bool = False


@dataclass
class RequestBatch:
    """
    An indent: a reference number carrying an ascending serial, plus lines.

    position is the index the batch had in its source collection; it keeps
    sorting stable when serials tie or cannot be parsed.
    """
    ref: str
    lines: list[RequestLine] = field(default_factory=list)
    date: str = ""
    requested_by: str = ""
    order_ref: str = ""         # OA number
    position: int = 0


@dataclass
class DerivedQuantities:
    """
    Per-item quantities produced by the stage formulas.

    closing_stock is the authoritative usable quantity. The gross and
    deduction fields are kept so every step can be checked on its own.
    """
    item: ItemRef
    opening_qty: Decimal = ZERO
    purchase_accepted_gross: Decimal = ZERO
    issued_from_purchase: Decimal = ZERO
    purchase_accepted: Decimal = ZERO
    vendor_accepted_gross: Decimal = ZERO
    issued_from_vendor: Decimal = ZERO
    vendor_accepted: Decimal = ZERO
    vendor_issued_gross: Decimal = ZERO
    vendor_returned: Decimal = ZERO
    vendor_issued_net: Decimal = ZERO
    issued_from_raw_stock: Decimal = ZERO
    closing_stock: Decimal = ZERO

    # Informational columns shown next to the stock figures
    requested_total: Decimal = ZERO
    ordered_total: Decimal = ZERO
    vendor_pending: Decimal = ZERO
    internal_issued_total: Decimal = ZERO

    matched: bool = False  # True when at least one source record matched

    def as_dict(self) -> dict:
        data = asdict(self)
        data["item"] = {"code": self.item.code, "name": self.item.name}
        for key, value in data.items():
            if isinstance(value, Decimal):
                data[key] = float(value)
        return data


@dataclass
class AllocationResult:
    """
    Output of the allocator for a single request line.

    net_available is informational only: supply plus incoming purchases,
    minus everything claimed before this line, minus this line's request.
    Negative values signal a shortfall.
    """
    batch_ref: str
    line_index: int
    item: ItemRef
    requested_qty: Decimal
    total_supply: Decimal
    incoming_qty: Decimal
    cumulative_allocated_before: Decimal
    available_before: Decimal
    allocated_amount: Decimal
    is_closed: bool
    net_available: Decimal
    status: AllocationStatus
    serial: Optional[int] = None
    closed_flag: bool = False
    date: str = ""
    requested_by: str = ""
    order_ref: str = ""
    supply_key: str = ""        # key the line drew supply under

    def __post_init__(self):
        if not self.supply_key:
            self.supply_key = self.item.key

    @property
    def remaining_qty(self) -> Decimal:
        """Part of the request still waiting for supply."""
        return max(ZERO, self.requested_qty - self.allocated_amount)

    @property
    def cumulative_allocated_after(self) -> Decimal:
        return self.cumulative_allocated_before + self.allocated_amount

    def as_dict(self) -> dict:
        return {
            "batch_ref": self.batch_ref,
            "line_index": self.line_index,
            "serial": self.serial,
            "item_code": self.item.code,
            "item_name": self.item.name,
            "requested_qty": float(self.requested_qty),
            "total_supply": float(self.total_supply),
            "incoming_qty": float(self.incoming_qty),
            "cumulative_allocated_before": float(self.cumulative_allocated_before),
            "available_before": float(self.available_before),
            "allocated_amount": float(self.allocated_amount),
            "remaining_qty": float(self.remaining_qty),
            "net_available": float(self.net_available),
            "is_closed": self.is_closed,
            "status": self.status.value,
            "closed_flag": self.closed_flag,
            "date": self.date,
            "requested_by": self.requested_by,
            "order_ref": self.order_ref,
            "supply_key": self.supply_key,
        }


@dataclass(frozen=True)
class ReconciliationEvent:
    """Broadcast when the engine discards its derived values."""
    generation: int
    collection: Optional[Collection] = None
