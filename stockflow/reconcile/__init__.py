# Stock reconciliation and sequential indent allocation
# Self-contained - the API layer imports from here, never the reverse

from .models import (
    Collection, IssueCategory, AllocationStatus, ItemRef, RequestLine, RequestBatch,
    DerivedQuantities, AllocationResult, ReconciliationEvent,
)
from .normalize import normalize, loose
from .config import Config, ConfigError, load_config, parse_config, default_config, normalize_category
from .aggregator import MatchTier, aggregate, sum_quantity, select_matches, resolve_item, lookup_ordered_qty
from .sources import (
    RecordSource, InMemoryRecordSource, FileRecordSource, Snapshot, take_snapshot,
    parse_request_batches,
)
from .formulas import compute_derived, known_items
from .allocator import (
    SupplyProvider, MappingSupply, allocate, parse_serial, sort_batches,
    partition_by_status, summarize_allocation, remaining_supply,
)
from .cache import ReconciliationCache
from .engine import ReconciliationEngine
from .report import format_console, export_csv, export_stock_csv, export_xlsx

__version__ = "1.0.0"

__all__ = [
    # Models
    "Collection",
    "IssueCategory",
    "AllocationStatus",
    "ItemRef",
    "RequestLine",
    "RequestBatch",
    "DerivedQuantities",
    "AllocationResult",
    "ReconciliationEvent",
    # Keys
    "normalize",
    "loose",
    # Config
    "Config",
    "ConfigError",
    "load_config",
    "parse_config",
    "default_config",
    "normalize_category",
    # Aggregation
    "MatchTier",
    "aggregate",
    "sum_quantity",
    "select_matches",
    "resolve_item",
    "lookup_ordered_qty",
    # Sources
    "RecordSource",
    "InMemoryRecordSource",
    "FileRecordSource",
    "Snapshot",
    "take_snapshot",
    "parse_request_batches",
    # Formulas
    "compute_derived",
    "known_items",
    # Allocation
    "SupplyProvider",
    "MappingSupply",
    "allocate",
    "parse_serial",
    "sort_batches",
    "partition_by_status",
    "summarize_allocation",
    "remaining_supply",
    # Engine
    "ReconciliationCache",
    "ReconciliationEngine",
    # Report
    "format_console",
    "export_csv",
    "export_stock_csv",
    "export_xlsx",
]
