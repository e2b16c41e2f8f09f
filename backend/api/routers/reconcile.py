"""
Stock reconciliation API router.
"""
import re
from enum import Enum
from io import BytesIO
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from stockflow.reconcile import (
    AllocationStatus, Collection, ItemRef, MappingSupply, RequestBatch, RequestLine,
    export_csv, export_stock_csv, export_xlsx, summarize_allocation,
)
from stockflow.reconcile.aggregator import to_quantity
from stockflow.reconcile.allocator import filter_by_status, partition_by_status
from stockflow.reconcile.models import ZERO
from stockflow.reconcile.report import generate_report_filename

from backend.api.models import AllocateRequest, CollectionAppendRequest, CollectionReplaceRequest
from backend.api.security import require_api_key
from backend.core.db import get_collection_counts, get_last_change
from backend.core.store import get_engine, get_source

router = APIRouter(prefix="/api/reconcile", tags=["Reconcile"])


class ExportFormat(str, Enum):
    """Export format options."""
    CSV = "csv"
    XLSX = "xlsx"
    STOCK_CSV = "stock-csv"


def sanitize_filename(filename: str) -> str:
    """Sanitize filename for safe use in Content-Disposition header."""
    safe = re.sub(r'[^\w\s\-\.]', '_', filename)
    return quote(safe, safe='')


def _attachment(content: bytes, filename: str, media_type: str) -> StreamingResponse:
    safe_filename = sanitize_filename(filename)
    return StreamingResponse(
        BytesIO(content),
        media_type=media_type,
        headers={
            "Content-Disposition": f"attachment; filename=\"{safe_filename}\"; filename*=UTF-8''{safe_filename}"
        }
    )


# ============== Collections ==============

@router.get("/collections")
def list_collections():
    """Record count and last write for every source collection."""
    counts = get_collection_counts()
    return {
        "collections": [
            {
                "name": collection.value,
                "records": counts.get(collection.value, 0),
                "last_change": get_last_change(collection.value),
            }
            for collection in Collection
        ],
        "generation": get_engine().cache.generation,
    }


@router.put("/collections/{name}", dependencies=[Depends(require_api_key)])
def replace_collection(name: Collection, request: CollectionReplaceRequest):
    """Replace a whole collection. Cached reconciliation results are dropped."""
    count = get_source().replace(name, request.records)
    return {
        "collection": name.value,
        "records": count,
        "generation": get_engine().cache.generation,
    }


@router.post("/collections/{name}/records", dependencies=[Depends(require_api_key)])
def append_to_collection(name: Collection, request: CollectionAppendRequest):
    """Append a single record to a collection."""
    count = get_source().add(name, request.record)
    return {
        "collection": name.value,
        "records": count,
        "generation": get_engine().cache.generation,
    }


@router.delete("/collections/{name}", dependencies=[Depends(require_api_key)])
def clear_collection(name: Collection):
    """Remove every record of a collection."""
    removed = get_source().clear(name)
    return {"collection": name.value, "removed": removed}


# ============== Derived quantities ==============

@router.get("/items/{item_code}")
def get_item(item_code: str, item_name: str = Query("", description="Fallback when the code matches nothing")):
    """Stage formula results for one item."""
    derived = get_engine().get_derived_quantities(item_code, item_name)
    if not derived.matched:
        raise HTTPException(status_code=404, detail=f"No stock records match {item_code}")
    return derived.as_dict()


@router.get("/stock")
def get_stock():
    """Derived quantities for every item the collections mention."""
    items = [d.as_dict() for d in get_engine().derived_for_all()]
    return {"items": items, "count": len(items)}


@router.get("/ordered-qty")
def get_ordered_qty(
    item_code: str = Query(""),
    item_name: str = Query(""),
    po_ref: str = Query(""),
    request_ref: str = Query(""),
):
    """Ordered quantity for a purchase line (PO, then indent, then item)."""
    if not item_code and not item_name:
        raise HTTPException(status_code=400, detail="item_code or item_name is required")
    qty = get_engine().ordered_qty_for(ItemRef(code=item_code, name=item_name), po_ref, request_ref)
    return {
        "item_code": item_code,
        "item_name": item_name,
        "po_ref": po_ref,
        "request_ref": request_ref,
        "ordered_qty": float(qty),
    }


# ============== Allocation ==============

@router.get("/allocation")
def get_allocation(status: Optional[AllocationStatus] = Query(None, description="Only lines with this status")):
    """Stored indents allocated against current closing stock."""
    results = get_engine().allocate()
    open_lines, closed_lines = partition_by_status(results)
    summary = summarize_allocation(results)
    if status is not None:
        results = filter_by_status(results, status)
    return {
        "results": [r.as_dict() for r in results],
        "summary": summary,
        "open_count": len(open_lines),
        "closed_count": len(closed_lines),
    }


@router.post("/allocate")
def allocate_batches(request: AllocateRequest):
    """Allocate the given batches without storing them."""
    batches = [
        RequestBatch(
            ref=b.ref,
            lines=[
                RequestLine(
                    item=ItemRef(code=line.item_code, name=line.item_name),
                    requested_qty=to_quantity(line.qty) or ZERO,
                    closed_flag=line.closed,
                )
                for line in b.lines
            ],
            date=b.date,
            requested_by=b.requested_by,
            order_ref=b.order_ref,
            position=position,
        )
        for position, b in enumerate(request.batches)
    ]

    supply = None
    if request.supply is not None:
        supply = MappingSupply(request.supply, request.incoming)

    results = get_engine().allocate(batches, supply)
    return {
        "results": [r.as_dict() for r in results],
        "summary": summarize_allocation(results),
    }


# ============== Diagnostics & export ==============

@router.get("/diagnostics")
def get_diagnostics():
    """Collection counts, unmatched items and cache statistics."""
    return get_engine().diagnose()


@router.get("/export/{fmt}")
def export_allocation(fmt: ExportFormat):
    """
    Download the reconciliation.

    Formats:
    - csv: indent allocation table
    - stock-csv: per-item stock table
    - xlsx: workbook with Indents and Stock sheets
    """
    engine = get_engine()

    if fmt == ExportFormat.CSV:
        content = export_csv(engine.allocate()).encode("utf-8")
        return _attachment(content, generate_report_filename("indent_allocation", "csv"), "text/csv")

    if fmt == ExportFormat.STOCK_CSV:
        content = export_stock_csv(engine.derived_for_all()).encode("utf-8")
        return _attachment(content, generate_report_filename("stock", "csv"), "text/csv")

    content = export_xlsx(engine.allocate(), engine.derived_for_all())
    return _attachment(
        content,
        generate_report_filename(extension="xlsx"),
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )
