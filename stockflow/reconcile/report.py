"""
Report Generator - Format reconciliation results for human consumption.

Produces console output, CSV exports and an XLSX workbook.
"""

import csv
import io
from datetime import datetime
from decimal import Decimal
from io import BytesIO
from pathlib import Path
from typing import Optional, TextIO

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill

from .allocator import allocated_by_item, summarize_allocation
from .models import AllocationResult, AllocationStatus, DerivedQuantities

ALLOCATION_HEADERS = [
    "Date", "Indent No", "Serial", "Item Name", "Item Code", "Qty", "Indent By", "OA No",
    "Total Stock", "Previous Indents Qty", "PO Quantity",
    "Available for This Indent", "Allocated Available", "Remaining Qty",
    "Allocated Stock", "Status",
]

STOCK_HEADERS = [
    "Item Code", "Item Name", "Opening Qty", "Indent Qty", "Purchase Qty", "Vendor Pending",
    "Purchase Accepted", "Vendor Accepted", "In-House Issued", "Vendor Issued (Net)",
    "Issued From Stock", "Closing Stock",
]

_CLOSED_FILL = PatternFill(start_color="E6F7EA", end_color="E6F7EA", fill_type="solid")
_OPEN_FILL = PatternFill(start_color="FDECEC", end_color="FDECEC", fill_type="solid")


def _num(value: Decimal) -> str:
    """Render a quantity without a trailing .0 for whole numbers."""
    if value == value.to_integral_value():
        return str(value.quantize(Decimal("1")))
    return str(value.normalize())


def _allocation_row(result: AllocationResult, item_totals: dict[str, Decimal]) -> list[str]:
    return [
        result.date,
        result.batch_ref,
        "" if result.serial is None else str(result.serial),
        result.item.name,
        result.item.code,
        _num(result.requested_qty),
        result.requested_by,
        result.order_ref,
        _num(result.total_supply),
        _num(result.cumulative_allocated_before),
        _num(result.incoming_qty),
        _num(result.net_available),
        _num(result.allocated_amount),
        _num(result.remaining_qty),
        _num(item_totals.get(result.supply_key, Decimal("0"))),
        result.status.value,
    ]


def _stock_row(derived: DerivedQuantities) -> list[str]:
    return [
        derived.item.code,
        derived.item.name,
        _num(derived.opening_qty),
        _num(derived.requested_total),
        _num(derived.ordered_total),
        _num(derived.vendor_pending),
        _num(derived.purchase_accepted),
        _num(derived.vendor_accepted),
        _num(derived.internal_issued_total),
        _num(derived.vendor_issued_net),
        _num(derived.issued_from_raw_stock),
        _num(derived.closing_stock),
    ]


def format_console(
    results: list[AllocationResult],
    derived: Optional[list[DerivedQuantities]] = None,
    show_closed: bool = False,
) -> str:
    """
    Format allocation results for console display.

    Lists lines still waiting for supply (and closed ones when asked),
    in processing order, followed by an optional stock table and a summary.
    """
    if not results and not derived:
        return "No indents or stock records to report.\n"

    lines = []

    waiting = [r for r in results if r.status in (AllocationStatus.OPEN, AllocationStatus.UNMATCHED)]
    if waiting:
        lines.append(f"\nOUTSTANDING INDENT LINES ({len(waiting)})")
        lines.append("=" * 78)
        lines.append(f"{'INDENT':<14} {'ITEM':<22} {'QTY':>8} {'AVAIL':>8} {'ALLOC':>8} {'STATUS':<10}")
        lines.append("-" * 78)
        for r in waiting:
            lines.append(
                f"{r.batch_ref[:14]:<14} {r.item.label[:22]:<22} {_num(r.requested_qty):>8} "
                f"{_num(r.available_before):>8} {_num(r.allocated_amount):>8} {r.status.value:<10}"
            )

    if show_closed:
        closed = [r for r in results if r.status == AllocationStatus.CLOSED]
        if closed:
            lines.append(f"\nCLOSED INDENT LINES ({len(closed)})")
            lines.append("-" * 78)
            for r in closed:
                lines.append(f"{r.batch_ref[:14]:<14} {r.item.label[:22]:<22} {_num(r.requested_qty):>8}")

    if derived:
        lines.append(f"\nSTOCK ({len(derived)} items)")
        lines.append("=" * 78)
        lines.append(f"{'ITEM':<30} {'OPENING':>9} {'PUR OK':>9} {'VEN OK':>9} {'AT VENDOR':>9} {'CLOSING':>9}")
        lines.append("-" * 78)
        for d in derived:
            lines.append(
                f"{d.item.label[:30]:<30} {_num(d.opening_qty):>9} {_num(d.purchase_accepted):>9} "
                f"{_num(d.vendor_accepted):>9} {_num(d.vendor_issued_net):>9} {_num(d.closing_stock):>9}"
            )

    summary = summarize_allocation(results)
    lines.append("\n" + "=" * 78)
    lines.append("SUMMARY")
    lines.append(f"  Indents:      {summary['batches']}")
    lines.append(f"  Lines:        {summary['total']}")
    lines.append(f"  Closed:       {summary['closed']}")
    lines.append(f"  Open:         {summary['open']}")
    lines.append(f"  Unmatched:    {summary['unmatched']}")
    lines.append(f"  Skipped:      {summary['skipped']}")
    lines.append("=" * 78)

    return "\n".join(lines)


def export_csv(results: list[AllocationResult], output: TextIO | None = None) -> str:
    """
    Export allocation results to CSV format.

    Args:
        results: Allocation results to export
        output: Optional file handle to write to

    Returns:
        CSV string (also writes to output if provided)
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(ALLOCATION_HEADERS)

    item_totals = allocated_by_item(results)
    for result in results:
        writer.writerow(_allocation_row(result, item_totals))

    csv_content = buffer.getvalue()
    if output:
        output.write(csv_content)
    return csv_content


def export_stock_csv(derived: list[DerivedQuantities], output: TextIO | None = None) -> str:
    """Export per-item derived quantities to CSV format."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(STOCK_HEADERS)
    for d in derived:
        writer.writerow(_stock_row(d))

    csv_content = buffer.getvalue()
    if output:
        output.write(csv_content)
    return csv_content


def build_workbook(results: list[AllocationResult], derived: list[DerivedQuantities]) -> Workbook:
    """Workbook with an Indents sheet and a Stock sheet."""
    wb = Workbook()
    header_font = Font(bold=True)

    ws = wb.active
    ws.title = "Indents"
    ws.append(ALLOCATION_HEADERS)
    for cell in ws[1]:
        cell.font = header_font

    item_totals = allocated_by_item(results)
    status_col = len(ALLOCATION_HEADERS)
    for result in results:
        ws.append(_allocation_row(result, item_totals))
        status_cell = ws.cell(row=ws.max_row, column=status_col)
        status_cell.fill = _CLOSED_FILL if result.is_closed else _OPEN_FILL

    stock_ws = wb.create_sheet("Stock")
    stock_ws.append(STOCK_HEADERS)
    for cell in stock_ws[1]:
        cell.font = header_font
    for d in derived:
        stock_ws.append(_stock_row(d))

    ws.freeze_panes = "A2"
    stock_ws.freeze_panes = "A2"
    return wb


def export_xlsx(
    results: list[AllocationResult],
    derived: list[DerivedQuantities],
    path: Optional[Path] = None,
) -> bytes:
    """
    Export results as an XLSX workbook.

    Returns the file content; also saves to path if provided.
    """
    wb = build_workbook(results, derived)
    buffer = BytesIO()
    wb.save(buffer)
    content = buffer.getvalue()
    if path is not None:
        Path(path).write_bytes(content)
    return content


def generate_report_filename(prefix: str = "stock_reconciliation", extension: str = "csv") -> str:
    """
    Generate a filename for the report.

    Returns:
        Filename like "stock_reconciliation_2026-01-08.csv"
    """
    date_str = datetime.now().strftime("%Y-%m-%d")
    return f"{prefix}_{date_str}.{extension}"
