"""
Tests for sequential allocation.

Run with: pytest stockflow/reconcile/tests/test_allocator.py -v
"""

from decimal import Decimal

import pytest

from stockflow.reconcile.allocator import (
    MappingSupply,
    allocate,
    allocated_by_item,
    filter_by_status,
    parse_serial,
    partition_by_status,
    remaining_supply,
    sort_batches,
    summarize_allocation,
)
from stockflow.reconcile.models import AllocationStatus, ItemRef, RequestBatch, RequestLine


BOLT = ItemRef(code="AB-12", name="Hex Bolt")
NUT = ItemRef(code="CD-34", name="Hex Nut")


def batch(ref, *lines, position=0):
    """Build a RequestBatch from (item, qty) pairs."""
    return RequestBatch(
        ref=ref,
        lines=[RequestLine(item=item, requested_qty=Decimal(str(qty))) for item, qty in lines],
        position=position,
    )


@pytest.fixture
def supply():
    return MappingSupply({"AB-12": 50, "CD-34": 10})


class TestParseSerial:

    @pytest.mark.parametrize("ref,expected", [
        ("S-8/25-02", 2),
        ("IND-0007", 7),
        ("2024/IND/15", 15),
        ("12A", 12),
        (15, 15),
    ])
    def test_last_digit_run(self, ref, expected):
        assert parse_serial(ref) == expected

    @pytest.mark.parametrize("ref", ["DRAFT", "", None, 1.5])
    def test_no_serial(self, ref):
        assert parse_serial(ref) is None


class TestSortBatches:

    def test_ascending_serial(self):
        batches = [batch("S-8/25-02"), batch("S-8/25-01"), batch("S-8/25-00")]
        assert [b.ref for b in sort_batches(batches)] == ["S-8/25-00", "S-8/25-01", "S-8/25-02"]

    def test_unparseable_last_in_input_order(self):
        batches = [batch("DRAFT-A"), batch("S-3"), batch("DRAFT-B"), batch("S-1")]
        assert [b.ref for b in sort_batches(batches)] == ["S-1", "S-3", "DRAFT-A", "DRAFT-B"]

    def test_ties_keep_input_order(self):
        first = batch("S-5", (BOLT, 1))
        second = batch("S-5", (BOLT, 2))
        assert sort_batches([first, second]) == [first, second]
        assert sort_batches([second, first]) == [second, first]


class TestAllocate:

    def test_worked_example(self, supply):
        results = allocate([batch("S-8/25-01", (BOLT, 30)), batch("S-8/25-02", (BOLT, 30))], supply)

        first, second = results
        assert first.allocated_amount == Decimal("30")
        assert first.is_closed is True
        assert first.cumulative_allocated_after == Decimal("30")

        assert second.available_before == Decimal("20")
        assert second.allocated_amount == Decimal("20")
        assert second.is_closed is False
        assert second.status == AllocationStatus.OPEN
        assert second.cumulative_allocated_after == Decimal("50")
        assert second.remaining_qty == Decimal("10")

    def test_late_lower_serial_goes_first(self, supply):
        batches = [
            batch("S-8/25-01", (BOLT, 30)),
            batch("S-8/25-02", (BOLT, 30)),
            batch("S-8/25-00", (BOLT, 10)),
        ]
        results = allocate(batches, supply)

        assert [r.batch_ref for r in results] == ["S-8/25-00", "S-8/25-01", "S-8/25-02"]
        assert [r.allocated_amount for r in results] == [Decimal("10"), Decimal("30"), Decimal("10")]
        assert [r.is_closed for r in results] == [True, True, False]

    def test_cumulative_tracks_allocated_not_requested(self, supply):
        results = allocate([
            batch("S-1", (BOLT, 70)),
            batch("S-2", (BOLT, 5)),
        ], supply)
        assert results[0].allocated_amount == Decimal("50")
        assert results[1].cumulative_allocated_before == Decimal("50")
        assert results[1].available_before == Decimal("0")
        assert results[1].allocated_amount == Decimal("0")

    def test_items_tracked_separately(self, supply):
        results = allocate([batch("S-1", (BOLT, 50), (NUT, 10))], supply)
        assert all(r.is_closed for r in results)

    def test_lines_within_batch_in_order(self, supply):
        results = allocate([batch("S-1", (NUT, 6), (NUT, 6))], supply)
        assert [r.line_index for r in results] == [0, 1]
        assert results[0].is_closed is True
        assert results[1].allocated_amount == Decimal("4")

    def test_exact_fit_closes(self, supply):
        results = allocate([batch("S-1", (NUT, 10))], supply)
        assert results[0].is_closed is True
        assert results[0].available_before == Decimal("10")

    def test_zero_and_negative_requests_skipped(self, supply):
        results = allocate([
            batch("S-1", (BOLT, 0), (BOLT, -5)),
            batch("S-2", (BOLT, 50)),
        ], supply)
        skipped = results[:2]
        assert all(r.status == AllocationStatus.SKIPPED for r in skipped)
        assert all(r.allocated_amount == 0 and not r.is_closed for r in skipped)
        assert results[2].cumulative_allocated_before == Decimal("0")
        assert results[2].is_closed is True

    def test_unknown_item_is_unmatched(self, supply):
        mystery = ItemRef(code="ZZ-99")
        results = allocate([batch("S-1", (mystery, 3))], supply)
        assert results[0].status == AllocationStatus.UNMATCHED
        assert results[0].total_supply == Decimal("0")
        assert results[0].allocated_amount == Decimal("0")
        assert results[0].is_closed is False

    def test_unknown_item_with_zero_request_is_skipped(self, supply):
        results = allocate([batch("S-1", (ItemRef(code="ZZ-99"), 0))], supply)
        assert results[0].status == AllocationStatus.SKIPPED

    def test_net_available_includes_incoming(self):
        supply = MappingSupply({"AB-12": 10}, incoming={"AB-12": 5})
        result = allocate([batch("S-1", (BOLT, 12))], supply)[0]
        assert result.net_available == Decimal("3")
        assert result.is_closed is False
        assert result.allocated_amount == Decimal("10")

    def test_net_available_negative_on_shortfall(self, supply):
        result = allocate([batch("S-1", (NUT, 25))], supply)[0]
        assert result.net_available == Decimal("-15")

    def test_non_finite_request_is_skipped(self, supply):
        results = allocate([batch("S-1", (BOLT, "NaN"), (BOLT, 10))], supply)
        assert results[0].status == AllocationStatus.SKIPPED
        assert results[0].requested_qty == Decimal("0")
        assert results[1].cumulative_allocated_before == Decimal("0")

    def test_negative_supply(self):
        result = allocate([batch("S-1", (BOLT, 4))], MappingSupply({"AB-12": -3}))[0]
        assert result.available_before == Decimal("-3")
        assert result.allocated_amount == Decimal("0")
        assert result.status == AllocationStatus.OPEN

    def test_serial_and_batch_fields_carried(self, supply):
        b = RequestBatch(
            ref="S-8/25-04",
            lines=[RequestLine(item=BOLT, requested_qty=Decimal("1"), closed_flag=True)],
            date="2025-08-04",
            requested_by="Stores",
            order_ref="OA-77",
        )
        result = allocate([b], supply)[0]
        assert result.serial == 4
        assert result.closed_flag is True
        assert result.order_ref == "OA-77"
        assert result.as_dict()["status"] == "CLOSED"


class TestAllocationProperties:

    @pytest.fixture
    def batches(self):
        return [
            batch("S-1", (BOLT, 20), (NUT, 4)),
            batch("S-2", (BOLT, 25)),
            batch("S-3", (BOLT, 15), (NUT, 9)),
        ]

    def test_never_over_allocates(self, batches, supply):
        totals = allocated_by_item(allocate(batches, supply))
        assert totals["AB-12"] == Decimal("50")
        assert totals["CD-34"] == Decimal("10")

    def test_order_changes_distribution_not_total(self, batches, supply):
        forward = allocate(batches, supply)
        renumbered = [
            RequestBatch(ref=ref, lines=b.lines)
            for ref, b in zip(["S-3", "S-2", "S-1"], batches)
        ]
        reverse = allocate(renumbered, supply)

        assert allocated_by_item(forward) == allocated_by_item(reverse)
        closed_forward = {(r.item.code, r.requested_qty) for r in forward if r.is_closed}
        closed_reverse = {(r.item.code, r.requested_qty) for r in reverse if r.is_closed}
        assert closed_forward != closed_reverse

    def test_cumulative_is_monotonic(self, batches, supply):
        seen = {}
        for r in allocate(batches, supply):
            assert r.cumulative_allocated_before == seen.get(r.supply_key, Decimal("0"))
            seen[r.supply_key] = r.cumulative_allocated_after

    def test_requests_below_supply_all_close(self, supply):
        results = allocate([
            batch("S-1", (BOLT, 10), (NUT, 3)),
            batch("S-2", (BOLT, 15), (NUT, 4)),
        ], supply)

        assert all(r.is_closed for r in results)
        totals = allocated_by_item(results)
        assert totals["AB-12"] == Decimal("25")
        assert totals["CD-34"] == Decimal("7")

    def test_key_spellings_share_one_pool(self, supply):
        results = allocate([
            batch("S-01", (ItemRef(code="AB-12"), 30)),
            batch("S-02", (ItemRef(code="AB12"), 30)),
        ], supply)

        assert [r.allocated_amount for r in results] == [Decimal("30"), Decimal("20")]
        assert [r.is_closed for r in results] == [True, False]
        assert results[1].available_before == Decimal("20")
        assert {r.supply_key for r in results} == {"AB-12"}
        assert allocated_by_item(results) == {"AB-12": Decimal("50")}

    def test_name_only_line_shares_pool_with_coded_line(self):
        supply = MappingSupply({"Hex Bolt": 50})
        results = allocate([
            batch("S-01", (BOLT, 30)),
            batch("S-02", (ItemRef(name="hex bolt"), 30)),
        ], supply)

        assert sum(r.allocated_amount for r in results) == Decimal("50")
        assert results[1].cumulative_allocated_before == Decimal("30")
        assert results[1].is_closed is False


class TestMappingSupply:

    def test_normalized_lookup(self):
        supply = MappingSupply({" ab-12": 5})
        assert supply.total_supply(BOLT) == Decimal("5")

    def test_loose_fallback(self):
        supply = MappingSupply({"AB 12": 5})
        assert supply.total_supply(ItemRef(code="ab/12")) == Decimal("5")

    def test_name_lookup(self):
        supply = MappingSupply({"Hex Nut": 3})
        assert supply.total_supply(ItemRef(code="NEW-1", name="hex nut")) == Decimal("3")

    def test_unknown(self):
        supply = MappingSupply({"AB-12": 5})
        assert supply.total_supply(NUT) is None
        assert supply.incoming_qty(NUT) == Decimal("0")

    def test_key_for_resolves_to_supply_entry(self):
        supply = MappingSupply({"AB-12": 5, "Hex Nut": 3})
        assert supply.key_for(ItemRef(code="ab 12")) == "AB-12"
        assert supply.key_for(ItemRef(name="HEX-NUT")) == "HEX NUT"
        assert supply.key_for(ItemRef(code="ZZ-99")) == "ZZ-99"

    def test_non_finite_values_count_as_zero(self):
        supply = MappingSupply({"AB-12": float("nan")}, incoming={"AB-12": float("inf")})
        assert supply.total_supply(BOLT) == Decimal("0")
        assert supply.incoming_qty(BOLT) == Decimal("0")


class TestResultHelpers:

    @pytest.fixture
    def results(self, supply):
        return allocate([
            batch("S-1", (BOLT, 40), (NUT, 0)),
            batch("S-2", (BOLT, 30), (ItemRef(code="ZZ-99"), 1)),
        ], supply)

    def test_partition(self, results):
        open_lines, closed_lines = partition_by_status(results)
        assert [(r.batch_ref, r.item.code) for r in closed_lines] == [("S-1", "AB-12")]
        assert [(r.batch_ref, r.item.code) for r in open_lines] == [("S-2", "AB-12"), ("S-2", "ZZ-99")]

    def test_filter_by_status(self, results):
        assert len(filter_by_status(results, AllocationStatus.SKIPPED)) == 1

    def test_summary(self, results):
        summary = summarize_allocation(results)
        assert summary == {
            "total": 4,
            "closed": 1,
            "open": 1,
            "unmatched": 1,
            "skipped": 1,
            "batches": 2,
            "outstanding": 2,
        }

    def test_remaining_supply(self, results):
        supply = MappingSupply({"AB-12": 50}, incoming={"AB-12": 20})
        assert remaining_supply(BOLT, results, supply) == Decimal("20")

    def test_empty(self):
        assert summarize_allocation([])["total"] == 0
        assert partition_by_status([]) == ([], [])
