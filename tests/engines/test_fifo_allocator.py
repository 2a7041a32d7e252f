"""
Tests for the FIFO-by-expiry allocation planner.

Covers:
- Soonest-expiry-first ordering, undated batches last
- Greedy split across batches
- Unsatisfiable requests produce an empty, unsatisfied plan
- Zero and negative requests
- Candidate homogeneity
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from supply_engines.allocation import AllocationPlan, FifoAllocator, expiry_order
from supply_kernel.domain.dtos import FAR_FUTURE_EXPIRY, BatchInfo, BatchKey


def batch(quantity, expire_date=None, barcode="X1", branch="Slemany", net="100", out="120"):
    return BatchInfo(
        batch_id=uuid4(),
        key=BatchKey(
            barcode=barcode,
            branch=branch,
            net_price=Decimal(net),
            out_price=Decimal(out),
            expire_date=expire_date,
        ),
        item_name="Item",
        quantity=quantity,
    )


class TestExpiryOrdering:
    def setup_method(self):
        self.allocator = FifoAllocator()

    def test_splits_across_batches_soonest_first(self):
        """5 expiring in January and 10 in June: 8 takes 5 then 3."""
        early = batch(5, date(2025, 1, 1))
        late = batch(10, date(2025, 6, 1))

        plan = self.allocator.plan(batches=[late, early], quantity=8)

        assert plan.is_satisfied
        assert [(line.batch, line.quantity) for line in plan.lines] == [(early, 5), (late, 3)]
        assert [line.remaining for line in plan.lines] == [0, 7]

    def test_small_request_touches_only_first_batch(self):
        b1 = batch(10, date(2025, 1, 1))
        b2 = batch(10, date(2025, 2, 1))
        b3 = batch(10, date(2025, 3, 1))

        plan = self.allocator.plan(batches=[b3, b1, b2], quantity=4)

        assert len(plan.lines) == 1
        assert plan.lines[0].batch is b1
        assert plan.lines[0].quantity == 4

    def test_undated_batch_is_used_last(self):
        undated = batch(10)
        dated = batch(2, date(2030, 1, 1))

        plan = self.allocator.plan(batches=[undated, dated], quantity=3)

        assert plan.lines[0].batch is dated
        assert plan.lines[1].batch is undated
        assert undated.key.expire_date == FAR_FUTURE_EXPIRY

    def test_empty_batches_are_skipped(self):
        empty = batch(0, date(2024, 1, 1))
        full = batch(3, date(2025, 1, 1))

        plan = self.allocator.plan(batches=[empty, full], quantity=2)

        assert [line.batch for line in plan.lines] == [full]
        assert plan.available == 3

    def test_expiry_order_breaks_ties_by_out_price(self):
        cheap = batch(1, date(2025, 1, 1), out="110")
        dear = batch(1, date(2025, 1, 1), out="130")

        assert expiry_order([dear, cheap]) == [cheap, dear]


class TestShortfall:
    def setup_method(self):
        self.allocator = FifoAllocator()

    def test_insufficient_stock_yields_no_lines(self):
        plan = self.allocator.plan(batches=[batch(2), batch(3)], quantity=6)

        assert not plan.is_satisfied
        assert plan.lines == ()
        assert plan.available == 5
        assert plan.shortfall == 1

    def test_no_candidates(self):
        plan = self.allocator.plan(batches=[], quantity=1)

        assert not plan.is_satisfied
        assert plan.available == 0

    def test_exact_fit(self):
        plan = self.allocator.plan(batches=[batch(2), batch(3)], quantity=5)

        assert plan.is_satisfied
        assert plan.shortfall == 0
        assert all(line.remaining == 0 for line in plan.lines)


class TestEdgeCases:
    def setup_method(self):
        self.allocator = FifoAllocator()

    def test_zero_quantity_is_empty_satisfied_plan(self):
        plan = self.allocator.plan(batches=[batch(5)], quantity=0)

        assert plan == AllocationPlan(requested=0, available=5, lines=())
        assert plan.is_satisfied

    def test_negative_quantity_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            self.allocator.plan(batches=[batch(5)], quantity=-1)

    @pytest.mark.parametrize(
        "other",
        [
            {"barcode": "Y2"},
            {"branch": "Erbil"},
            {"net": "99"},
        ],
    )
    def test_mixed_candidates_rejected(self, other):
        with pytest.raises(ValueError, match="must share"):
            self.allocator.plan(batches=[batch(5), batch(5, **other)], quantity=1)

    def test_mixed_out_price_is_allowed(self):
        plan = self.allocator.plan(batches=[batch(1, out="110"), batch(1, out="125")], quantity=2)

        assert plan.is_satisfied

    def test_plan_emits_engine_trace(self, captured_logs):
        self.allocator.plan(batches=[batch(5)], quantity=2)

        traces = [r for r in captured_logs() if r["message"] == "SUPPLY_ENGINE_TRACE"]
        assert traces
        assert traces[-1]["engine_name"] == "fifo_allocation"
        assert len(traces[-1]["input_fingerprint"]) == 16
