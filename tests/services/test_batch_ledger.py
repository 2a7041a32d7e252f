"""
Tests for BatchLedger: the single write path for batch quantities.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from supply_kernel.domain.dtos import BatchKey
from supply_kernel.exceptions import InsufficientStockError, NotReversibleError
from supply_kernel.models.batch import FAR_FUTURE_EXPIRY, BatchModel
from tests.conftest import SLEMANY


def key(expire_date=None, barcode="X1", branch=SLEMANY, net="100", out="120"):
    return BatchKey(barcode, branch, Decimal(net), Decimal(out), expire_date)


class TestAdjustQuantity:
    def test_positive_delta_creates_batch(self, ledger, session):
        batch = ledger.adjust_quantity(key(date(2025, 6, 1)), 7, item_name="Amoxil")

        assert batch.quantity == 7
        assert batch.item_name == "Amoxil"
        assert batch.version == 1
        assert session.execute(select(BatchModel)).scalars().all() == [batch]

    def test_same_identity_accumulates(self, ledger):
        ledger.adjust_quantity(key(date(2025, 6, 1)), 7)
        batch = ledger.adjust_quantity(key(date(2025, 6, 1)), 3)

        assert batch.quantity == 10
        assert batch.version == 2

    def test_different_expiry_is_different_batch(self, ledger, batch_selector):
        ledger.adjust_quantity(key(date(2025, 6, 1)), 1)
        ledger.adjust_quantity(key(date(2025, 7, 1)), 1)

        assert len(batch_selector.list_batches("X1", SLEMANY)) == 2

    def test_unset_expiry_stored_as_far_future(self, ledger):
        batch = ledger.adjust_quantity(key(), 2)

        assert batch.expire_date == FAR_FUTURE_EXPIRY

    def test_decrease_to_zero_keeps_row(self, ledger):
        ledger.adjust_quantity(key(), 2)
        batch = ledger.adjust_quantity(key(), -2)

        assert batch.quantity == 0

    def test_overdraw_rejected_and_unchanged(self, ledger):
        ledger.adjust_quantity(key(), 2)

        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.adjust_quantity(key(), -3)

        assert exc_info.value.available_quantity == 2
        assert ledger.get_batch(key()).quantity == 2

    def test_missing_batch_overdraw(self, ledger):
        with pytest.raises(InsufficientStockError):
            ledger.adjust_quantity(key(), -1)

    def test_reversal_shortfall_is_not_reversible(self, ledger):
        ledger.adjust_quantity(key(), 1)

        with pytest.raises(NotReversibleError) as exc_info:
            ledger.adjust_quantity(key(), -5, reversal_reason="already sold")

        assert exc_info.value.reason == "already sold"

    def test_zero_delta_is_noop(self, ledger):
        assert ledger.adjust_quantity(key(), 0) is None

    def test_adjustment_logged(self, ledger, captured_logs):
        ledger.adjust_quantity(key(), 4)
        ledger.adjust_quantity(key(), -1)

        adjusted = [r for r in captured_logs() if r["message"] == "batch_adjusted"]
        assert adjusted[-1]["delta"] == -1
        assert adjusted[-1]["quantity_before"] == 4
        assert adjusted[-1]["quantity_after"] == 3


class TestAdjustMany:
    def test_decreases_applied_first(self, ledger):
        ledger.adjust_quantity(key(date(2025, 1, 1)), 3)

        ledger.adjust_many([(key(date(2025, 2, 1)), 3), (key(date(2025, 1, 1)), -3)])

        assert ledger.get_batch(key(date(2025, 1, 1))).quantity == 0
        assert ledger.get_batch(key(date(2025, 2, 1))).quantity == 3


class TestFindBatches:
    def test_ordered_by_expiry(self, ledger):
        ledger.adjust_quantity(key(date(2025, 9, 1)), 1)
        ledger.adjust_quantity(key(), 1)
        ledger.adjust_quantity(key(date(2025, 3, 1)), 1)

        found = ledger.find_batches("X1", SLEMANY)

        assert [b.expire_date for b in found] == [date(2025, 3, 1), date(2025, 9, 1), FAR_FUTURE_EXPIRY]

    def test_filters_price_and_stock(self, ledger):
        ledger.adjust_quantity(key(net="100"), 1)
        ledger.adjust_quantity(key(net="90"), 1)
        ledger.adjust_quantity(key(net="90", out="130"), 2)
        ledger.adjust_quantity(key(net="90", out="130"), -2)

        assert len(ledger.find_batches("X1", SLEMANY, net_price=Decimal("90"))) == 2
        assert len(ledger.find_batches("X1", SLEMANY, net_price=Decimal("90"), in_stock_only=True)) == 1
