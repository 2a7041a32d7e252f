"""
Tests for PaymentReconciler: outstanding documents, exclusive claims and
statements.
"""

from decimal import Decimal

import pytest

from supply_kernel.domain.dtos import ReturnLineSpec
from supply_kernel.exceptions import (
    AlreadyClaimedError,
    BillNotFoundError,
    InvalidRequestError,
    PaymentNotFoundError,
    ReferentialViolationError,
)
from supply_kernel.models.bill import PaymentStatus
from supply_kernel.models.payment import ClaimDocumentKind
from supply_kernel.models.stock_return import ReturnStatus
from tests.conftest import line


@pytest.fixture
def pharmacy_docs(bill_service, add_stock):
    """Two sale bills (260 and 120) and one return (130) for pharmacy-1."""
    add_stock(quantity=50)
    bill_a = bill_service.create_sale_bill("pharmacy-1", [line("X1", 2, price="130")])
    bill_b = bill_service.create_sale_bill("pharmacy-1", [line("X1", 1)])
    stock_return = bill_service.process_return("pharmacy-1", bill_a.bill_number, [ReturnLineSpec("X1", 1)])
    return bill_a, bill_b, stock_return


class TestOutstanding:
    def test_lists_unclaimed_documents(self, payment_reconciler, pharmacy_docs):
        bill_a, bill_b, stock_return = pharmacy_docs

        outstanding = payment_reconciler.compute_outstanding("pharmacy-1")

        assert set(outstanding.bill_ids) == {bill_a.id, bill_b.id}
        assert outstanding.return_ids == (stock_return.id,)

    def test_cash_bills_never_outstanding(self, payment_reconciler, bill_service, add_stock):
        add_stock(quantity=1)
        bill_service.create_sale_bill("pharmacy-1", [line("X1", 1)], cash=True)

        assert payment_reconciler.compute_outstanding("pharmacy-1").bills == ()

    def test_other_counterparty_excluded(self, payment_reconciler, pharmacy_docs):
        assert payment_reconciler.compute_outstanding("pharmacy-2").bills == ()

    def test_purchase_side(self, payment_reconciler, bill_service):
        bill = bill_service.create_purchase_bill("company-1", [line("X1", 2)])

        outstanding = payment_reconciler.compute_outstanding("company-1", "purchase")

        assert outstanding.bill_ids == (bill.id,)
        assert payment_reconciler.compute_outstanding("company-1", "sale").bills == ()


class TestCreatePayment:
    def test_net_amount(self, payment_reconciler, pharmacy_docs):
        bill_a, bill_b, stock_return = pharmacy_docs

        payment = payment_reconciler.create_payment(
            "pharmacy-1", [bill_a.id, bill_b.id], [stock_return.id], "HC-100"
        )

        assert payment.payment_number == "PY-000001"
        assert payment.sold_total == Decimal("380.00")
        assert payment.return_total == Decimal("130.00")
        assert payment.net_amount == Decimal("250.00")
        assert payment.hardcopy_bill_number == "HC-100"

    def test_claim_marks_documents(self, payment_reconciler, pharmacy_docs):
        bill_a, _, stock_return = pharmacy_docs

        payment_reconciler.create_payment("pharmacy-1", [bill_a.id], [stock_return.id], "HC-1")

        assert bill_a.payment_status == PaymentStatus.PAID.value
        assert stock_return.payment_status == ReturnStatus.PROCESSED.value

    def test_claimed_documents_leave_outstanding(self, payment_reconciler, pharmacy_docs):
        bill_a, bill_b, stock_return = pharmacy_docs

        payment_reconciler.create_payment("pharmacy-1", [bill_a.id], [stock_return.id], "HC-1")

        outstanding = payment_reconciler.compute_outstanding("pharmacy-1")
        assert outstanding.bill_ids == (bill_b.id,)
        assert outstanding.returns == ()

    def test_exclusivity(self, payment_reconciler, pharmacy_docs):
        bill_a, _, _ = pharmacy_docs
        payment_reconciler.create_payment("pharmacy-1", [bill_a.id], [], "HC-1")

        with pytest.raises(AlreadyClaimedError) as exc_info:
            payment_reconciler.create_payment("pharmacy-1", [bill_a.id], [], "HC-2")

        assert exc_info.value.claimed_by == "PY-000001"

    def test_cash_bill_not_claimable(self, payment_reconciler, bill_service, add_stock):
        add_stock(quantity=1)
        bill = bill_service.create_sale_bill("pharmacy-1", [line("X1", 1)], cash=True)

        with pytest.raises(AlreadyClaimedError):
            payment_reconciler.create_payment("pharmacy-1", [bill.id], [], "HC-1")

    def test_empty_selection(self, payment_reconciler):
        with pytest.raises(InvalidRequestError, match="at least one"):
            payment_reconciler.create_payment("pharmacy-1", [], [], "HC-1")

    def test_hardcopy_number_required(self, payment_reconciler, pharmacy_docs):
        bill_a, _, _ = pharmacy_docs
        with pytest.raises(InvalidRequestError):
            payment_reconciler.create_payment("pharmacy-1", [bill_a.id], [], "  ")

    def test_duplicate_selection(self, payment_reconciler, pharmacy_docs):
        bill_a, _, _ = pharmacy_docs
        with pytest.raises(InvalidRequestError, match="more than once"):
            payment_reconciler.create_payment("pharmacy-1", [bill_a.id, bill_a.bill_number], [], "HC-1")

    def test_wrong_counterparty(self, payment_reconciler, pharmacy_docs):
        bill_a, _, _ = pharmacy_docs
        with pytest.raises(ReferentialViolationError):
            payment_reconciler.create_payment("pharmacy-2", [bill_a.id], [], "HC-1")

    def test_wrong_side(self, payment_reconciler, pharmacy_docs):
        bill_a, _, _ = pharmacy_docs
        with pytest.raises(ReferentialViolationError):
            payment_reconciler.create_payment("pharmacy-1", [bill_a.id], [], "HC-1", payment_kind="purchase")

    def test_unknown_bill(self, payment_reconciler):
        with pytest.raises(BillNotFoundError):
            payment_reconciler.create_payment("pharmacy-1", ["SB-777777"], [], "HC-1")


class TestUpdatePayment:
    def test_release_allows_new_claim(self, payment_reconciler, pharmacy_docs):
        bill_a, bill_b, _ = pharmacy_docs
        p1 = payment_reconciler.create_payment("pharmacy-1", [bill_a.id, bill_b.id], [], "HC-1")

        updated = payment_reconciler.update_payment(p1.payment_number, [bill_b.id], [])
        p2 = payment_reconciler.create_payment("pharmacy-1", [bill_a.id], [], "HC-2")

        assert updated.claimed_ids(ClaimDocumentKind.BILL) == [bill_b.id]
        assert updated.revision == 2
        assert p2.claimed_ids(ClaimDocumentKind.BILL) == [bill_a.id]

    def test_released_bill_back_to_unpaid(self, payment_reconciler, pharmacy_docs):
        bill_a, bill_b, _ = pharmacy_docs
        p1 = payment_reconciler.create_payment("pharmacy-1", [bill_a.id, bill_b.id], [], "HC-1")

        payment_reconciler.update_payment(p1.id, [bill_b.id], [])

        assert bill_a.payment_status == PaymentStatus.UNPAID.value
        assert bill_b.payment_status == PaymentStatus.PAID.value

    def test_kept_documents_stay_claimed(self, payment_reconciler, pharmacy_docs):
        bill_a, bill_b, stock_return = pharmacy_docs
        p1 = payment_reconciler.create_payment("pharmacy-1", [bill_a.id], [], "HC-1")

        updated = payment_reconciler.update_payment(
            p1.id, [bill_a.id, bill_b.id], [stock_return.id], hardcopy_bill_number="HC-1b"
        )

        assert updated.net_amount == Decimal("250.00")
        assert updated.hardcopy_bill_number == "HC-1b"
        assert payment_reconciler.compute_outstanding("pharmacy-1").bills == ()

    def test_cannot_take_document_of_other_payment(self, payment_reconciler, pharmacy_docs):
        bill_a, bill_b, _ = pharmacy_docs
        p1 = payment_reconciler.create_payment("pharmacy-1", [bill_a.id], [], "HC-1")
        payment_reconciler.create_payment("pharmacy-1", [bill_b.id], [], "HC-2")

        with pytest.raises(AlreadyClaimedError):
            payment_reconciler.update_payment(p1.id, [bill_a.id, bill_b.id], [])

    def test_unknown_payment(self, payment_reconciler):
        with pytest.raises(PaymentNotFoundError):
            payment_reconciler.update_payment("PY-000404", ["SB-000001"], [])


class TestStatement:
    def test_sale_statement(self, payment_reconciler, pharmacy_docs):
        statement = payment_reconciler.statement("pharmacy-1", "sale")

        assert statement.bill_count == 2
        assert statement.return_count == 1
        assert statement.total_before_return == Decimal("380.00")
        assert statement.return_total == Decimal("130.00")
        assert statement.total_after_return == Decimal("250.00")
        assert statement.consignment_before_return == Decimal("0.00")

    def test_consignment_purchase_statement(self, payment_reconciler, bill_service):
        consigned = bill_service.create_purchase_bill(
            "company-1", [line("X1", 10, net_price="20")], is_consignment=True
        )
        bill_service.create_purchase_bill("company-1", [line("Y2", 5, net_price="10")])
        bill_service.process_return("company-1", consigned.bill_number, [ReturnLineSpec("X1", 2)])

        statement = payment_reconciler.statement("company-1", "purchase")

        assert statement.total_before_return == Decimal("250.00")
        assert statement.return_total == Decimal("40.00")
        assert statement.consignment_before_return == Decimal("200.00")
        assert statement.consignment_after_return == Decimal("160.00")
