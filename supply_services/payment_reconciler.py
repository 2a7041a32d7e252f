"""
PaymentReconciler -- net payments over bills and returns, each settled once.

Responsibility:
    Lists a counterparty's outstanding bills and returns, creates payments
    that claim a selection of them, re-selects on edit, and totals
    statements.  Two reconciliation sides exist:
        - sale:     a pharmacy pays for sale bills net of sale returns
        - purchase: the store pays a company for purchase bills (consignment
                    included) net of purchase returns

Architecture position:
    Services -- stateful orchestration.  Reads bills and returns, writes
    payments and the claim-set index.  Never touches the batch ledger.

Invariants enforced:
    - Exclusivity: a bill or return is held by at most one payment.  The
      unique (document_kind, document_id) index on payment_claims is the
      arbiter; the read-side check only produces the friendlier error.
    - Edit releases the old selection and claims the new one inside one
      transaction, so no other payment can observe a released document
      before the edit commits.
    - net_amount == sold_total - return_total.
    - Claimed bills are PAID and claimed returns PROCESSED; released ones
      go back to UNPAID.  CASH bills are never claimable.
    - Payments are never deleted.

Failure modes:
    - AlreadyClaimedError: a selected document is held elsewhere or cash.
    - BillNotFoundError, ReturnNotFoundError, PaymentNotFoundError.
    - ReferentialViolationError: document of another counterparty or side.
    - InvalidRequestError: empty selection, duplicate, missing hardcopy no.
    - ConcurrencyConflictError: lost a claim race at flush.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from supply_config.schema import SupplyConfig
from supply_engines.netting import DocumentAmount, NettingCalculator, NettingResult
from supply_kernel.domain.clock import Clock
from supply_kernel.domain.dtos import BillInfo, OutstandingDocuments, ReturnInfo, Statement
from supply_kernel.exceptions import (
    AlreadyClaimedError,
    BillNotFoundError,
    ConcurrencyConflictError,
    InvalidRequestError,
    PaymentNotFoundError,
    ReferentialViolationError,
    ReturnNotFoundError,
)
from supply_kernel.logging_config import get_logger
from supply_kernel.models.bill import BillKind, BillModel, PaymentStatus
from supply_kernel.models.payment import (
    ClaimDocumentKind,
    PaymentClaimModel,
    PaymentKind,
    PaymentModel,
)
from supply_kernel.models.stock_return import ReturnKind, ReturnModel, ReturnStatus
from supply_kernel.selectors.document_selector import ref_clause
from supply_kernel.services.base import SYSTEM_ACTOR, BaseService
from supply_kernel.services.sequence_service import SequenceService

logger = get_logger("services.payment")


@dataclass(frozen=True)
class _Side:
    bill_kind: str
    return_kind: str


_SIDES = {
    PaymentKind.SALE.value: _Side(BillKind.SALE.value, ReturnKind.SALE_RETURN.value),
    PaymentKind.PURCHASE.value: _Side(BillKind.PURCHASE.value, ReturnKind.PURCHASE_RETURN.value),
}


def _kind_value(payment_kind) -> str:
    return getattr(payment_kind, "value", payment_kind)


def _claimed(kind: ClaimDocumentKind, id_column):
    return exists().where(
        PaymentClaimModel.document_kind == kind.value,
        PaymentClaimModel.document_id == id_column,
    )


class PaymentReconciler(BaseService[PaymentModel]):
    """Payment creation, edit and outstanding-document queries."""

    def __init__(
        self,
        session: Session,
        config: SupplyConfig,
        clock: Clock,
        actor_id: str = SYSTEM_ACTOR,
        sequences: SequenceService | None = None,
        calculator: NettingCalculator | None = None,
    ):
        super().__init__(session, actor_id)
        self._config = config
        self._clock = clock
        self._sequences = sequences or SequenceService(session)
        self._calculator = calculator or NettingCalculator(config.money_places)

    # =========================================================================
    # Queries
    # =========================================================================

    def compute_outstanding(
        self,
        counterparty_id: str,
        payment_kind: str = PaymentKind.SALE.value,
    ) -> OutstandingDocuments:
        """Bills and returns of the counterparty that no payment holds."""
        payment_kind = _kind_value(payment_kind)
        bills, returns = self._outstanding_models(counterparty_id, payment_kind)
        return OutstandingDocuments(
            counterparty_id=counterparty_id,
            payment_kind=payment_kind,
            bills=tuple(BillInfo.from_model(b) for b in bills),
            returns=tuple(ReturnInfo.from_model(r) for r in returns),
        )

    def statement(
        self,
        counterparty_id: str,
        payment_kind: str = PaymentKind.SALE.value,
    ) -> Statement:
        """Outstanding totals before and after returns, overall and for consignment."""
        payment_kind = _kind_value(payment_kind)
        bills, returns = self._outstanding_models(counterparty_id, payment_kind)
        totals = self._calculator.statement(
            bills=[DocumentAmount(b.id, b.total_amount, b.is_consignment) for b in bills],
            returns=[DocumentAmount(r.id, r.total_amount, r.is_consignment) for r in returns],
        )
        return Statement(
            counterparty_id=counterparty_id,
            payment_kind=payment_kind,
            bill_count=len(bills),
            return_count=len(returns),
            total_before_return=totals.total_before_return,
            return_total=totals.return_total,
            total_after_return=totals.total_after_return,
            consignment_before_return=totals.consignment_before_return,
            consignment_return_total=totals.consignment_return_total,
            consignment_after_return=totals.consignment_after_return,
        )

    def _outstanding_models(
        self,
        counterparty_id: str,
        payment_kind: str,
    ) -> tuple[list[BillModel], list[ReturnModel]]:
        side = self._side(payment_kind)
        bills = self.session.execute(
            select(BillModel)
            .where(
                BillModel.counterparty_id == counterparty_id,
                BillModel.bill_kind == side.bill_kind,
                BillModel.payment_status != PaymentStatus.CASH.value,
                ~_claimed(ClaimDocumentKind.BILL, BillModel.id),
            )
            .order_by(BillModel.bill_date, BillModel.bill_number)
        ).scalars().all()
        returns = self.session.execute(
            select(ReturnModel)
            .where(
                ReturnModel.counterparty_id == counterparty_id,
                ReturnModel.return_kind == side.return_kind,
                ~_claimed(ClaimDocumentKind.RETURN, ReturnModel.id),
            )
            .order_by(ReturnModel.return_date, ReturnModel.return_number)
        ).scalars().all()
        return list(bills), list(returns)

    # =========================================================================
    # Commands
    # =========================================================================

    def create_payment(
        self,
        counterparty_id: str,
        selected_bill_ids: Sequence[UUID | str],
        selected_return_ids: Sequence[UUID | str],
        hardcopy_bill_number: str,
        payment_kind: str = PaymentKind.SALE.value,
        payment_date: date | None = None,
    ) -> PaymentModel:
        """
        Claim the selected bills and returns in a new payment.

        Raises:
            AlreadyClaimedError: A selected document is already held.
        """
        payment_kind = _kind_value(payment_kind)
        side = self._side(payment_kind)
        self._require_hardcopy(hardcopy_bill_number)
        bills, returns = self._load_selection(
            counterparty_id, side, selected_bill_ids, selected_return_ids, owner=None
        )

        try:
            with self.session.begin_nested():
                payment = PaymentModel(
                    payment_number=self._sequences.next_number(
                        SequenceService.PAYMENT, self._config.number_prefixes.payment
                    ),
                    payment_kind=payment_kind,
                    counterparty_id=counterparty_id,
                    payment_date=payment_date or self._clock.today(),
                    hardcopy_bill_number=hardcopy_bill_number.strip(),
                    created_by_id=self.actor_id,
                )
                self._apply_totals(payment, self._net(bills, returns))
                self.session.add(payment)
                self._claim(payment, bills, returns)
                self.session.flush()
        except IntegrityError as exc:
            raise ConcurrencyConflictError(
                "payment_claim", counterparty_id, "document claimed concurrently"
            ) from exc

        logger.info(
            "payment_created",
            extra={
                "payment_number": payment.payment_number,
                "payment_kind": payment_kind,
                "counterparty_id": counterparty_id,
                "bill_count": len(bills),
                "return_count": len(returns),
                "net_amount": str(payment.net_amount),
            },
        )
        return payment

    def update_payment(
        self,
        payment_ref,
        selected_bill_ids: Sequence[UUID | str],
        selected_return_ids: Sequence[UUID | str],
        hardcopy_bill_number: str | None = None,
        payment_date: date | None = None,
    ) -> PaymentModel:
        """
        Replace a payment's selection.

        Documents dropped from the selection become claimable again;
        documents kept stay claimed without ever being released.
        """
        payment = self.session.execute(
            select(PaymentModel)
            .where(ref_clause(PaymentModel, PaymentModel.payment_number, payment_ref))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if payment is None:
            raise PaymentNotFoundError(str(payment_ref))
        if hardcopy_bill_number is not None:
            self._require_hardcopy(hardcopy_bill_number)

        side = self._side(payment.payment_kind)
        bills, returns = self._load_selection(
            payment.counterparty_id, side, selected_bill_ids, selected_return_ids, owner=payment
        )
        kept = {(c.document_kind, c.document_id) for c in payment.claims}

        try:
            with self.session.begin_nested():
                released = self._release(payment)
                # Deletes must reach the database before re-inserting kept claims
                self.session.flush()
                self._claim(payment, bills, returns)
                self._apply_totals(payment, self._net(bills, returns))
                if hardcopy_bill_number is not None:
                    payment.hardcopy_bill_number = hardcopy_bill_number.strip()
                if payment_date is not None:
                    payment.payment_date = payment_date
                payment.revision += 1
                payment.updated_by_id = self.actor_id
                self.session.flush()
        except IntegrityError as exc:
            raise ConcurrencyConflictError(
                "payment_claim", payment.payment_number, "document claimed concurrently"
            ) from exc

        now_claimed = {(c.document_kind, c.document_id) for c in payment.claims}
        logger.info(
            "payment_updated",
            extra={
                "payment_number": payment.payment_number,
                "revision": payment.revision,
                "released_count": len(kept - now_claimed),
                "claimed_count": len(now_claimed - kept),
                "released_total": released,
                "net_amount": str(payment.net_amount),
            },
        )
        return payment

    # =========================================================================
    # Helpers
    # =========================================================================

    def _load_selection(
        self,
        counterparty_id: str,
        side: _Side,
        bill_refs: Sequence[UUID | str],
        return_refs: Sequence[UUID | str],
        owner: PaymentModel | None,
    ) -> tuple[list[BillModel], list[ReturnModel]]:
        if not bill_refs and not return_refs:
            raise InvalidRequestError("payment", "select at least one bill or return")

        bills: list[BillModel] = []
        for ref in bill_refs:
            bill = self.session.execute(
                select(BillModel)
                .where(ref_clause(BillModel, BillModel.bill_number, ref))
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if bill is None:
                raise BillNotFoundError(str(ref))
            if bill.counterparty_id != counterparty_id or bill.bill_kind != side.bill_kind:
                raise ReferentialViolationError(
                    f"Bill {bill.bill_number} is not a {side.bill_kind} bill of {counterparty_id}",
                    bill_number=bill.bill_number,
                    counterparty_id=counterparty_id,
                )
            if bill.payment_status == PaymentStatus.CASH.value:
                raise AlreadyClaimedError(ClaimDocumentKind.BILL.value, bill.bill_number, None)
            self._require_unclaimed(ClaimDocumentKind.BILL, bill.id, bill.bill_number, owner)
            bills.append(bill)

        returns: list[ReturnModel] = []
        for ref in return_refs:
            stock_return = self.session.execute(
                select(ReturnModel)
                .where(ref_clause(ReturnModel, ReturnModel.return_number, ref))
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if stock_return is None:
                raise ReturnNotFoundError(str(ref))
            if (
                stock_return.counterparty_id != counterparty_id
                or stock_return.return_kind != side.return_kind
            ):
                raise ReferentialViolationError(
                    f"Return {stock_return.return_number} is not a {side.return_kind} "
                    f"of {counterparty_id}",
                    return_number=stock_return.return_number,
                    counterparty_id=counterparty_id,
                )
            self._require_unclaimed(
                ClaimDocumentKind.RETURN, stock_return.id, stock_return.return_number, owner
            )
            returns.append(stock_return)

        if len({b.id for b in bills}) != len(bills) or len({r.id for r in returns}) != len(returns):
            raise InvalidRequestError("payment", "a document is selected more than once")
        return bills, returns

    def _require_unclaimed(
        self,
        kind: ClaimDocumentKind,
        document_id: UUID,
        document_number: str,
        owner: PaymentModel | None,
    ) -> None:
        holder = self.session.execute(
            select(PaymentModel.id, PaymentModel.payment_number)
            .join(PaymentClaimModel, PaymentClaimModel.payment_id == PaymentModel.id)
            .where(
                PaymentClaimModel.document_kind == kind.value,
                PaymentClaimModel.document_id == document_id,
            )
        ).one_or_none()
        if holder is None:
            return
        if owner is not None and holder.id == owner.id:
            return
        raise AlreadyClaimedError(kind.value, document_number, holder.payment_number)

    def _claim(
        self,
        payment: PaymentModel,
        bills: Sequence[BillModel],
        returns: Sequence[ReturnModel],
    ) -> None:
        for bill in bills:
            payment.claims.append(
                PaymentClaimModel(
                    document_kind=ClaimDocumentKind.BILL.value,
                    document_id=bill.id,
                    document_number=bill.bill_number,
                    amount=bill.total_amount,
                )
            )
            bill.payment_status = PaymentStatus.PAID.value
            bill.updated_by_id = self.actor_id
        for stock_return in returns:
            payment.claims.append(
                PaymentClaimModel(
                    document_kind=ClaimDocumentKind.RETURN.value,
                    document_id=stock_return.id,
                    document_number=stock_return.return_number,
                    amount=stock_return.total_amount,
                )
            )
            stock_return.payment_status = ReturnStatus.PROCESSED.value
            stock_return.updated_by_id = self.actor_id

    def _release(self, payment: PaymentModel) -> str:
        """Drop every claim of ``payment`` and mark its documents unpaid."""
        released_total = sum((c.amount for c in payment.claims), Decimal("0"))
        for claim in list(payment.claims):
            if claim.document_kind == ClaimDocumentKind.BILL.value:
                bill = self.session.get(BillModel, claim.document_id)
                if bill is not None:
                    bill.payment_status = PaymentStatus.UNPAID.value
                    bill.updated_by_id = self.actor_id
            else:
                stock_return = self.session.get(ReturnModel, claim.document_id)
                if stock_return is not None:
                    stock_return.payment_status = ReturnStatus.UNPAID.value
                    stock_return.updated_by_id = self.actor_id
        payment.claims.clear()
        return str(released_total)

    def _net(self, bills: Sequence[BillModel], returns: Sequence[ReturnModel]) -> NettingResult:
        return self._calculator.net(
            bills=[DocumentAmount(b.id, b.total_amount, b.is_consignment) for b in bills],
            returns=[DocumentAmount(r.id, r.total_amount, r.is_consignment) for r in returns],
        )

    @staticmethod
    def _apply_totals(payment: PaymentModel, result: NettingResult) -> None:
        payment.sold_total = result.sold_total
        payment.return_total = result.return_total
        payment.net_amount = result.net_amount

    @staticmethod
    def _side(payment_kind: str) -> _Side:
        payment_kind = _kind_value(payment_kind)
        side = _SIDES.get(payment_kind)
        if side is None:
            raise InvalidRequestError("payment", f"unknown payment kind '{payment_kind}'")
        return side

    @staticmethod
    def _require_hardcopy(hardcopy_bill_number: str | None) -> None:
        if not hardcopy_bill_number or not hardcopy_bill_number.strip():
            raise InvalidRequestError("payment", "hardcopy bill number is required")
