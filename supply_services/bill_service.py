"""
BillService -- purchase bills, sale bills and returns.

Responsibility:
    Creates, edits and deletes bills and returns, keeping the batch
    ledger in step with every document:
        - purchase bill  -> units added to the exact batch identity
        - sale bill      -> units deducted by FIFO-by-expiry allocation
        - sale return    -> units put back into the batches the sale drew
        - purchase return -> units removed from the purchase's batch

Architecture position:
    Services -- stateful orchestration.  Together with TransportWorkflow,
    the only writer of the batch ledger.

Invariants enforced:
    - Whole-document atomicity: every ledger change of one call runs in a
      savepoint; any failure rolls back all lines, leaving the ledger as
      it was before the call.
    - Edit replaces the old ledger effect with the new one in one step;
      the bill record changes only after the new effect is applied.
    - Bill numbers are issued once and survive edits.
    - Return quantity per (bill, barcode) never exceeds the billed quantity
      minus what was already returned.
    - A bill with returns, or held by a payment, is frozen.
    - A return held by a payment is frozen; editing or deleting an
      unclaimed return reverses its ledger effect exactly.

Failure modes:
    - InsufficientStockError: sale allocation short.
    - NotReversibleError: purchase edit/delete/return needs stock that was
      already sold or moved.
    - BillNotFoundError, ReturnNotFoundError, ReferentialViolationError,
      ReturnQuantityExceededError, DocumentInUseError.
    - InvalidRequestError: empty item list, unknown branch.

Audit relevance:
    Logs ``purchase_bill_created``, ``sale_bill_created``, ``bill_edited``,
    ``bill_deleted``, ``return_processed``, ``return_edited`` and
    ``return_deleted`` with document numbers.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from supply_config.schema import SupplyConfig
from supply_kernel.domain.clock import Clock
from supply_kernel.domain.dtos import (
    FAR_FUTURE_EXPIRY,
    BatchDeduction,
    BatchKey,
    BillLineSpec,
    ReturnLineSpec,
)
from supply_kernel.exceptions import (
    BillNotFoundError,
    DocumentInUseError,
    InvalidRequestError,
    ReferentialViolationError,
    ReturnNotFoundError,
    ReturnQuantityExceededError,
)
from supply_kernel.logging_config import get_logger
from supply_kernel.models.bill import (
    BillDeductionModel,
    BillKind,
    BillLineModel,
    BillModel,
    PaymentStatus,
)
from supply_kernel.models.payment import ClaimDocumentKind, PaymentClaimModel, PaymentModel
from supply_kernel.models.stock_return import (
    ReturnKind,
    ReturnLineModel,
    ReturnModel,
)
from supply_kernel.selectors.document_selector import ref_clause
from supply_kernel.services.base import SYSTEM_ACTOR, BaseService
from supply_kernel.services.sequence_service import SequenceService
from supply_services.allocation_service import AllocationEngine

logger = get_logger("services.bill")

PURCHASE_REVERSAL_REASON = "units from this purchase were already sold or moved"
PURCHASE_RETURN_REASON = "units to return to the company were already sold or moved"
SALE_RETURN_REVERSAL_REASON = "units put back by this return were already sold or moved"


class BillService(BaseService[BillModel]):
    """
    Bill and return lifecycle.

    Contract:
        Each public method is one logical operation.  It flushes within the
        caller's transaction and never commits.
    """

    def __init__(
        self,
        session: Session,
        config: SupplyConfig,
        clock: Clock,
        actor_id: str = SYSTEM_ACTOR,
        allocation: AllocationEngine | None = None,
        sequences: SequenceService | None = None,
    ):
        super().__init__(session, actor_id)
        self._config = config
        self._clock = clock
        self._allocation = allocation or AllocationEngine(session, actor_id)
        self._ledger = self._allocation.ledger
        self._sequences = sequences or SequenceService(session)

    # =========================================================================
    # Creation
    # =========================================================================

    def create_purchase_bill(
        self,
        company_id: str,
        items: Sequence[BillLineSpec],
        bill_date: date | None = None,
        is_consignment: bool = False,
        counterparty_name: str | None = None,
        notes: str | None = None,
    ) -> BillModel:
        """
        Record goods bought from a company and add them to the ledger.

        Each line adds its quantity to the batch identity
        (barcode, branch, net_price, out_price, expire_date), creating the
        batch when it does not exist.
        """
        self._require_items("purchase bill", items)
        self._require_counterparty("purchase bill", company_id)

        with self.session.begin_nested():
            bill = BillModel(
                bill_number=self._sequences.next_number(
                    SequenceService.PURCHASE_BILL, self._config.number_prefixes.purchase_bill
                ),
                bill_kind=BillKind.PURCHASE.value,
                counterparty_id=company_id,
                counterparty_name=counterparty_name,
                bill_date=bill_date or self._clock.today(),
                payment_status=PaymentStatus.UNPAID.value,
                is_consignment=is_consignment,
                notes=notes,
                created_by_id=self.actor_id,
            )
            bill.lines = self._build_lines(items, purchase=True)
            self.session.add(bill)
            for line in bill.lines:
                self._ledger.adjust_quantity(self._purchase_key(line), line.quantity, item_name=line.name)
            self.session.flush()

        logger.info(
            "purchase_bill_created",
            extra={
                "bill_number": bill.bill_number,
                "counterparty_id": company_id,
                "line_count": len(bill.lines),
                "is_consignment": is_consignment,
            },
        )
        return bill

    def create_sale_bill(
        self,
        pharmacy_id: str,
        items: Sequence[BillLineSpec],
        bill_date: date | None = None,
        cash: bool = False,
        counterparty_name: str | None = None,
        notes: str | None = None,
    ) -> BillModel:
        """
        Record goods sold to a pharmacy and deduct them from the ledger.

        Every line is allocated FIFO-by-expiry at its exact net price.  If
        any line cannot be satisfied, no line's deduction persists.
        """
        self._require_items("sale bill", items)
        self._require_counterparty("sale bill", pharmacy_id)

        with self.session.begin_nested():
            bill = BillModel(
                bill_number=self._sequences.next_number(
                    SequenceService.SALE_BILL, self._config.number_prefixes.sale_bill
                ),
                bill_kind=BillKind.SALE.value,
                counterparty_id=pharmacy_id,
                counterparty_name=counterparty_name,
                bill_date=bill_date or self._clock.today(),
                payment_status=(PaymentStatus.CASH if cash else PaymentStatus.UNPAID).value,
                is_consignment=False,
                notes=notes,
                created_by_id=self.actor_id,
            )
            self.session.add(bill)
            self._apply_sale_lines(bill, items)
            self.session.flush()

        logger.info(
            "sale_bill_created",
            extra={
                "bill_number": bill.bill_number,
                "counterparty_id": pharmacy_id,
                "line_count": len(bill.lines),
                "deduction_count": len(bill.deductions),
                "cash": cash,
            },
        )
        return bill

    # =========================================================================
    # Edit / delete
    # =========================================================================

    def edit_bill(
        self,
        bill_ref: str,
        new_items: Sequence[BillLineSpec],
        notes: str | None = None,
    ) -> BillModel:
        """
        Replace a bill's lines, moving the ledger from the old effect to the new.

        Sale bills restore every old deduction and then allocate the new
        lines.  Purchase bills apply the per-batch difference between the
        new and the old lines, so only a real reduction needs stock that is
        still on hand.  An edit to the identical line list touches no batch.
        """
        self._require_items("bill edit", new_items)
        bill = self._load_bill_for_update(bill_ref)
        self._require_mutable(bill)

        if self._same_lines(bill, new_items):
            self._touch(bill, notes)
            logger.info("bill_edited", extra={"bill_number": bill.bill_number, "ledger_changed": False})
            return bill

        with self.session.begin_nested():
            if bill.bill_kind == BillKind.SALE.value:
                self._allocation.restore(self._outstanding_deductions(bill))
                bill.deductions.clear()
                bill.lines.clear()
                self.session.flush()
                self._apply_sale_lines(bill, new_items)
            else:
                new_lines = self._build_lines(new_items, purchase=True)
                self._ledger.adjust_many(
                    self._purchase_delta(bill.lines, new_lines),
                    reversal_reason=PURCHASE_REVERSAL_REASON,
                )
                bill.lines.clear()
                self.session.flush()
                bill.lines.extend(new_lines)
            self._touch(bill, notes)

        logger.info(
            "bill_edited",
            extra={
                "bill_number": bill.bill_number,
                "bill_kind": bill.bill_kind,
                "revision": bill.revision,
                "ledger_changed": True,
            },
        )
        return bill

    def delete_bill(self, bill_ref: str) -> None:
        """
        Delete a bill and reverse its ledger effect.

        Raises:
            NotReversibleError: A purchase's units are no longer on hand.
            DocumentInUseError: The bill has returns or is held by a payment.
        """
        bill = self._load_bill_for_update(bill_ref)
        self._require_mutable(bill)
        bill_number = bill.bill_number

        with self.session.begin_nested():
            if bill.bill_kind == BillKind.SALE.value:
                self._allocation.restore(self._outstanding_deductions(bill))
            else:
                for line in bill.lines:
                    self._ledger.adjust_quantity(
                        self._purchase_key(line),
                        -line.quantity,
                        reversal_reason=PURCHASE_REVERSAL_REASON,
                    )
            self.session.delete(bill)
            self.session.flush()

        logger.info("bill_deleted", extra={"bill_number": bill_number})

    # =========================================================================
    # Returns
    # =========================================================================

    def process_return(
        self,
        counterparty_id: str,
        origin_bill_ref: str,
        items: Sequence[ReturnLineSpec],
        return_date: date | None = None,
        notes: str | None = None,
    ) -> ReturnModel:
        """
        Record a return against an origin bill.

        Sale returns put the units back into the batches the sale drew
        from.  Purchase returns take the units out of the purchase line's
        batch and fail with NotReversibleError if they are gone.

        Raises:
            BillNotFoundError: No such origin bill.
            ReferentialViolationError: The bill belongs to another
                counterparty or has no line for a returned barcode.
            ReturnQuantityExceededError: More than the returnable quantity.
        """
        self._require_items("return", items)
        origin = self._load_bill_for_update(origin_bill_ref)
        if origin.counterparty_id != counterparty_id:
            raise ReferentialViolationError(
                f"Bill {origin.bill_number} does not belong to {counterparty_id}",
                bill_number=origin.bill_number,
                counterparty_id=counterparty_id,
            )

        is_sale = origin.bill_kind == BillKind.SALE.value

        with self.session.begin_nested():
            stock_return = ReturnModel(
                return_number=self._sequences.next_number(
                    SequenceService.STOCK_RETURN, self._config.number_prefixes.stock_return
                ),
                return_kind=(ReturnKind.SALE_RETURN if is_sale else ReturnKind.PURCHASE_RETURN).value,
                counterparty_id=counterparty_id,
                origin_bill_id=origin.id,
                origin_bill_number=origin.bill_number,
                return_date=return_date or self._clock.today(),
                is_consignment=origin.is_consignment,
                notes=notes,
                created_by_id=self.actor_id,
            )
            stock_return.lines = self._apply_return_lines(origin, items)
            self.session.add(stock_return)
            self.session.flush()

        logger.info(
            "return_processed",
            extra={
                "return_number": stock_return.return_number,
                "return_kind": stock_return.return_kind,
                "bill_number": origin.bill_number,
                "counterparty_id": counterparty_id,
                "units": sum(line.return_quantity for line in stock_return.lines),
            },
        )
        return stock_return

    def edit_return(
        self,
        return_ref: str,
        new_items: Sequence[ReturnLineSpec],
        notes: str | None = None,
    ) -> ReturnModel:
        """
        Replace a return's lines.

        The old lines are reversed first, so the returnable quantity is
        checked against the origin bill as if this return had never been
        made.  A failure anywhere leaves the ledger, the origin bill's
        deductions and the return unchanged.

        Raises:
            ReturnNotFoundError: No such return.
            DocumentInUseError: A payment claims the return.
            ReturnQuantityExceededError: New lines exceed the returnable quantity.
            NotReversibleError: Units a sale return put back were sold or moved.
        """
        self._require_items("return edit", new_items)
        origin, stock_return = self._load_return_for_update(return_ref)
        self._require_unclaimed(stock_return)

        with self.session.begin_nested():
            self._reverse_return(origin, stock_return)
            stock_return.lines.clear()
            self.session.flush()
            stock_return.lines.extend(self._apply_return_lines(origin, new_items))
            if notes is not None:
                stock_return.notes = notes
            stock_return.updated_by_id = self.actor_id
            self.session.flush()

        logger.info(
            "return_edited",
            extra={
                "return_number": stock_return.return_number,
                "bill_number": origin.bill_number,
                "units": sum(line.return_quantity for line in stock_return.lines),
            },
        )
        return stock_return

    def delete_return(self, return_ref: str) -> None:
        """
        Delete a return and reverse its ledger effect.

        Sale return units leave the batches they were put back into and
        count as sold again on the origin bill.  Purchase return units
        come back into the purchase's batch.  Once an origin bill has no
        returns left it can be edited or deleted again.

        Raises:
            ReturnNotFoundError: No such return.
            DocumentInUseError: A payment claims the return.
            NotReversibleError: Units a sale return put back were sold or moved.
        """
        origin, stock_return = self._load_return_for_update(return_ref)
        self._require_unclaimed(stock_return)
        return_number = stock_return.return_number

        with self.session.begin_nested():
            self._reverse_return(origin, stock_return)
            self.session.delete(stock_return)
            self.session.flush()

        logger.info(
            "return_deleted",
            extra={"return_number": return_number, "bill_number": origin.bill_number},
        )

    def _apply_return_lines(
        self,
        origin: BillModel,
        items: Sequence[ReturnLineSpec],
    ) -> list[ReturnLineModel]:
        """Check each item against the returnable quantity and move its units."""
        is_sale = origin.bill_kind == BillKind.SALE.value
        returned = self._returned_by_line(origin)
        lines_by_barcode: dict[str, list[BillLineModel]] = defaultdict(list)
        for line in origin.lines:
            lines_by_barcode[line.barcode].append(line)

        return_lines: list[ReturnLineModel] = []
        for spec in items:
            candidates = self._matching_lines(origin, lines_by_barcode, spec)
            returnable = sum(line.quantity - returned[line.line_no] for line in candidates)
            if spec.return_quantity > returnable:
                raise ReturnQuantityExceededError(
                    bill_number=origin.bill_number,
                    barcode=spec.barcode,
                    requested_quantity=spec.return_quantity,
                    returnable_quantity=returnable,
                )
            remaining = spec.return_quantity
            for line in candidates:
                take = min(line.quantity - returned[line.line_no], remaining)
                if take <= 0:
                    continue
                returned[line.line_no] += take
                remaining -= take
                price = spec.return_price
                if price is None:
                    price = line.price if is_sale else line.net_price
                if is_sale:
                    return_lines.extend(self._return_sale_units(origin, line, take, price))
                else:
                    return_lines.append(self._return_purchase_units(line, take, price))
                if remaining == 0:
                    break

        for line_no, line in enumerate(return_lines, start=1):
            line.line_no = line_no
        return return_lines

    def _reverse_return(self, origin: BillModel, stock_return: ReturnModel) -> None:
        """Undo the ledger effect of every line of ``stock_return``."""
        for line in stock_return.lines:
            key = BatchKey(
                barcode=line.barcode,
                branch=line.branch,
                net_price=line.net_price,
                out_price=line.out_price,
                expire_date=line.expire_date,
            )
            if stock_return.return_kind == ReturnKind.PURCHASE_RETURN.value:
                self._ledger.adjust_quantity(key, line.return_quantity, item_name=line.name)
                continue
            self._ledger.adjust_quantity(
                key,
                -line.return_quantity,
                reversal_reason=SALE_RETURN_REVERSAL_REASON,
            )
            deduction = next(
                d
                for d in origin.deductions
                if d.line_no == line.origin_line_no
                and d.branch == key.branch
                and d.net_price == key.net_price
                and d.out_price == key.out_price
                and d.expire_date == key.expire_date
            )
            deduction.quantity_returned -= line.return_quantity

    def _return_sale_units(
        self,
        origin: BillModel,
        line: BillLineModel,
        quantity: int,
        price,
    ) -> list[ReturnLineModel]:
        """Walk the line's deductions newest first, restoring units batch by batch."""
        result: list[ReturnLineModel] = []
        remaining = quantity
        deductions = [d for d in origin.deductions if d.line_no == line.line_no]
        for deduction in reversed(deductions):
            take = min(deduction.outstanding_quantity, remaining)
            if take <= 0:
                continue
            key = BatchKey(
                barcode=deduction.barcode,
                branch=deduction.branch,
                net_price=deduction.net_price,
                out_price=deduction.out_price,
                expire_date=deduction.expire_date,
            )
            self._ledger.adjust_quantity(key, take, item_name=line.name)
            deduction.quantity_returned += take
            result.append(
                ReturnLineModel(
                    line_no=0,
                    origin_line_no=line.line_no,
                    barcode=line.barcode,
                    name=line.name,
                    branch=deduction.branch,
                    net_price=deduction.net_price,
                    out_price=deduction.out_price,
                    expire_date=deduction.expire_date,
                    return_quantity=take,
                    return_price=price,
                )
            )
            remaining -= take
            if remaining == 0:
                break
        assert remaining == 0, "sale deductions must cover the returnable quantity"
        return result

    def _return_purchase_units(self, line: BillLineModel, quantity: int, price) -> ReturnLineModel:
        self._ledger.adjust_quantity(
            self._purchase_key(line),
            -quantity,
            reversal_reason=PURCHASE_RETURN_REASON,
        )
        return ReturnLineModel(
            line_no=0,
            origin_line_no=line.line_no,
            barcode=line.barcode,
            name=line.name,
            branch=line.branch,
            net_price=line.net_price,
            out_price=line.out_price,
            expire_date=line.expire_date,
            return_quantity=quantity,
            return_price=price,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _apply_sale_lines(self, bill: BillModel, items: Sequence[BillLineSpec]) -> None:
        lines = self._build_lines(items, purchase=False)
        for line in lines:
            deductions = self._allocation.allocate(line.barcode, line.branch, line.net_price, line.quantity)
            line.expire_date = deductions[0].key.expire_date
            if not line.name:
                line.name = deductions[0].item_name
            bill.lines.append(line)
            for seq, deduction in enumerate(deductions, start=1):
                bill.deductions.append(
                    BillDeductionModel(
                        line_no=line.line_no,
                        seq=seq,
                        batch_id=deduction.batch_id,
                        barcode=deduction.key.barcode,
                        branch=deduction.key.branch,
                        net_price=deduction.key.net_price,
                        out_price=deduction.key.out_price,
                        expire_date=deduction.key.expire_date,
                        quantity_taken=deduction.quantity,
                        quantity_returned=0,
                    )
                )

    def _build_lines(self, items: Sequence[BillLineSpec], purchase: bool) -> list[BillLineModel]:
        lines = []
        for line_no, spec in enumerate(items, start=1):
            price = spec.price
            if price is None:
                price = spec.net_price if purchase else spec.out_price
            lines.append(
                BillLineModel(
                    line_no=line_no,
                    barcode=spec.barcode,
                    name=spec.name,
                    branch=self._resolve_branch(spec.branch),
                    quantity=spec.quantity,
                    net_price=spec.net_price,
                    out_price=spec.out_price,
                    price=price,
                    expire_date=spec.expire_date or FAR_FUTURE_EXPIRY,
                )
            )
        return lines

    @staticmethod
    def _purchase_key(line: BillLineModel) -> BatchKey:
        return BatchKey(
            barcode=line.barcode,
            branch=line.branch,
            net_price=line.net_price,
            out_price=line.out_price,
            expire_date=line.expire_date,
        )

    def _purchase_delta(
        self,
        old_lines: Sequence[BillLineModel],
        new_lines: Sequence[BillLineModel],
    ) -> list[tuple[BatchKey, int]]:
        delta: dict[BatchKey, int] = defaultdict(int)
        for line in old_lines:
            delta[self._purchase_key(line)] -= line.quantity
        for line in new_lines:
            delta[self._purchase_key(line)] += line.quantity
        return [(key, qty) for key, qty in delta.items() if qty != 0]

    @staticmethod
    def _outstanding_deductions(bill: BillModel) -> list[BatchDeduction]:
        result = []
        for d in bill.deductions:
            if d.outstanding_quantity > 0:
                result.append(
                    BatchDeduction(
                        key=BatchKey(
                            barcode=d.barcode,
                            branch=d.branch,
                            net_price=d.net_price,
                            out_price=d.out_price,
                            expire_date=d.expire_date,
                        ),
                        quantity=d.outstanding_quantity,
                        batch_id=d.batch_id,
                    )
                )
        return result

    def _same_lines(self, bill: BillModel, items: Sequence[BillLineSpec]) -> bool:
        purchase = bill.bill_kind == BillKind.PURCHASE.value
        new_lines = self._build_lines(items, purchase=purchase)
        if len(new_lines) != len(bill.lines):
            return False
        for old, new in zip(bill.lines, new_lines):
            same = (
                old.barcode == new.barcode
                and old.branch == new.branch
                and old.quantity == new.quantity
                and old.net_price == new.net_price
                and old.out_price == new.out_price
                and old.price == new.price
                and old.name == (new.name or old.name)
            )
            # Sale lines record the expiry allocation chose, not a request
            if purchase:
                same = same and old.expire_date == new.expire_date
            if not same:
                return False
        return True

    def _touch(self, bill: BillModel, notes: str | None) -> None:
        if notes is not None:
            bill.notes = notes
        bill.revision += 1
        bill.updated_by_id = self.actor_id
        self.session.flush()

    def _matching_lines(
        self,
        origin: BillModel,
        lines_by_barcode: dict[str, list[BillLineModel]],
        spec: ReturnLineSpec,
    ) -> list[BillLineModel]:
        candidates = lines_by_barcode.get(spec.barcode, [])
        if spec.net_price is not None:
            candidates = [line for line in candidates if line.net_price == spec.net_price]
        if spec.expire_date is not None:
            candidates = [line for line in candidates if line.expire_date == spec.expire_date]
        if not candidates:
            raise ReferentialViolationError(
                f"Bill {origin.bill_number} has no line for {spec.barcode}",
                bill_number=origin.bill_number,
                barcode=spec.barcode,
            )
        return candidates

    def _returned_by_line(self, origin: BillModel) -> dict[int, int]:
        """Units already returned against each line of ``origin``."""
        rows = self.session.execute(
            select(ReturnLineModel.origin_line_no, ReturnLineModel.return_quantity)
            .join(ReturnModel, ReturnModel.id == ReturnLineModel.return_id)
            .where(ReturnModel.origin_bill_id == origin.id)
        ).all()
        returned: dict[int, int] = defaultdict(int)
        for line_no, quantity in rows:
            returned[line_no] += quantity
        return returned

    def _load_bill_for_update(self, bill_ref) -> BillModel:
        bill = self.session.execute(
            select(BillModel)
            .where(ref_clause(BillModel, BillModel.bill_number, bill_ref))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if bill is None:
            raise BillNotFoundError(str(bill_ref))
        return bill

    def _load_return_for_update(self, return_ref) -> tuple[BillModel, ReturnModel]:
        """Lock the origin bill, then the return, in the order process_return locks."""
        clause = ref_clause(ReturnModel, ReturnModel.return_number, return_ref)
        origin_id = self.session.execute(
            select(ReturnModel.origin_bill_id).where(clause)
        ).scalar_one_or_none()
        if origin_id is None:
            raise ReturnNotFoundError(str(return_ref))
        origin = self._load_bill_for_update(origin_id)
        stock_return = self.session.execute(
            select(ReturnModel)
            .where(clause)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if stock_return is None:
            raise ReturnNotFoundError(str(return_ref))
        return origin, stock_return

    def _require_unclaimed(self, stock_return: ReturnModel) -> None:
        payment_number = self.session.execute(
            select(PaymentModel.payment_number)
            .join(PaymentClaimModel, PaymentClaimModel.payment_id == PaymentModel.id)
            .where(
                PaymentClaimModel.document_kind == ClaimDocumentKind.RETURN.value,
                PaymentClaimModel.document_id == stock_return.id,
            )
        ).scalar_one_or_none()
        if payment_number is not None:
            raise DocumentInUseError(stock_return.return_number, f"payment {payment_number}")

    def _require_mutable(self, bill: BillModel) -> None:
        return_number = self.session.execute(
            select(ReturnModel.return_number)
            .where(ReturnModel.origin_bill_id == bill.id)
            .limit(1)
        ).scalar_one_or_none()
        if return_number is not None:
            raise DocumentInUseError(bill.bill_number, f"return {return_number}")

        payment_number = self.session.execute(
            select(PaymentModel.payment_number)
            .join(PaymentClaimModel, PaymentClaimModel.payment_id == PaymentModel.id)
            .where(
                PaymentClaimModel.document_kind == ClaimDocumentKind.BILL.value,
                PaymentClaimModel.document_id == bill.id,
            )
        ).scalar_one_or_none()
        if payment_number is not None:
            raise DocumentInUseError(bill.bill_number, f"payment {payment_number}")

    def _resolve_branch(self, branch: str | None) -> str:
        resolved = branch or self._config.default_branch
        if not self._config.is_known_branch(resolved):
            raise InvalidRequestError("bill", f"unknown branch '{resolved}'")
        return resolved

    @staticmethod
    def _require_items(operation: str, items: Sequence) -> None:
        if not items:
            raise InvalidRequestError(operation, "at least one item is required")

    @staticmethod
    def _require_counterparty(operation: str, counterparty_id: str) -> None:
        if not counterparty_id or not counterparty_id.strip():
            raise InvalidRequestError(operation, "counterparty id is required")
