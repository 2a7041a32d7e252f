"""
AllocationEngine -- deduct and restore stock by FIFO-by-expiry.

Responsibility:
    Turns a request "N units of barcode X at branch B, net price P" into
    concrete batch deductions, and reverses such deductions exactly.  This
    is the deduction primitive behind sale bills and transport sends, and
    the restoration primitive behind bill edits, deletions and rejected
    transports.

Architecture position:
    Services -- stateful orchestration.  Composes the pure FifoAllocator
    planner with the BatchLedger write path.

Invariants enforced:
    - Price is matched exactly; no substitution across net prices.
    - All-or-nothing: the plan is computed against locked rows before any
      write, and an unsatisfiable request raises before touching a batch.
    - ``restore(allocate(...))`` returns every batch to its prior quantity.

Failure modes:
    - InsufficientStockError when matching batches hold fewer units than
      requested.
    - InvalidRequestError on a negative quantity.
    - ConcurrencyConflictError from the ledger on a lost race.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy.orm import Session

from supply_engines.allocation import FifoAllocator
from supply_kernel.domain.dtos import BatchDeduction, BatchInfo
from supply_kernel.exceptions import InsufficientStockError, InvalidRequestError
from supply_kernel.logging_config import get_logger
from supply_kernel.services.base import SYSTEM_ACTOR
from supply_kernel.services.batch_ledger import BatchLedger

logger = get_logger("services.allocation")


class AllocationEngine:
    """
    Batch allocation over the ledger.

    Contract:
        Runs inside the caller's transaction and flushes only.

    Usage:
        deductions = engine.allocate("X1", "Slemany", Decimal("100"), 8)
        ...
        engine.restore(deductions)
    """

    def __init__(
        self,
        session: Session,
        actor_id: str = SYSTEM_ACTOR,
        ledger: BatchLedger | None = None,
        planner: FifoAllocator | None = None,
    ):
        self._session = session
        self._ledger = ledger or BatchLedger(session, actor_id)
        self._planner = planner or FifoAllocator()

    @property
    def ledger(self) -> BatchLedger:
        return self._ledger

    def allocate(
        self,
        barcode: str,
        branch: str,
        requested_price: Decimal,
        quantity: int,
        out_price: Decimal | None = None,
    ) -> list[BatchDeduction]:
        """
        Deduct ``quantity`` units from the soonest-expiring matching batches.

        ``out_price`` narrows the candidates to batches sold at that price.

        Postconditions:
            - Returns one BatchDeduction per batch touched, in the order
              they were drawn, summing to ``quantity``.
            - On failure no batch has been modified.

        Raises:
            InsufficientStockError: Matching stock < quantity.
            InvalidRequestError: quantity < 0.
        """
        if quantity < 0:
            raise InvalidRequestError("allocate", f"quantity must be non-negative, got {quantity}")
        if quantity == 0:
            return []

        t0 = time.monotonic()
        candidates = self._ledger.find_batches(
            barcode,
            branch,
            net_price=requested_price,
            out_price=out_price,
            in_stock_only=True,
            for_update=True,
        )
        plan = self._planner.plan(
            batches=[BatchInfo.from_model(b) for b in candidates],
            quantity=quantity,
        )
        if not plan.is_satisfied:
            logger.info(
                "allocation_insufficient_stock",
                extra={
                    "barcode": barcode,
                    "branch": branch,
                    "net_price": str(requested_price),
                    "requested_quantity": quantity,
                    "available_quantity": plan.available,
                },
            )
            raise InsufficientStockError(
                barcode=barcode,
                branch=branch,
                requested_quantity=quantity,
                available_quantity=plan.available,
                net_price=str(requested_price),
            )

        deductions: list[BatchDeduction] = []
        for line in plan.lines:
            self._ledger.adjust_quantity(line.batch.key, -line.quantity)
            deductions.append(
                BatchDeduction(
                    key=line.batch.key,
                    quantity=line.quantity,
                    batch_id=line.batch.batch_id,
                    item_name=line.batch.item_name,
                )
            )

        logger.info(
            "allocation_completed",
            extra={
                "barcode": barcode,
                "branch": branch,
                "net_price": str(requested_price),
                "requested_quantity": quantity,
                "batches_touched": len(deductions),
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return deductions

    def restore(
        self,
        deductions: Sequence[BatchDeduction],
        reversal_reason: str | None = None,
    ) -> None:
        """
        Put every deducted unit back into the batch it came from.

        Batches pruned in between are recreated with the same identity.
        """
        for deduction in deductions:
            self._ledger.adjust_quantity(
                deduction.key,
                deduction.quantity,
                item_name=deduction.item_name,
                reversal_reason=reversal_reason,
            )
        if deductions:
            logger.info(
                "allocation_restored",
                extra={
                    "deduction_count": len(deductions),
                    "units_restored": sum(d.quantity for d in deductions),
                },
            )
