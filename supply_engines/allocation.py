"""
Module: supply_engines.allocation
Responsibility:
    Plan which batches satisfy a requested quantity under the
    FIFO-by-expiry policy: soonest-expiring batch first, undated batches
    last, greedy until the request is covered.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import supply_kernel/domain.

Invariants enforced:
    - Conservation: sum of planned quantities == requested when the plan
      is satisfied, and no planned quantity exceeds its batch.
    - Ordering: batches are consumed in ascending (expire_date, out_price,
      batch_id) order; a later batch is touched only after every earlier
      one is exhausted.
    - All-or-nothing: an unsatisfiable request yields a plan that is not
      satisfied; the caller must not apply any of it.

Failure modes:
    - ValueError on a negative requested quantity.
    - ValueError when the candidates mix barcodes, branches or net prices.

Usage:
    from supply_engines.allocation import FifoAllocator

    plan = FifoAllocator().plan(batches=candidates, quantity=8)
    if not plan.is_satisfied:
        ...  # InsufficientStock
    for line in plan.lines:
        ledger.adjust_quantity(line.batch.key, -line.quantity)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from supply_engines.tracer import traced_engine
from supply_kernel.domain.dtos import BatchInfo


@dataclass(frozen=True)
class PlannedDeduction:
    """Units to take from one batch."""

    batch: BatchInfo
    quantity: int

    @property
    def remaining(self) -> int:
        """Units left in the batch after this deduction."""
        return self.batch.quantity - self.quantity


@dataclass(frozen=True)
class AllocationPlan:
    """
    Outcome of planning one request.

    Guarantees:
        - ``planned_quantity == requested`` iff ``is_satisfied``.
        - ``available`` is the total across all eligible candidates.
    """

    requested: int
    available: int
    lines: tuple[PlannedDeduction, ...]

    @property
    def planned_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def is_satisfied(self) -> bool:
        return self.planned_quantity == self.requested

    @property
    def shortfall(self) -> int:
        return max(self.requested - self.available, 0)


def expiry_order(batches: Sequence[BatchInfo]) -> list[BatchInfo]:
    """Sort batches soonest expiry first; unset expiry (far future) sorts last."""
    return sorted(
        batches,
        key=lambda b: (b.key.expire_date, b.key.out_price, str(b.batch_id)),
    )


class FifoAllocator:
    """
    FIFO-by-expiry planner.

    Contract:
        Pure function of its inputs.  Never mutates a BatchInfo.
    Non-goals:
        - Does not filter by price; the caller passes exact-price
          candidates.
        - Does not lock or write anything.
    """

    @traced_engine("fifo_allocation", "1.0", fingerprint_fields=("quantity",))
    def plan(self, *, batches: Sequence[BatchInfo], quantity: int) -> AllocationPlan:
        """
        Plan a deduction of ``quantity`` units from ``batches``.

        Args:
            batches: Candidate batches of one barcode at one branch and
                one net price.  Empty batches are ignored.
            quantity: Units requested.  Zero yields an empty, satisfied plan.

        Returns:
            AllocationPlan.  When available < quantity the plan is returned
            unsatisfied with no lines.
        """
        if quantity < 0:
            raise ValueError(f"Requested quantity must be non-negative, got {quantity}")
        self._check_homogeneous(batches)

        eligible = [b for b in batches if b.quantity > 0]
        available = sum(b.quantity for b in eligible)

        if quantity == 0:
            return AllocationPlan(requested=0, available=available, lines=())
        if available < quantity:
            return AllocationPlan(requested=quantity, available=available, lines=())

        lines: list[PlannedDeduction] = []
        remaining = quantity
        for batch in expiry_order(eligible):
            if remaining == 0:
                break
            take = min(batch.quantity, remaining)
            lines.append(PlannedDeduction(batch=batch, quantity=take))
            remaining -= take

        plan = AllocationPlan(requested=quantity, available=available, lines=tuple(lines))
        assert plan.is_satisfied, "planned quantity must equal requested quantity"
        return plan

    @staticmethod
    def _check_homogeneous(batches: Sequence[BatchInfo]) -> None:
        identities = {(b.key.barcode, b.key.branch, b.key.net_price) for b in batches}
        if len(identities) > 1:
            raise ValueError(
                "Allocation candidates must share barcode, branch and net price; "
                f"got {sorted(str(i) for i in identities)}"
            )
