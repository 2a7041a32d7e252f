"""
Module: supply_kernel.selectors.batch_selector
Responsibility: Read-only stock queries over the batch ledger: available
    quantity for a price/expiry filter, stock on hand per branch, and batch
    listings.
Architecture position: Kernel > Selectors.

These reads take no locks.  They see the committed snapshot of the
caller's transaction and never a batch mid-mutation.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import func, select

from supply_kernel.domain.dtos import BatchInfo
from supply_kernel.models.batch import BatchModel
from supply_kernel.selectors.base import BaseSelector


class BatchSelector(BaseSelector[BatchModel]):
    """Stock level queries."""

    def available_quantity(
        self,
        barcode: str,
        branch: str,
        net_price: Decimal,
        out_price: Decimal | None = None,
        expire_date: date | None = None,
    ) -> int:
        """Units of ``barcode`` at ``branch`` matching the price (and optional batch) filter."""
        stmt = select(func.coalesce(func.sum(BatchModel.quantity), 0)).where(
            BatchModel.item_barcode == barcode,
            BatchModel.branch == branch,
            BatchModel.net_price == net_price,
        )
        if out_price is not None:
            stmt = stmt.where(BatchModel.out_price == out_price)
        if expire_date is not None:
            stmt = stmt.where(BatchModel.expire_date == expire_date)
        return int(self.session.execute(stmt).scalar_one())

    def stock_on_hand(self, barcode: str) -> dict[str, int]:
        """Units of ``barcode`` per branch (branches holding none are omitted)."""
        rows = self.session.execute(
            select(BatchModel.branch, func.sum(BatchModel.quantity))
            .where(BatchModel.item_barcode == barcode)
            .group_by(BatchModel.branch)
        ).all()
        return {branch: int(total) for branch, total in rows if total}

    def total_units(self, barcode: str | None = None) -> int:
        stmt = select(func.coalesce(func.sum(BatchModel.quantity), 0))
        if barcode is not None:
            stmt = stmt.where(BatchModel.item_barcode == barcode)
        return int(self.session.execute(stmt).scalar_one())

    def list_batches(
        self,
        barcode: str | None = None,
        branch: str | None = None,
        include_empty: bool = False,
    ) -> list[BatchInfo]:
        """Batches ordered by barcode, branch, then soonest expiry."""
        stmt = select(BatchModel)
        if barcode is not None:
            stmt = stmt.where(BatchModel.item_barcode == barcode)
        if branch is not None:
            stmt = stmt.where(BatchModel.branch == branch)
        if not include_empty:
            stmt = stmt.where(BatchModel.quantity > 0)
        stmt = stmt.order_by(BatchModel.item_barcode, BatchModel.branch, BatchModel.expire_date)
        return [BatchInfo.from_model(m) for m in self.session.execute(stmt).scalars()]

    def min_quantity(self) -> int | None:
        """Smallest quantity on any batch row, None when the ledger is empty."""
        return self.session.execute(select(func.min(BatchModel.quantity))).scalar_one()
