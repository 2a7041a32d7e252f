"""
BatchLedger -- the authoritative store of physical stock.

Responsibility:
    Finds batches and applies signed quantity changes to exactly one batch
    identity at a time.  Creates the batch row when stock arrives for an
    identity that does not exist yet.  Holds no cross-batch logic; choosing
    which batches to draw from is the AllocationEngine's job.

Architecture position:
    Kernel > Services.  Written to only by BillService, TransportWorkflow
    and AllocationEngine (the latter on their behalf).

Invariants enforced:
    B1 -- A batch quantity is never negative.  Checked against the locked
          row before every write; the CHECK constraint backs it up.
    B2 -- Each batch identity is read ``FOR UPDATE`` before its
          read-modify-write, so concurrent adjustments to the same batch
          are serialized.  The version column turns any unlocked stale
          write into a StaleDataError.
    B3 -- Rows that reach zero are retained.

Failure modes:
    - InsufficientStockError when a negative delta exceeds the batch.
    - NotReversibleError instead, when the caller marks the adjustment as
      the reversal of an earlier movement.
    - ConcurrencyConflictError when the version check fails at flush.

Audit relevance:
    Every adjustment logs ``batch_adjusted`` with the identity, delta and
    resulting quantity.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from supply_kernel.domain.dtos import BatchKey
from supply_kernel.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    NotReversibleError,
)
from supply_kernel.logging_config import get_logger
from supply_kernel.models.batch import BatchModel
from supply_kernel.services.base import SYSTEM_ACTOR, BaseService

logger = get_logger("services.batch_ledger")


def _identity_clause(key: BatchKey):
    return (
        BatchModel.item_barcode == key.barcode,
        BatchModel.branch == key.branch,
        BatchModel.net_price == key.net_price,
        BatchModel.out_price == key.out_price,
        BatchModel.expire_date == key.expire_date,
    )


class BatchLedger(BaseService[BatchModel]):
    """
    Batch lookups and single-batch quantity adjustments.

    Contract:
        ``adjust_quantity`` is the only write path for batch quantities.
        It flushes but never commits.

    Non-goals:
        - No FIFO ordering or greedy deduction (see AllocationEngine).
        - No multi-batch atomicity; callers wrap several adjustments in one
          transaction or savepoint.
    """

    def __init__(self, session: Session, actor_id: str = SYSTEM_ACTOR):
        super().__init__(session, actor_id)

    def find_batches(
        self,
        barcode: str,
        branch: str,
        net_price: Decimal | None = None,
        out_price: Decimal | None = None,
        in_stock_only: bool = False,
        for_update: bool = False,
    ) -> list[BatchModel]:
        """
        Batches of one item at one branch, soonest expiry first.

        Args:
            net_price: Exact acquisition price filter.
            out_price: Exact sale price filter.
            in_stock_only: Skip batches with zero quantity.
            for_update: Lock the returned rows until the transaction ends.
                Rows are locked in (expiry, id) order so concurrent
                allocators acquire locks in the same order.
        """
        stmt = select(BatchModel).where(
            BatchModel.item_barcode == barcode,
            BatchModel.branch == branch,
        )
        if net_price is not None:
            stmt = stmt.where(BatchModel.net_price == net_price)
        if out_price is not None:
            stmt = stmt.where(BatchModel.out_price == out_price)
        if in_stock_only:
            stmt = stmt.where(BatchModel.quantity > 0)
        stmt = stmt.order_by(BatchModel.expire_date, BatchModel.id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return list(self.session.execute(stmt).scalars().all())

    def get_batch(self, key: BatchKey, for_update: bool = False) -> BatchModel | None:
        """The batch with exactly this identity, or None."""
        stmt = select(BatchModel).where(*_identity_clause(key))
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def adjust_quantity(
        self,
        key: BatchKey,
        delta: int,
        item_name: str = "",
        reversal_reason: str | None = None,
    ) -> BatchModel | None:
        """
        Apply ``delta`` to the batch identified by ``key``.

        Preconditions:
            - Called inside an active transaction.
        Postconditions:
            - The batch quantity changed by exactly ``delta`` and is >= 0.
            - A batch row exists for ``key`` if ``delta > 0``.

        Args:
            key: Full batch identity (barcode, branch, prices, expiry).
            delta: Signed unit change.  Zero is a no-op.
            item_name: Display name recorded when the row is created.
            reversal_reason: When set, a shortfall raises
                NotReversibleError carrying this reason.

        Returns:
            The adjusted batch row (None for a zero delta on a missing row).

        Raises:
            InsufficientStockError: The batch holds fewer than ``-delta``.
            NotReversibleError: Same, for a reversal.
            ConcurrencyConflictError: The row changed under us.
        """
        batch = self.get_batch(key, for_update=True)

        if delta == 0:
            return batch

        if batch is None:
            if delta < 0:
                self._raise_shortfall(key, -delta, 0, reversal_reason)
            batch = self._create_batch(key, delta, item_name)
            if batch is not None:
                return batch
            # Lost the creation race; the row now exists
            batch = self.get_batch(key, for_update=True)
            if batch is None:
                raise ConcurrencyConflictError("batch", self._describe(key), "creation race")

        before = batch.quantity
        after = before + delta
        if after < 0:
            self._raise_shortfall(key, -delta, before, reversal_reason)

        batch.quantity = after
        if item_name and not batch.item_name:
            batch.item_name = item_name
        batch.updated_by_id = self.actor_id
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflictError("batch", str(batch.id), "version mismatch") from exc

        # INVARIANT B1
        assert batch.quantity >= 0, f"negative batch quantity {batch.quantity}"

        logger.info(
            "batch_adjusted",
            extra={
                "batch_id": str(batch.id),
                "barcode": key.barcode,
                "branch": key.branch,
                "net_price": str(key.net_price),
                "expire_date": key.expire_date.isoformat(),
                "delta": delta,
                "quantity_before": before,
                "quantity_after": after,
            },
        )
        return batch

    def adjust_many(
        self,
        adjustments: Sequence[tuple[BatchKey, int]],
        reversal_reason: str | None = None,
    ) -> None:
        """Apply several adjustments, decreases first so no row dips below zero midway."""
        ordered = sorted(adjustments, key=lambda item: item[1])
        for key, delta in ordered:
            self.adjust_quantity(key, delta, reversal_reason=reversal_reason)

    def _create_batch(self, key: BatchKey, quantity: int, item_name: str) -> BatchModel | None:
        """Insert a new batch row inside a savepoint; None if another transaction won."""
        savepoint = self.session.begin_nested()
        try:
            batch = BatchModel(
                item_barcode=key.barcode,
                item_name=item_name,
                branch=key.branch,
                net_price=key.net_price,
                out_price=key.out_price,
                expire_date=key.expire_date,
                quantity=quantity,
                created_by_id=self.actor_id,
            )
            self.session.add(batch)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            logger.debug("batch_create_race_retry", extra={"barcode": key.barcode, "branch": key.branch})
            savepoint.rollback()
            return None

        logger.info(
            "batch_created",
            extra={
                "batch_id": str(batch.id),
                "barcode": key.barcode,
                "branch": key.branch,
                "net_price": str(key.net_price),
                "out_price": str(key.out_price),
                "expire_date": key.expire_date.isoformat(),
                "quantity": quantity,
            },
        )
        return batch

    @staticmethod
    def _describe(key: BatchKey) -> str:
        return f"{key.barcode}@{key.branch}/{key.net_price}/{key.out_price}/{key.expire_date}"

    @staticmethod
    def _raise_shortfall(
        key: BatchKey,
        requested: int,
        available: int,
        reversal_reason: str | None,
    ) -> None:
        if reversal_reason is not None:
            raise NotReversibleError(
                barcode=key.barcode,
                branch=key.branch,
                requested_quantity=requested,
                available_quantity=available,
                reason=reversal_reason,
            )
        raise InsufficientStockError(
            barcode=key.barcode,
            branch=key.branch,
            requested_quantity=requested,
            available_quantity=available,
            net_price=str(key.net_price),
        )
