"""
Module: supply_kernel.models.batch
Responsibility: ORM persistence for stock batches -- the authoritative store of
    physical stock.  Each row is a quantity of one item at one branch,
    acquired at one net price, sold at one out price, with one expiry date.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain constants only.
    MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    B1 -- quantity >= 0 always (CHECK constraint plus service-level check
          before every write).
    B2 -- Identity: (item_barcode, branch, net_price, out_price, expire_date)
          is unique.  Batches that differ only in expiry are distinct rows
          and are never merged.
    B3 -- Optimistic versioning: ``version`` is the mapper's version_id_col,
          so a concurrent write against a stale row fails with
          StaleDataError instead of silently overwriting.
    B4 -- Unset expiry is stored as FAR_FUTURE_EXPIRY so it sorts last in
          FIFO-by-expiry ordering and participates in the unique key.

Failure modes:
    - IntegrityError on duplicate batch identity (concurrent creation race).
    - IntegrityError on negative quantity (CHECK constraint, last line of
      defense behind the ledger's own check).
    - StaleDataError on version mismatch at flush time.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from supply_kernel.db.base import TrackedBase
from supply_kernel.domain.dtos import FAR_FUTURE_EXPIRY


class BatchModel(TrackedBase):
    """
    A quantity of one item at one branch with one price pair and one expiry.

    Contract:
        Rows are created by purchase bills, received transports, and
        sale returns; decremented by sales, outgoing transports, and
        purchase returns.  Rows that reach zero are retained so that
        deductions can always be restored to the same batch identity.

    Guarantees:
        - Unique identity per (barcode, branch, net_price, out_price, expiry).
        - quantity never negative (B1).
        - Every UPDATE bumps ``version`` (B3).

    Non-goals:
        - No cross-batch logic lives here; ordering and greedy deduction
          belong to the allocation engine.
    """

    __tablename__ = "stock_batches"

    __table_args__ = (
        UniqueConstraint(
            "item_barcode",
            "branch",
            "net_price",
            "out_price",
            "expire_date",
            name="uq_stock_batch_identity",
        ),
        CheckConstraint("quantity >= 0", name="ck_stock_batch_quantity_non_negative"),
        # Query: allocation candidates for (barcode, branch, net_price)
        Index("idx_stock_batch_lookup", "item_barcode", "branch", "net_price"),
        # Query: stock on hand per item across branches
        Index("idx_stock_batch_item", "item_barcode"),
    )

    item_barcode: Mapped[str] = mapped_column(String(100), nullable=False)

    item_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    branch: Mapped[str] = mapped_column(String(50), nullable=False)

    net_price: Mapped[Decimal] = mapped_column(nullable=False)

    out_price: Mapped[Decimal] = mapped_column(nullable=False)

    # INVARIANT B4: never NULL -- unset expiry is FAR_FUTURE_EXPIRY
    expire_date: Mapped[date] = mapped_column(nullable=False, default=FAR_FUTURE_EXPIRY)

    # INVARIANT B1: quantity >= 0
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # INVARIANT B3: optimistic version counter
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Batch {self.item_barcode}@{self.branch} net={self.net_price} "
            f"out={self.out_price} exp={self.expire_date} qty={self.quantity}>"
        )
