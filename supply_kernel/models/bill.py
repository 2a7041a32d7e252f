"""
Module: supply_kernel.models.bill
Responsibility: ORM persistence for purchase and sale bills, their item lines,
    and the batch deductions a sale bill drew from the ledger.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    D1 -- bill_number is unique and immutable; editing a bill replaces its
          lines and deductions but keeps the number.
    D2 -- A sale bill's deductions record exactly which batch identities
          (and how many units from each) satisfied each line, so deletion,
          editing, and returns can restore stock batch-for-batch.
    D3 -- quantity_returned <= quantity_taken on every deduction row.

Failure modes:
    - IntegrityError on duplicate bill_number (sequence misuse).
    - StaleDataError on concurrent edits of the same bill (version column).

Audit relevance:
    ``revision`` counts edits; ``created_by_id``/``updated_by_id`` record
    who issued and who last changed the bill.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from supply_kernel.db.base import Base, TrackedBase, UUIDString
from supply_kernel.models.batch import FAR_FUTURE_EXPIRY


class BillKind(str, Enum):
    """Which side of the business a bill records."""

    PURCHASE = "purchase"  # Bought from a company; feeds batches
    SALE = "sale"  # Sold to a pharmacy; deducts batches


class PaymentStatus(str, Enum):
    """Settlement state of a bill.

    Contract: UNPAID -> PAID when a payment claims the bill, PAID -> UNPAID
    when the claim is released.  CASH is set at creation and is terminal.
    """

    UNPAID = "unpaid"
    PAID = "paid"
    CASH = "cash"


class BillModel(TrackedBase):
    """
    A purchase or sale bill.

    Guarantees:
        - bill_number is globally unique (D1).
        - counterparty_id is a company id for purchases, pharmacy id for sales.
        - payment_status is meaningful for sale bills; purchase bills start
          UNPAID and follow the same claim lifecycle on the company side.
    """

    __tablename__ = "bills"

    __table_args__ = (
        UniqueConstraint("bill_number", name="uq_bill_number"),
        Index("idx_bill_counterparty", "bill_kind", "counterparty_id"),
        Index("idx_bill_date", "bill_date"),
    )

    bill_number: Mapped[str] = mapped_column(String(40), nullable=False)

    bill_kind: Mapped[str] = mapped_column(String(20), nullable=False)

    counterparty_id: Mapped[str] = mapped_column(String(100), nullable=False)

    counterparty_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    bill_date: Mapped[date] = mapped_column(nullable=False)

    payment_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.UNPAID.value,
    )

    is_consignment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    lines: Mapped[list["BillLineModel"]] = relationship(
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillLineModel.line_no",
        lazy="selectin",
    )

    deductions: Mapped[list["BillDeductionModel"]] = relationship(
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by=lambda: [BillDeductionModel.line_no, BillDeductionModel.seq],
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def total_amount(self) -> Decimal:
        """Amount owed for the bill: net cost for purchases, charged price for sales."""
        if self.bill_kind == BillKind.PURCHASE.value:
            return sum((line.net_price * line.quantity for line in self.lines), Decimal("0"))
        return sum((line.price * line.quantity for line in self.lines), Decimal("0"))

    def __repr__(self) -> str:
        return f"<Bill {self.bill_number} ({self.bill_kind}) {self.counterparty_id}>"


class BillLineModel(Base):
    """One item line on a bill."""

    __tablename__ = "bill_lines"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_bill_line_quantity_positive"),
        Index("idx_bill_line_bill", "bill_id"),
        Index("idx_bill_line_barcode", "barcode"),
    )

    bill_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bills.id", ondelete="CASCADE"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    barcode: Mapped[str] = mapped_column(String(100), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    branch: Mapped[str] = mapped_column(String(50), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    net_price: Mapped[Decimal] = mapped_column(nullable=False)

    out_price: Mapped[Decimal] = mapped_column(nullable=False)

    # Price charged per unit (sale) or paid per unit (purchase)
    price: Mapped[Decimal] = mapped_column(nullable=False)

    expire_date: Mapped[date] = mapped_column(nullable=False, default=FAR_FUTURE_EXPIRY)

    bill: Mapped[BillModel] = relationship(back_populates="lines")


class BillDeductionModel(Base):
    """
    Units a sale bill line took from one batch.

    The batch is identified by its full identity rather than by row id so
    that restoration works even if the batch row was pruned in between.
    """

    __tablename__ = "bill_deductions"

    __table_args__ = (
        CheckConstraint("quantity_taken > 0", name="ck_bill_deduction_taken_positive"),
        CheckConstraint(
            "quantity_returned >= 0 AND quantity_returned <= quantity_taken",
            name="ck_bill_deduction_returned_bounds",
        ),
        Index("idx_bill_deduction_bill", "bill_id"),
    )

    bill_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bills.id", ondelete="CASCADE"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    # Order in which the allocation walked the batches
    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    barcode: Mapped[str] = mapped_column(String(100), nullable=False)

    branch: Mapped[str] = mapped_column(String(50), nullable=False)

    net_price: Mapped[Decimal] = mapped_column(nullable=False)

    out_price: Mapped[Decimal] = mapped_column(nullable=False)

    expire_date: Mapped[date] = mapped_column(nullable=False)

    quantity_taken: Mapped[int] = mapped_column(Integer, nullable=False)

    # INVARIANT D3: 0 <= quantity_returned <= quantity_taken
    quantity_returned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    bill: Mapped[BillModel] = relationship(back_populates="deductions")

    @property
    def outstanding_quantity(self) -> int:
        """Units still out of the ledger for this deduction."""
        return self.quantity_taken - self.quantity_returned
