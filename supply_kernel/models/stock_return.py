"""
Module: supply_kernel.models.stock_return
Responsibility: ORM persistence for returns against an origin bill, in both
    directions: goods coming back from a pharmacy (sale return) and goods
    sent back to a company (purchase return).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    R1 -- Every return names an origin bill of the matching kind and the
          same counterparty (validated by BillService before insert; the
          table holds no foreign key to ``bills`` so a deleted bill cannot
          cascade away its return history).
    R2 -- For each (origin bill, barcode) the summed return_quantity never
          exceeds the quantity on the origin bill (service-level check).

Failure modes:
    - IntegrityError on duplicate return_number.
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


class ReturnKind(str, Enum):
    SALE_RETURN = "sale_return"  # pharmacy -> store, ledger goes up
    PURCHASE_RETURN = "purchase_return"  # store -> company, ledger goes down


class ReturnStatus(str, Enum):
    """UNPAID until a payment claims the return, then PROCESSED."""

    UNPAID = "unpaid"
    PROCESSED = "processed"


class ReturnModel(TrackedBase):
    """A return of goods against one origin bill."""

    __tablename__ = "stock_returns"

    __table_args__ = (
        UniqueConstraint("return_number", name="uq_return_number"),
        Index("idx_return_counterparty", "return_kind", "counterparty_id"),
        Index("idx_return_origin_bill", "origin_bill_id"),
    )

    return_number: Mapped[str] = mapped_column(String(40), nullable=False)

    return_kind: Mapped[str] = mapped_column(String(20), nullable=False)

    counterparty_id: Mapped[str] = mapped_column(String(100), nullable=False)

    origin_bill_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Denormalized so history survives without joining bills
    origin_bill_number: Mapped[str] = mapped_column(String(40), nullable=False)

    return_date: Mapped[date] = mapped_column(nullable=False)

    payment_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReturnStatus.UNPAID.value,
    )

    is_consignment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["ReturnLineModel"]] = relationship(
        back_populates="stock_return",
        cascade="all, delete-orphan",
        order_by="ReturnLineModel.line_no",
        lazy="selectin",
    )

    @property
    def total_amount(self) -> Decimal:
        return sum(
            (line.return_price * line.return_quantity for line in self.lines),
            Decimal("0"),
        )

    def __repr__(self) -> str:
        return f"<Return {self.return_number} of {self.origin_bill_number}>"


class ReturnLineModel(Base):
    """One returned item, with the batch identity the units came from or go to."""

    __tablename__ = "stock_return_lines"

    __table_args__ = (
        CheckConstraint("return_quantity > 0", name="ck_return_line_quantity_positive"),
        Index("idx_return_line_return", "return_id"),
    )

    return_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock_returns.id", ondelete="CASCADE"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    # Line of the origin bill this quantity is counted against
    origin_line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    barcode: Mapped[str] = mapped_column(String(100), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    branch: Mapped[str] = mapped_column(String(50), nullable=False)

    net_price: Mapped[Decimal] = mapped_column(nullable=False)

    out_price: Mapped[Decimal] = mapped_column(nullable=False)

    expire_date: Mapped[date] = mapped_column(nullable=False, default=FAR_FUTURE_EXPIRY)

    return_quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    return_price: Mapped[Decimal] = mapped_column(nullable=False)

    stock_return: Mapped[ReturnModel] = relationship(back_populates="lines")
