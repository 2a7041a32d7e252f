"""
Module: supply_kernel.models.payment
Responsibility: ORM persistence for payments and the claim-set index that
    guarantees each bill or return is settled by at most one payment.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    P1 -- (document_kind, document_id) is unique in payment_claims.  A
          second payment claiming the same document fails at flush with
          IntegrityError even if both transactions passed their read-side
          check.
    P2 -- Claim rows are written and deleted only in the same transaction
          as their owning payment.  Payments are never deleted.
    P3 -- net_amount == sold_total - return_total (service-level, stored
          for audit).

Failure modes:
    - IntegrityError on duplicate claim (concurrent claim race).
    - StaleDataError on concurrent edits of the same payment.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from supply_kernel.db.base import Base, TrackedBase, UUIDString


class PaymentKind(str, Enum):
    """Which reconciliation side a payment settles."""

    SALE = "sale"  # pharmacy pays for sale bills net of sale returns
    PURCHASE = "purchase"  # store pays a company net of purchase returns


class ClaimDocumentKind(str, Enum):
    BILL = "bill"
    RETURN = "return"


class PaymentModel(TrackedBase):
    """A net payment over a selection of bills and returns."""

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("payment_number", name="uq_payment_number"),
        Index("idx_payment_counterparty", "payment_kind", "counterparty_id"),
    )

    payment_number: Mapped[str] = mapped_column(String(40), nullable=False)

    payment_kind: Mapped[str] = mapped_column(String(20), nullable=False)

    counterparty_id: Mapped[str] = mapped_column(String(100), nullable=False)

    sold_total: Mapped[Decimal] = mapped_column(nullable=False)

    return_total: Mapped[Decimal] = mapped_column(nullable=False)

    # INVARIANT P3
    net_amount: Mapped[Decimal] = mapped_column(nullable=False)

    payment_date: Mapped[date] = mapped_column(nullable=False)

    hardcopy_bill_number: Mapped[str] = mapped_column(String(100), nullable=False)

    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    claims: Mapped[list["PaymentClaimModel"]] = relationship(
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by=lambda: [PaymentClaimModel.document_kind, PaymentClaimModel.document_number],
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def claimed_ids(self, kind: ClaimDocumentKind) -> list[UUID]:
        return [c.document_id for c in self.claims if c.document_kind == kind.value]

    def __repr__(self) -> str:
        return f"<Payment {self.payment_number} {self.counterparty_id} net={self.net_amount}>"


class PaymentClaimModel(Base):
    """
    One document held by one payment.

    This table is the claim-set index: membership is checked and changed
    transactionally, never recomputed by scanning payments.
    """

    __tablename__ = "payment_claims"

    __table_args__ = (
        # INVARIANT P1
        UniqueConstraint("document_kind", "document_id", name="uq_payment_claim_document"),
        Index("idx_payment_claim_payment", "payment_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
    )

    document_kind: Mapped[str] = mapped_column(String(20), nullable=False)

    document_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    document_number: Mapped[str] = mapped_column(String(40), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    payment: Mapped[PaymentModel] = relationship(back_populates="claims")
