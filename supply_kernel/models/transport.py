"""
Module: supply_kernel.models.transport
Responsibility: ORM persistence for inter-branch transports and the exact
    batch-level lines each one moved out of the sending branch.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    T1 -- status is one of pending, received, rejected.  pending is the only
          initial state; received and rejected are terminal.
    T2 -- from_branch != to_branch (CHECK constraint).
    T3 -- Lines record the batch identity actually deducted at send time so
          that receipt recreates and rejection restores the same identity.

Failure modes:
    - StaleDataError when two receivers decide the same transport at once
      (version column); surfaced as ConcurrencyConflictError.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from supply_kernel.db.base import Base, TrackedBase, UUIDString


class TransportStatus(str, Enum):
    PENDING = "pending"
    RECEIVED = "received"
    REJECTED = "rejected"


class TransportModel(TrackedBase):
    """A shipment of stock from one branch to another."""

    __tablename__ = "transports"

    __table_args__ = (
        UniqueConstraint("transport_number", name="uq_transport_number"),
        CheckConstraint("from_branch <> to_branch", name="ck_transport_distinct_branches"),
        Index("idx_transport_from", "from_branch"),
        Index("idx_transport_to", "to_branch"),
    )

    transport_number: Mapped[str] = mapped_column(String(40), nullable=False)

    from_branch: Mapped[str] = mapped_column(String(50), nullable=False)

    to_branch: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TransportStatus.PENDING.value,
    )

    sender_id: Mapped[str] = mapped_column(String(100), nullable=False)

    sent_at: Mapped[datetime] = mapped_column(nullable=False)

    receiver_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    received_at: Mapped[datetime | None] = mapped_column(nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    receiver_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    lines: Mapped[list["TransportLineModel"]] = relationship(
        back_populates="transport",
        cascade="all, delete-orphan",
        order_by="TransportLineModel.seq",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Transport {self.transport_number} {self.from_branch}->"
            f"{self.to_branch} {self.status}>"
        )


class TransportLineModel(Base):
    """Units of one batch identity carried by a transport."""

    __tablename__ = "transport_lines"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_transport_line_quantity_positive"),
        Index("idx_transport_line_transport", "transport_id"),
    )

    transport_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("transports.id", ondelete="CASCADE"),
        nullable=False,
    )

    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    barcode: Mapped[str] = mapped_column(String(100), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    net_price: Mapped[Decimal] = mapped_column(nullable=False)

    out_price: Mapped[Decimal] = mapped_column(nullable=False)

    expire_date: Mapped[date] = mapped_column(nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    transport: Mapped[TransportModel] = relationship(back_populates="lines")
