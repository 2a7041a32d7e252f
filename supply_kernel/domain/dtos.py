"""
DTOs -- immutable request and result objects for the supply engine.

Responsibility:
    Defines the typed records that cross the engine boundary: request specs
    (BillLineSpec, ReturnLineSpec, TransportItemSpec) that reject invalid
    states at construction, and result records (BatchInfo, BillInfo,
    ReturnInfo, TransportInfo, PaymentInfo, Statement) that callers render.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model()`` class methods are
    boundary converters invoked only from the service layer.

Invariants enforced:
    - Quantities are integers and never negative; line quantities are > 0.
    - Prices are Decimal and never negative.
    - Barcodes and branches are non-blank.
    - Unset expiry is normalized to FAR_FUTURE_EXPIRY so it sorts last.

Failure modes:
    - ValueError from ``__post_init__`` on any invalid field.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from supply_kernel.models.batch import BatchModel
    from supply_kernel.models.bill import BillDeductionModel, BillModel
    from supply_kernel.models.payment import PaymentModel
    from supply_kernel.models.stock_return import ReturnModel
    from supply_kernel.models.transport import TransportModel

# Sentinel for stock received without an expiry date.
FAR_FUTURE_EXPIRY = date(9999, 12, 31)

ZERO = Decimal("0")


def _to_decimal(value: Decimal | int | str, field_name: str) -> Decimal:
    if isinstance(value, float):
        raise ValueError(f"{field_name} must be Decimal, int or str, not float")
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _require_text(value: str | None, field_name: str) -> None:
    if value is None or not str(value).strip():
        raise ValueError(f"{field_name} must not be blank")


def _require_price(value: Decimal, field_name: str) -> None:
    if value < ZERO:
        raise ValueError(f"{field_name} must be non-negative, got {value}")


def _require_quantity(value: int, field_name: str, allow_zero: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name} must be an integer, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"{field_name} must be positive, got {value}")


def _set(obj: object, name: str, value: object) -> None:
    object.__setattr__(obj, name, value)


# =============================================================================
# Ledger
# =============================================================================


@dataclass(frozen=True)
class BatchKey:
    """
    Full identity of one batch row.

    Two keys that differ only in expiry name distinct batches.
    """

    barcode: str
    branch: str
    net_price: Decimal
    out_price: Decimal
    expire_date: date = FAR_FUTURE_EXPIRY

    def __post_init__(self) -> None:
        _require_text(self.barcode, "barcode")
        _require_text(self.branch, "branch")
        _set(self, "net_price", _to_decimal(self.net_price, "net_price"))
        _set(self, "out_price", _to_decimal(self.out_price, "out_price"))
        _require_price(self.net_price, "net_price")
        _require_price(self.out_price, "out_price")
        if self.expire_date is None:
            _set(self, "expire_date", FAR_FUTURE_EXPIRY)

    def at_branch(self, branch: str) -> BatchKey:
        """Same item, prices and expiry at another branch."""
        return BatchKey(
            barcode=self.barcode,
            branch=branch,
            net_price=self.net_price,
            out_price=self.out_price,
            expire_date=self.expire_date,
        )


@dataclass(frozen=True)
class BatchInfo:
    """Snapshot of a batch row."""

    batch_id: UUID
    key: BatchKey
    item_name: str
    quantity: int

    @property
    def barcode(self) -> str:
        return self.key.barcode

    @property
    def branch(self) -> str:
        return self.key.branch

    @property
    def expire_date(self) -> date:
        return self.key.expire_date

    @classmethod
    def from_model(cls, model: BatchModel) -> BatchInfo:
        return cls(
            batch_id=model.id,
            key=BatchKey(
                barcode=model.item_barcode,
                branch=model.branch,
                net_price=model.net_price,
                out_price=model.out_price,
                expire_date=model.expire_date,
            ),
            item_name=model.item_name,
            quantity=model.quantity,
        )


@dataclass(frozen=True)
class BatchDeduction:
    """
    Units taken from one batch by an allocation.

    Contract:
        ``restore()`` puts exactly ``quantity`` units back into the batch
        named by ``key``, recreating the row if it was pruned.
    """

    key: BatchKey
    quantity: int
    batch_id: UUID | None = None
    item_name: str = ""

    def __post_init__(self) -> None:
        _require_quantity(self.quantity, "quantity")

    @classmethod
    def from_model(cls, model: BillDeductionModel) -> BatchDeduction:
        return cls(
            key=BatchKey(
                barcode=model.barcode,
                branch=model.branch,
                net_price=model.net_price,
                out_price=model.out_price,
                expire_date=model.expire_date,
            ),
            quantity=model.quantity_taken,
            batch_id=model.batch_id,
        )


# =============================================================================
# Bills
# =============================================================================


@dataclass(frozen=True)
class BillLineSpec:
    """
    One requested bill line.

    For purchases ``net_price``/``out_price``/``expire_date`` define the
    batch that receives the units.  For sales, ``net_price`` selects the
    batches to allocate from (exact match) and ``price`` is what the
    pharmacy is charged; it defaults to ``out_price``.
    ``branch`` defaults to the configured default branch.
    """

    barcode: str
    quantity: int
    net_price: Decimal
    out_price: Decimal
    price: Decimal | None = None
    name: str = ""
    branch: str | None = None
    expire_date: date | None = None

    def __post_init__(self) -> None:
        _require_text(self.barcode, "barcode")
        _require_quantity(self.quantity, "quantity")
        _set(self, "net_price", _to_decimal(self.net_price, "net_price"))
        _set(self, "out_price", _to_decimal(self.out_price, "out_price"))
        _require_price(self.net_price, "net_price")
        _require_price(self.out_price, "out_price")
        if self.price is not None:
            _set(self, "price", _to_decimal(self.price, "price"))
            _require_price(self.price, "price")
        if self.branch is not None:
            _require_text(self.branch, "branch")


@dataclass(frozen=True)
class BillLineInfo:
    line_no: int
    barcode: str
    name: str
    branch: str
    quantity: int
    net_price: Decimal
    out_price: Decimal
    price: Decimal
    expire_date: date

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class BillInfo:
    """A bill as returned to callers."""

    bill_id: UUID
    bill_number: str
    bill_kind: str
    counterparty_id: str
    counterparty_name: str | None
    bill_date: date
    payment_status: str
    is_consignment: bool
    lines: tuple[BillLineInfo, ...]
    deductions: tuple[BatchDeduction, ...]
    total_amount: Decimal
    revision: int
    notes: str | None = None
    created_by: str | None = None

    @classmethod
    def from_model(cls, model: BillModel) -> BillInfo:
        return cls(
            bill_id=model.id,
            bill_number=model.bill_number,
            bill_kind=model.bill_kind,
            counterparty_id=model.counterparty_id,
            counterparty_name=model.counterparty_name,
            bill_date=model.bill_date,
            payment_status=model.payment_status,
            is_consignment=model.is_consignment,
            lines=tuple(
                BillLineInfo(
                    line_no=line.line_no,
                    barcode=line.barcode,
                    name=line.name,
                    branch=line.branch,
                    quantity=line.quantity,
                    net_price=line.net_price,
                    out_price=line.out_price,
                    price=line.price,
                    expire_date=line.expire_date,
                )
                for line in model.lines
            ),
            deductions=tuple(BatchDeduction.from_model(d) for d in model.deductions),
            total_amount=model.total_amount,
            revision=model.revision,
            notes=model.notes,
            created_by=model.created_by_id,
        )


# =============================================================================
# Returns
# =============================================================================


@dataclass(frozen=True)
class ReturnLineSpec:
    """
    One returned item against an origin bill.

    The origin bill line is matched by barcode, narrowed by ``net_price``
    and ``expire_date`` when the bill carries the barcode on several lines.
    ``return_price`` defaults to the origin line's charged price (sale) or
    net price (purchase).
    """

    barcode: str
    return_quantity: int
    return_price: Decimal | None = None
    net_price: Decimal | None = None
    expire_date: date | None = None

    def __post_init__(self) -> None:
        _require_text(self.barcode, "barcode")
        _require_quantity(self.return_quantity, "return_quantity")
        if self.return_price is not None:
            _set(self, "return_price", _to_decimal(self.return_price, "return_price"))
            _require_price(self.return_price, "return_price")
        if self.net_price is not None:
            _set(self, "net_price", _to_decimal(self.net_price, "net_price"))
            _require_price(self.net_price, "net_price")


@dataclass(frozen=True)
class ReturnLineInfo:
    line_no: int
    barcode: str
    name: str
    branch: str
    net_price: Decimal
    out_price: Decimal
    expire_date: date
    return_quantity: int
    return_price: Decimal


@dataclass(frozen=True)
class ReturnInfo:
    return_id: UUID
    return_number: str
    return_kind: str
    counterparty_id: str
    origin_bill_id: UUID
    origin_bill_number: str
    return_date: date
    payment_status: str
    is_consignment: bool
    lines: tuple[ReturnLineInfo, ...]
    total_amount: Decimal
    notes: str | None = None

    @classmethod
    def from_model(cls, model: ReturnModel) -> ReturnInfo:
        return cls(
            return_id=model.id,
            return_number=model.return_number,
            return_kind=model.return_kind,
            counterparty_id=model.counterparty_id,
            origin_bill_id=model.origin_bill_id,
            origin_bill_number=model.origin_bill_number,
            return_date=model.return_date,
            payment_status=model.payment_status,
            is_consignment=model.is_consignment,
            lines=tuple(
                ReturnLineInfo(
                    line_no=line.line_no,
                    barcode=line.barcode,
                    name=line.name,
                    branch=line.branch,
                    net_price=line.net_price,
                    out_price=line.out_price,
                    expire_date=line.expire_date,
                    return_quantity=line.return_quantity,
                    return_price=line.return_price,
                )
                for line in model.lines
            ),
            total_amount=model.total_amount,
            notes=model.notes,
        )


# =============================================================================
# Transports
# =============================================================================


@dataclass(frozen=True)
class TransportItemSpec:
    """
    One item to ship.

    With ``expire_date`` set, the units come from exactly that batch
    (``out_price`` then also required).  Without it, FIFO-by-expiry
    allocation picks the batches.
    """

    barcode: str
    quantity: int
    net_price: Decimal
    out_price: Decimal | None = None
    expire_date: date | None = None
    name: str = ""

    def __post_init__(self) -> None:
        _require_text(self.barcode, "barcode")
        _require_quantity(self.quantity, "quantity")
        _set(self, "net_price", _to_decimal(self.net_price, "net_price"))
        _require_price(self.net_price, "net_price")
        if self.out_price is not None:
            _set(self, "out_price", _to_decimal(self.out_price, "out_price"))
            _require_price(self.out_price, "out_price")
        if self.expire_date is not None and self.out_price is None:
            raise ValueError("out_price is required when expire_date names a batch")


@dataclass(frozen=True)
class TransportLineInfo:
    barcode: str
    name: str
    quantity: int
    net_price: Decimal
    out_price: Decimal
    expire_date: date


@dataclass(frozen=True)
class TransportInfo:
    transport_id: UUID
    transport_number: str
    from_branch: str
    to_branch: str
    status: str
    lines: tuple[TransportLineInfo, ...]
    sender_id: str
    sent_at: datetime
    receiver_id: str | None = None
    received_at: datetime | None = None
    notes: str | None = None
    receiver_notes: str | None = None

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @classmethod
    def from_model(cls, model: TransportModel) -> TransportInfo:
        return cls(
            transport_id=model.id,
            transport_number=model.transport_number,
            from_branch=model.from_branch,
            to_branch=model.to_branch,
            status=model.status,
            lines=tuple(
                TransportLineInfo(
                    barcode=line.barcode,
                    name=line.name,
                    quantity=line.quantity,
                    net_price=line.net_price,
                    out_price=line.out_price,
                    expire_date=line.expire_date,
                )
                for line in model.lines
            ),
            sender_id=model.sender_id,
            sent_at=model.sent_at,
            receiver_id=model.receiver_id,
            received_at=model.received_at,
            notes=model.notes,
            receiver_notes=model.receiver_notes,
        )


# =============================================================================
# Payments
# =============================================================================


@dataclass(frozen=True)
class PaymentInfo:
    payment_id: UUID
    payment_number: str
    payment_kind: str
    counterparty_id: str
    selected_bill_ids: tuple[UUID, ...]
    selected_return_ids: tuple[UUID, ...]
    sold_total: Decimal
    return_total: Decimal
    net_amount: Decimal
    payment_date: date
    hardcopy_bill_number: str
    created_by: str
    revision: int

    @classmethod
    def from_model(cls, model: PaymentModel) -> PaymentInfo:
        from supply_kernel.models.payment import ClaimDocumentKind

        return cls(
            payment_id=model.id,
            payment_number=model.payment_number,
            payment_kind=model.payment_kind,
            counterparty_id=model.counterparty_id,
            selected_bill_ids=tuple(model.claimed_ids(ClaimDocumentKind.BILL)),
            selected_return_ids=tuple(model.claimed_ids(ClaimDocumentKind.RETURN)),
            sold_total=model.sold_total,
            return_total=model.return_total,
            net_amount=model.net_amount,
            payment_date=model.payment_date,
            hardcopy_bill_number=model.hardcopy_bill_number,
            created_by=model.created_by_id,
            revision=model.revision,
        )


@dataclass(frozen=True)
class OutstandingDocuments:
    """Bills and returns of one counterparty not held by any payment."""

    counterparty_id: str
    payment_kind: str
    bills: tuple[BillInfo, ...] = field(default_factory=tuple)
    returns: tuple[ReturnInfo, ...] = field(default_factory=tuple)

    @property
    def bill_ids(self) -> tuple[UUID, ...]:
        return tuple(b.bill_id for b in self.bills)

    @property
    def return_ids(self) -> tuple[UUID, ...]:
        return tuple(r.return_id for r in self.returns)


@dataclass(frozen=True)
class Statement:
    """
    Outstanding totals for one counterparty.

    ``*_before_return`` sums bills, ``*_return_total`` sums returns and
    ``*_after_return`` is the difference.  The consignment figures cover
    the consignment subset only.
    """

    counterparty_id: str
    payment_kind: str
    bill_count: int
    return_count: int
    total_before_return: Decimal
    return_total: Decimal
    total_after_return: Decimal
    consignment_before_return: Decimal
    consignment_return_total: Decimal
    consignment_after_return: Decimal
