"""
SupplyEngine -- the process-wide entry point to the inventory core.

The engine ties together:
- BatchLedger / AllocationEngine: stock deduction and restoration
- BillService: purchase and sale bills, returns
- TransportWorkflow: inter-branch transfers
- PaymentReconciler: net payments and statements
- Selectors: read-only queries

Transaction ownership:
    Every public write method is one logical operation run in its own
    transaction (``session_scope``).  Either all of its ledger, document
    and claim changes commit, or none do.  Results are returned as frozen
    DTOs built before the session closes.

Conflict retry:
    A ConcurrencyConflictError (or a raw version mismatch, deadlock or lock
    timeout from the database) rolls the whole operation back and re-runs
    it, up to ``config.max_conflict_retries`` times with linear backoff.
    Every other error surfaces to the caller on the first occurrence.

Usage:
    engine = SupplyEngine(get_session_factory(), get_active_config())
    bill = engine.create_sale_bill("pharmacy-7", [BillLineSpec(...)], actor_id="u1")
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from supply_config.schema import SupplyConfig
from supply_kernel.db.engine import session_scope
from supply_kernel.domain.clock import Clock, SystemClock
from supply_kernel.domain.dtos import (
    BatchDeduction,
    BatchInfo,
    BillInfo,
    BillLineSpec,
    OutstandingDocuments,
    PaymentInfo,
    ReturnInfo,
    ReturnLineSpec,
    Statement,
    TransportInfo,
    TransportItemSpec,
)
from supply_kernel.exceptions import (
    BillNotFoundError,
    ConcurrencyConflictError,
    PaymentNotFoundError,
    ReturnNotFoundError,
    TransportNotFoundError,
)
from supply_kernel.logging_config import LogContext, get_logger
from supply_kernel.models.payment import PaymentKind
from supply_kernel.selectors.batch_selector import BatchSelector
from supply_kernel.selectors.document_selector import DocumentSelector
from supply_kernel.services.base import SYSTEM_ACTOR
from supply_kernel.services.sequence_service import SequenceService
from supply_services.allocation_service import AllocationEngine
from supply_services.bill_service import BillService
from supply_services.payment_reconciler import PaymentReconciler
from supply_services.transport_workflow import TransportWorkflow

logger = get_logger("services.engine")

T = TypeVar("T")

# SQLSTATEs for serialization failure, deadlock and lock_not_available
_PG_CONFLICT_CODES = frozenset({"40001", "40P01", "55P03"})


def as_conflict(exc: Exception) -> ConcurrencyConflictError | None:
    """Translate a lost-race database error into ConcurrencyConflictError."""
    if isinstance(exc, ConcurrencyConflictError):
        return exc
    if isinstance(exc, StaleDataError):
        return ConcurrencyConflictError("row", "unknown", "version mismatch")
    if isinstance(exc, OperationalError):
        pgcode = getattr(exc.orig, "pgcode", None)
        if pgcode in _PG_CONFLICT_CODES or "database is locked" in str(exc.orig):
            return ConcurrencyConflictError("row", "unknown", f"lock conflict ({pgcode or 'locked'})")
    return None


@dataclass
class Services:
    """Services bound to one session and one actor."""

    session: Session
    allocation: AllocationEngine
    bills: BillService
    transports: TransportWorkflow
    payments: PaymentReconciler
    batches: BatchSelector
    documents: DocumentSelector


class SupplyEngine:
    """
    Facade over the inventory core.

    Constructed once per process with an injected session factory, config
    and clock; safe to share between threads (each call opens its own
    session).
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: SupplyConfig,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._config = config
        self._clock = clock or SystemClock()

    @property
    def config(self) -> SupplyConfig:
        return self._config

    # =========================================================================
    # Transaction + retry
    # =========================================================================

    def _services(self, session: Session, actor_id: str) -> Services:
        sequences = SequenceService(session)
        allocation = AllocationEngine(session, actor_id)
        return Services(
            session=session,
            allocation=allocation,
            bills=BillService(
                session, self._config, self._clock, actor_id,
                allocation=allocation, sequences=sequences,
            ),
            transports=TransportWorkflow(
                session, self._config, self._clock, actor_id,
                allocation=allocation, sequences=sequences,
            ),
            payments=PaymentReconciler(
                session, self._config, self._clock, actor_id, sequences=sequences,
            ),
            batches=BatchSelector(session),
            documents=DocumentSelector(session),
        )

    def _run(
        self,
        operation: str,
        actor_id: str,
        work: Callable[[Services], T],
        **context: str | None,
    ) -> T:
        """Run ``work`` in one transaction, retrying lost races."""
        max_attempts = self._config.max_conflict_retries + 1
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=actor_id,
            operation=operation,
            **context,
        ):
            for attempt in range(1, max_attempts + 1):
                t0 = time.monotonic()
                try:
                    with session_scope(self._session_factory) as session:
                        result = work(self._services(session, actor_id))
                except (ConcurrencyConflictError, StaleDataError, OperationalError) as exc:
                    conflict = as_conflict(exc)
                    if conflict is None:
                        raise
                    if attempt == max_attempts:
                        logger.warning(
                            "conflict_retries_exhausted",
                            extra={"attempts": attempt, "reason": conflict.reason},
                        )
                        if conflict is exc:
                            raise
                        raise conflict from exc
                    logger.info(
                        "conflict_retry",
                        extra={
                            "attempt": attempt,
                            "entity_type": conflict.entity_type,
                            "reason": conflict.reason,
                        },
                    )
                    time.sleep(self._config.retry_backoff_ms * attempt / 1000)
                    continue

                logger.debug(
                    "operation_committed",
                    extra={
                        "attempt": attempt,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                return result
        raise AssertionError("unreachable")

    def _read(self, work: Callable[[Services], T]) -> T:
        with session_scope(self._session_factory) as session:
            return work(self._services(session, SYSTEM_ACTOR))

    # =========================================================================
    # Ledger
    # =========================================================================

    def find_batches(
        self,
        barcode: str,
        branch: str,
        net_price: Decimal | None = None,
        out_price: Decimal | None = None,
    ) -> list[BatchInfo]:
        return self._read(
            lambda s: [
                BatchInfo.from_model(b)
                for b in s.allocation.ledger.find_batches(barcode, branch, net_price, out_price)
            ]
        )

    def allocate(
        self,
        barcode: str,
        branch: str,
        requested_price: Decimal,
        quantity: int,
        actor_id: str = SYSTEM_ACTOR,
        out_price: Decimal | None = None,
    ) -> list[BatchDeduction]:
        """Deduct stock FIFO-by-expiry outside any document."""
        return self._run(
            "allocate",
            actor_id,
            lambda s: s.allocation.allocate(barcode, branch, requested_price, quantity, out_price),
            branch=branch,
        )

    def restore(self, deductions: Sequence[BatchDeduction], actor_id: str = SYSTEM_ACTOR) -> None:
        self._run("restore", actor_id, lambda s: s.allocation.restore(deductions))

    def available_quantity(
        self,
        barcode: str,
        branch: str,
        net_price: Decimal,
        out_price: Decimal | None = None,
        expire_date: date | None = None,
    ) -> int:
        return self._read(
            lambda s: s.batches.available_quantity(barcode, branch, net_price, out_price, expire_date)
        )

    def stock_on_hand(self, barcode: str) -> dict[str, int]:
        return self._read(lambda s: s.batches.stock_on_hand(barcode))

    def list_batches(self, barcode: str | None = None, branch: str | None = None) -> list[BatchInfo]:
        return self._read(lambda s: s.batches.list_batches(barcode, branch))

    # =========================================================================
    # Bills and returns
    # =========================================================================

    def create_purchase_bill(
        self,
        company_id: str,
        items: Sequence[BillLineSpec],
        actor_id: str = SYSTEM_ACTOR,
        bill_date: date | None = None,
        is_consignment: bool = False,
        counterparty_name: str | None = None,
        notes: str | None = None,
    ) -> BillInfo:
        return self._run(
            "create_purchase_bill",
            actor_id,
            lambda s: BillInfo.from_model(
                s.bills.create_purchase_bill(
                    company_id, items, bill_date, is_consignment, counterparty_name, notes
                )
            ),
            counterparty_id=company_id,
        )

    def create_sale_bill(
        self,
        pharmacy_id: str,
        items: Sequence[BillLineSpec],
        actor_id: str = SYSTEM_ACTOR,
        bill_date: date | None = None,
        cash: bool = False,
        counterparty_name: str | None = None,
        notes: str | None = None,
    ) -> BillInfo:
        return self._run(
            "create_sale_bill",
            actor_id,
            lambda s: BillInfo.from_model(
                s.bills.create_sale_bill(pharmacy_id, items, bill_date, cash, counterparty_name, notes)
            ),
            counterparty_id=pharmacy_id,
        )

    def edit_bill(
        self,
        bill_ref: str | UUID,
        new_items: Sequence[BillLineSpec],
        actor_id: str = SYSTEM_ACTOR,
        notes: str | None = None,
    ) -> BillInfo:
        return self._run(
            "edit_bill",
            actor_id,
            lambda s: BillInfo.from_model(s.bills.edit_bill(bill_ref, new_items, notes)),
        )

    def delete_bill(self, bill_ref: str | UUID, actor_id: str = SYSTEM_ACTOR) -> None:
        self._run("delete_bill", actor_id, lambda s: s.bills.delete_bill(bill_ref))

    def process_return(
        self,
        counterparty_id: str,
        origin_bill_ref: str | UUID,
        items: Sequence[ReturnLineSpec],
        actor_id: str = SYSTEM_ACTOR,
        return_date: date | None = None,
        notes: str | None = None,
    ) -> ReturnInfo:
        return self._run(
            "process_return",
            actor_id,
            lambda s: ReturnInfo.from_model(
                s.bills.process_return(counterparty_id, origin_bill_ref, items, return_date, notes)
            ),
            counterparty_id=counterparty_id,
        )

    def edit_return(
        self,
        return_ref: str | UUID,
        new_items: Sequence[ReturnLineSpec],
        actor_id: str = SYSTEM_ACTOR,
        notes: str | None = None,
    ) -> ReturnInfo:
        return self._run(
            "edit_return",
            actor_id,
            lambda s: ReturnInfo.from_model(s.bills.edit_return(return_ref, new_items, notes)),
        )

    def delete_return(self, return_ref: str | UUID, actor_id: str = SYSTEM_ACTOR) -> None:
        self._run("delete_return", actor_id, lambda s: s.bills.delete_return(return_ref))

    def get_bill(self, bill_ref: str | UUID) -> BillInfo:
        bill = self._read(lambda s: s.documents.get_bill(bill_ref))
        if bill is None:
            raise BillNotFoundError(str(bill_ref))
        return bill

    def list_bills(self, counterparty_id: str | None = None, bill_kind: str | None = None) -> list[BillInfo]:
        return self._read(lambda s: s.documents.list_bills(counterparty_id, bill_kind))

    def get_return(self, return_ref: str | UUID) -> ReturnInfo:
        stock_return = self._read(lambda s: s.documents.get_return(return_ref))
        if stock_return is None:
            raise ReturnNotFoundError(str(return_ref))
        return stock_return

    def list_returns(
        self,
        counterparty_id: str | None = None,
        return_kind: str | None = None,
        origin_bill_number: str | None = None,
    ) -> list[ReturnInfo]:
        return self._read(
            lambda s: s.documents.list_returns(counterparty_id, return_kind, origin_bill_number)
        )

    # =========================================================================
    # Transports
    # =========================================================================

    def send(
        self,
        from_branch: str,
        to_branch: str,
        items: Sequence[TransportItemSpec],
        sender_id: str,
        notes: str | None = None,
        sent_at: datetime | None = None,
    ) -> TransportInfo:
        return self._run(
            "send_transport",
            sender_id,
            lambda s: TransportInfo.from_model(
                s.transports.send(from_branch, to_branch, items, sender_id, notes, sent_at)
            ),
            branch=from_branch,
        )

    def receive(
        self,
        transport_ref: str | UUID,
        receiver_id: str,
        decision: str,
        notes: str | None = None,
    ) -> TransportInfo:
        return self._run(
            "receive_transport",
            receiver_id,
            lambda s: TransportInfo.from_model(
                s.transports.receive(transport_ref, receiver_id, decision, notes)
            ),
        )

    def get_transport(self, transport_ref: str | UUID) -> TransportInfo:
        transport = self._read(lambda s: s.documents.get_transport(transport_ref))
        if transport is None:
            raise TransportNotFoundError(str(transport_ref))
        return transport

    def list_transports(self, branch: str | None = None, status: str | None = None) -> list[TransportInfo]:
        return self._read(lambda s: s.documents.list_transports(branch, status))

    # =========================================================================
    # Payments
    # =========================================================================

    def compute_outstanding(
        self,
        counterparty_id: str,
        payment_kind: str = PaymentKind.SALE.value,
    ) -> OutstandingDocuments:
        return self._read(lambda s: s.payments.compute_outstanding(counterparty_id, payment_kind))

    def statement(self, counterparty_id: str, payment_kind: str = PaymentKind.SALE.value) -> Statement:
        return self._read(lambda s: s.payments.statement(counterparty_id, payment_kind))

    def create_payment(
        self,
        counterparty_id: str,
        selected_bill_ids: Sequence[UUID | str],
        selected_return_ids: Sequence[UUID | str],
        hardcopy_bill_number: str,
        actor_id: str = SYSTEM_ACTOR,
        payment_kind: str = PaymentKind.SALE.value,
        payment_date: date | None = None,
    ) -> PaymentInfo:
        return self._run(
            "create_payment",
            actor_id,
            lambda s: PaymentInfo.from_model(
                s.payments.create_payment(
                    counterparty_id,
                    selected_bill_ids,
                    selected_return_ids,
                    hardcopy_bill_number,
                    payment_kind,
                    payment_date,
                )
            ),
            counterparty_id=counterparty_id,
        )

    def update_payment(
        self,
        payment_ref: str | UUID,
        selected_bill_ids: Sequence[UUID | str],
        selected_return_ids: Sequence[UUID | str],
        actor_id: str = SYSTEM_ACTOR,
        hardcopy_bill_number: str | None = None,
        payment_date: date | None = None,
    ) -> PaymentInfo:
        return self._run(
            "update_payment",
            actor_id,
            lambda s: PaymentInfo.from_model(
                s.payments.update_payment(
                    payment_ref,
                    selected_bill_ids,
                    selected_return_ids,
                    hardcopy_bill_number,
                    payment_date,
                )
            ),
        )

    def get_payment(self, payment_ref: str | UUID) -> PaymentInfo:
        payment = self._read(lambda s: s.documents.get_payment(payment_ref))
        if payment is None:
            raise PaymentNotFoundError(str(payment_ref))
        return payment

    def list_payments(
        self,
        counterparty_id: str | None = None,
        payment_kind: str | None = None,
    ) -> list[PaymentInfo]:
        return self._read(lambda s: s.documents.list_payments(counterparty_id, payment_kind))

    def find_payment_for_document(self, document_kind: str, document_id: UUID) -> PaymentInfo | None:
        return self._read(lambda s: s.documents.find_payment_for_document(document_kind, document_id))
