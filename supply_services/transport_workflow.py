"""
TransportWorkflow -- moving stock between branches.

Responsibility:
    Runs the transport state machine:

        send()                       receive(decision)
          |                     +-- received -> units added at to_branch
          v                     |
        PENDING ----------------+
                                |
                                +-- rejected -> units restored at from_branch

    Sending deducts the units from the source branch immediately; they are
    in transit (on no branch's ledger) until the receiver decides.

Architecture position:
    Services -- stateful orchestration.  Writes the batch ledger through
    AllocationEngine (FIFO sends) and BatchLedger (exact-batch sends,
    receipt and rejection).

Invariants enforced:
    - PENDING is the only initial state; RECEIVED and REJECTED are terminal.
    - A send deducts every item or none.
    - Transport lines record the batch identities actually deducted, so
      receipt recreates them at the destination and rejection restores
      them at the source, prices and expiry preserved.
    - Units are conserved: sent = received, or sent = restored.

Failure modes:
    - InvalidRequestError: same or unknown branch, empty items, bad decision.
    - InsufficientStockError: source branch short of an item.
    - TransportNotFoundError, InvalidStateTransitionError.
    - ConcurrencyConflictError: two receivers decided at once.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from supply_config.schema import SupplyConfig
from supply_kernel.domain.clock import Clock
from supply_kernel.domain.dtos import BatchDeduction, BatchKey, TransportItemSpec
from supply_kernel.exceptions import (
    ConcurrencyConflictError,
    InvalidRequestError,
    InvalidStateTransitionError,
    TransportNotFoundError,
)
from supply_kernel.logging_config import get_logger
from supply_kernel.models.transport import TransportLineModel, TransportModel, TransportStatus
from supply_kernel.selectors.document_selector import ref_clause
from supply_kernel.services.base import SYSTEM_ACTOR, BaseService
from supply_kernel.services.sequence_service import SequenceService
from supply_services.allocation_service import AllocationEngine

logger = get_logger("services.transport")

_DECISIONS = (TransportStatus.RECEIVED.value, TransportStatus.REJECTED.value)


class TransportWorkflow(BaseService[TransportModel]):
    """Send and receive transports between branches."""

    def __init__(
        self,
        session: Session,
        config: SupplyConfig,
        clock: Clock,
        actor_id: str = SYSTEM_ACTOR,
        allocation: AllocationEngine | None = None,
        sequences: SequenceService | None = None,
    ):
        super().__init__(session, actor_id)
        self._config = config
        self._clock = clock
        self._allocation = allocation or AllocationEngine(session, actor_id)
        self._ledger = self._allocation.ledger
        self._sequences = sequences or SequenceService(session)

    def send(
        self,
        from_branch: str,
        to_branch: str,
        items: Sequence[TransportItemSpec],
        sender_id: str,
        notes: str | None = None,
        sent_at: datetime | None = None,
    ) -> TransportModel:
        """
        Deduct items from ``from_branch`` and create a PENDING transport.

        Items naming an ``expire_date`` are taken from exactly that batch;
        the rest are allocated FIFO-by-expiry at their net price.
        """
        self._validate_route(from_branch, to_branch)
        if not items:
            raise InvalidRequestError("transport", "at least one item is required")
        if not sender_id:
            raise InvalidRequestError("transport", "sender id is required")

        with self.session.begin_nested():
            transport = TransportModel(
                transport_number=self._sequences.next_number(
                    SequenceService.TRANSPORT, self._config.number_prefixes.transport
                ),
                from_branch=from_branch,
                to_branch=to_branch,
                status=TransportStatus.PENDING.value,
                sender_id=sender_id,
                sent_at=sent_at or self._clock.now(),
                notes=notes,
                created_by_id=sender_id,
            )
            seq = 0
            for item in items:
                for deduction in self._deduct(from_branch, item):
                    seq += 1
                    transport.lines.append(
                        TransportLineModel(
                            seq=seq,
                            barcode=item.barcode,
                            name=item.name or deduction.item_name,
                            net_price=deduction.key.net_price,
                            out_price=deduction.key.out_price,
                            expire_date=deduction.key.expire_date,
                            quantity=deduction.quantity,
                        )
                    )
            self.session.add(transport)
            self.session.flush()

        logger.info(
            "transport_sent",
            extra={
                "transport_number": transport.transport_number,
                "from_branch": from_branch,
                "to_branch": to_branch,
                "line_count": len(transport.lines),
                "units": sum(line.quantity for line in transport.lines),
            },
        )
        return transport

    def receive(
        self,
        transport_ref,
        receiver_id: str,
        decision: str,
        notes: str | None = None,
    ) -> TransportModel:
        """
        Decide a PENDING transport.

        Args:
            decision: ``"received"`` adds the units at the destination;
                ``"rejected"`` restores them at the source.

        Raises:
            InvalidStateTransitionError: The transport is not PENDING.
        """
        decision = getattr(decision, "value", decision)
        if decision not in _DECISIONS:
            raise InvalidRequestError("transport receipt", f"decision must be one of {_DECISIONS}")
        if not receiver_id:
            raise InvalidRequestError("transport receipt", "receiver id is required")

        transport = self.session.execute(
            select(TransportModel)
            .where(ref_clause(TransportModel, TransportModel.transport_number, transport_ref))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if transport is None:
            raise TransportNotFoundError(str(transport_ref))

        if transport.status != TransportStatus.PENDING.value:
            raise InvalidStateTransitionError(
                entity_type="transport",
                entity_id=transport.transport_number,
                current_state=transport.status,
                requested_state=decision,
            )

        target_branch = (
            transport.to_branch if decision == TransportStatus.RECEIVED.value else transport.from_branch
        )
        with self.session.begin_nested():
            for line in transport.lines:
                key = BatchKey(
                    barcode=line.barcode,
                    branch=target_branch,
                    net_price=line.net_price,
                    out_price=line.out_price,
                    expire_date=line.expire_date,
                )
                self._ledger.adjust_quantity(key, line.quantity, item_name=line.name)

            transport.status = decision
            transport.receiver_id = receiver_id
            transport.received_at = self._clock.now()
            transport.receiver_notes = notes
            transport.updated_by_id = receiver_id
            try:
                self.session.flush()
            except StaleDataError as exc:
                raise ConcurrencyConflictError(
                    "transport", transport.transport_number, "decided concurrently"
                ) from exc

        logger.info(
            f"transport_{decision}",
            extra={
                "transport_number": transport.transport_number,
                "target_branch": target_branch,
                "units": sum(line.quantity for line in transport.lines),
            },
        )
        return transport

    def _deduct(self, branch: str, item: TransportItemSpec) -> list[BatchDeduction]:
        if item.expire_date is None:
            return self._allocation.allocate(
                item.barcode, branch, item.net_price, item.quantity, out_price=item.out_price
            )

        key = BatchKey(
            barcode=item.barcode,
            branch=branch,
            net_price=item.net_price,
            out_price=item.out_price,
            expire_date=item.expire_date,
        )
        batch = self._ledger.adjust_quantity(key, -item.quantity)
        return [
            BatchDeduction(
                key=key,
                quantity=item.quantity,
                batch_id=batch.id if batch is not None else None,
                item_name=batch.item_name if batch is not None else "",
            )
        ]

    def _validate_route(self, from_branch: str, to_branch: str) -> None:
        for branch in (from_branch, to_branch):
            if not self._config.is_known_branch(branch):
                raise InvalidRequestError("transport", f"unknown branch '{branch}'")
        if from_branch == to_branch:
            raise InvalidRequestError("transport", "source and destination branch must differ")
