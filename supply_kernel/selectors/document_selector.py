"""
Module: supply_kernel.selectors.document_selector
Responsibility: Read-only queries over bills, returns, transports and
    payments, returned as frozen DTOs.
Architecture position: Kernel > Selectors.

Documents are addressed by their issued number (``"SB-000004"``) or by
their UUID; both forms are accepted wherever a reference is taken.
Lookups return None for unknown references; raising the typed not-found
error is the caller's decision.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import or_, select

from supply_kernel.domain.dtos import BillInfo, PaymentInfo, ReturnInfo, TransportInfo
from supply_kernel.models.bill import BillModel
from supply_kernel.models.payment import PaymentClaimModel, PaymentModel
from supply_kernel.models.stock_return import ReturnModel
from supply_kernel.models.transport import TransportModel
from supply_kernel.selectors.base import BaseSelector


def ref_clause(model, number_column, ref: str | UUID):
    """WHERE clause matching a document by UUID or by issued number."""
    if isinstance(ref, UUID):
        return model.id == ref
    return number_column == ref


class DocumentSelector(BaseSelector[BillModel]):
    """Bill, return, transport and payment queries."""

    # -- bills -----------------------------------------------------------

    def get_bill(self, ref: str | UUID) -> BillInfo | None:
        model = self.session.execute(
            select(BillModel).where(ref_clause(BillModel, BillModel.bill_number, ref))
        ).scalar_one_or_none()
        return BillInfo.from_model(model) if model else None

    def list_bills(
        self,
        counterparty_id: str | None = None,
        bill_kind: str | None = None,
    ) -> list[BillInfo]:
        """Bills newest first."""
        stmt = select(BillModel)
        if counterparty_id is not None:
            stmt = stmt.where(BillModel.counterparty_id == counterparty_id)
        if bill_kind is not None:
            stmt = stmt.where(BillModel.bill_kind == bill_kind)
        stmt = stmt.order_by(BillModel.bill_date.desc(), BillModel.bill_number.desc())
        return [BillInfo.from_model(m) for m in self.session.execute(stmt).scalars()]

    # -- returns ---------------------------------------------------------

    def get_return(self, ref: str | UUID) -> ReturnInfo | None:
        model = self.session.execute(
            select(ReturnModel).where(ref_clause(ReturnModel, ReturnModel.return_number, ref))
        ).scalar_one_or_none()
        return ReturnInfo.from_model(model) if model else None

    def list_returns(
        self,
        counterparty_id: str | None = None,
        return_kind: str | None = None,
        origin_bill_number: str | None = None,
    ) -> list[ReturnInfo]:
        """Returns newest first."""
        stmt = select(ReturnModel)
        if counterparty_id is not None:
            stmt = stmt.where(ReturnModel.counterparty_id == counterparty_id)
        if return_kind is not None:
            stmt = stmt.where(ReturnModel.return_kind == return_kind)
        if origin_bill_number is not None:
            stmt = stmt.where(ReturnModel.origin_bill_number == origin_bill_number)
        stmt = stmt.order_by(ReturnModel.return_date.desc(), ReturnModel.return_number.desc())
        return [ReturnInfo.from_model(m) for m in self.session.execute(stmt).scalars()]

    # -- transports ------------------------------------------------------

    def get_transport(self, ref: str | UUID) -> TransportInfo | None:
        model = self.session.execute(
            select(TransportModel).where(
                ref_clause(TransportModel, TransportModel.transport_number, ref)
            )
        ).scalar_one_or_none()
        return TransportInfo.from_model(model) if model else None

    def list_transports(
        self,
        branch: str | None = None,
        status: str | None = None,
    ) -> list[TransportInfo]:
        """Transports sent from or to ``branch``, newest first."""
        stmt = select(TransportModel)
        if branch is not None:
            stmt = stmt.where(
                or_(TransportModel.from_branch == branch, TransportModel.to_branch == branch)
            )
        if status is not None:
            stmt = stmt.where(TransportModel.status == status)
        stmt = stmt.order_by(TransportModel.sent_at.desc(), TransportModel.transport_number.desc())
        return [TransportInfo.from_model(m) for m in self.session.execute(stmt).scalars()]

    # -- payments --------------------------------------------------------

    def get_payment(self, ref: str | UUID) -> PaymentInfo | None:
        model = self.session.execute(
            select(PaymentModel).where(
                ref_clause(PaymentModel, PaymentModel.payment_number, ref)
            )
        ).scalar_one_or_none()
        return PaymentInfo.from_model(model) if model else None

    def list_payments(
        self,
        counterparty_id: str | None = None,
        payment_kind: str | None = None,
    ) -> list[PaymentInfo]:
        """Payments newest first."""
        stmt = select(PaymentModel)
        if counterparty_id is not None:
            stmt = stmt.where(PaymentModel.counterparty_id == counterparty_id)
        if payment_kind is not None:
            stmt = stmt.where(PaymentModel.payment_kind == payment_kind)
        stmt = stmt.order_by(PaymentModel.payment_date.desc(), PaymentModel.payment_number.desc())
        return [PaymentInfo.from_model(m) for m in self.session.execute(stmt).scalars()]

    def find_payment_for_document(self, document_kind: str, document_id: UUID) -> PaymentInfo | None:
        """The payment currently holding a bill or return, if any."""
        model = self.session.execute(
            select(PaymentModel)
            .join(PaymentClaimModel, PaymentClaimModel.payment_id == PaymentModel.id)
            .where(
                PaymentClaimModel.document_kind == document_kind,
                PaymentClaimModel.document_id == document_id,
            )
        ).scalar_one_or_none()
        return PaymentInfo.from_model(model) if model else None
