"""ORM models for the supply kernel."""

from supply_kernel.models.batch import FAR_FUTURE_EXPIRY, BatchModel
from supply_kernel.models.bill import (
    BillDeductionModel,
    BillKind,
    BillLineModel,
    BillModel,
    PaymentStatus,
)
from supply_kernel.models.payment import (
    ClaimDocumentKind,
    PaymentClaimModel,
    PaymentKind,
    PaymentModel,
)
from supply_kernel.models.stock_return import (
    ReturnKind,
    ReturnLineModel,
    ReturnModel,
    ReturnStatus,
)
from supply_kernel.models.transport import (
    TransportLineModel,
    TransportModel,
    TransportStatus,
)

__all__ = [
    "FAR_FUTURE_EXPIRY",
    "BatchModel",
    "BillModel",
    "BillLineModel",
    "BillDeductionModel",
    "BillKind",
    "PaymentStatus",
    "ReturnModel",
    "ReturnLineModel",
    "ReturnKind",
    "ReturnStatus",
    "TransportModel",
    "TransportLineModel",
    "TransportStatus",
    "PaymentModel",
    "PaymentClaimModel",
    "PaymentKind",
    "ClaimDocumentKind",
]
