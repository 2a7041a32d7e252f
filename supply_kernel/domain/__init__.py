"""
Pure domain layer.

Immutable request/result objects and the injectable clock.  No ORM,
database or I/O dependencies (ORM types appear only in type hints of the
``from_model`` boundary converters).
"""

from supply_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from supply_kernel.domain.dtos import (
    FAR_FUTURE_EXPIRY,
    BatchDeduction,
    BatchInfo,
    BatchKey,
    BillInfo,
    BillLineInfo,
    BillLineSpec,
    OutstandingDocuments,
    PaymentInfo,
    ReturnInfo,
    ReturnLineInfo,
    ReturnLineSpec,
    Statement,
    TransportInfo,
    TransportItemSpec,
    TransportLineInfo,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "FAR_FUTURE_EXPIRY",
    "BatchDeduction",
    "BatchInfo",
    "BatchKey",
    "BillInfo",
    "BillLineInfo",
    "BillLineSpec",
    "OutstandingDocuments",
    "PaymentInfo",
    "ReturnInfo",
    "ReturnLineInfo",
    "ReturnLineSpec",
    "Statement",
    "TransportInfo",
    "TransportItemSpec",
    "TransportLineInfo",
]
