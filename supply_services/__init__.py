"""
supply_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure engines (supply_engines/)
    with database sessions, the batch ledger and the clock.  SupplyEngine is
    the entry point external callers use; the individual services are
    exported for callers that manage their own transaction.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

        supply_services/ -> supply_engines/  (allowed)
        supply_services/ -> supply_kernel/   (allowed)
        supply_engines/  -> supply_services/ (forbidden)
        supply_kernel/   -> supply_services/ (forbidden)
"""

from supply_services.allocation_service import AllocationEngine
from supply_services.bill_service import BillService
from supply_services.engine import SupplyEngine
from supply_services.payment_reconciler import PaymentReconciler
from supply_services.transport_workflow import TransportWorkflow

__all__ = [
    "AllocationEngine",
    "BillService",
    "PaymentReconciler",
    "SupplyEngine",
    "TransportWorkflow",
]
