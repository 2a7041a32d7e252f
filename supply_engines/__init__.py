"""
Pure calculation engines for the supply core.

No database, no clock, no I/O: inputs are domain DTOs, outputs are frozen
results.  Stateful orchestration lives in ``supply_services``.
"""

from supply_engines.allocation import AllocationPlan, FifoAllocator, PlannedDeduction, expiry_order
from supply_engines.netting import DocumentAmount, NettingCalculator, NettingResult, StatementTotals

__all__ = [
    "AllocationPlan",
    "FifoAllocator",
    "PlannedDeduction",
    "expiry_order",
    "DocumentAmount",
    "NettingCalculator",
    "NettingResult",
    "StatementTotals",
]
