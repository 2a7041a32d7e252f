"""Kernel services (write side)."""

from supply_kernel.services.batch_ledger import BatchLedger
from supply_kernel.services.sequence_service import SequenceService, format_document_number

__all__ = ["BatchLedger", "SequenceService", "format_document_number"]
