"""Read-only selectors for the supply kernel."""

from supply_kernel.selectors.batch_selector import BatchSelector
from supply_kernel.selectors.document_selector import DocumentSelector

__all__ = ["BatchSelector", "DocumentSelector"]
