"""
Supply Kernel - inventory ledger and fulfillment core.

A branch-aware stock ledger with:
- Batch-level quantities keyed by item, branch, prices and expiry
- FIFO-by-expiry allocation with all-or-nothing semantics
- Row-locked, version-checked quantity mutations
- Typed errors and structured logging
"""

__version__ = "0.1.0"
