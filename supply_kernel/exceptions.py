"""
Typed Exception Hierarchy for the Supply Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every failure in the stock engine is a business outcome the caller must act
on: reduce a quantity, pick another price, refresh a stale screen, retry.
Callers therefore catch by TYPE, read a machine-readable CODE, and render
the structured attributes each exception carries.

    try:
        engine.create_sale_bill(...)
    except InsufficientStockError as e:
        show(f"Only {e.available_quantity} of {e.barcode} left at {e.branch}")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SupplyKernelError (base)
    |
    +-- StockError
    |   +-- InsufficientStockError
    |       +-- NotReversibleError
    |
    +-- WorkflowError
    |   +-- InvalidStateTransitionError
    |
    +-- ReferentialViolationError
    |   +-- BillNotFoundError
    |   +-- ReturnNotFoundError
    |   +-- TransportNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- ReturnQuantityExceededError
    |   +-- DocumentInUseError
    |
    +-- ClaimError
    |   +-- AlreadyClaimedError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- ValidationError
        +-- InvalidRequestError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Stock           | INSUFFICIENT_STOCK          | Requested more units than available
                | NOT_REVERSIBLE              | Reversal needs stock already consumed
----------------|-----------------------------|-----------------------------------------
Workflow        | INVALID_STATE_TRANSITION    | Transport not pending, etc.
----------------|-----------------------------|-----------------------------------------
Reference       | BILL_NOT_FOUND              | Bill number does not exist
                | RETURN_NOT_FOUND            | Return id does not exist
                | TRANSPORT_NOT_FOUND         | Transport id does not exist
                | PAYMENT_NOT_FOUND           | Payment id does not exist
                | RETURN_QUANTITY_EXCEEDED    | Return > sold/bought - already returned
                | DOCUMENT_IN_USE             | Bill has returns or is claimed
                | REFERENTIAL_VIOLATION       | Cross-counterparty or wrong-kind refs
----------------|-----------------------------|-----------------------------------------
Claim           | ALREADY_CLAIMED             | Bill/return held by another payment
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENCY_CONFLICT        | Lost a race; retry the whole operation
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_REQUEST             | Malformed request (empty, same branch)

===============================================================================
HANDLING PATTERNS
===============================================================================

1. StockError, ReferentialViolationError, ClaimError, ValidationError are
   user-facing and actionable. Surface ``code`` plus attributes.

2. ConcurrencyConflictError is retried transparently by SupplyEngine a
   bounded number of times. If it still escapes, the caller retries the
   whole logical operation, never just the last write.

3. No error in this hierarchy is fatal to the process.
"""

from __future__ import annotations


class SupplyKernelError(Exception):
    """
    Base exception for all supply kernel errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "SUPPLY_KERNEL_ERROR"


# Stock-related exceptions


class StockError(SupplyKernelError):
    """Base exception for ledger quantity errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Requested more units than the matching batches hold."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        barcode: str,
        branch: str,
        requested_quantity: int,
        available_quantity: int,
        net_price: str | None = None,
    ):
        self.barcode = barcode
        self.branch = branch
        self.requested_quantity = requested_quantity
        self.available_quantity = available_quantity
        self.net_price = net_price
        price_part = f" at net price {net_price}" if net_price is not None else ""
        super().__init__(
            f"Insufficient stock for {barcode} in {branch}{price_part}: "
            f"requested {requested_quantity}, available {available_quantity}"
        )


class NotReversibleError(InsufficientStockError):
    """
    A reversal needs units that have already left the batch.

    Raised when deleting/editing a purchase bill, returning goods to a
    company, or undoing a movement whose stock was sold or moved onward.
    This is a legitimate business outcome, not a bug.
    """

    code: str = "NOT_REVERSIBLE"

    def __init__(
        self,
        barcode: str,
        branch: str,
        requested_quantity: int,
        available_quantity: int,
        reason: str,
    ):
        super().__init__(barcode, branch, requested_quantity, available_quantity)
        self.reason = reason
        self.args = (
            f"Cannot reverse {requested_quantity} of {barcode} in {branch}: "
            f"{reason} (only {available_quantity} left)",
        )


# Workflow exceptions


class WorkflowError(SupplyKernelError):
    """Base exception for lifecycle errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidStateTransitionError(WorkflowError):
    """A lifecycle call arrived in a state that does not permit it."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, current_state: str, requested_state: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        self.requested_state = requested_state
        super().__init__(
            f"Cannot move {entity_type} {entity_id} from '{current_state}' "
            f"to '{requested_state}'"
        )


# Referential exceptions


class ReferentialViolationError(SupplyKernelError):
    """A reference between records is missing or inconsistent."""

    code: str = "REFERENTIAL_VIOLATION"

    def __init__(self, message: str, **details: str):
        self.details = details
        super().__init__(message)


class BillNotFoundError(ReferentialViolationError):
    """Bill with given number was not found."""

    code: str = "BILL_NOT_FOUND"

    def __init__(self, bill_ref: str):
        self.bill_ref = bill_ref
        super().__init__(f"Bill not found: {bill_ref}")


class ReturnNotFoundError(ReferentialViolationError):
    """Return with given id was not found."""

    code: str = "RETURN_NOT_FOUND"

    def __init__(self, return_ref: str):
        self.return_ref = return_ref
        super().__init__(f"Return not found: {return_ref}")


class TransportNotFoundError(ReferentialViolationError):
    """Transport with given id was not found."""

    code: str = "TRANSPORT_NOT_FOUND"

    def __init__(self, transport_ref: str):
        self.transport_ref = transport_ref
        super().__init__(f"Transport not found: {transport_ref}")


class PaymentNotFoundError(ReferentialViolationError):
    """Payment with given id was not found."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_ref: str):
        self.payment_ref = payment_ref
        super().__init__(f"Payment not found: {payment_ref}")


class ReturnQuantityExceededError(ReferentialViolationError):
    """Return quantity exceeds what is still returnable on the origin bill."""

    code: str = "RETURN_QUANTITY_EXCEEDED"

    def __init__(
        self,
        bill_number: str,
        barcode: str,
        requested_quantity: int,
        returnable_quantity: int,
    ):
        self.bill_number = bill_number
        self.barcode = barcode
        self.requested_quantity = requested_quantity
        self.returnable_quantity = returnable_quantity
        super().__init__(
            f"Cannot return {requested_quantity} of {barcode} against bill "
            f"{bill_number}: only {returnable_quantity} returnable"
        )


class DocumentInUseError(ReferentialViolationError):
    """A bill is referenced by returns or payments and cannot change."""

    code: str = "DOCUMENT_IN_USE"

    def __init__(self, document_ref: str, used_by: str):
        self.document_ref = document_ref
        self.used_by = used_by
        super().__init__(f"Document {document_ref} is referenced by {used_by}")


# Claim exceptions


class ClaimError(SupplyKernelError):
    """Base exception for payment claim errors."""

    code: str = "CLAIM_ERROR"


class AlreadyClaimedError(ClaimError):
    """A bill or return is already settled by another payment or in cash."""

    code: str = "ALREADY_CLAIMED"

    def __init__(self, document_kind: str, document_id: str, claimed_by: str | None):
        self.document_kind = document_kind
        self.document_id = document_id
        self.claimed_by = claimed_by
        holder = f"payment {claimed_by}" if claimed_by else "a cash settlement"
        super().__init__(f"{document_kind} {document_id} is already claimed by {holder}")


# Concurrency exceptions


class ConcurrencyError(SupplyKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """An optimistic update or lock acquisition lost a race."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, reason: str = "modified concurrently"):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Concurrency conflict on {entity_type} {entity_id}: {reason}"
        )


# Validation exceptions


class ValidationError(SupplyKernelError):
    """Base exception for malformed requests."""

    code: str = "VALIDATION_ERROR"


class InvalidRequestError(ValidationError):
    """Request is structurally invalid for the operation."""

    code: str = "INVALID_REQUEST"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Invalid {operation} request: {reason}")
