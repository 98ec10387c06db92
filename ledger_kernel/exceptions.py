"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers map engine failures to user-facing messages ("insufficient stock for
X", "payment exceeds invoice balance").  Matching on message text is fragile,
so every failure path raises a typed exception that:

  1. can be caught by TYPE (never by message),
  2. carries a machine-readable CODE class attribute, and
  3. stores its context as structured ATTRIBUTES.

Example - RIGHT way:
    try:
        orchestrator.record_sale(business_id, header, items, actor_id)
    except InsufficientStockError as e:
        respond(code=e.code, product=e.product_id, short_by=e.requested - e.on_hand)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidStatusTransitionError
    |
    +-- NotFoundError
    |
    +-- PostingError
    |   +-- ImbalancedEntryError
    |   +-- EntryAlreadyReversedError
    |
    +-- InventoryError
    |   +-- InsufficientStockError
    |
    +-- PaymentError
    |   +-- OverpaymentError
    |   +-- OverAllocationError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- StorageError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                       | When Raised
-------------|----------------------------|--------------------------------------
Validation   | VALIDATION_ERROR           | Malformed or inconsistent input
             | INVALID_STATUS_TRANSITION  | Operation not legal in current status
-------------|----------------------------|--------------------------------------
Lookup       | NOT_FOUND                  | Entity missing or soft-deleted
-------------|----------------------------|--------------------------------------
Posting      | IMBALANCED_ENTRY           | Debits != Credits
             | ENTRY_ALREADY_REVERSED     | Entry already has a reversal
-------------|----------------------------|--------------------------------------
Inventory    | INSUFFICIENT_STOCK         | On-hand would drop below zero
-------------|----------------------------|--------------------------------------
Payment      | OVERPAYMENT                | Paid amount would exceed total
             | OVER_ALLOCATION            | Allocations exceed payment amount
-------------|----------------------------|--------------------------------------
Immutability | IMMUTABILITY_VIOLATION     | Update/delete of append-only rows
-------------|----------------------------|--------------------------------------
Storage      | STORAGE_ERROR              | Underlying persistence failure

Every error aborts the enclosing unit of work.  Nothing here is retried by
the engine; retries belong to the caller together with an idempotency key.
"""

from decimal import Decimal


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"


# Validation


class ValidationError(LedgerKernelError):
    """Malformed or logically inconsistent input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidStatusTransitionError(ValidationError):
    """Operation is not legal from the entity's current status."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, status: str, operation: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {entity_type} {entity_id} in status '{status}'"
        )


# Lookup


class NotFoundError(LedgerKernelError):
    """Referenced entity is missing or soft-deleted."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# Posting


class PostingError(LedgerKernelError):
    """Base exception for journal posting errors."""

    code: str = "POSTING_ERROR"


class ImbalancedEntryError(PostingError):
    """Journal entry debits do not equal credits."""

    code: str = "IMBALANCED_ENTRY"

    def __init__(self, debits: Decimal, credits: Decimal):
        self.debits = debits
        self.credits = credits
        super().__init__(
            f"Imbalanced entry: debits={debits}, credits={credits}"
        )


class EntryAlreadyReversedError(PostingError):
    """Journal entry has already been reversed."""

    code: str = "ENTRY_ALREADY_REVERSED"

    def __init__(self, journal_entry_id: str, reversal_entry_id: str):
        self.journal_entry_id = journal_entry_id
        self.reversal_entry_id = reversal_entry_id
        super().__init__(
            f"Journal entry {journal_entry_id} already reversed by {reversal_entry_id}"
        )


# Inventory


class InventoryError(LedgerKernelError):
    """Base exception for inventory errors."""

    code: str = "INVENTORY_ERROR"


class InsufficientStockError(InventoryError):
    """A movement would drive on-hand quantity below zero."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, location_id: str, on_hand: int, requested: int):
        self.product_id = product_id
        self.location_id = location_id
        self.on_hand = on_hand
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id} at {location_id}: "
            f"on_hand={on_hand}, requested={requested}"
        )


# Payments


class PaymentError(LedgerKernelError):
    """Base exception for payment and balance errors."""

    code: str = "PAYMENT_ERROR"


class OverpaymentError(PaymentError):
    """Paid amount would exceed the document total."""

    code: str = "OVERPAYMENT"

    def __init__(self, document_id: str, total_amount: Decimal, paid_amount: Decimal, amount: Decimal):
        self.document_id = document_id
        self.total_amount = total_amount
        self.paid_amount = paid_amount
        self.amount = amount
        super().__init__(
            f"Payment of {amount} exceeds balance of document {document_id}: "
            f"total={total_amount}, already_paid={paid_amount}"
        )


class OverAllocationError(PaymentError):
    """Allocations would exceed the payment amount."""

    code: str = "OVER_ALLOCATION"

    def __init__(self, payment_id: str, payment_amount: Decimal, requested: Decimal, already_used: Decimal):
        self.payment_id = payment_id
        self.payment_amount = payment_amount
        self.requested = requested
        self.already_used = already_used
        super().__init__(
            f"Allocations of {requested} exceed payment {payment_id}: "
            f"amount={payment_amount}, already_used={already_used}"
        )


# Immutability


class ImmutabilityError(LedgerKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an append-only record.

    LedgerEntry and JournalEntry rows are immutable from creation;
    StockMovement rows may only change status.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Storage


class StorageError(LedgerKernelError):
    """Underlying persistence failure. The original error is chained as __cause__."""

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")
