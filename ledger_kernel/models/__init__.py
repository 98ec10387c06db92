"""Persistence models for the ledger kernel."""

from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.models.documents import (
    DOCUMENT_CLASSES,
    Document,
    DocumentLine,
    DocumentStatus,
    DocumentType,
    Expense,
    Invoice,
    Purchase,
    Sale,
)
from ledger_kernel.models.inventory import (
    Inventory,
    MovementStatus,
    MovementType,
    StockMovement,
)
from ledger_kernel.models.journal import JournalEntry, LedgerEntry
from ledger_kernel.models.payment import (
    AllocationType,
    Payment,
    PaymentAllocation,
    PaymentMethod,
    PaymentSourceType,
    PaymentStatus,
)

__all__ = [
    "Account",
    "AccountType",
    "JournalEntry",
    "LedgerEntry",
    "Inventory",
    "StockMovement",
    "MovementType",
    "MovementStatus",
    "Document",
    "DocumentLine",
    "DocumentStatus",
    "DocumentType",
    "DOCUMENT_CLASSES",
    "Sale",
    "Purchase",
    "Invoice",
    "Expense",
    "Payment",
    "PaymentAllocation",
    "PaymentMethod",
    "PaymentSourceType",
    "PaymentStatus",
    "AllocationType",
]
