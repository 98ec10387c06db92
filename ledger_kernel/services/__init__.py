"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.account_directory import AccountDirectory
from ledger_kernel.services.document_engine import DocumentEngine
from ledger_kernel.services.inventory_ledger import InventoryLedger
from ledger_kernel.services.journal_engine import JournalEngine
from ledger_kernel.services.payment_allocator import PaymentAllocator
from ledger_kernel.services.transaction_orchestrator import TransactionOrchestrator
from ledger_kernel.services.unit_of_work import UnitOfWork

__all__ = [
    "AccountDirectory",
    "DocumentEngine",
    "InventoryLedger",
    "JournalEngine",
    "PaymentAllocator",
    "TransactionOrchestrator",
    "UnitOfWork",
]
