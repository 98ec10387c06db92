"""Selectors for the ledger kernel (read side)."""

from ledger_kernel.selectors.document_selector import DocumentSelector, OpenDocument, PaymentSummary
from ledger_kernel.selectors.inventory_selector import InventorySelector, StockLevel, Valuation
from ledger_kernel.selectors.ledger_selector import (
    AccountBalance,
    LedgerLine,
    LedgerSelector,
    TrialBalanceRow,
)

__all__ = [
    "AccountBalance",
    "DocumentSelector",
    "InventorySelector",
    "LedgerLine",
    "LedgerSelector",
    "OpenDocument",
    "PaymentSummary",
    "StockLevel",
    "TrialBalanceRow",
    "Valuation",
]
