"""
Ledger Kernel - transactional ledger and inventory-consistency engine.

Records sales, purchases, invoices, expenses and payments for many
businesses against one relational store, with:
- Balanced double-entry posting (debits == credits per entry)
- Strictly non-negative inventory with an append-only movement log
- Running balance fields on every source document
- Payment allocation and refunds across documents
- One atomic unit of work per top-level operation
"""

__version__ = "0.1.0"
