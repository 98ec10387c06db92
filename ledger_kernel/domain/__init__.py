"""
Pure domain layer.

Value objects and DTOs with no dependencies on the ORM, the database or
I/O: tagged references, account roles, the injectable clock and the
request/result dataclasses the services exchange.
"""

from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.dtos import (
    AccountNode,
    AllocationRequest,
    DocumentHeader,
    DocumentLineSpec,
    LineSpec,
    ReconciliationRow,
    StockAdjustment,
)
from ledger_kernel.domain.references import Reference, ReferenceKind
from ledger_kernel.domain.roles import AccountRole

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "Reference",
    "ReferenceKind",
    "AccountRole",
    "LineSpec",
    "DocumentLineSpec",
    "DocumentHeader",
    "StockAdjustment",
    "ReconciliationRow",
    "AllocationRequest",
    "AccountNode",
]
