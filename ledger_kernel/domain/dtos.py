"""
Data transfer objects passed into and returned from the services.

Contract:
    Inputs are plain, immutable values; they carry no ORM state and do no
    I/O.  Structural validation (negative amounts, empty line lists,
    unknown accounts) happens in the services so that every failure surfaces
    as a typed ledger_kernel exception.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from ledger_kernel.domain.references import Reference


# Journal


@dataclass(frozen=True)
class LineSpec:
    """
    One requested ledger line.

    Exactly one of debit/credit must be non-zero; JournalEngine.post rejects
    anything else.
    """

    account_id: UUID
    debit: Decimal = Decimal("0")
    credit: Decimal = Decimal("0")
    description: str | None = None
    related: Reference | None = None

    @classmethod
    def debit_line(
        cls,
        account_id: UUID,
        amount: Decimal,
        description: str | None = None,
        related: Reference | None = None,
    ) -> LineSpec:
        return cls(account_id, debit=amount, description=description, related=related)

    @classmethod
    def credit_line(
        cls,
        account_id: UUID,
        amount: Decimal,
        description: str | None = None,
        related: Reference | None = None,
    ) -> LineSpec:
        return cls(account_id, credit=amount, description=description, related=related)

    def mirrored(self) -> LineSpec:
        """The same line with debit and credit swapped."""
        return LineSpec(
            account_id=self.account_id,
            debit=self.credit,
            credit=self.debit,
            description=self.description,
            related=self.related,
        )


# Documents


@dataclass(frozen=True)
class DocumentLineSpec:
    """One requested line item."""

    quantity: int
    unit_price: Decimal
    product_id: UUID | None = None
    description: str | None = None
    unit_cost: Decimal | None = None
    account_id: UUID | None = None


@dataclass(frozen=True)
class DocumentHeader:
    """
    Header of a document to record.

    ``total_amount`` may be omitted, in which case it is computed as
    subtotal + tax - discount.  ``paid_amount`` is money received or paid at
    recording time (posted through ``paid_account_id`` or the cash account).
    ``draft`` documents reserve stock and post nothing until settled.
    """

    document_number: str | None = None
    document_date: date | None = None
    due_date: date | None = None
    party: Reference | None = None
    location_id: UUID | None = None
    source: Reference | None = None
    tax_amount: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    total_amount: Decimal | None = None
    paid_amount: Decimal = Decimal("0")
    paid_account_id: UUID | None = None
    draft: bool = False
    notes: str | None = None
    idempotency_key: str | None = None


# Inventory


@dataclass(frozen=True)
class StockAdjustment:
    """A signed on-hand delta for one inventory row, used by bulk_adjust."""

    product_id: UUID
    location_id: UUID
    delta: int
    notes: str | None = None


@dataclass(frozen=True)
class ReconciliationRow:
    """Snapshot versus movement-log on-hand for one inventory row."""

    inventory_id: UUID | None
    product_id: UUID
    location_id: UUID
    snapshot_on_hand: int
    log_on_hand: int

    @property
    def drift(self) -> int:
        return self.snapshot_on_hand - self.log_on_hand

    @property
    def is_consistent(self) -> bool:
        return self.drift == 0


# Payments


@dataclass(frozen=True)
class AllocationRequest:
    """Apply ``amount`` of a payment to one document."""

    document_id: UUID
    amount: Decimal
    allocation_type: str = "invoice"
    notes: str | None = None


# Accounts


@dataclass(frozen=True)
class AccountNode:
    """One account in the chart-of-accounts forest, with its children."""

    id: UUID
    code: str
    name: str
    account_type: str
    is_active: bool
    parent_id: UUID | None
    children: list[AccountNode] = field(default_factory=list)

    def walk(self):
        """Yield this node and all descendants, depth first."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))
