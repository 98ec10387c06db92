"""
Polymorphic references -- typed pointers to entities of several kinds.

Payments point at a payer (customer, vendor, employee, ...), ledger lines
point at a related customer/vendor/invoice/expense, stock movements point at
the document that caused them.  In storage each such pointer is a pair of
columns (``*_type``, ``*_id``) with no foreign key.  In code it is always a
``Reference``: the kind travels with the id, and every consumer validates the
kind against the set it accepts (``PARTY_KINDS``, ``LEDGER_LINK_KINDS``, ...)
instead of trusting a bare string tag.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class ReferenceKind(str, Enum):
    """Kinds of entity a Reference can point at."""

    CUSTOMER = "customer"
    VENDOR = "vendor"
    EMPLOYEE = "employee"
    COMPANY = "company"
    OTHER = "others"

    SALE = "sale"
    PURCHASE = "purchase"
    INVOICE = "invoice"
    EXPENSE = "expense"
    PAYMENT = "payment"
    ADJUSTMENT = "adjustment"
    JOURNAL_ENTRY = "journal_entry"


PARTY_KINDS: frozenset[ReferenceKind] = frozenset({
    ReferenceKind.CUSTOMER,
    ReferenceKind.VENDOR,
    ReferenceKind.EMPLOYEE,
    ReferenceKind.COMPANY,
    ReferenceKind.OTHER,
})

DOCUMENT_KINDS: frozenset[ReferenceKind] = frozenset({
    ReferenceKind.SALE,
    ReferenceKind.PURCHASE,
    ReferenceKind.INVOICE,
    ReferenceKind.EXPENSE,
})

LEDGER_LINK_KINDS: frozenset[ReferenceKind] = PARTY_KINDS | DOCUMENT_KINDS | {
    ReferenceKind.PAYMENT,
}

MOVEMENT_SOURCE_KINDS: frozenset[ReferenceKind] = frozenset({
    ReferenceKind.SALE,
    ReferenceKind.PURCHASE,
    ReferenceKind.ADJUSTMENT,
})


@dataclass(frozen=True, slots=True)
class Reference:
    """
    Immutable reference to an entity of a given kind.

    Self-describing pointer that includes both the kind and identifier,
    enabling heterogeneous links without polymorphic foreign keys.
    """

    kind: ReferenceKind
    id: UUID

    def __post_init__(self) -> None:
        if not isinstance(self.kind, ReferenceKind):
            raise ValueError(f"kind must be ReferenceKind, got {type(self.kind)}")
        if not isinstance(self.id, UUID):
            raise ValueError(f"id must be UUID, got {type(self.id)}")

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"

    def require_kind(self, allowed: frozenset[ReferenceKind], role: str) -> Reference:
        """Return self if the kind is one of ``allowed``; raise ValueError otherwise."""
        if self.kind not in allowed:
            raise ValueError(
                f"{role} reference cannot point at '{self.kind.value}'; "
                f"allowed: {sorted(k.value for k in allowed)}"
            )
        return self

    @classmethod
    def parse(cls, ref_string: str) -> Reference:
        """Parse ``"kind:uuid"`` back to a Reference."""
        try:
            kind_str, id_str = ref_string.split(":", 1)
            return cls(ReferenceKind(kind_str), UUID(id_str))
        except ValueError as e:
            raise ValueError(f"Invalid reference string: {ref_string}") from e

    @classmethod
    def from_columns(cls, kind: str | None, ref_id: UUID | None) -> Reference | None:
        """Rebuild a Reference from its two storage columns."""
        if kind is None or ref_id is None:
            return None
        return cls(ReferenceKind(kind), ref_id)

    @classmethod
    def customer(cls, customer_id: UUID) -> Reference:
        return cls(ReferenceKind.CUSTOMER, customer_id)

    @classmethod
    def vendor(cls, vendor_id: UUID) -> Reference:
        return cls(ReferenceKind.VENDOR, vendor_id)

    @classmethod
    def employee(cls, employee_id: UUID) -> Reference:
        return cls(ReferenceKind.EMPLOYEE, employee_id)

    @classmethod
    def sale(cls, sale_id: UUID) -> Reference:
        return cls(ReferenceKind.SALE, sale_id)

    @classmethod
    def purchase(cls, purchase_id: UUID) -> Reference:
        return cls(ReferenceKind.PURCHASE, purchase_id)

    @classmethod
    def invoice(cls, invoice_id: UUID) -> Reference:
        return cls(ReferenceKind.INVOICE, invoice_id)

    @classmethod
    def expense(cls, expense_id: UUID) -> Reference:
        return cls(ReferenceKind.EXPENSE, expense_id)

    @classmethod
    def payment(cls, payment_id: UUID) -> Reference:
        return cls(ReferenceKind.PAYMENT, payment_id)

    @classmethod
    def adjustment(cls, adjustment_id: UUID) -> Reference:
        return cls(ReferenceKind.ADJUSTMENT, adjustment_id)
