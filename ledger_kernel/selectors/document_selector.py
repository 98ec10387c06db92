"""
Module: ledger_kernel.selectors.document_selector
Responsibility: Read-only document and payment queries: overdue documents,
    open balances per party and the payment status summary.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.  MUST NOT import from services/.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.models.documents import OPEN_STATUSES, Document, DocumentType
from ledger_kernel.models.payment import Payment, PaymentStatus
from ledger_kernel.selectors.base import BaseSelector

_OPEN = tuple(status.value for status in OPEN_STATUSES)


@dataclass(frozen=True)
class OpenDocument:
    document_id: UUID
    document_type: str
    document_number: str
    due_date: date | None
    total_amount: Decimal
    balance_due: Decimal
    days_overdue: int


@dataclass
class PaymentSummary:
    """Count and amount of a business's payments per status."""

    counts: dict[str, int] = field(default_factory=dict)
    amounts: dict[str, Decimal] = field(default_factory=dict)

    @property
    def total_count(self) -> int:
        return sum(self.counts.values())


class DocumentSelector(BaseSelector[Document]):
    def __init__(self, session: Session):
        super().__init__(session)

    def open_documents(
        self,
        business_id: UUID,
        today: date,
        document_type: DocumentType | str | None = None,
    ) -> list[OpenDocument]:
        """Pending and part-paid documents, oldest due date first."""
        query = select(Document).where(
            Document.business_id == business_id,
            Document.status.in_(_OPEN),
        )
        if document_type is not None:
            query = query.where(Document.document_type == DocumentType(document_type).value)
        query = query.order_by(Document.due_date, Document.document_number)
        return [
            OpenDocument(
                document_id=doc.id,
                document_type=doc.document_type,
                document_number=doc.document_number,
                due_date=doc.due_date,
                total_amount=doc.total_amount,
                balance_due=doc.balance_due,
                days_overdue=max(0, (today - doc.due_date).days) if doc.due_date else 0,
            )
            for doc in self.session.execute(query).scalars()
        ]

    def overdue(self, business_id: UUID, today: date) -> list[OpenDocument]:
        """Open documents whose due date has passed."""
        return [doc for doc in self.open_documents(business_id, today) if doc.days_overdue > 0]

    def receivables_by_party(self, business_id: UUID) -> dict[UUID, Decimal]:
        """Open balance owed by each customer."""
        query = select(Document.party_id, Document.balance_due).where(
            Document.business_id == business_id,
            Document.status.in_(_OPEN),
            Document.document_type.in_(
                (DocumentType.SALE.value, DocumentType.INVOICE.value)
            ),
            Document.party_id.is_not(None),
        )
        totals: dict[UUID, Decimal] = {}
        for party_id, balance in self.session.execute(query):
            totals[party_id] = totals.get(party_id, Decimal("0")) + balance
        return totals

    def payment_summary(self, business_id: UUID) -> PaymentSummary:
        summary = PaymentSummary(
            counts={s.value: 0 for s in PaymentStatus},
            amounts={s.value: Decimal("0") for s in PaymentStatus},
        )
        query = select(Payment.payment_status, Payment.amount).where(
            Payment.business_id == business_id
        )
        for status, amount in self.session.execute(query):
            summary.counts[status] += 1
            summary.amounts[status] += amount
        return summary
