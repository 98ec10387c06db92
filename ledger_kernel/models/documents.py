"""
Module: ledger_kernel.models.documents
Responsibility: ORM persistence for source documents (Sale, Purchase, Invoice,
    Expense) and their line items.
Architecture position: Kernel > Models.  May import from db/ and domain/
    value objects only.

The four document kinds share one table through single-table inheritance on
``document_type``.  They differ in which party they name, whether they move
stock, and which accounts their settlement entry touches; the columns are
the same.

Invariants enforced:
    - balance_due == total_amount - paid_amount  (ck_document_balance_due)
    - 0 <= paid_amount <= total_amount            (ck_document_paid_range)
    - document_number unique per (business, document_type)
    - idempotency_key unique
    - status never stores ``overdue``; see DocumentEngine.effective_status.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import SoftDeleteMixin, TrackedBase, UUIDString
from ledger_kernel.domain.references import Reference, ReferenceKind


class DocumentType(str, Enum):
    SALE = "sale"
    PURCHASE = "purchase"
    INVOICE = "invoice"
    EXPENSE = "expense"


class DocumentStatus(str, Enum):
    """
    Document lifecycle status.

    draft -> pending / part_payment -> paid; cancelled from any non-paid
    state.  OVERDUE is a read-only projection and is never persisted.
    """

    DRAFT = "draft"
    PENDING = "pending"
    PART_PAYMENT = "part_payment"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


OPEN_STATUSES = frozenset({
    DocumentStatus.PENDING,
    DocumentStatus.PART_PAYMENT,
})

CANCELLABLE_STATUSES = frozenset({
    DocumentStatus.DRAFT,
    DocumentStatus.PENDING,
    DocumentStatus.PART_PAYMENT,
})


class Document(SoftDeleteMixin, TrackedBase):
    """
    Source document header with running payment balance.

    Contract:
        paid_amount and balance_due change only through
        DocumentEngine.apply_payment / reverse_payment, after the row is
        locked.  Header totals are fixed at creation.
    """

    __tablename__ = "documents"

    __table_args__ = (
        UniqueConstraint(
            "business_id", "document_type", "document_number",
            name="uq_document_business_type_number",
        ),
        UniqueConstraint("idempotency_key", name="uq_document_idempotency"),
        CheckConstraint(
            "abs(balance_due - (total_amount - paid_amount)) < 0.000001",
            name="ck_document_balance_due",
        ),
        CheckConstraint(
            "paid_amount >= 0 AND paid_amount <= total_amount",
            name="ck_document_paid_range",
        ),
        Index("idx_document_business_status", "business_id", "status"),
        Index("idx_document_party", "party_type", "party_id"),
        Index("idx_document_source", "source_type", "source_id"),
    )

    document_type: Mapped[str] = mapped_column(String(20), nullable=False)

    business_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    document_number: Mapped[str] = mapped_column(String(50), nullable=False)

    idempotency_key: Mapped[str | None] = mapped_column(String(300), nullable=True)

    party_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    party_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Stock location for sales and purchases
    location_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Upstream document, e.g. the sale an invoice bills
    source_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    source_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    document_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )
    balance_due: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    last_payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[DocumentStatus] = mapped_column(String(20), nullable=False)

    cancel_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    lines: Mapped[list["DocumentLine"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DocumentLine.line_seq",
    )

    __mapper_args__: ClassVar[dict] = {"polymorphic_on": "document_type"}

    # Party kinds each document type accepts
    party_kinds: ClassVar[frozenset[ReferenceKind]] = frozenset()

    # Whether settlement moves stock
    moves_stock: ClassVar[bool] = False

    # Receivables are paid by customers, payables are paid to vendors/staff
    is_receivable: ClassVar[bool] = True

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.document_number} status={self.status}>"

    @property
    def party(self) -> Reference | None:
        return Reference.from_columns(self.party_type, self.party_id)

    @property
    def source(self) -> Reference | None:
        return Reference.from_columns(self.source_type, self.source_id)

    @property
    def reference(self) -> Reference:
        """Reference pointing at this document."""
        return Reference(ReferenceKind(self.document_type), self.id)

    @property
    def is_cancelled(self) -> bool:
        return self.status == DocumentStatus.CANCELLED


class Sale(Document):
    __mapper_args__: ClassVar[dict] = {"polymorphic_identity": DocumentType.SALE.value}

    party_kinds = frozenset({ReferenceKind.CUSTOMER})
    moves_stock = True
    is_receivable = True


class Purchase(Document):
    __mapper_args__: ClassVar[dict] = {"polymorphic_identity": DocumentType.PURCHASE.value}

    party_kinds = frozenset({ReferenceKind.VENDOR})
    moves_stock = True
    is_receivable = False


class Invoice(Document):
    __mapper_args__: ClassVar[dict] = {"polymorphic_identity": DocumentType.INVOICE.value}

    party_kinds = frozenset({ReferenceKind.CUSTOMER})
    moves_stock = False
    is_receivable = True


class Expense(Document):
    __mapper_args__: ClassVar[dict] = {"polymorphic_identity": DocumentType.EXPENSE.value}

    party_kinds = frozenset({ReferenceKind.VENDOR, ReferenceKind.EMPLOYEE})
    moves_stock = False
    is_receivable = False


DOCUMENT_CLASSES: dict[DocumentType, type[Document]] = {
    DocumentType.SALE: Sale,
    DocumentType.PURCHASE: Purchase,
    DocumentType.INVOICE: Invoice,
    DocumentType.EXPENSE: Expense,
}


class DocumentLine(TrackedBase):
    """
    One line item of a document.

    product_id is required on sale and purchase lines and optional on invoice
    and expense lines.  account_id optionally overrides the account an
    expense line is charged to.
    """

    __tablename__ = "document_lines"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_document_line_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_document_line_price_non_negative"),
        Index("idx_document_line_document", "document_id"),
        Index("idx_document_line_product", "product_id"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("documents.id"),
        nullable=False,
    )

    product_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    # Cost per unit for COGS; falls back to inventory average cost when null
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    total: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    account_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    line_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    document: Mapped["Document"] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return f"<DocumentLine {self.quantity} x {self.unit_price}>"
