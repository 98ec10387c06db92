"""
Module: ledger_kernel.models.payment
Responsibility: ORM persistence for payments and their allocations against
    source documents.
Architecture position: Kernel > Models.  May import from db/ and domain/
    value objects only.

Invariants enforced:
    - amount > 0, refunded_amount in [0, amount] (ck_payment_*).
    - allocated_amount > 0 on every allocation (ck_allocation_positive).
    - net document allocations + refunded_amount <= amount (PaymentAllocator,
      under a row lock on the payment).
    - reconciled / reconciled_at are written only by bank reconciliation,
      never by allocation.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
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
from ledger_kernel.domain.references import Reference

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account


class PaymentSourceType(str, Enum):
    """What kind of business flow a payment settles."""

    SALES = "sales"
    PURCHASE = "purchase"
    EXPENSE = "expense"
    OTHERS = "others"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    CHEQUE = "cheque"
    MOBILE_MONEY = "mobile_money"


class PaymentStatus(str, Enum):
    """
    Payment lifecycle.

    pending -> completed -> refunded; pending -> failed / cancelled.
    Only completed payments can be refunded.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class AllocationType(str, Enum):
    INVOICE = "invoice"
    ADVANCE = "advance"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


# Allocation types that apply payment money to a document
APPLYING_ALLOCATION_TYPES = (
    AllocationType.INVOICE.value,
    AllocationType.ADVANCE.value,
    AllocationType.ADJUSTMENT.value,
)


class Payment(SoftDeleteMixin, TrackedBase):
    """
    Money received from or paid to a party.

    Contract:
        Allocations and refunds only ever increase the allocation list and
        refunded_amount; the amount itself is fixed at creation.
    """

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("business_id", "payment_number", name="uq_payment_business_number"),
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        CheckConstraint(
            "refunded_amount >= 0 AND refunded_amount <= amount",
            name="ck_payment_refunded_range",
        ),
        Index("idx_payment_business_status", "business_id", "payment_status"),
        Index("idx_payment_payer", "payer_type", "payer_id"),
    )

    business_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    payment_number: Mapped[str] = mapped_column(String(50), nullable=False)

    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    source_type: Mapped[PaymentSourceType] = mapped_column(String(20), nullable=False)
    source_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    payer_type: Mapped[str] = mapped_column(String(30), nullable=False)
    payer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Bank or cash account the money moved through
    bank_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(String(20), nullable=False)

    payment_status: Mapped[PaymentStatus] = mapped_column(String(20), nullable=False)

    refunded_amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    currency_code: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    reconciled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reconciled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    allocations: Mapped[list["PaymentAllocation"]] = relationship(
        back_populates="payment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PaymentAllocation.allocation_seq",
    )

    bank_account: Mapped["Account"] = relationship()

    def __repr__(self) -> str:
        return f"<Payment {self.payment_number} {self.amount} status={self.payment_status}>"

    @property
    def payer(self) -> Reference:
        return Reference.from_columns(self.payer_type, self.payer_id)

    @property
    def allocated_amount(self) -> Decimal:
        """Amount applied to documents, net of refund allocations."""
        applied = sum(
            (a.allocated_amount for a in self.allocations
             if a.allocation_type in APPLYING_ALLOCATION_TYPES),
            Decimal("0"),
        )
        reversed_ = sum(
            (a.allocated_amount for a in self.allocations
             if a.allocation_type == AllocationType.REFUND.value
             and a.document_type is not None),
            Decimal("0"),
        )
        return applied - reversed_

    @property
    def unallocated_amount(self) -> Decimal:
        return self.amount - self.allocated_amount - self.refunded_amount

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - self.refunded_amount


class PaymentAllocation(TrackedBase):
    """
    One application of a payment to a source document.

    REFUND allocations record money returned; when document_type is set they
    reduce the document's paid amount, otherwise they refund unallocated
    money.
    """

    __tablename__ = "payment_allocations"

    __table_args__ = (
        CheckConstraint("allocated_amount > 0", name="ck_allocation_positive"),
        Index("idx_allocation_payment", "payment_id"),
        Index("idx_allocation_target", "document_type", "source_transaction_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payments.id"),
        nullable=False,
    )

    business_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    allocation_type: Mapped[AllocationType] = mapped_column(String(20), nullable=False)

    # Document the allocation applies to (or the payment itself for refunds
    # of unallocated money)
    source_transaction_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    document_type: Mapped[str | None] = mapped_column(String(20), nullable=True)

    allocated_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    # Position within the payment; refunds unwind allocations in reverse order
    allocation_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Journal entry posted for this allocation
    journal_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    payment: Mapped["Payment"] = relationship(back_populates="allocations")

    def __repr__(self) -> str:
        return (
            f"<PaymentAllocation {self.allocation_type} {self.allocated_amount} "
            f"-> {self.document_type}:{self.source_transaction_id}>"
        )

    @property
    def target(self) -> Reference | None:
        return Reference.from_columns(self.document_type, self.source_transaction_id)
