"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal entries and their ledger entry
    lines -- the single source of financial truth.
Architecture position: Kernel > Models.  May import from db/ and domain/
    value objects only.

Invariants enforced:
    - Idempotency key uniqueness (uq_journal_idempotency).
    - At most one reversal per entry (uq_journal_reversal_of).
    - Debits == credits per entry (checked by JournalEngine before flush;
      is_balanced is the read-side convenience).
    - Immutability (ORM listeners in db/immutability.py prevent UPDATE and
      DELETE of entries and lines).
    - Each line has non-negative amounts with exactly one side non-zero
      (ck_ledger_entry_*).

Failure modes:
    - IntegrityError on duplicate idempotency_key or second reversal.
    - ImmutabilityViolationError on UPDATE/DELETE.
"""

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.domain.references import Reference

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account


class JournalEntry(TrackedBase):
    """
    Journal entry header -- the atomic unit of double-entry accounting.

    Contract:
        Created only by JournalEngine.post (or JournalEngine.reverse, which
        goes through post).  Immutable from creation; corrections are new
        entries linked through reversal_of_id.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_journal_idempotency"),
        UniqueConstraint("reversal_of_id", name="uq_journal_reversal_of"),
        Index("idx_journal_business_date", "business_id", "entry_date"),
        Index("idx_journal_reference", "reference"),
        Index("idx_journal_source", "source_type", "source_id"),
    )

    business_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Accounting date
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    memo: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Business reference, e.g. a document number
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # producer:event_type:id, see utils/idempotency.py
    idempotency_key: Mapped[str | None] = mapped_column(String(300), nullable=True)

    # What produced the entry: a document, a payment, or nothing for manual
    # postings
    source_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    source_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # If this is a reversal, points to the original entry
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    lines: Mapped[list["LedgerEntry"]] = relationship(
        back_populates="journal_entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="LedgerEntry.line_seq",
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.id} ref={self.reference}>"

    @property
    def source(self) -> Reference | None:
        return Reference.from_columns(self.source_type, self.source_id)

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit_amount for line in self.lines), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit_amount for line in self.lines), Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        """Read-side check that debits equal credits."""
        return self.total_debits == self.total_credits


class LedgerEntry(TrackedBase):
    """
    One debit or credit posting within a journal entry.

    Contract:
        debit_amount >= 0, credit_amount >= 0, exactly one of them non-zero.
        The optional related link (customer, vendor, invoice, ...) is stored
        as a (related_type, related_id) pair and read back as a Reference.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        CheckConstraint(
            "debit_amount >= 0 AND credit_amount >= 0",
            name="ck_ledger_entry_non_negative",
        ),
        CheckConstraint(
            "(debit_amount = 0) <> (credit_amount = 0)",
            name="ck_ledger_entry_one_side",
        ),
        Index("idx_ledger_entry_journal", "journal_entry_id"),
        Index("idx_ledger_entry_account", "account_id"),
        Index("idx_ledger_entry_related", "related_type", "related_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    business_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    debit_amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    credit_amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Line sequence within entry (deterministic ordering)
    line_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    related_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    related_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    journal_entry: Mapped["JournalEntry"] = relationship(back_populates="lines")

    account: Mapped["Account"] = relationship(back_populates="ledger_entries")

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry account={self.account_id} "
            f"dr={self.debit_amount} cr={self.credit_amount}>"
        )

    @property
    def related(self) -> Reference | None:
        return Reference.from_columns(self.related_type, self.related_id)

    @property
    def is_debit(self) -> bool:
        return self.debit_amount > 0
