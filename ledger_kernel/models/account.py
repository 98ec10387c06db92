"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the Chart of Accounts -- the target of
    every ledger entry.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - code is unique per business (uq_account_business_code).
    - parent_id points at an account of the same business; the tree has no
      cycles (enforced by AccountDirectory, detected by get_tree).
    - Accounts referenced by ledger entries are never hard-deleted
      (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate (business_id, code).
"""

from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import SoftDeleteMixin, TrackedBase, UUIDString

if TYPE_CHECKING:
    from ledger_kernel.models.journal import LedgerEntry


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"
    EXPENSE = "expense"
    ACCOUNTS_RECEIVABLE = "accounts_receivable"
    ACCOUNTS_PAYABLE = "accounts_payable"
    BANK = "bank"
    CASH = "cash"
    OTHER = "other"


# Account types a payment may be deposited to or drawn from.
FUNDS_ACCOUNT_TYPES = frozenset({AccountType.BANK, AccountType.CASH})

# Account types whose balance grows on the debit side.
DEBIT_NORMAL_TYPES = frozenset({
    AccountType.ASSET,
    AccountType.EXPENSE,
    AccountType.ACCOUNTS_RECEIVABLE,
    AccountType.BANK,
    AccountType.CASH,
})


class Account(SoftDeleteMixin, TrackedBase):
    """
    Chart of Accounts entry -- a single node in a business's account tree.

    Contract:
        (business_id, code) is unique.  Once ledger entries reference the
        account it can be deactivated but not deleted.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("business_id", "code", name="uq_account_business_code"),
        Index("idx_account_business", "business_id"),
        Index("idx_account_parent", "parent_id"),
    )

    business_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    # Human-readable account code ("1000", "4000", ...)
    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(String(30), nullable=False)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Whether the account accepts new postings
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    ledger_entries: Mapped[list["LedgerEntry"]] = relationship(
        back_populates="account",
        lazy="dynamic",
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return AccountType(self.account_type) in DEBIT_NORMAL_TYPES

    @property
    def accepts_funds(self) -> bool:
        """True for bank and cash accounts, the only valid payment accounts."""
        return AccountType(self.account_type) in FUNDS_ACCOUNT_TYPES
