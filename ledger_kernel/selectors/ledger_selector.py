"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries: trial balance, account balances and
    the ledger lines of an account.  Balances are always derived from
    LedgerEntry rows at query time; nothing stores a running balance.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - total_debits_credits() returns equal totals for any committed ledger
      (every journal entry is balanced when written).

Failure modes:
    - Returns empty results or zero balances when nothing is posted.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import DEFAULT_DECIMAL_PLACES, round_money
from ledger_kernel.models.account import Account, AccountType, DEBIT_NORMAL_TYPES
from ledger_kernel.models.journal import JournalEntry, LedgerEntry
from ledger_kernel.selectors.base import BaseSelector

ZERO = Decimal("0")


@dataclass(frozen=True)
class TrialBalanceRow:
    """A single row in a trial balance report."""

    account_id: UUID
    account_code: str
    account_name: str
    account_type: str
    debit_total: Decimal
    credit_total: Decimal

    @property
    def balance(self) -> Decimal:
        """Net balance (debits - credits)."""
        return self.debit_total - self.credit_total

    @property
    def normal_balance(self) -> Decimal:
        """Balance signed by the account's normal side."""
        if AccountType(self.account_type) in DEBIT_NORMAL_TYPES:
            return self.balance
        return -self.balance


@dataclass(frozen=True)
class AccountBalance:
    """Balance for a single account."""

    account_id: UUID
    debit_total: Decimal
    credit_total: Decimal
    line_count: int

    @property
    def balance(self) -> Decimal:
        """Net balance (debits - credits)."""
        return self.debit_total - self.credit_total


@dataclass(frozen=True)
class LedgerLine:
    """A single line from the ledger view."""

    journal_entry_id: UUID
    ledger_entry_id: UUID
    entry_date: date
    reference: str | None
    debit_amount: Decimal
    credit_amount: Decimal
    description: str | None


class LedgerSelector(BaseSelector[LedgerEntry]):
    """
    Selector for ledger queries.

    Contract:
        Every figure is computed from LedgerEntry rows, optionally cut off
        at an entry date (inclusive).
    """

    def __init__(self, session: Session, decimal_places: int = DEFAULT_DECIMAL_PLACES):
        super().__init__(session)
        self.decimal_places = decimal_places

    def _total(self, value) -> Decimal:
        # Lines are stored at money precision; SQLite sums them as floats.
        return round_money(Decimal(str(value)), self.decimal_places)

    def trial_balance(self, business_id: UUID, as_of_date: date | None = None) -> list[TrialBalanceRow]:
        """Debit and credit totals for every account with postings, by code."""
        debit_sum = func.coalesce(func.sum(LedgerEntry.debit_amount), 0)
        credit_sum = func.coalesce(func.sum(LedgerEntry.credit_amount), 0)
        query = (
            select(
                Account.id,
                Account.code,
                Account.name,
                Account.account_type,
                debit_sum,
                credit_sum,
            )
            .join(LedgerEntry, LedgerEntry.account_id == Account.id)
            .join(JournalEntry, LedgerEntry.journal_entry_id == JournalEntry.id)
            .where(LedgerEntry.business_id == business_id)
            .group_by(Account.id, Account.code, Account.name, Account.account_type)
            .order_by(Account.code)
        )
        if as_of_date is not None:
            query = query.where(JournalEntry.entry_date <= as_of_date)

        return [
            TrialBalanceRow(
                account_id=account_id,
                account_code=code,
                account_name=name,
                account_type=account_type,
                debit_total=self._total(debits),
                credit_total=self._total(credits),
            )
            for account_id, code, name, account_type, debits, credits in self.session.execute(query)
        ]

    def total_debits_credits(self, business_id: UUID) -> tuple[Decimal, Decimal]:
        debits, credits = self.session.execute(
            select(
                func.coalesce(func.sum(LedgerEntry.debit_amount), 0),
                func.coalesce(func.sum(LedgerEntry.credit_amount), 0),
            ).where(LedgerEntry.business_id == business_id)
        ).one()
        return self._total(debits), self._total(credits)

    def account_balance(self, account_id: UUID, as_of_date: date | None = None) -> AccountBalance:
        query = (
            select(
                func.coalesce(func.sum(LedgerEntry.debit_amount), 0),
                func.coalesce(func.sum(LedgerEntry.credit_amount), 0),
                func.count(LedgerEntry.id),
            )
            .join(JournalEntry, LedgerEntry.journal_entry_id == JournalEntry.id)
            .where(LedgerEntry.account_id == account_id)
        )
        if as_of_date is not None:
            query = query.where(JournalEntry.entry_date <= as_of_date)
        debits, credits, count = self.session.execute(query).one()
        return AccountBalance(
            account_id=account_id,
            debit_total=self._total(debits),
            credit_total=self._total(credits),
            line_count=count,
        )

    def lines_for_account(self, account_id: UUID, limit: int | None = None) -> list[LedgerLine]:
        """Ledger lines posted to an account, oldest first."""
        query = (
            select(LedgerEntry, JournalEntry.entry_date, JournalEntry.reference)
            .join(JournalEntry, LedgerEntry.journal_entry_id == JournalEntry.id)
            .where(LedgerEntry.account_id == account_id)
            .order_by(JournalEntry.entry_date, JournalEntry.created_at, LedgerEntry.line_seq)
        )
        if limit is not None:
            query = query.limit(limit)
        return [
            LedgerLine(
                journal_entry_id=line.journal_entry_id,
                ledger_entry_id=line.id,
                entry_date=entry_date,
                reference=reference,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
                description=line.description,
            )
            for line, entry_date, reference in self.session.execute(query)
        ]
