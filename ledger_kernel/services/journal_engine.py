"""
JournalEngine -- the only path that creates journal and ledger entries.

Responsibility:
    Validates a set of requested lines, enforces debits == credits, and
    writes one JournalEntry with its LedgerEntry lines into the caller's
    transaction.  Corrections are made with reverse(), which posts the
    mirror entry; nothing is ever edited in place.

Architecture position:
    Kernel > Services.  Depends on the Account Directory's model for line
    validation; called by the Document Engine, Payment Allocator and
    Transaction Orchestrator.

Invariants enforced:
    - sum(debit) == sum(credit) for every entry (ImbalancedEntryError).
    - Every line has non-negative amounts, exactly one of them non-zero.
    - Every line targets an active, non-deleted account of the business.
    - Idempotency: a repeated idempotency_key returns the original entry.
    - At most one reversal per entry (EntryAlreadyReversedError; also the
      uq_journal_reversal_of constraint).

Failure modes:
    - ValidationError for malformed lines or unusable accounts.
    - ImbalancedEntryError when totals differ.
    - NotFoundError / EntryAlreadyReversedError from reverse().
    - IntegrityError if a concurrent writer inserted the same idempotency
      key first; the enclosing unit of work is aborted and the caller
      re-reads.
"""

import time
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.dtos import LineSpec
from ledger_kernel.domain.references import LEDGER_LINK_KINDS, Reference
from ledger_kernel.exceptions import (
    EntryAlreadyReversedError,
    ImbalancedEntryError,
    NotFoundError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import JournalEntry, LedgerEntry
from ledger_kernel.services.base import BaseService
from ledger_kernel.utils.idempotency import generate_idempotency_key

logger = get_logger("services.journal_engine")

ZERO = Decimal("0")


class JournalEngine(BaseService[JournalEntry]):
    """
    Posts balanced journal entries.

    Contract:
        post() either writes a complete balanced entry or raises before
        anything is added to the session.

    Non-goals:
        - Does NOT choose accounts; callers pass account ids (the Document
          Engine resolves roles through the Account Directory first).
        - Does NOT commit.
    """

    def post(
        self,
        business_id: UUID,
        entry_date: date,
        memo: str | None,
        reference: str | None,
        lines: list[LineSpec],
        actor_id: UUID,
        idempotency_key: str | None = None,
        source: Reference | None = None,
    ) -> JournalEntry:
        """
        Post a journal entry.

        Returns the existing entry untouched when ``idempotency_key`` has
        already been posted.

        Raises:
            ValidationError: empty line list, malformed line, bad account.
            ImbalancedEntryError: debits != credits.
        """
        return self._write(
            business_id=business_id,
            entry_date=entry_date,
            memo=memo,
            reference=reference,
            lines=lines,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
            source=source,
            reversal_of_id=None,
        )

    def reverse(
        self,
        entry_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
        entry_date: date | None = None,
    ) -> JournalEntry:
        """
        Post the mirror of an entry (debits and credits swapped).

        Raises:
            NotFoundError: no such entry.
            EntryAlreadyReversedError: the entry already has a reversal.
        """
        original = self.session.execute(
            select(JournalEntry).where(JournalEntry.id == entry_id).with_for_update()
        ).scalar_one_or_none()
        if original is None:
            raise NotFoundError("JournalEntry", str(entry_id))

        existing = self.get_reversal(entry_id)
        if existing is not None:
            raise EntryAlreadyReversedError(str(entry_id), str(existing.id))

        mirrored = [
            LineSpec(
                account_id=line.account_id,
                debit=line.credit_amount,
                credit=line.debit_amount,
                description=line.description,
                related=line.related,
            )
            for line in original.lines
        ]
        memo = f"Reversal of {original.reference or original.id}"
        if reason:
            memo = f"{memo}: {reason}"

        reversal = self._write(
            business_id=original.business_id,
            entry_date=entry_date or self.clock.today(),
            memo=memo[:500],
            reference=original.reference,
            lines=mirrored,
            actor_id=actor_id,
            idempotency_key=generate_idempotency_key("journal", "entry.reversed", entry_id),
            source=original.source,
            reversal_of_id=original.id,
            # Reversals must post even if an account was deactivated since.
            allow_inactive=True,
        )
        logger.info(
            "journal_entry_reversed",
            extra={
                "entry_id": str(entry_id),
                "reversal_entry_id": str(reversal.id),
                "reason": reason,
            },
        )
        return reversal

    def get(self, entry_id: UUID) -> JournalEntry:
        entry = self.session.get(JournalEntry, entry_id)
        if entry is None:
            raise NotFoundError("JournalEntry", str(entry_id))
        return entry

    def get_by_idempotency_key(self, idempotency_key: str) -> JournalEntry | None:
        return self.session.execute(
            select(JournalEntry).where(JournalEntry.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def get_reversal(self, entry_id: UUID) -> JournalEntry | None:
        return self.session.execute(
            select(JournalEntry).where(JournalEntry.reversal_of_id == entry_id)
        ).scalar_one_or_none()

    def open_entries_for(self, source: Reference) -> list[JournalEntry]:
        """
        Entries produced for ``source`` that are neither reversals nor
        reversed yet, oldest first.
        """
        entries = self.session.execute(
            select(JournalEntry)
            .where(
                JournalEntry.source_type == source.kind.value,
                JournalEntry.source_id == source.id,
                JournalEntry.reversal_of_id.is_(None),
            )
            .order_by(JournalEntry.created_at, JournalEntry.id)
        ).scalars().all()
        return [e for e in entries if self.get_reversal(e.id) is None]

    # Internals

    def _write(
        self,
        business_id: UUID,
        entry_date: date,
        memo: str | None,
        reference: str | None,
        lines: list[LineSpec],
        actor_id: UUID,
        idempotency_key: str | None,
        source: Reference | None,
        reversal_of_id: UUID | None,
        allow_inactive: bool = False,
    ) -> JournalEntry:
        t0 = time.monotonic()
        logger.info(
            "journal_write_started",
            extra={
                "business_id": str(business_id),
                "reference": reference,
                "line_count": len(lines),
                "idempotency_key": idempotency_key,
            },
        )

        if idempotency_key is not None:
            existing = self._get_existing_entry(idempotency_key)
            if existing is not None:
                logger.info(
                    "journal_entry_already_exists",
                    extra={"entry_id": str(existing.id), "idempotency_key": idempotency_key},
                )
                return existing

        normalized = self._validate_lines(lines)

        total_debits = sum((d for _, d, _ in normalized), ZERO)
        total_credits = sum((c for _, _, c in normalized), ZERO)
        if total_debits != total_credits:
            logger.warning(
                "unbalanced_entry_rejected",
                extra={
                    "business_id": str(business_id),
                    "reference": reference,
                    "debits": total_debits,
                    "credits": total_credits,
                },
            )
            raise ImbalancedEntryError(total_debits, total_credits)

        logger.debug(
            "balance_validated",
            extra={"debits": total_debits, "credits": total_credits},
        )

        self._validate_accounts(business_id, [spec.account_id for spec, _, _ in normalized],
                                allow_inactive=allow_inactive)

        entry = JournalEntry(
            business_id=business_id,
            entry_date=entry_date,
            memo=memo,
            reference=reference,
            idempotency_key=idempotency_key,
            source_type=source.kind.value if source else None,
            source_id=source.id if source else None,
            reversal_of_id=reversal_of_id,
            created_by_id=actor_id,
        )
        for seq, (spec, debit, credit) in enumerate(normalized):
            entry.lines.append(
                LedgerEntry(
                    account_id=spec.account_id,
                    business_id=business_id,
                    debit_amount=debit,
                    credit_amount=credit,
                    description=spec.description,
                    line_seq=seq,
                    related_type=spec.related.kind.value if spec.related else None,
                    related_id=spec.related.id if spec.related else None,
                    created_by_id=actor_id,
                )
            )
        self.session.add(entry)
        self.session.flush()

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.info(
            "journal_entry_created",
            extra={
                "entry_id": str(entry.id),
                "business_id": str(business_id),
                "reference": reference,
                "total": total_debits,
                "line_count": len(normalized),
                "reversal_of_id": str(reversal_of_id) if reversal_of_id else None,
                "duration_ms": duration_ms,
            },
        )
        return entry

    def _get_existing_entry(self, idempotency_key: str) -> JournalEntry | None:
        """Get existing entry by idempotency key."""
        return self.session.execute(
            select(JournalEntry)
            .where(JournalEntry.idempotency_key == idempotency_key)
            .with_for_update()
        ).scalar_one_or_none()

    def _validate_lines(self, lines: list[LineSpec]) -> list[tuple[LineSpec, Decimal, Decimal]]:
        if not lines:
            raise ValidationError("A journal entry needs at least one line", field="lines")

        normalized = []
        for index, spec in enumerate(lines):
            debit = self._money(spec.debit, f"lines[{index}].debit")
            credit = self._money(spec.credit, f"lines[{index}].credit")
            if debit < 0 or credit < 0:
                raise ValidationError(
                    f"Line {index} has a negative amount", field=f"lines[{index}]"
                )
            if debit > 0 and credit > 0:
                raise ValidationError(
                    f"Line {index} has both a debit and a credit", field=f"lines[{index}]"
                )
            if debit == 0 and credit == 0:
                raise ValidationError(
                    f"Line {index} has neither a debit nor a credit", field=f"lines[{index}]"
                )
            if spec.related is not None and spec.related.kind not in LEDGER_LINK_KINDS:
                raise ValidationError(
                    f"Line {index} cannot link to a '{spec.related.kind.value}'",
                    field=f"lines[{index}].related",
                )
            normalized.append((spec, debit, credit))
        return normalized

    def _validate_accounts(
        self, business_id: UUID, account_ids: list[UUID], allow_inactive: bool
    ) -> None:
        wanted = set(account_ids)
        accounts = {
            a.id: a
            for a in self.session.execute(
                select(Account).where(Account.id.in_(wanted))
            ).scalars()
        }
        for account_id in account_ids:
            account = accounts.get(account_id)
            if account is None or account.is_deleted or account.business_id != business_id:
                raise ValidationError(
                    f"Account {account_id} not found in this business", field="account_id"
                )
            if not account.is_active and not allow_inactive:
                raise ValidationError(
                    f"Account {account.code} is inactive", field="account_id"
                )
