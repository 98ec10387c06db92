"""
TransactionOrchestrator -- the public operation surface of the engine.

Responsibility:
    Runs every top-level operation (record a sale, apply a payment, post a
    journal, move stock, ...) as exactly one UnitOfWork, binds the log
    context for it, and resolves idempotent replays.

Architecture position:
    Kernel > Services, outermost.  Callers (API handlers, jobs, the CLI)
    talk to this class; it composes the Document Engine, Inventory Ledger,
    Journal Engine and Payment Allocator inside one transaction.

Document state machine:

    draft --settle--> pending / part_payment --payments--> paid
      |                    |
      +------cancel--------+--> cancelled

    overdue is a read-time projection of pending / part_payment past the
    due date (DocumentEngine.effective_status), never a stored state.

Recording a document (sale shown; purchase, invoice, expense are the same
shape):
    1. Open a UnitOfWork.
    2. If a document with the idempotency key exists, return it untouched.
    3. Create header and lines.
    4. Draft: reserve stock.  Otherwise record the stock movements and post
       the settlement entry.
    5. Commit.  Any failure rolls back steps 3-4 entirely.

Idempotency races:
    Two concurrent first-time recordings of the same key both pass step 2;
    the loser fails on the unique key at flush or commit.  The orchestrator
    then reads the winner in a fresh transaction and returns it.  There are
    no other retries; callers retry with the same key.
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Callable, TypeVar
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.config import EngineConfig
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    AllocationRequest,
    DocumentHeader,
    DocumentLineSpec,
    LineSpec,
    ReconciliationRow,
    StockAdjustment,
)
from ledger_kernel.domain.references import Reference
from ledger_kernel.exceptions import StorageError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.documents import Document, DocumentStatus, DocumentType
from ledger_kernel.models.inventory import MovementStatus, MovementType, StockMovement
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.models.payment import Payment, PaymentMethod, PaymentSourceType, PaymentStatus
from ledger_kernel.services.unit_of_work import UnitOfWork
from ledger_kernel.utils.idempotency import document_idempotency_key

logger = get_logger("services.transaction_orchestrator")

T = TypeVar("T")


def _is_unique_conflict(exc: StorageError) -> bool:
    return isinstance(exc.__cause__, IntegrityError)


class TransactionOrchestrator:
    """
    One method per business operation; each call is one transaction.

    Returned ORM objects are detached from their (closed) session.  Their
    columns and eagerly loaded collections stay readable.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ):
        self._session_factory = session_factory
        self.clock = clock or SystemClock()
        self.config = config or EngineConfig.with_defaults()

    def unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(self._session_factory, self.clock, self.config)

    def _run(self, operation: str, work: Callable[[UnitOfWork], T], **context) -> T:
        with LogContext.bind(operation=operation, **context):
            logger.info("operation_started", extra={"operation": operation})
            result = self.unit_of_work().run(work)
            logger.info("operation_committed", extra={"operation": operation})
            return result

    # Documents

    def record_sale(
        self,
        business_id: UUID,
        header: DocumentHeader,
        items: list[DocumentLineSpec],
        actor_id: UUID,
    ) -> Document:
        """Record a sale with its items; see the module docstring for the steps."""
        return self.record_document(DocumentType.SALE, business_id, header, items, actor_id)

    def record_purchase(
        self,
        business_id: UUID,
        header: DocumentHeader,
        items: list[DocumentLineSpec],
        actor_id: UUID,
    ) -> Document:
        return self.record_document(DocumentType.PURCHASE, business_id, header, items, actor_id)

    def record_invoice(
        self,
        business_id: UUID,
        header: DocumentHeader,
        items: list[DocumentLineSpec],
        actor_id: UUID,
    ) -> Document:
        return self.record_document(DocumentType.INVOICE, business_id, header, items, actor_id)

    def record_expense(
        self,
        business_id: UUID,
        header: DocumentHeader,
        items: list[DocumentLineSpec],
        actor_id: UUID,
    ) -> Document:
        return self.record_document(DocumentType.EXPENSE, business_id, header, items, actor_id)

    def record_document(
        self,
        document_type: DocumentType | str,
        business_id: UUID,
        header: DocumentHeader,
        items: list[DocumentLineSpec],
        actor_id: UUID,
    ) -> Document:
        document_type = DocumentType(document_type)
        key = header.idempotency_key
        if key is None and header.document_number:
            key = document_idempotency_key(
                document_type.value, business_id, header.document_number
            )
        if key is not None:
            header = replace(header, idempotency_key=key)

        def work(uow: UnitOfWork) -> Document:
            if key is not None:
                existing = uow.documents.get_by_idempotency_key(key)
                if existing is not None:
                    logger.info(
                        "document_replayed",
                        extra={"document_id": str(existing.id), "idempotency_key": key},
                    )
                    return existing
            document = uow.documents.create_with_lines(
                business_id, document_type, header, items, actor_id
            )
            if document.status == DocumentStatus.DRAFT.value:
                uow.documents.reserve_stock(document, actor_id)
            else:
                uow.documents.post_settlement(document, actor_id, header.paid_account_id)
            return document

        try:
            return self._run(
                f"record_{document_type.value}", work,
                business_id=business_id, actor_id=actor_id,
            )
        except StorageError as exc:
            if key is None or not _is_unique_conflict(exc):
                raise
            winner = self.unit_of_work().run(
                lambda uow: uow.documents.get_by_idempotency_key(key)
            )
            if winner is None:
                raise
            logger.info(
                "idempotent_race_resolved",
                extra={"document_id": str(winner.id), "idempotency_key": key},
            )
            return winner

    def settle_document(
        self,
        document_id: UUID,
        actor_id: UUID,
        paid_amount: Decimal | int | str = Decimal("0"),
        paid_account_id: UUID | None = None,
    ) -> Document:
        """Turn a draft into a pending / part-paid / paid document and post it."""
        return self._run(
            "settle_document",
            lambda uow: uow.documents.settle_draft(
                document_id, actor_id, paid_amount, paid_account_id
            ),
            document_id=document_id, actor_id=actor_id,
        )

    def apply_payment(
        self,
        document_id: UUID,
        amount: Decimal | int | str,
        actor_id: UUID,
        paid_account_id: UUID | None = None,
        payment_date: date | None = None,
    ) -> Document:
        """
        Record money received (or paid) directly against one document.

        Updates the document balance and posts Dr funds / Cr receivables
        (or Dr payables / Cr funds) through ``paid_account_id`` or the cash
        account.
        """
        return self._run(
            "apply_payment",
            lambda uow: uow.documents.receive_payment(
                document_id, amount, actor_id, paid_account_id, payment_date
            ),
            document_id=document_id, actor_id=actor_id,
        )

    def cancel_document(self, document_id: UUID, reason: str | None, actor_id: UUID) -> Document:
        return self._run(
            "cancel_document",
            lambda uow: uow.documents.cancel(document_id, reason, actor_id),
            document_id=document_id, actor_id=actor_id,
        )

    # Journal

    def post_journal(
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
        """Post a manual journal entry in its own transaction."""
        def work(uow: UnitOfWork) -> JournalEntry:
            return uow.journal.post(
                business_id, entry_date, memo, reference, lines, actor_id,
                idempotency_key=idempotency_key, source=source,
            )

        try:
            return self._run(
                "post_journal", work, business_id=business_id, actor_id=actor_id
            )
        except StorageError as exc:
            if idempotency_key is None or not _is_unique_conflict(exc):
                raise
            winner = self.unit_of_work().run(
                lambda uow: uow.journal.get_by_idempotency_key(idempotency_key)
            )
            if winner is None:
                raise
            logger.info(
                "idempotent_race_resolved",
                extra={"entry_id": str(winner.id), "idempotency_key": idempotency_key},
            )
            return winner

    def reverse_journal(
        self, entry_id: UUID, actor_id: UUID, reason: str | None = None
    ) -> JournalEntry:
        return self._run(
            "reverse_journal",
            lambda uow: uow.journal.reverse(entry_id, actor_id, reason=reason),
            entry_id=entry_id, actor_id=actor_id,
        )

    # Inventory

    def record_stock_movement(
        self,
        business_id: UUID,
        product_id: UUID,
        location_id: UUID,
        movement_type: MovementType | str,
        quantity: int,
        actor_id: UUID,
        unit_cost: Decimal | int | str = Decimal("0"),
        reference: Reference | None = None,
        status: MovementStatus | str = MovementStatus.CONFIRMED,
        notes: str | None = None,
    ) -> StockMovement:
        return self._run(
            "record_stock_movement",
            lambda uow: uow.inventory.record_movement(
                business_id, product_id, location_id, movement_type, quantity, actor_id,
                unit_cost=unit_cost, reference=reference, status=status, notes=notes,
            ),
            business_id=business_id, actor_id=actor_id,
        )

    def adjust_stock(
        self,
        business_id: UUID,
        adjustments: list[StockAdjustment],
        actor_id: UUID,
        reference: Reference | None = None,
    ) -> list[StockMovement]:
        return self._run(
            "adjust_stock",
            lambda uow: uow.inventory.bulk_adjust(business_id, adjustments, actor_id, reference),
            business_id=business_id, actor_id=actor_id,
        )

    def reconcile_inventory(
        self,
        business_id: UUID,
        actor_id: UUID | None = None,
        apply: bool = False,
    ) -> list[ReconciliationRow]:
        return self._run(
            "reconcile_inventory",
            lambda uow: uow.inventory.reconcile(business_id, actor_id, apply=apply),
            business_id=business_id, actor_id=actor_id,
        )

    # Payments

    def record_payment(
        self,
        business_id: UUID,
        amount: Decimal | int | str,
        source_type: PaymentSourceType | str,
        payer: Reference,
        bank_account_id: UUID,
        actor_id: UUID,
        payment_method: PaymentMethod | str = PaymentMethod.CASH,
        status: PaymentStatus | str = PaymentStatus.COMPLETED,
        **details,
    ) -> Payment:
        return self._run(
            "record_payment",
            lambda uow: uow.payments.record_payment(
                business_id, amount, source_type, payer, bank_account_id, actor_id,
                payment_method=payment_method, status=status, **details,
            ),
            business_id=business_id, actor_id=actor_id,
        )

    def allocate_payment(
        self,
        payment_id: UUID,
        allocations: list[AllocationRequest],
        actor_id: UUID,
    ) -> Payment:
        return self._run(
            "allocate_payment",
            lambda uow: uow.payments.allocate(payment_id, allocations, actor_id),
            actor_id=actor_id,
        )

    def refund_payment(
        self,
        payment_id: UUID,
        amount: Decimal | int | str | None,
        reason: str | None,
        actor_id: UUID,
    ) -> Payment:
        return self._run(
            "refund_payment",
            lambda uow: uow.payments.refund(payment_id, actor_id, amount=amount, reason=reason),
            actor_id=actor_id,
        )
