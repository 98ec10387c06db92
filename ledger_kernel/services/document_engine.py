"""
DocumentEngine -- sales, purchases, invoices and expenses with their
running payment balance.

Responsibility:
    Creates documents with their line items, keeps paid_amount /
    balance_due / status consistent as payments are applied and reversed,
    and produces the stock movements and settlement journal entry a
    document implies.  Cancellation compensates everything a document did;
    nothing is deleted.

Architecture position:
    Kernel > Services.  Uses the Account Directory (role resolution), the
    Journal Engine (postings) and the Inventory Ledger (stock).  Called by
    the Payment Allocator and the Transaction Orchestrator.

Invariants enforced:
    - balance_due == total_amount - paid_amount after every change.
    - 0 <= paid_amount <= total_amount (OverpaymentError / ValidationError).
    - total_amount == subtotal + tax - discount within the configured
      rounding tolerance.
    - Status follows paid_amount: 0 -> pending, partial -> part_payment,
      full -> paid.  overdue is never stored; see effective_status().
    - The document row is locked (SELECT ... FOR UPDATE) before any balance
      change.

Settlement postings (one balanced entry per document):

    Document | Debit                          | Credit
    ---------|--------------------------------|-------------------------------
    Sale     | Cash (paid), AR (unpaid), COGS | Revenue, Tax Payable, Inventory
    Invoice  | Cash (paid), AR (unpaid)       | Revenue, Tax Payable
    Purchase | Inventory                      | Cash (paid), AP (unpaid)
    Expense  | Expense account(s)             | Cash (paid), AP (unpaid)

    An invoice that bills an existing sale posts nothing; the sale already
    did.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.domain.dtos import DocumentHeader, DocumentLineSpec, LineSpec
from ledger_kernel.domain.references import DOCUMENT_KINDS, Reference, ReferenceKind
from ledger_kernel.domain.roles import AccountRole
from ledger_kernel.exceptions import (
    InvalidStatusTransitionError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.documents import (
    CANCELLABLE_STATUSES,
    DOCUMENT_CLASSES,
    OPEN_STATUSES,
    Document,
    DocumentLine,
    DocumentStatus,
    DocumentType,
)
from ledger_kernel.models.inventory import MovementStatus, MovementType, StockMovement
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.models.payment import APPLYING_ALLOCATION_TYPES, AllocationType, PaymentAllocation
from ledger_kernel.services.account_directory import AccountDirectory
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.inventory_ledger import InventoryLedger
from ledger_kernel.services.journal_engine import JournalEngine
from ledger_kernel.utils.idempotency import document_idempotency_key, generate_idempotency_key

logger = get_logger("services.document_engine")

ZERO = Decimal("0")


def status_for(paid_amount: Decimal, total_amount: Decimal) -> DocumentStatus:
    """Status implied by the paid amount of a non-draft, non-cancelled document."""
    if paid_amount >= total_amount:
        return DocumentStatus.PAID
    if paid_amount > 0:
        return DocumentStatus.PART_PAYMENT
    return DocumentStatus.PENDING


class DocumentEngine(BaseService[Document]):
    """
    Document lifecycle and balances.

    Contract:
        Every public method validates before it mutates.  The engine only
        flushes; the enclosing unit of work commits.
    """

    def __init__(
        self,
        session,
        clock=None,
        config=None,
        accounts: AccountDirectory | None = None,
        journal: JournalEngine | None = None,
        inventory: InventoryLedger | None = None,
    ):
        super().__init__(session, clock, config)
        self.accounts = accounts or AccountDirectory(session, self.clock, self.config)
        self.journal = journal or JournalEngine(session, self.clock, self.config)
        self.inventory = inventory or InventoryLedger(session, self.clock, self.config)

    # Reads

    def get(self, document_id: UUID, business_id: UUID | None = None) -> Document:
        document = self.session.get(Document, document_id)
        if document is None or document.is_deleted:
            raise NotFoundError("Document", str(document_id))
        if business_id is not None and document.business_id != business_id:
            raise NotFoundError("Document", str(document_id))
        return document

    def get_by_idempotency_key(self, idempotency_key: str) -> Document | None:
        return self.session.execute(
            select(Document).where(Document.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def effective_status(self, document: Document, today: date | None = None) -> DocumentStatus:
        """
        Stored status, or OVERDUE for an open document past its due date.
        """
        status = DocumentStatus(document.status)
        today = today or self.clock.today()
        if status in OPEN_STATUSES and document.due_date is not None and document.due_date < today:
            return DocumentStatus.OVERDUE
        return status

    # Creation

    def create_with_lines(
        self,
        business_id: UUID,
        document_type: DocumentType | str,
        header: DocumentHeader,
        lines: list[DocumentLineSpec],
        actor_id: UUID,
    ) -> Document:
        """
        Persist a document header and its lines.

        Totals are computed from the lines; a caller-supplied total_amount
        is checked against subtotal + tax - discount.  Nothing is posted and
        no stock moves here; see reserve_stock() and post_settlement().

        Raises:
            ValidationError: malformed lines, totals mismatch, paid out of
                range, wrong party kind, unknown source document.
        """
        try:
            document_type = DocumentType(document_type)
        except ValueError as exc:
            raise ValidationError(str(exc), field="document_type") from exc
        document_cls = DOCUMENT_CLASSES[document_type]

        if not lines:
            raise ValidationError("A document needs at least one line", field="lines")

        if header.party is not None:
            try:
                header.party.require_kind(document_cls.party_kinds, "party")
            except ValueError as exc:
                raise ValidationError(str(exc), field="party") from exc
        if document_cls.moves_stock and header.location_id is None:
            raise ValidationError(
                f"A {document_type.value} needs a stock location", field="location_id"
            )
        if header.source is not None:
            self._check_source(business_id, header.source)

        built_lines = []
        subtotal = ZERO
        for index, spec in enumerate(lines):
            line = self._build_line(document_cls, index, spec, actor_id)
            subtotal += line.total
            built_lines.append(line)

        tax = self._money(header.tax_amount, "tax_amount")
        discount = self._money(header.discount_amount, "discount_amount")
        if tax < 0 or discount < 0:
            raise ValidationError("Tax and discount cannot be negative", field="tax_amount")
        if discount > subtotal:
            raise ValidationError(
                f"Discount {discount} exceeds subtotal {subtotal}", field="discount_amount"
            )
        computed_total = subtotal + tax - discount

        if header.total_amount is None:
            total = computed_total
        else:
            total = self._money(header.total_amount, "total_amount")
            if abs(total - computed_total) > self.config.rounding_tolerance:
                raise ValidationError(
                    f"total_amount {total} does not match subtotal + tax - discount "
                    f"= {computed_total}",
                    field="total_amount",
                )

        paid = self._money(header.paid_amount, "paid_amount")
        if paid < 0 or paid > total:
            raise ValidationError(
                f"paid_amount {paid} must be between 0 and total_amount {total}",
                field="paid_amount",
            )
        if header.draft and paid > 0:
            raise ValidationError(
                "A draft cannot carry a paid amount; settle it instead", field="paid_amount"
            )

        document_date = header.document_date or self.clock.today()
        if header.due_date is not None and header.due_date < document_date:
            raise ValidationError("due_date is before document_date", field="due_date")

        number = header.document_number or self._next_number(business_id, document_type)
        idempotency_key = header.idempotency_key or document_idempotency_key(
            document_type.value, business_id, number
        )
        status = DocumentStatus.DRAFT if header.draft else status_for(paid, total)

        document = document_cls(
            business_id=business_id,
            document_number=number,
            idempotency_key=idempotency_key,
            party_type=header.party.kind.value if header.party else None,
            party_id=header.party.id if header.party else None,
            location_id=header.location_id,
            source_type=header.source.kind.value if header.source else None,
            source_id=header.source.id if header.source else None,
            document_date=document_date,
            due_date=header.due_date,
            subtotal=subtotal,
            tax_amount=tax,
            discount_amount=discount,
            total_amount=total,
            paid_amount=paid,
            balance_due=total - paid,
            last_payment_date=document_date if paid > 0 else None,
            status=status.value,
            notes=header.notes,
            created_by_id=actor_id,
        )
        document.lines.extend(built_lines)
        self.session.add(document)
        self.session.flush()

        logger.info(
            "document_created",
            extra={
                "document_id": str(document.id),
                "document_type": document_type.value,
                "document_number": number,
                "business_id": str(business_id),
                "total_amount": total,
                "paid_amount": paid,
                "status": status.value,
                "line_count": len(built_lines),
            },
        )
        return document

    # Stock and settlement

    def reserve_stock(self, document: Document, actor_id: UUID) -> None:
        """Hold stock for the lines of a draft sale."""
        if not self._holds_reservation(document):
            return
        for line in document.lines:
            self.inventory.reserve(
                document.business_id, line.product_id, document.location_id,
                line.quantity, actor_id,
            )

    def post_settlement(
        self,
        document: Document,
        actor_id: UUID,
        paid_account_id: UUID | None = None,
    ) -> JournalEntry | None:
        """
        Record the stock movements and the settlement entry of a document.

        Sale lines become out movements, Confirmed when the sale is paid and
        Pending (reserving the units) otherwise.  Purchase lines become
        Confirmed in movements.  Returns the journal entry, or None when the
        document posts nothing.
        """
        if document.status in (DocumentStatus.DRAFT.value, DocumentStatus.CANCELLED.value):
            raise InvalidStatusTransitionError(
                type(document).__name__, str(document.id), document.status, "settle"
            )

        cost_of_goods = ZERO
        if document.moves_stock:
            for movement in self._record_document_movements(document, actor_id):
                if movement.movement_type == MovementType.OUT.value:
                    cost_of_goods += movement.total_cost

        funds = None
        if document.paid_amount > 0:
            funds = self.accounts.funds_account(document.business_id, paid_account_id)
        lines = self._settlement_lines(document, funds, cost_of_goods)
        if not lines:
            return None

        return self.journal.post(
            business_id=document.business_id,
            entry_date=document.document_date,
            memo=f"{document.document_type.capitalize()} {document.document_number}",
            reference=document.document_number,
            lines=lines,
            actor_id=actor_id,
            idempotency_key=generate_idempotency_key(
                "documents", "document.settled", document.id
            ),
            source=document.reference,
        )

    def settle_draft(
        self,
        document_id: UUID,
        actor_id: UUID,
        paid_amount: Decimal | int | str = ZERO,
        paid_account_id: UUID | None = None,
    ) -> Document:
        """
        Move a draft to pending / part_payment / paid and post it.

        Reservations held by the draft are released and replaced by the
        sale's own movements.

        Raises:
            InvalidStatusTransitionError: the document is not a draft.
            ValidationError: paid_amount out of range.
        """
        document = self._lock(document_id)
        if document.status != DocumentStatus.DRAFT.value:
            raise InvalidStatusTransitionError(
                type(document).__name__, str(document_id), document.status, "settle"
            )
        paid = self._money(paid_amount, "paid_amount")
        if paid < 0 or paid > document.total_amount:
            raise ValidationError(
                f"paid_amount {paid} must be between 0 and total_amount "
                f"{document.total_amount}",
                field="paid_amount",
            )

        self._release_reservation(document, actor_id)

        document.paid_amount = paid
        document.balance_due = document.total_amount - paid
        document.status = status_for(paid, document.total_amount).value
        if paid > 0:
            document.last_payment_date = self.clock.today()
        document.updated_by_id = actor_id
        self.session.flush()

        self.post_settlement(document, actor_id, paid_account_id)
        logger.info(
            "document_settled",
            extra={
                "document_id": str(document_id),
                "status": document.status,
                "paid_amount": paid,
            },
        )
        return document

    # Payments

    def apply_payment(
        self,
        document_id: UUID,
        amount: Decimal | int | str,
        actor_id: UUID,
        payment_date: date | None = None,
    ) -> Document:
        """
        Add ``amount`` to the paid amount and recompute balance and status.

        A sale that becomes fully paid has its Pending stock movements
        confirmed.

        Raises:
            ValidationError: non-positive amount, draft or cancelled document.
            OverpaymentError: paid_amount would exceed total_amount.
        """
        amount = self._money(amount, "amount")
        if amount <= 0:
            raise ValidationError("Payment amount must be positive", field="amount")

        document = self._lock(document_id)
        if document.status in (DocumentStatus.DRAFT.value, DocumentStatus.CANCELLED.value):
            raise InvalidStatusTransitionError(
                type(document).__name__, str(document_id), document.status, "apply payment to"
            )
        if document.paid_amount + amount > document.total_amount:
            logger.warning(
                "overpayment_rejected",
                extra={
                    "document_id": str(document_id),
                    "total_amount": document.total_amount,
                    "paid_amount": document.paid_amount,
                    "amount": amount,
                },
            )
            raise OverpaymentError(
                str(document_id), document.total_amount, document.paid_amount, amount
            )

        previous_status = document.status
        document.paid_amount = document.paid_amount + amount
        document.balance_due = document.total_amount - document.paid_amount
        document.status = status_for(document.paid_amount, document.total_amount).value
        document.last_payment_date = payment_date or self.clock.today()
        document.updated_by_id = actor_id
        self.session.flush()

        if (
            document.moves_stock
            and document.is_receivable
            and document.status == DocumentStatus.PAID.value
        ):
            self._confirm_pending_movements(document, actor_id)

        logger.info(
            "document_payment_applied",
            extra={
                "document_id": str(document_id),
                "amount": amount,
                "paid_amount": document.paid_amount,
                "balance_due": document.balance_due,
                "from_status": previous_status,
                "to_status": document.status,
            },
        )
        return document

    def receive_payment(
        self,
        document_id: UUID,
        amount: Decimal | int | str,
        actor_id: UUID,
        paid_account_id: UUID | None = None,
        payment_date: date | None = None,
    ) -> Document:
        """
        Apply a payment made directly against the document and post the
        cash movement, sourced from the document so that cancel() reverses it.
        """
        amount = self._money(amount, "amount")
        document = self.apply_payment(document_id, amount, actor_id, payment_date)
        funds = self.accounts.funds_account(document.business_id, paid_account_id)
        self.journal.post(
            business_id=document.business_id,
            entry_date=document.last_payment_date,
            memo=f"Payment on {document.document_number}",
            reference=document.document_number,
            lines=self.payment_lines(document, amount, funds),
            actor_id=actor_id,
            source=document.reference,
        )
        return document

    def reverse_payment(
        self,
        document_id: UUID,
        amount: Decimal | int | str,
        actor_id: UUID,
    ) -> Document:
        """
        Take ``amount`` back off the paid amount, reopening the document.

        A cancelled document keeps its status; only its balance changes.

        Raises:
            ValidationError: non-positive amount, more than was paid, or a
                draft document.
        """
        amount = self._money(amount, "amount")
        if amount <= 0:
            raise ValidationError("Reversal amount must be positive", field="amount")

        document = self._lock(document_id)
        if document.status == DocumentStatus.DRAFT.value:
            raise InvalidStatusTransitionError(
                type(document).__name__, str(document_id), document.status, "reverse payment on"
            )
        if amount > document.paid_amount:
            raise ValidationError(
                f"Cannot reverse {amount}; only {document.paid_amount} was paid",
                field="amount",
            )

        previous_status = document.status
        document.paid_amount = document.paid_amount - amount
        document.balance_due = document.total_amount - document.paid_amount
        if not document.is_cancelled:
            document.status = status_for(document.paid_amount, document.total_amount).value
        document.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "document_payment_reversed",
            extra={
                "document_id": str(document_id),
                "amount": amount,
                "paid_amount": document.paid_amount,
                "from_status": previous_status,
                "to_status": document.status,
            },
        )
        return document

    def payment_lines(
        self,
        document: Document,
        amount: Decimal,
        funds_account: Account,
        related: Reference | None = None,
    ) -> list[LineSpec]:
        """
        Lines moving ``amount`` between the funds account and the
        document's receivable or payable account.
        """
        party = document.party
        if document.is_receivable:
            control = self.accounts.resolve_role(document.business_id, AccountRole.ACCOUNTS_RECEIVABLE)
            return [
                LineSpec.debit_line(funds_account.id, amount, related=related or party),
                LineSpec.credit_line(control.id, amount, related=document.reference),
            ]
        control = self.accounts.resolve_role(document.business_id, AccountRole.ACCOUNTS_PAYABLE)
        return [
            LineSpec.debit_line(control.id, amount, related=document.reference),
            LineSpec.credit_line(funds_account.id, amount, related=related or party),
        ]

    # Cancellation

    def cancel(self, document_id: UUID, reason: str | None, actor_id: UUID) -> Document:
        """
        Cancel a draft, pending or part-paid document.

        Open journal entries sourced from the document are reversed, Pending
        movements are cancelled, reservations are released and confirmed
        stock is returned with compensating movements.

        Money paid through the document itself (at creation or with
        receive_payment) goes back with the reversed entries, so paid_amount
        drops to what payment allocations still hold.  Those stay until the
        payment is refunded.

        Raises:
            InvalidStatusTransitionError: the document is paid or cancelled.
            InsufficientStockError: received stock has already been consumed.
        """
        document = self._lock(document_id)
        if DocumentStatus(document.status) not in CANCELLABLE_STATUSES:
            raise InvalidStatusTransitionError(
                type(document).__name__, str(document_id), document.status, "cancel"
            )

        reversed_ids = []
        for entry in self.journal.open_entries_for(document.reference):
            reversal = self.journal.reverse(entry.id, actor_id, reason=reason or "cancelled")
            reversed_ids.append(str(reversal.id))

        if document.status == DocumentStatus.DRAFT.value:
            self._release_reservation(document, actor_id)
        elif document.moves_stock:
            self._unwind_movements(document, actor_id)

        previous_paid = document.paid_amount
        if reversed_ids:
            document.paid_amount = min(self._allocated_amount(document), document.paid_amount)
            document.balance_due = document.total_amount - document.paid_amount
        document.status = DocumentStatus.CANCELLED.value
        document.cancel_reason = reason
        document.cancelled_at = self.clock.now()
        document.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "document_cancelled",
            extra={
                "document_id": str(document_id),
                "document_type": document.document_type,
                "reason": reason,
                "reversal_entry_ids": reversed_ids,
                "paid_amount_released": previous_paid - document.paid_amount,
            },
        )
        return document

    def soft_delete(self, document_id: UUID, actor_id: UUID) -> Document:
        """
        Hide a draft or cancelled document.

        Raises:
            InvalidStatusTransitionError: the document is in any other status.
        """
        document = self._lock(document_id)
        if document.status not in (DocumentStatus.DRAFT.value, DocumentStatus.CANCELLED.value):
            raise InvalidStatusTransitionError(
                type(document).__name__, str(document_id), document.status, "delete"
            )
        if document.status == DocumentStatus.DRAFT.value:
            self._release_reservation(document, actor_id)
        document.deleted_at = self.clock.now()
        document.updated_by_id = actor_id
        self.session.flush()
        logger.info("document_soft_deleted", extra={"document_id": str(document_id)})
        return document

    def lock_many(self, document_ids) -> dict[UUID, Document]:
        """
        Lock several documents in id order.

        Every writer touching more than one document locks through here so
        that concurrent writers acquire row locks in the same order.
        """
        return {
            document_id: self._lock(document_id)
            for document_id in sorted(set(document_ids), key=str)
        }

    # Internals

    def _lock(self, document_id: UUID) -> Document:
        document = self.session.execute(
            select(Document).where(Document.id == document_id).with_for_update()
        ).scalar_one_or_none()
        if document is None or document.is_deleted:
            raise NotFoundError("Document", str(document_id))
        return document

    def _check_source(self, business_id: UUID, source: Reference) -> None:
        if source.kind not in DOCUMENT_KINDS:
            raise ValidationError(
                f"A document cannot be sourced from a '{source.kind.value}'", field="source"
            )
        upstream = self.session.get(Document, source.id)
        if (
            upstream is None
            or upstream.is_deleted
            or upstream.business_id != business_id
            or upstream.document_type != source.kind.value
        ):
            raise ValidationError(f"Source document {source} not found", field="source")

    def _build_line(self, document_cls, index: int, spec: DocumentLineSpec, actor_id: UUID) -> DocumentLine:
        field = f"lines[{index}]"
        if isinstance(spec.quantity, bool) or not isinstance(spec.quantity, int) or spec.quantity <= 0:
            raise ValidationError(
                f"Line {index} quantity must be a positive integer", field=f"{field}.quantity"
            )
        unit_price = self._money(spec.unit_price, f"{field}.unit_price")
        if unit_price < 0:
            raise ValidationError(
                f"Line {index} unit_price cannot be negative", field=f"{field}.unit_price"
            )
        unit_cost = None
        if spec.unit_cost is not None:
            unit_cost = self._money(spec.unit_cost, f"{field}.unit_cost")
            if unit_cost < 0:
                raise ValidationError(
                    f"Line {index} unit_cost cannot be negative", field=f"{field}.unit_cost"
                )
        if document_cls.moves_stock and spec.product_id is None:
            raise ValidationError(
                f"Line {index} needs a product_id", field=f"{field}.product_id"
            )
        return DocumentLine(
            product_id=spec.product_id,
            description=spec.description,
            quantity=spec.quantity,
            unit_price=unit_price,
            unit_cost=unit_cost,
            total=self._round(unit_price * spec.quantity),
            account_id=spec.account_id,
            line_seq=index,
            created_by_id=actor_id,
        )

    def _next_number(self, business_id: UUID, document_type: DocumentType) -> str:
        prefix = self.config.document_number_prefixes.get(
            document_type.value, document_type.value[:3].upper()
        )
        count = self.session.execute(
            select(func.count(Document.id))
            .where(
                Document.business_id == business_id,
                Document.document_type == document_type.value,
            )
            .execution_options(include_deleted=True)
        ).scalar_one()
        width = self.config.document_number_width
        sequence = count + 1
        while True:
            number = f"{prefix}-{sequence:0{width}d}"
            taken = self.session.execute(
                select(Document.id)
                .where(
                    Document.business_id == business_id,
                    Document.document_type == document_type.value,
                    Document.document_number == number,
                )
                .execution_options(include_deleted=True)
            ).first()
            if taken is None:
                return number
            sequence += 1

    def _holds_reservation(self, document: Document) -> bool:
        return (
            document.moves_stock
            and document.is_receivable
            and self.config.reserve_stock_for_drafts
        )

    def _allocated_amount(self, document: Document) -> Decimal:
        """Net amount payment allocations have applied to ``document``."""
        allocations = self.session.execute(
            select(PaymentAllocation).where(
                PaymentAllocation.source_transaction_id == document.id,
                PaymentAllocation.document_type == document.document_type,
            )
        ).scalars().all()
        total = ZERO
        for allocation in allocations:
            if allocation.allocation_type in APPLYING_ALLOCATION_TYPES:
                total += allocation.allocated_amount
            elif allocation.allocation_type == AllocationType.REFUND.value:
                total -= allocation.allocated_amount
        return max(total, ZERO)

    def _release_reservation(self, document: Document, actor_id: UUID) -> None:
        if not self._holds_reservation(document):
            return
        for line in document.lines:
            self.inventory.release(
                document.business_id, line.product_id, document.location_id,
                line.quantity, actor_id,
            )

    def _record_document_movements(self, document: Document, actor_id: UUID) -> list[StockMovement]:
        movements = []
        for line in document.lines:
            if document.is_receivable:
                status = (
                    MovementStatus.CONFIRMED
                    if document.status == DocumentStatus.PAID.value
                    else MovementStatus.PENDING
                )
                movement = self.inventory.record_movement(
                    document.business_id, line.product_id, document.location_id,
                    MovementType.OUT, line.quantity, actor_id,
                    unit_cost=line.unit_cost or ZERO,
                    reference=document.reference,
                    status=status,
                    notes=f"{document.document_number} line {line.line_seq}",
                )
            else:
                movement = self.inventory.record_movement(
                    document.business_id, line.product_id, document.location_id,
                    MovementType.IN, line.quantity, actor_id,
                    unit_cost=line.unit_cost if line.unit_cost is not None else line.unit_price,
                    reference=document.reference,
                    notes=f"{document.document_number} line {line.line_seq}",
                )
            movements.append(movement)
        return movements

    def _confirm_pending_movements(self, document: Document, actor_id: UUID) -> None:
        for movement in self.inventory.movements_for(document.reference):
            if movement.movement_type == MovementType.OUT.value and movement.status in (
                MovementStatus.PENDING.value,
                MovementStatus.PARTIALLY_FULFILLED.value,
            ):
                self.inventory.confirm_movement(movement.id, actor_id)

    def _unwind_movements(self, document: Document, actor_id: UUID) -> None:
        for movement in self.inventory.movements_for(document.reference):
            if movement.status == MovementStatus.PENDING.value:
                self.inventory.cancel_movement(movement.id, actor_id)
                continue
            if movement.status == MovementStatus.CANCELLED.value or movement.confirmed_quantity <= 0:
                continue
            if movement.movement_type == MovementType.ADJUSTMENT.value:
                continue
            if movement.status == MovementStatus.PARTIALLY_FULFILLED.value:
                outstanding = movement.quantity - movement.confirmed_quantity
                if movement.movement_type == MovementType.OUT.value and outstanding > 0:
                    self.inventory.release(
                        movement.business_id, movement.product_id, movement.location_id,
                        outstanding, actor_id,
                    )
            compensating = (
                MovementType.IN
                if movement.movement_type == MovementType.OUT.value
                else MovementType.OUT
            )
            self.inventory.record_movement(
                movement.business_id, movement.product_id, movement.location_id,
                compensating, movement.confirmed_quantity, actor_id,
                unit_cost=movement.unit_cost,
                reference=document.reference,
                notes=f"Cancellation of {document.document_number}",
            )

    def _settlement_lines(
        self,
        document: Document,
        funds: Account | None,
        cost_of_goods: Decimal,
    ) -> list[LineSpec]:
        if (
            document.document_type == DocumentType.INVOICE.value
            and document.source_type == ReferenceKind.SALE.value
        ):
            return []

        business_id = document.business_id
        party = document.party
        ref = document.reference
        paid = document.paid_amount
        unpaid = document.total_amount - paid
        lines: list[LineSpec] = []

        def role(account_role: AccountRole) -> UUID:
            return self.accounts.resolve_role(business_id, account_role).id

        if document.is_receivable:
            if paid > 0:
                lines.append(LineSpec.debit_line(funds.id, paid, "Received", party))
            if unpaid > 0:
                lines.append(LineSpec.debit_line(
                    role(AccountRole.ACCOUNTS_RECEIVABLE), unpaid, "Receivable", party
                ))
            revenue = document.total_amount - document.tax_amount
            if revenue > 0:
                lines.append(LineSpec.credit_line(
                    role(AccountRole.SALES_REVENUE), revenue, "Revenue", ref
                ))
            if document.tax_amount > 0:
                lines.append(LineSpec.credit_line(
                    role(AccountRole.TAX_PAYABLE), document.tax_amount, "Tax", ref
                ))
            if cost_of_goods > 0:
                lines.append(LineSpec.debit_line(
                    role(AccountRole.COST_OF_GOODS_SOLD), cost_of_goods, "Cost of goods sold", ref
                ))
                lines.append(LineSpec.credit_line(
                    role(AccountRole.INVENTORY), cost_of_goods, "Inventory issued", ref
                ))
            return lines

        if document.document_type == DocumentType.PURCHASE.value:
            if document.total_amount > 0:
                lines.append(LineSpec.debit_line(
                    role(AccountRole.INVENTORY), document.total_amount, "Inventory received", ref
                ))
        else:
            lines.extend(self._expense_debits(document))

        if paid > 0:
            lines.append(LineSpec.credit_line(funds.id, paid, "Paid", party))
        if unpaid > 0:
            lines.append(LineSpec.credit_line(
                role(AccountRole.ACCOUNTS_PAYABLE), unpaid, "Payable", party
            ))
        return lines

    def _expense_debits(self, document: Document) -> list[LineSpec]:
        general = self.accounts.resolve_role(document.business_id, AccountRole.GENERAL_EXPENSE).id
        by_account: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        for line in document.lines:
            by_account[line.account_id or general] += line.total
        # Tax and discount land on the general expense account
        by_account[general] += document.total_amount - document.subtotal

        ref = document.reference
        lines = []
        for account_id, amount in by_account.items():
            if amount > 0:
                lines.append(LineSpec.debit_line(account_id, amount, "Expense", ref))
            elif amount < 0:
                lines.append(LineSpec.credit_line(account_id, -amount, "Expense discount", ref))
        return lines
