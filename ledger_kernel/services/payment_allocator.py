"""
PaymentAllocator -- payments and their application to documents.

Responsibility:
    Records payments, applies them to one or more documents (updating each
    document's balance and posting the cash movement), and refunds them.

Architecture position:
    Kernel > Services.  Uses the Document Engine for balances and the
    Journal Engine for postings.  Called by the Transaction Orchestrator.

Invariants enforced:
    - net document allocations + refunded_amount <= payment.amount, checked
      with the payment row locked (OverAllocationError).
    - Target documents are locked in id order after the payment.
    - Only completed payments are refunded; refunds never exceed
      amount - refunded_amount.
    - ``reconciled`` is never written here.

Refund split:
    Unallocated money is returned first.  The rest unwinds the payment's
    document allocations latest-first; each portion lowers that document's
    paid amount and posts the mirror of the allocation entry.
"""

from collections import OrderedDict
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.db.types import validate_currency
from ledger_kernel.domain.dtos import AllocationRequest
from ledger_kernel.domain.references import PARTY_KINDS, Reference
from ledger_kernel.exceptions import (
    InvalidStatusTransitionError,
    NotFoundError,
    OverAllocationError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.documents import Document, DocumentType
from ledger_kernel.models.payment import (
    APPLYING_ALLOCATION_TYPES,
    AllocationType,
    Payment,
    PaymentAllocation,
    PaymentMethod,
    PaymentSourceType,
    PaymentStatus,
)
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.document_engine import DocumentEngine

logger = get_logger("services.payment_allocator")

ZERO = Decimal("0")

# Document types each payment source may be applied to
COMPATIBLE_DOCUMENT_TYPES: dict[PaymentSourceType, frozenset[str]] = {
    PaymentSourceType.SALES: frozenset({DocumentType.SALE.value, DocumentType.INVOICE.value}),
    PaymentSourceType.PURCHASE: frozenset({DocumentType.PURCHASE.value}),
    PaymentSourceType.EXPENSE: frozenset({DocumentType.EXPENSE.value}),
    PaymentSourceType.OTHERS: frozenset(t.value for t in DocumentType),
}

ALLOCATABLE_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.COMPLETED.value)


class PaymentAllocator(BaseService[Payment]):
    """
    Payment recording, allocation and refunds.

    Contract:
        allocate() and refund() validate the whole request before the first
        document changes; an error from a later step still aborts the unit of
        work, so no partial allocation is ever committed.
    """

    def __init__(self, session, clock=None, config=None, documents: DocumentEngine | None = None):
        super().__init__(session, clock, config)
        self.documents = documents or DocumentEngine(session, self.clock, self.config)

    @property
    def journal(self):
        return self.documents.journal

    @property
    def accounts(self):
        return self.documents.accounts

    # Reads

    def get(self, payment_id: UUID, business_id: UUID | None = None) -> Payment:
        payment = self.session.get(Payment, payment_id)
        if payment is None or payment.is_deleted:
            raise NotFoundError("Payment", str(payment_id))
        if business_id is not None and payment.business_id != business_id:
            raise NotFoundError("Payment", str(payment_id))
        return payment

    # Recording

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
        payment_date: date | None = None,
        source_id: UUID | None = None,
        currency_code: str | None = None,
        payment_number: str | None = None,
        reference: str | None = None,
        notes: str | None = None,
    ) -> Payment:
        """
        Record money received or paid.  Nothing is posted until allocation.

        Raises:
            ValidationError: non-positive amount, unknown enum value, bad
                payer kind, bank account not an active bank/cash account of
                the business, or a bad currency code.
        """
        amount = self._money(amount, "amount")
        if amount <= 0:
            raise ValidationError("Payment amount must be positive", field="amount")
        try:
            source_type = PaymentSourceType(source_type)
            payment_method = PaymentMethod(payment_method)
            status = PaymentStatus(status)
        except ValueError as exc:
            raise ValidationError(str(exc), field="payment") from exc
        if status.value not in ALLOCATABLE_STATUSES:
            raise ValidationError(
                f"Payments are recorded as pending or completed, not {status.value}",
                field="payment_status",
            )
        try:
            payer.require_kind(PARTY_KINDS, "payer")
            currency = validate_currency(currency_code or self.config.default_currency)
        except ValueError as exc:
            raise ValidationError(str(exc), field="payer") from exc

        bank_account = self.accounts.funds_account(business_id, bank_account_id)

        payment = Payment(
            business_id=business_id,
            payment_number=payment_number or self._next_number(business_id),
            payment_date=payment_date or self.clock.today(),
            amount=amount,
            source_type=source_type.value,
            source_id=source_id,
            payer_type=payer.kind.value,
            payer_id=payer.id,
            bank_account_id=bank_account.id,
            payment_method=payment_method.value,
            payment_status=status.value,
            refunded_amount=ZERO,
            currency_code=currency,
            reference=reference,
            notes=notes,
            created_by_id=actor_id,
        )
        self.session.add(payment)
        self.session.flush()

        logger.info(
            "payment_recorded",
            extra={
                "payment_id": str(payment.id),
                "payment_number": payment.payment_number,
                "business_id": str(business_id),
                "amount": amount,
                "source_type": source_type.value,
                "status": status.value,
            },
        )
        return payment

    def mark_completed(self, payment_id: UUID, actor_id: UUID) -> Payment:
        payment = self._lock(payment_id)
        if payment.payment_status != PaymentStatus.PENDING.value:
            raise InvalidStatusTransitionError(
                "Payment", str(payment_id), payment.payment_status, "complete"
            )
        payment.payment_status = PaymentStatus.COMPLETED.value
        payment.updated_by_id = actor_id
        self.session.flush()
        logger.info("payment_completed", extra={"payment_id": str(payment_id)})
        return payment

    def mark_failed(self, payment_id: UUID, reason: str, actor_id: UUID) -> Payment:
        """
        Fail a pending payment that has not been applied to any document.

        Raises:
            InvalidStatusTransitionError: not pending, or already allocated.
        """
        payment = self._lock(payment_id)
        if (
            payment.payment_status != PaymentStatus.PENDING.value
            or payment.allocated_amount > 0
        ):
            raise InvalidStatusTransitionError(
                "Payment", str(payment_id), payment.payment_status, "fail"
            )
        payment.payment_status = PaymentStatus.FAILED.value
        payment.failure_reason = reason
        payment.updated_by_id = actor_id
        self.session.flush()
        logger.warning(
            "payment_failed",
            extra={"payment_id": str(payment_id), "reason": reason},
        )
        return payment

    # Allocation

    def allocate(
        self,
        payment_id: UUID,
        allocations: list[AllocationRequest],
        actor_id: UUID,
    ) -> Payment:
        """
        Apply a payment to documents.

        Raises:
            ValidationError: empty request, bad amount or type, payment not
                allocatable, target cancelled or of an incompatible type.
            NotFoundError: a target document is missing or in another business.
            OverAllocationError: the payment does not cover the request.
            OverpaymentError: a target's paid amount would exceed its total.
        """
        if not allocations:
            raise ValidationError("Nothing to allocate", field="allocations")
        amounts = []
        for index, request in enumerate(allocations):
            amount = self._money(request.amount, f"allocations[{index}].amount")
            if amount <= 0:
                raise ValidationError(
                    "Allocation amounts must be positive", field=f"allocations[{index}].amount"
                )
            if request.allocation_type not in APPLYING_ALLOCATION_TYPES:
                raise ValidationError(
                    f"Cannot allocate with type '{request.allocation_type}'",
                    field=f"allocations[{index}].allocation_type",
                )
            amounts.append(amount)

        payment = self._lock(payment_id)
        if payment.payment_status not in ALLOCATABLE_STATUSES:
            raise InvalidStatusTransitionError(
                "Payment", str(payment_id), payment.payment_status, "allocate"
            )

        requested = sum(amounts, ZERO)
        already_used = payment.allocated_amount + payment.refunded_amount
        if already_used + requested > payment.amount:
            logger.warning(
                "over_allocation_rejected",
                extra={
                    "payment_id": str(payment_id),
                    "payment_amount": payment.amount,
                    "requested": requested,
                    "already_used": already_used,
                },
            )
            raise OverAllocationError(str(payment_id), payment.amount, requested, already_used)

        documents = self.documents.lock_many(
            request.document_id for request in allocations
        )
        compatible = COMPATIBLE_DOCUMENT_TYPES[PaymentSourceType(payment.source_type)]
        for document in documents.values():
            self._check_target(payment, document, compatible)

        bank_account = self.accounts.funds_account(payment.business_id, payment.bank_account_id)
        seq = len(payment.allocations)
        for request, amount in zip(allocations, amounts):
            document = self.documents.apply_payment(
                request.document_id, amount, actor_id, payment.payment_date
            )
            entry = self.journal.post(
                business_id=payment.business_id,
                entry_date=payment.payment_date,
                memo=f"Payment {payment.payment_number} applied to {document.document_number}",
                reference=payment.payment_number,
                lines=self.documents.payment_lines(document, amount, bank_account, payment.payer),
                actor_id=actor_id,
                source=Reference.payment(payment.id),
            )
            payment.allocations.append(
                PaymentAllocation(
                    business_id=payment.business_id,
                    allocation_type=request.allocation_type,
                    source_transaction_id=document.id,
                    document_type=document.document_type,
                    allocated_amount=amount,
                    allocation_seq=seq,
                    journal_entry_id=entry.id,
                    notes=request.notes,
                    created_by_id=actor_id,
                )
            )
            seq += 1

        payment.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "payment_allocated",
            extra={
                "payment_id": str(payment_id),
                "allocated": requested,
                "target_count": len(allocations),
                "unallocated": payment.unallocated_amount,
            },
        )
        return payment

    # Refunds

    def refund(
        self,
        payment_id: UUID,
        actor_id: UUID,
        amount: Decimal | int | str | None = None,
        reason: str | None = None,
    ) -> Payment:
        """
        Return some or all of a completed payment.

        ``amount`` defaults to everything not yet refunded.

        Raises:
            InvalidStatusTransitionError: the payment is not completed.
            ValidationError: non-positive amount or more than is refundable.
        """
        payment = self._lock(payment_id)
        if payment.payment_status != PaymentStatus.COMPLETED.value:
            raise InvalidStatusTransitionError(
                "Payment", str(payment_id), payment.payment_status, "refund"
            )
        refundable = payment.refundable_amount
        amount = refundable if amount is None else self._money(amount, "amount")
        if amount <= 0:
            raise ValidationError("Refund amount must be positive", field="amount")
        if amount > refundable:
            raise ValidationError(
                f"Refund of {amount} exceeds refundable amount {refundable}", field="amount"
            )

        from_unallocated = min(amount, max(payment.unallocated_amount, ZERO))
        plan = self._plan_document_refunds(payment, amount - from_unallocated)
        self.documents.lock_many(plan.keys())

        seq = len(payment.allocations)
        if from_unallocated > 0:
            payment.allocations.append(
                PaymentAllocation(
                    business_id=payment.business_id,
                    allocation_type=AllocationType.REFUND.value,
                    source_transaction_id=payment.id,
                    document_type=None,
                    allocated_amount=from_unallocated,
                    allocation_seq=seq,
                    notes=reason,
                    created_by_id=actor_id,
                )
            )
            seq += 1

        bank_account = self.accounts.funds_account(payment.business_id, payment.bank_account_id)
        for document_id, portion in plan.items():
            document = self.documents.reverse_payment(document_id, portion, actor_id)
            lines = [
                line.mirrored()
                for line in self.documents.payment_lines(
                    document, portion, bank_account, payment.payer
                )
            ]
            entry = self.journal.post(
                business_id=payment.business_id,
                entry_date=self.clock.today(),
                memo=f"Refund of {payment.payment_number} from {document.document_number}"
                + (f": {reason}" if reason else ""),
                reference=payment.payment_number,
                lines=lines,
                actor_id=actor_id,
                source=Reference.payment(payment.id),
            )
            payment.allocations.append(
                PaymentAllocation(
                    business_id=payment.business_id,
                    allocation_type=AllocationType.REFUND.value,
                    source_transaction_id=document.id,
                    document_type=document.document_type,
                    allocated_amount=portion,
                    allocation_seq=seq,
                    journal_entry_id=entry.id,
                    notes=reason,
                    created_by_id=actor_id,
                )
            )
            seq += 1

        payment.refunded_amount = payment.refunded_amount + amount
        if payment.refunded_amount >= payment.amount:
            payment.payment_status = PaymentStatus.REFUNDED.value
        payment.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "payment_refunded",
            extra={
                "payment_id": str(payment_id),
                "amount": amount,
                "from_unallocated": from_unallocated,
                "documents": [str(d) for d in plan],
                "refunded_amount": payment.refunded_amount,
                "status": payment.payment_status,
                "reason": reason,
            },
        )
        return payment

    # Internals

    def _lock(self, payment_id: UUID) -> Payment:
        payment = self.session.execute(
            select(Payment).where(Payment.id == payment_id).with_for_update()
        ).scalar_one_or_none()
        if payment is None or payment.is_deleted:
            raise NotFoundError("Payment", str(payment_id))
        return payment

    def _check_target(self, payment: Payment, document: Document, compatible: frozenset[str]) -> None:
        if document.business_id != payment.business_id:
            raise NotFoundError("Document", str(document.id))
        if document.is_cancelled:
            raise InvalidStatusTransitionError(
                type(document).__name__, str(document.id), document.status, "allocate to"
            )
        if document.document_type not in compatible:
            raise ValidationError(
                f"A {payment.source_type} payment cannot be applied to a "
                f"{document.document_type}",
                field="document_id",
            )

    def _plan_document_refunds(self, payment: Payment, remaining: Decimal) -> "OrderedDict[UUID, Decimal]":
        """
        Split ``remaining`` over the documents the payment still funds,
        latest allocation first.
        """
        net: dict[UUID, Decimal] = {}
        latest: dict[UUID, int] = {}
        for allocation in payment.allocations:
            if allocation.document_type is None:
                continue
            target = allocation.source_transaction_id
            if allocation.allocation_type in APPLYING_ALLOCATION_TYPES:
                net[target] = net.get(target, ZERO) + allocation.allocated_amount
                latest[target] = max(latest.get(target, -1), allocation.allocation_seq)
            elif allocation.allocation_type == AllocationType.REFUND.value:
                net[target] = net.get(target, ZERO) - allocation.allocated_amount

        plan: OrderedDict[UUID, Decimal] = OrderedDict()
        for target in sorted(latest, key=lambda t: latest[t], reverse=True):
            if remaining <= 0:
                break
            portion = min(remaining, net[target])
            if portion > 0:
                plan[target] = portion
                remaining -= portion
        return plan

    def _next_number(self, business_id: UUID) -> str:
        prefix = self.config.document_number_prefixes.get("payment", "PAY")
        count = self.session.execute(
            select(func.count(Payment.id))
            .where(Payment.business_id == business_id)
            .execution_options(include_deleted=True)
        ).scalar_one()
        return f"{prefix}-{count + 1:0{self.config.document_number_width}d}"
