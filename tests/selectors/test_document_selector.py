"""Tests for DocumentSelector."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.references import Reference
from ledger_kernel.selectors import DocumentSelector

TODAY = date(2024, 3, 1)


@pytest.fixture
def selector(session):
    return DocumentSelector(session)


@pytest.fixture
def new_invoice(documents, make_header, make_item, business_id, test_actor_id):
    def _new_invoice(amount="100.00", **header):
        return documents.create_with_lines(
            business_id, "invoice", make_header(**header), [make_item(None, 1, amount)], test_actor_id
        )

    return _new_invoice


class TestOpenDocuments:
    def test_open_and_overdue(self, selector, new_invoice, business_id):
        late = new_invoice(due_date=date(2024, 2, 20))
        new_invoice(due_date=date(2024, 3, 10))

        open_docs = selector.open_documents(business_id, TODAY)
        assert len(open_docs) == 2

        [overdue] = selector.overdue(business_id, TODAY)
        assert overdue.document_id == late.id
        assert overdue.days_overdue == 10
        assert overdue.balance_due == Decimal("100.00")

    def test_no_due_date_is_never_overdue(self, selector, new_invoice, business_id):
        new_invoice()
        [doc] = selector.open_documents(business_id, TODAY)
        assert doc.days_overdue == 0
        assert selector.overdue(business_id, TODAY) == []

    def test_part_paid_stays_open(self, selector, chart, documents, new_invoice, business_id,
                                  test_actor_id):
        invoice = new_invoice("100.00")
        documents.receive_payment(invoice.id, "40.00", test_actor_id)

        [doc] = selector.open_documents(business_id, TODAY)
        assert doc.balance_due == Decimal("60.00")

        documents.receive_payment(invoice.id, "60.00", test_actor_id)
        assert selector.open_documents(business_id, TODAY) == []

    def test_cancelled_excluded(self, selector, documents, new_invoice, business_id, test_actor_id):
        invoice = new_invoice()
        documents.cancel(invoice.id, "duplicate", test_actor_id)
        assert selector.open_documents(business_id, TODAY) == []

    def test_filter_by_type(self, selector, documents, make_header, make_item, new_invoice,
                            business_id, test_actor_id):
        new_invoice()
        documents.create_with_lines(
            business_id, "expense",
            make_header(party=Reference.employee(uuid4()), location_id=None),
            [make_item(None, 1, "20.00")], test_actor_id,
        )

        assert len(selector.open_documents(business_id, TODAY)) == 2
        [expense] = selector.open_documents(business_id, TODAY, document_type="expense")
        assert expense.document_number == "EXP-000001"


class TestReceivables:
    def test_receivables_grouped_by_customer(self, selector, new_invoice, business_id, customer):
        other = Reference.customer(uuid4())
        new_invoice("100.00")
        new_invoice("50.00")
        new_invoice("30.00", party=other)

        totals = selector.receivables_by_party(business_id)
        assert totals == {customer.id: Decimal("150.00"), other.id: Decimal("30.00")}

    def test_expenses_are_not_receivables(self, selector, documents, make_header, make_item,
                                          business_id, test_actor_id):
        documents.create_with_lines(
            business_id, "expense",
            make_header(party=Reference.employee(uuid4()), location_id=None),
            [make_item(None, 1, "20.00")], test_actor_id,
        )
        assert selector.receivables_by_party(business_id) == {}


class TestPaymentSummary:
    def test_counts_and_amounts_by_status(self, selector, chart, payments, business_id, customer,
                                          test_actor_id):
        for amount, status in (("100.00", "completed"), ("50.00", "completed"), ("25.00", "pending")):
            payments.record_payment(
                business_id, Decimal(amount), source_type="sales", payer=customer,
                bank_account_id=chart["1010"].id, actor_id=test_actor_id, status=status,
            )

        summary = selector.payment_summary(business_id)
        assert summary.counts["completed"] == 2
        assert summary.counts["pending"] == 1
        assert summary.counts["failed"] == 0
        assert summary.amounts["completed"] == Decimal("150.00")
        assert summary.total_count == 3

    def test_empty_summary(self, selector, business_id):
        summary = selector.payment_summary(business_id)
        assert summary.total_count == 0
        assert set(summary.counts) == {"pending", "completed", "failed", "cancelled", "refunded"}
