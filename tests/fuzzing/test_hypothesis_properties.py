"""
Property-based tests using Hypothesis.

Properties checked against the real engines:
- Every posted entry leaves total debits equal to total credits
- Any line set whose sides differ is rejected
- Stock on hand never goes negative and always matches the movement log
- A payment is never allocated beyond its amount

Function-scoped fixtures are shared across the examples of one test, so each
example works on fresh product ids or payments instead of relying on cleanup.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, assume, given, settings
from hypothesis import strategies as st

from ledger_kernel.db.types import round_money, to_money
from ledger_kernel.domain.dtos import AllocationRequest, LineSpec
from ledger_kernel.exceptions import (
    ImbalancedEntryError,
    InsufficientStockError,
    OverAllocationError,
)
from ledger_kernel.models.inventory import MovementType
from ledger_kernel.selectors import LedgerSelector

ENTRY_DATE = date(2024, 1, 1)

DB_SETTINGS = settings(
    max_examples=40,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)

amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("99999.99"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


class TestMoneyProperties:
    @given(value=st.decimals(allow_nan=False, allow_infinity=False, min_value=-10**9, max_value=10**9))
    @settings(max_examples=200)
    def test_round_money_is_idempotent(self, value):
        once = round_money(value)
        assert round_money(once) == once
        assert abs(once - value) <= Decimal("0.005")

    @given(value=st.integers(min_value=-10**12, max_value=10**12))
    def test_integers_are_exact(self, value):
        assert to_money(value) == Decimal(value)


class TestJournalProperties:
    @given(debits=st.lists(amounts, min_size=1, max_size=8))
    @DB_SETTINGS
    def test_posted_entries_balance(self, session, chart, journal, business_id, test_actor_id, debits):
        total = sum(debits, Decimal("0"))
        lines = [LineSpec.debit_line(chart["1000"].id, amount) for amount in debits]
        lines.append(LineSpec.credit_line(chart["4000"].id, total))

        entry = journal.post(business_id, ENTRY_DATE, None, None, lines, test_actor_id)

        assert entry.total_debits == entry.total_credits == total
        debit_sum, credit_sum = LedgerSelector(session).total_debits_credits(business_id)
        assert debit_sum == credit_sum

    @given(debit=amounts, credit=amounts)
    @DB_SETTINGS
    def test_unbalanced_lines_rejected(self, chart, journal, business_id, test_actor_id, debit, credit):
        assume(debit != credit)
        lines = [
            LineSpec.debit_line(chart["1000"].id, debit),
            LineSpec.credit_line(chart["4000"].id, credit),
        ]
        with pytest.raises(ImbalancedEntryError):
            journal.post(business_id, ENTRY_DATE, None, None, lines, test_actor_id)


movements = st.lists(
    st.tuples(st.sampled_from([MovementType.IN, MovementType.OUT]), st.integers(min_value=1, max_value=50)),
    min_size=1,
    max_size=15,
)


class TestInventoryProperties:
    @given(steps=movements)
    @DB_SETTINGS
    def test_stock_never_negative_and_matches_log(
        self, inventory, business_id, location_id, test_actor_id, steps
    ):
        product_id = uuid4()
        expected = 0
        for movement_type, quantity in steps:
            if movement_type == MovementType.OUT and quantity > expected:
                with pytest.raises(InsufficientStockError):
                    inventory.record_movement(
                        business_id, product_id, location_id, movement_type, quantity, test_actor_id
                    )
                continue
            inventory.record_movement(
                business_id, product_id, location_id, movement_type, quantity, test_actor_id
            )
            expected += quantity if movement_type == MovementType.IN else -quantity

        row = inventory.get(business_id, product_id, location_id)
        assert (row.on_hand_quantity if row else 0) == expected
        for report in inventory.reconcile(business_id, product_id=product_id):
            assert report.is_consistent


class TestAllocationProperties:
    @given(
        payment_amount=amounts,
        requests=st.lists(amounts, min_size=1, max_size=6),
    )
    @DB_SETTINGS
    def test_never_over_allocated(
        self, chart, documents, payments, make_header, make_item,
        business_id, customer, test_actor_id, payment_amount, requests,
    ):
        invoice = documents.create_with_lines(
            business_id, "invoice", make_header(), [make_item(None, 1, "1000000.00")], test_actor_id
        )
        payment = payments.record_payment(
            business_id, payment_amount, source_type="sales", payer=customer,
            bank_account_id=chart["1010"].id, actor_id=test_actor_id,
        )

        applied = Decimal("0")
        for amount in requests:
            if applied + amount > payment_amount:
                with pytest.raises(OverAllocationError):
                    payments.allocate(payment.id, [AllocationRequest(invoice.id, amount)], test_actor_id)
                continue
            payments.allocate(payment.id, [AllocationRequest(invoice.id, amount)], test_actor_id)
            applied += amount

        assert payment.allocated_amount == applied
        assert payment.unallocated_amount == payment_amount - applied
        assert invoice.paid_amount == applied
