"""Tests for LedgerSelector."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import LineSpec
from ledger_kernel.selectors import LedgerSelector


@pytest.fixture
def selector(session):
    return LedgerSelector(session)


@pytest.fixture
def post(journal, business_id, test_actor_id, chart):
    def _post(debit_code, credit_code, amount, entry_date=date(2024, 1, 1), reference=None):
        return journal.post(
            business_id,
            entry_date,
            None,
            reference,
            [
                LineSpec.debit_line(chart[debit_code].id, Decimal(amount)),
                LineSpec.credit_line(chart[credit_code].id, Decimal(amount)),
            ],
            test_actor_id,
        )

    return _post


class TestTrialBalance:
    def test_empty_ledger(self, selector, chart, business_id):
        assert selector.trial_balance(business_id) == []
        assert selector.total_debits_credits(business_id) == (Decimal("0"), Decimal("0"))

    def test_rows_by_code(self, selector, post, business_id):
        post("1000", "4000", "500.00")
        post("5000", "1000", "120.00")

        rows = selector.trial_balance(business_id)
        assert [row.account_code for row in rows] == ["1000", "4000", "5000"]

        cash = rows[0]
        assert cash.debit_total == Decimal("500")
        assert cash.credit_total == Decimal("120")
        assert cash.balance == Decimal("380")
        assert cash.normal_balance == Decimal("380")

        revenue = rows[1]
        assert revenue.balance == Decimal("-500")
        assert revenue.normal_balance == Decimal("500")

    def test_debits_equal_credits(self, selector, post, business_id):
        post("1000", "4000", "500.00")
        post("1200", "2000", "75.25")
        post("6000", "1000", "19.99")

        debits, credits = selector.total_debits_credits(business_id)
        assert debits == credits
        assert debits == Decimal("595.24")

    def test_as_of_date_cutoff(self, selector, post, business_id):
        post("1000", "4000", "100.00", entry_date=date(2024, 1, 1))
        post("1000", "4000", "50.00", entry_date=date(2024, 2, 1))

        rows = selector.trial_balance(business_id, as_of_date=date(2024, 1, 31))
        assert rows[0].debit_total == Decimal("100")

    def test_other_business_excluded(self, selector, post):
        post("1000", "4000", "100.00")
        assert selector.trial_balance(uuid4()) == []


class TestAccountBalance:
    def test_balance_and_count(self, selector, post, chart):
        post("1000", "4000", "100.00")
        post("1000", "4000", "40.00")
        post("6000", "1000", "30.00")

        balance = selector.account_balance(chart["1000"].id)
        assert balance.line_count == 3
        assert balance.balance == Decimal("110")

    def test_unposted_account_is_zero(self, selector, chart):
        balance = selector.account_balance(chart["2100"].id)
        assert balance.balance == Decimal("0")
        assert balance.line_count == 0

    def test_as_of_date(self, selector, post, chart):
        post("1000", "4000", "100.00", entry_date=date(2024, 1, 1))
        post("1000", "4000", "50.00", entry_date=date(2024, 3, 1))

        assert selector.account_balance(chart["1000"].id, as_of_date=date(2024, 2, 1)).balance == Decimal("100")
        assert selector.account_balance(chart["1000"].id).balance == Decimal("150")

    def test_reversal_nets_to_zero(self, selector, post, journal, chart, test_actor_id):
        entry = post("1000", "4000", "100.00")
        journal.reverse(entry.id, test_actor_id, reason="entered twice")

        assert selector.account_balance(chart["1000"].id).balance == Decimal("0")
        assert selector.account_balance(chart["4000"].id).line_count == 2


class TestLinesForAccount:
    def test_lines_in_date_order(self, selector, post, chart):
        post("1000", "4000", "50.00", entry_date=date(2024, 2, 1), reference="FEB")
        post("1000", "4000", "100.00", entry_date=date(2024, 1, 1), reference="JAN")

        lines = selector.lines_for_account(chart["1000"].id)
        assert [line.reference for line in lines] == ["JAN", "FEB"]
        assert lines[0].debit_amount == Decimal("100.00")
        assert lines[0].credit_amount == Decimal("0")

    def test_limit(self, selector, post, chart):
        post("1000", "4000", "50.00", entry_date=date(2024, 2, 1))
        post("1000", "4000", "100.00", entry_date=date(2024, 1, 1))

        lines = selector.lines_for_account(chart["1000"].id, limit=1)
        assert len(lines) == 1
        assert lines[0].entry_date == date(2024, 1, 1)
