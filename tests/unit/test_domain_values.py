"""Unit tests for the pure domain layer: references, DTOs, clock, keys."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.dtos import AccountNode, LineSpec, ReconciliationRow
from ledger_kernel.domain.references import PARTY_KINDS, Reference, ReferenceKind
from ledger_kernel.models.documents import DocumentStatus
from ledger_kernel.models.inventory import available
from ledger_kernel.services.document_engine import status_for
from ledger_kernel.utils.idempotency import (
    document_idempotency_key,
    generate_idempotency_key,
    parse_idempotency_key,
)


class TestReference:
    def test_str_and_parse(self):
        ref = Reference.invoice(uuid4())
        assert Reference.parse(str(ref)) == ref

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError, match="Invalid reference"):
            Reference.parse("invoice-without-id")

    def test_kind_must_be_enum(self):
        with pytest.raises(ValueError, match="ReferenceKind"):
            Reference("customer", uuid4())

    def test_id_must_be_uuid(self):
        with pytest.raises(ValueError, match="UUID"):
            Reference(ReferenceKind.CUSTOMER, "not-a-uuid")

    def test_require_kind(self):
        customer = Reference.customer(uuid4())
        assert customer.require_kind(PARTY_KINDS, "payer") is customer
        with pytest.raises(ValueError, match="payer reference cannot point at 'sale'"):
            Reference.sale(uuid4()).require_kind(PARTY_KINDS, "payer")

    def test_from_columns(self):
        ref_id = uuid4()
        assert Reference.from_columns("vendor", ref_id) == Reference.vendor(ref_id)
        assert Reference.from_columns(None, ref_id) is None
        assert Reference.from_columns("vendor", None) is None


class TestLineSpec:
    def test_mirrored_swaps_sides(self):
        account_id = uuid4()
        related = Reference.customer(uuid4())
        line = LineSpec.debit_line(account_id, Decimal("10"), "cash", related)
        mirror = line.mirrored()
        assert mirror.debit == Decimal("0")
        assert mirror.credit == Decimal("10")
        assert mirror.related == related
        assert mirror.mirrored() == line


class TestAccountNode:
    def test_walk_is_depth_first_in_child_order(self):
        def node(code, *children):
            return AccountNode(uuid4(), code, code, "asset", True, None, list(children))

        tree = node("1", node("10", node("100")), node("11"))
        assert [n.code for n in tree.walk()] == ["1", "10", "100", "11"]


class TestReconciliationRow:
    def test_drift(self):
        row = ReconciliationRow(None, uuid4(), uuid4(), snapshot_on_hand=7, log_on_hand=5)
        assert row.drift == 2
        assert not row.is_consistent


class TestDerivedValues:
    @pytest.mark.parametrize(
        "on_hand, reserved, expected",
        [(10, 3, 7), (3, 3, 0), (2, 5, 0), (0, 0, 0)],
    )
    def test_available_never_negative(self, on_hand, reserved, expected):
        assert available(on_hand, reserved) == expected

    @pytest.mark.parametrize(
        "paid, total, expected",
        [
            ("0", "100", DocumentStatus.PENDING),
            ("40", "100", DocumentStatus.PART_PAYMENT),
            ("100", "100", DocumentStatus.PAID),
            ("0", "0", DocumentStatus.PAID),
        ],
    )
    def test_status_for(self, paid, total, expected):
        assert status_for(Decimal(paid), Decimal(total)) == expected


class TestDeterministicClock:
    def test_fixed_until_advanced(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now()
        clock.advance_days(2)
        assert clock.today().isoformat() == "2024-01-03"

    def test_set_time(self):
        clock = DeterministicClock()
        clock.advance(30)
        clock.set_time(datetime(2025, 6, 1, tzinfo=timezone.utc))
        assert clock.now() == datetime(2025, 6, 1, tzinfo=timezone.utc)


class TestIdempotencyKeys:
    def test_round_trip(self):
        key = generate_idempotency_key("journal", "entry.reversed", "abc")
        assert parse_idempotency_key(key) == ("journal", "entry.reversed", "abc")

    def test_parse_rejects_short_keys(self):
        with pytest.raises(ValueError):
            parse_idempotency_key("journal:abc")

    def test_document_key_is_scoped_by_business_and_type(self):
        business_id = uuid4()
        sale_key = document_idempotency_key("sale", business_id, "SAL-000001")
        assert sale_key == f"sales:sale.recorded:{business_id}/SAL-000001"
        assert document_idempotency_key("invoice", business_id, "SAL-000001") != sale_key
        assert document_idempotency_key("sale", uuid4(), "SAL-000001") != sale_key
