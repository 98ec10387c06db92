"""
Tests for InventoryLedger.

Verifies:
- On-hand never drops below zero; a rejected movement writes nothing
- Weighted average cost on receipts, cost carried onto issues
- Pending movements: reservation, full and partial confirmation, cancel
- Reserve / release, including clamping at zero
- bulk_adjust is all-or-nothing
- Reconciliation detects and repairs drift between row and movement log
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from ledger_kernel.domain.dtos import StockAdjustment
from ledger_kernel.domain.references import Reference
from ledger_kernel.exceptions import (
    ImmutabilityViolationError,
    InsufficientStockError,
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)
from ledger_kernel.models.inventory import MovementStatus, MovementType, StockMovement


def _movement_count(session) -> int:
    return session.execute(select(func.count(StockMovement.id))).scalar_one()


class TestMovements:
    def test_in_creates_row(self, inventory, stock_in, business_id, location_id):
        product_id = uuid4()
        movement = stock_in(product_id, 10, unit_cost="5.00")

        row = inventory.get(business_id, product_id, location_id)
        assert row.on_hand_quantity == 10
        assert row.reserved_quantity == 0
        assert row.unit_cost == Decimal("5")
        assert row.last_restocked is not None
        assert movement.status == MovementStatus.CONFIRMED.value
        assert movement.confirmed_quantity == 10
        assert movement.total_cost == Decimal("50.00")

    def test_out_beyond_on_hand_rejected(
        self, session, inventory, stock_in, business_id, location_id, test_actor_id
    ):
        product_id = uuid4()
        stock_in(product_id, 3)

        with pytest.raises(InsufficientStockError) as exc_info:
            inventory.record_movement(
                business_id, product_id, location_id, MovementType.OUT, 5, test_actor_id
            )

        assert exc_info.value.on_hand == 3
        assert exc_info.value.requested == 5
        assert inventory.get(business_id, product_id, location_id).on_hand_quantity == 3
        assert _movement_count(session) == 1

    def test_out_with_no_row_rejected(self, inventory, business_id, location_id, test_actor_id):
        with pytest.raises(InsufficientStockError) as exc_info:
            inventory.record_movement(
                business_id, uuid4(), location_id, "out", 1, test_actor_id
            )
        assert exc_info.value.on_hand == 0

    def test_out_to_exactly_zero(self, inventory, stock_in, business_id, location_id, test_actor_id):
        product_id = uuid4()
        stock_in(product_id, 4)
        inventory.record_movement(business_id, product_id, location_id, "out", 4, test_actor_id)
        assert inventory.get(business_id, product_id, location_id).on_hand_quantity == 0

    def test_weighted_average_cost(self, inventory, stock_in, business_id, location_id):
        product_id = uuid4()
        stock_in(product_id, 10, unit_cost="5.00")
        stock_in(product_id, 10, unit_cost="7.00")
        assert inventory.get(business_id, product_id, location_id).unit_cost == Decimal("6")

    def test_zero_cost_receipt_keeps_average(self, inventory, stock_in, business_id, location_id):
        product_id = uuid4()
        stock_in(product_id, 10, unit_cost="5.00")
        stock_in(product_id, 10)
        assert inventory.get(business_id, product_id, location_id).unit_cost == Decimal("5")

    def test_out_carries_average_cost(
        self, inventory, stock_in, business_id, location_id, test_actor_id
    ):
        product_id = uuid4()
        stock_in(product_id, 10, unit_cost="4.50")
        movement = inventory.record_movement(
            business_id, product_id, location_id, MovementType.OUT, 2, test_actor_id
        )
        assert movement.unit_cost == Decimal("4.50")
        assert movement.total_cost == Decimal("9.00")

    def test_signed_adjustment(self, inventory, stock_in, business_id, location_id, test_actor_id):
        product_id = uuid4()
        stock_in(product_id, 5)
        inventory.record_movement(
            business_id, product_id, location_id, MovementType.ADJUSTMENT, -2, test_actor_id
        )
        assert inventory.get(business_id, product_id, location_id).on_hand_quantity == 3

        with pytest.raises(InsufficientStockError):
            inventory.record_movement(
                business_id, product_id, location_id, MovementType.ADJUSTMENT, -10, test_actor_id
            )

    @pytest.mark.parametrize("quantity", [0, -1, True, 1.5])
    def test_bad_quantity(self, inventory, business_id, location_id, test_actor_id, quantity):
        with pytest.raises(ValidationError):
            inventory.record_movement(
                business_id, uuid4(), location_id, MovementType.IN, quantity, test_actor_id
            )

    def test_unknown_movement_type(self, inventory, business_id, location_id, test_actor_id):
        with pytest.raises(ValidationError):
            inventory.record_movement(business_id, uuid4(), location_id, "transfer", 1, test_actor_id)

    def test_pending_adjustment_rejected(self, inventory, business_id, location_id, test_actor_id):
        with pytest.raises(ValidationError, match="Adjustments cannot be Pending"):
            inventory.record_movement(
                business_id, uuid4(), location_id, MovementType.ADJUSTMENT, 1, test_actor_id,
                status=MovementStatus.PENDING,
            )

    def test_reference_kind_restricted(self, inventory, business_id, location_id, test_actor_id):
        with pytest.raises(ValidationError, match="cannot reference a 'invoice'"):
            inventory.record_movement(
                business_id, uuid4(), location_id, MovementType.IN, 1, test_actor_id,
                reference=Reference.invoice(uuid4()),
            )

    def test_movements_for_reference(
        self, inventory, business_id, location_id, test_actor_id
    ):
        purchase = Reference.purchase(uuid4())
        first = inventory.record_movement(
            business_id, uuid4(), location_id, MovementType.IN, 1, test_actor_id, reference=purchase
        )
        assert [m.id for m in inventory.movements_for(purchase)] == [first.id]

    def test_rejection_is_logged(
        self, inventory, business_id, location_id, test_actor_id, captured_logs
    ):
        with pytest.raises(InsufficientStockError):
            inventory.record_movement(business_id, uuid4(), location_id, "out", 1, test_actor_id)
        assert any(r["message"] == "insufficient_stock" for r in captured_logs())


class TestPendingMovements:
    def test_pending_out_reserves(self, inventory, stock_in, business_id, location_id, test_actor_id):
        product_id = uuid4()
        stock_in(product_id, 10)
        movement = inventory.record_movement(
            business_id, product_id, location_id, MovementType.OUT, 4, test_actor_id,
            status=MovementStatus.PENDING,
        )

        row = inventory.get(business_id, product_id, location_id)
        assert movement.confirmed_quantity == 0
        assert row.on_hand_quantity == 10
        assert row.reserved_quantity == 4
        assert inventory.get_available(row) == 6

    def test_pending_out_limited_by_available(
        self, inventory, stock_in, business_id, location_id, test_actor_id
    ):
        product_id = uuid4()
        stock_in(product_id, 5)
        inventory.reserve(business_id, product_id, location_id, 3, test_actor_id)

        with pytest.raises(InsufficientStockError) as exc_info:
            inventory.record_movement(
                business_id, product_id, location_id, MovementType.OUT, 3, test_actor_id,
                status=MovementStatus.PENDING,
            )
        assert exc_info.value.on_hand == 2

    def test_partial_then_full_confirmation(
        self, inventory, stock_in, business_id, location_id, test_actor_id
    ):
        product_id = uuid4()
        stock_in(product_id, 10)
        movement = inventory.record_movement(
            business_id, product_id, location_id, MovementType.OUT, 4, test_actor_id,
            status=MovementStatus.PENDING,
        )

        inventory.confirm_movement(movement.id, test_actor_id, quantity=1)
        row = inventory.get(business_id, product_id, location_id)
        assert movement.status == MovementStatus.PARTIALLY_FULFILLED.value
        assert (row.on_hand_quantity, row.reserved_quantity) == (9, 3)

        inventory.confirm_movement(movement.id, test_actor_id)
        assert movement.status == MovementStatus.CONFIRMED.value
        assert movement.confirmed_quantity == 4
        assert (row.on_hand_quantity, row.reserved_quantity) == (6, 0)

    def test_confirm_more_than_outstanding(
        self, inventory, stock_in, business_id, location_id, test_actor_id
    ):
        product_id = uuid4()
        stock_in(product_id, 10)
        movement = inventory.record_movement(
            business_id, product_id, location_id, MovementType.OUT, 2, test_actor_id,
            status=MovementStatus.PENDING,
        )
        with pytest.raises(ValidationError, match="only 2 outstanding"):
            inventory.confirm_movement(movement.id, test_actor_id, quantity=3)

    def test_pending_in_applies_on_confirm(
        self, inventory, business_id, location_id, test_actor_id
    ):
        product_id = uuid4()
        movement = inventory.record_movement(
            business_id, product_id, location_id, MovementType.IN, 6, test_actor_id,
            unit_cost="2.00", status=MovementStatus.PENDING,
        )
        assert inventory.get(business_id, product_id, location_id).on_hand_quantity == 0

        inventory.confirm_movement(movement.id, test_actor_id)
        row = inventory.get(business_id, product_id, location_id)
        assert row.on_hand_quantity == 6
        assert row.unit_cost == Decimal("2")

    def test_confirming_confirmed_movement_rejected(
        self, inventory, stock_in, test_actor_id
    ):
        movement = stock_in(uuid4(), 1)
        with pytest.raises(InvalidStatusTransitionError):
            inventory.confirm_movement(movement.id, test_actor_id)

    def test_cancel_releases_reservation(
        self, inventory, stock_in, business_id, location_id, test_actor_id
    ):
        product_id = uuid4()
        stock_in(product_id, 10)
        movement = inventory.record_movement(
            business_id, product_id, location_id, MovementType.OUT, 4, test_actor_id,
            status=MovementStatus.PENDING,
        )

        inventory.cancel_movement(movement.id, test_actor_id)
        row = inventory.get(business_id, product_id, location_id)
        assert movement.status == MovementStatus.CANCELLED.value
        assert (row.on_hand_quantity, row.reserved_quantity) == (10, 0)

        with pytest.raises(InvalidStatusTransitionError):
            inventory.cancel_movement(movement.id, test_actor_id)

    def test_unknown_movement(self, inventory, session, test_actor_id):
        with pytest.raises(NotFoundError):
            inventory.confirm_movement(uuid4(), test_actor_id)

    def test_movement_fields_are_immutable(self, session, stock_in):
        movement = stock_in(uuid4(), 3)
        movement.quantity = 30
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestReservations:
    def test_reserve_and_release(self, inventory, stock_in, business_id, location_id, test_actor_id):
        product_id = uuid4()
        stock_in(product_id, 10)

        row = inventory.reserve(business_id, product_id, location_id, 4, test_actor_id)
        assert row.reserved_quantity == 4

        with pytest.raises(ValidationError, match="only 6 available"):
            inventory.reserve(business_id, product_id, location_id, 7, test_actor_id)

        row = inventory.release(business_id, product_id, location_id, 10, test_actor_id)
        assert row.reserved_quantity == 0

    def test_reserve_without_stock(self, inventory, business_id, location_id, test_actor_id):
        with pytest.raises(ValidationError, match="only 0 available"):
            inventory.reserve(business_id, uuid4(), location_id, 1, test_actor_id)

    def test_release_without_row(self, inventory, business_id, location_id, test_actor_id):
        with pytest.raises(NotFoundError):
            inventory.release(business_id, uuid4(), location_id, 1, test_actor_id)


class TestBulkAdjust:
    def test_all_or_nothing(self, session, inventory, stock_in, business_id, location_id, test_actor_id):
        product_a, product_b = uuid4(), uuid4()
        stock_in(product_a, 5)
        stock_in(product_b, 1)

        with pytest.raises(InsufficientStockError):
            inventory.bulk_adjust(
                business_id,
                [
                    StockAdjustment(product_a, location_id, -2),
                    StockAdjustment(product_b, location_id, -3),
                ],
                test_actor_id,
            )

        assert inventory.get(business_id, product_a, location_id).on_hand_quantity == 5
        assert inventory.get(business_id, product_b, location_id).on_hand_quantity == 1
        assert _movement_count(session) == 2

    def test_applies_batch(self, inventory, stock_in, business_id, location_id, test_actor_id):
        product_a, product_c = uuid4(), uuid4()
        stock_in(product_a, 5)

        movements = inventory.bulk_adjust(
            business_id,
            [
                StockAdjustment(product_a, location_id, -2, notes="damaged"),
                StockAdjustment(product_c, location_id, 4, notes="found in count"),
            ],
            test_actor_id,
            reference=Reference.adjustment(uuid4()),
        )

        assert [m.quantity for m in movements] == [-2, 4]
        assert all(m.movement_type == MovementType.ADJUSTMENT.value for m in movements)
        assert inventory.get(business_id, product_a, location_id).on_hand_quantity == 3
        assert inventory.get(business_id, product_c, location_id).on_hand_quantity == 4

    def test_net_delta_with_new_row_in_between(self, inventory, stock_in, business_id,
                                               location_id, test_actor_id):
        existing, new = uuid4(), uuid4()
        stock_in(existing, 2)

        inventory.bulk_adjust(
            business_id,
            [
                StockAdjustment(existing, location_id, -3),
                StockAdjustment(new, location_id, 1),
                StockAdjustment(existing, location_id, 5),
            ],
            test_actor_id,
        )

        assert inventory.get(business_id, existing, location_id).on_hand_quantity == 4
        assert inventory.get(business_id, new, location_id).on_hand_quantity == 1
        assert all(r.is_consistent for r in inventory.reconcile(business_id))

    def test_empty_batch(self, inventory, business_id, test_actor_id):
        with pytest.raises(ValidationError, match="No adjustments"):
            inventory.bulk_adjust(business_id, [], test_actor_id)

    def test_zero_delta(self, inventory, business_id, location_id, test_actor_id):
        with pytest.raises(ValidationError, match="non-zero"):
            inventory.bulk_adjust(
                business_id, [StockAdjustment(uuid4(), location_id, 0)], test_actor_id
            )


class TestLevels:
    def test_set_levels_creates_row(self, inventory, business_id, location_id, test_actor_id):
        row = inventory.set_levels(
            business_id, uuid4(), location_id, test_actor_id, reorder_level=5, max_stock_level=50
        )
        assert (row.on_hand_quantity, row.reorder_level, row.max_stock_level) == (0, 5, 50)

    def test_max_below_reorder_rejected(self, inventory, business_id, location_id, test_actor_id):
        product_id = uuid4()
        inventory.set_levels(business_id, product_id, location_id, test_actor_id, reorder_level=10)
        with pytest.raises(ValidationError, match="below reorder_level"):
            inventory.set_levels(
                business_id, product_id, location_id, test_actor_id, max_stock_level=5
            )

    def test_negative_reorder_rejected(self, inventory, business_id, location_id, test_actor_id):
        with pytest.raises(ValidationError):
            inventory.set_levels(business_id, uuid4(), location_id, test_actor_id, reorder_level=-1)

    @pytest.mark.parametrize("field", ["reorder_level", "max_stock_level"])
    @pytest.mark.parametrize("value", [-1, True, "5", 2.5])
    def test_levels_validated_alike(self, inventory, business_id, location_id, test_actor_id,
                                    field, value):
        with pytest.raises(ValidationError) as exc_info:
            inventory.set_levels(business_id, uuid4(), location_id, test_actor_id, **{field: value})
        assert exc_info.value.field == field


class TestReconcile:
    def test_consistent_books(self, inventory, stock_in, business_id, location_id, test_actor_id):
        product_id = uuid4()
        stock_in(product_id, 10)
        movement = inventory.record_movement(
            business_id, product_id, location_id, MovementType.OUT, 4, test_actor_id,
            status=MovementStatus.PENDING,
        )
        inventory.confirm_movement(movement.id, test_actor_id, quantity=1)

        report = inventory.reconcile(business_id)
        assert len(report) == 1
        assert report[0].is_consistent
        assert report[0].log_on_hand == 9

    def test_detect_and_apply_drift(
        self, session, inventory, stock_in, business_id, location_id, test_actor_id, captured_logs
    ):
        product_id = uuid4()
        stock_in(product_id, 10)
        row = inventory.get(business_id, product_id, location_id)
        row.on_hand_quantity = 7
        session.flush()

        report = inventory.reconcile(business_id)
        assert report[0].drift == -3
        assert row.on_hand_quantity == 7
        assert any(r["message"] == "inventory_drift_detected" for r in captured_logs())

        inventory.reconcile(business_id, test_actor_id, apply=True)
        assert row.on_hand_quantity == 10
        assert inventory.reconcile(business_id)[0].is_consistent

    def test_apply_requires_actor(self, inventory, business_id):
        with pytest.raises(ValidationError, match="actor_id"):
            inventory.reconcile(business_id, apply=True)

    def test_filtered_by_product(self, inventory, stock_in, business_id):
        product_a, product_b = uuid4(), uuid4()
        stock_in(product_a, 1)
        stock_in(product_b, 2)
        report = inventory.reconcile(business_id, product_id=product_b)
        assert [r.product_id for r in report] == [product_b]
