"""Tests for InventorySelector."""

from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.models.inventory import MovementType
from ledger_kernel.selectors import InventorySelector


@pytest.fixture
def selector(session):
    return InventorySelector(session)


class TestStockLevels:
    def test_levels_reflect_reservations(
        self, selector, inventory, stock_in, business_id, location_id, test_actor_id
    ):
        product_id = uuid4()
        stock_in(product_id, 10, "4.00")
        inventory.reserve(business_id, product_id, location_id, 3, test_actor_id)

        [level] = selector.stock_levels(business_id)
        assert level.on_hand == 10
        assert level.reserved == 3
        assert level.available == 7
        assert level.value == Decimal("40")

    def test_filter_by_location(self, selector, stock_in, business_id, location_id):
        other_location = uuid4()
        stock_in(uuid4(), 5, location=location_id)
        stock_in(uuid4(), 5, location=other_location)

        levels = selector.stock_levels(business_id, location_id=other_location)
        assert [level.location_id for level in levels] == [other_location]

    def test_other_business_excluded(self, selector, stock_in):
        stock_in(uuid4(), 5)
        assert selector.stock_levels(uuid4()) == []


class TestLowAndOutOfStock:
    def test_low_stock_uses_available(
        self, selector, inventory, stock_in, business_id, location_id, test_actor_id
    ):
        product_id = uuid4()
        stock_in(product_id, 10)
        inventory.set_levels(business_id, product_id, location_id, test_actor_id, reorder_level=5)
        assert selector.low_stock(business_id) == []

        inventory.reserve(business_id, product_id, location_id, 5, test_actor_id)
        [level] = selector.low_stock(business_id)
        assert level.product_id == product_id
        assert level.available == 5

    def test_out_of_stock(
        self, selector, inventory, stock_in, business_id, location_id, test_actor_id
    ):
        sold_out = uuid4()
        in_stock = uuid4()
        stock_in(sold_out, 2)
        stock_in(in_stock, 2)
        inventory.record_movement(
            business_id, sold_out, location_id, MovementType.OUT, 2, test_actor_id
        )

        assert [level.product_id for level in selector.out_of_stock(business_id)] == [sold_out]

    def test_fully_reserved_counts_as_out_of_stock(
        self, selector, inventory, stock_in, business_id, location_id, test_actor_id
    ):
        product_id = uuid4()
        stock_in(product_id, 4)
        inventory.reserve(business_id, product_id, location_id, 4, test_actor_id)

        [level] = selector.out_of_stock(business_id)
        assert level.on_hand == 4


class TestValuation:
    def test_weighted_average_valuation(self, selector, stock_in, business_id, location_id):
        product_id = uuid4()
        stock_in(product_id, 10, "4.00")
        stock_in(product_id, 10, "6.00")

        valuation = selector.valuation(business_id)
        assert valuation.unit_count == 20
        assert valuation.total == Decimal("100")
        assert valuation.by_location == {location_id: Decimal("100")}

    def test_valuation_by_location(self, selector, stock_in, business_id, location_id):
        warehouse = uuid4()
        stock_in(uuid4(), 3, "10.00", location=location_id)
        stock_in(uuid4(), 2, "2.50", location=warehouse)

        valuation = selector.valuation(business_id)
        assert valuation.total == Decimal("35")
        assert valuation.by_location[location_id] == Decimal("30")
        assert valuation.by_location[warehouse] == Decimal("5")

    def test_empty_valuation(self, selector, business_id):
        valuation = selector.valuation(business_id)
        assert valuation.total == Decimal("0")
        assert valuation.by_location == {}
        assert valuation.unit_count == 0


class TestMovementHistory:
    def test_history_for_product(
        self, selector, inventory, stock_in, business_id, location_id, test_actor_id
    ):
        product_id = uuid4()
        stock_in(product_id, 10)
        inventory.record_movement(
            business_id, product_id, location_id, MovementType.OUT, 4, test_actor_id
        )
        stock_in(uuid4(), 1)

        history = selector.movement_history(business_id, product_id)
        assert sorted(m.movement_type for m in history) == ["in", "out"]
        assert {m.product_id for m in history} == {product_id}

    def test_limit_and_location(self, selector, stock_in, business_id, location_id):
        product_id = uuid4()
        stock_in(product_id, 1)
        stock_in(product_id, 1)
        stock_in(product_id, 1, location=uuid4())

        assert len(selector.movement_history(business_id, product_id)) == 3
        assert len(selector.movement_history(business_id, product_id, limit=2)) == 2
        assert len(selector.movement_history(business_id, product_id, location_id=location_id)) == 2
