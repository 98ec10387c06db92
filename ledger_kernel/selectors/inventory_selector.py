"""
Module: ledger_kernel.selectors.inventory_selector
Responsibility: Read-only stock queries: low stock, out of stock, valuation
    and movement history.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.  MUST NOT import from services/.

available = max(0, on_hand - reserved) is computed here the same way the
Inventory Ledger computes it; it is never read from a column.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.models.inventory import Inventory, StockMovement, available
from ledger_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class StockLevel:
    product_id: UUID
    location_id: UUID
    on_hand: int
    reserved: int
    available: int
    reorder_level: int
    unit_cost: Decimal

    @property
    def value(self) -> Decimal:
        return Decimal(self.on_hand) * self.unit_cost


@dataclass(frozen=True)
class Valuation:
    """Stock value of a business, in total and per location."""

    total: Decimal
    by_location: dict[UUID, Decimal]
    unit_count: int


class InventorySelector(BaseSelector[Inventory]):
    def __init__(self, session: Session):
        super().__init__(session)

    def _rows(self, business_id: UUID, location_id: UUID | None = None) -> list[Inventory]:
        query = select(Inventory).where(Inventory.business_id == business_id)
        if location_id is not None:
            query = query.where(Inventory.location_id == location_id)
        return list(
            self.session.execute(
                query.order_by(Inventory.location_id, Inventory.product_id)
            ).scalars()
        )

    @staticmethod
    def _level(row: Inventory) -> StockLevel:
        return StockLevel(
            product_id=row.product_id,
            location_id=row.location_id,
            on_hand=row.on_hand_quantity,
            reserved=row.reserved_quantity,
            available=available(row.on_hand_quantity, row.reserved_quantity),
            reorder_level=row.reorder_level,
            unit_cost=row.unit_cost or Decimal("0"),
        )

    def stock_levels(self, business_id: UUID, location_id: UUID | None = None) -> list[StockLevel]:
        return [self._level(row) for row in self._rows(business_id, location_id)]

    def low_stock(self, business_id: UUID, location_id: UUID | None = None) -> list[StockLevel]:
        """Rows whose available quantity is at or below the reorder level."""
        return [
            level for level in self.stock_levels(business_id, location_id)
            if level.available <= level.reorder_level
        ]

    def out_of_stock(self, business_id: UUID, location_id: UUID | None = None) -> list[StockLevel]:
        return [
            level for level in self.stock_levels(business_id, location_id)
            if level.available == 0
        ]

    def valuation(self, business_id: UUID) -> Valuation:
        """On-hand quantity valued at weighted-average cost."""
        by_location: dict[UUID, Decimal] = {}
        units = 0
        for level in self.stock_levels(business_id):
            by_location[level.location_id] = (
                by_location.get(level.location_id, Decimal("0")) + level.value
            )
            units += level.on_hand
        return Valuation(
            total=sum(by_location.values(), Decimal("0")),
            by_location=by_location,
            unit_count=units,
        )

    def movement_history(
        self,
        business_id: UUID,
        product_id: UUID,
        location_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[StockMovement]:
        """Movements of a product, newest first."""
        query = select(StockMovement).where(
            StockMovement.business_id == business_id,
            StockMovement.product_id == product_id,
        )
        if location_id is not None:
            query = query.where(StockMovement.location_id == location_id)
        query = query.order_by(StockMovement.created_at.desc(), StockMovement.id)
        if limit is not None:
            query = query.limit(limit)
        return list(self.session.execute(query).scalars())
