"""
Module: ledger_kernel.models.inventory
Responsibility: ORM persistence for per-(product, location) stock counters and
    the append-only stock-movement log they are derived from.
Architecture position: Kernel > Models.  May import from db/ and domain/
    value objects only.

Invariants enforced:
    - One Inventory row per (business, product, location).
    - on_hand_quantity >= 0 and reserved_quantity >= 0 (ck_inventory_*).
    - available is never stored; it is max(0, on_hand - reserved).
    - StockMovement rows are append-only; only status may change
      (db/immutability.py).

The Inventory row is a materialized cache of the movement log.
InventoryLedger.reconcile() rebuilds it from the Confirmed and
Partially_Fulfilled movements.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.domain.references import Reference


class MovementType(str, Enum):
    """Direction of a stock movement."""

    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"


class MovementStatus(str, Enum):
    """
    Lifecycle status of a stock movement.

    Only CONFIRMED and PARTIALLY_FULFILLED movements count towards on-hand
    when the snapshot is rebuilt from the log.
    """

    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"
    PARTIALLY_FULFILLED = "Partially_Fulfilled"


COUNTED_STATUSES = (MovementStatus.CONFIRMED.value, MovementStatus.PARTIALLY_FULFILLED.value)


def available(on_hand: int, reserved: int) -> int:
    """Units that can still be sold or reserved; never negative."""
    return max(0, on_hand - reserved)


class Inventory(TrackedBase):
    """
    Stock counters for one product at one location.

    Mutated only through InventoryLedger operations, always after the row is
    locked with SELECT ... FOR UPDATE.
    """

    __tablename__ = "inventory"

    __table_args__ = (
        UniqueConstraint(
            "business_id", "product_id", "location_id",
            name="uq_inventory_business_product_location",
        ),
        CheckConstraint("on_hand_quantity >= 0", name="ck_inventory_on_hand_non_negative"),
        CheckConstraint("reserved_quantity >= 0", name="ck_inventory_reserved_non_negative"),
        Index("idx_inventory_business", "business_id"),
    )

    business_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    location_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    on_hand_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reserved_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    reorder_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_stock_level: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Weighted-average cost of the units on hand
    unit_cost: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    last_restocked: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<Inventory product={self.product_id} location={self.location_id} "
            f"on_hand={self.on_hand_quantity} reserved={self.reserved_quantity}>"
        )


class StockMovement(TrackedBase):
    """
    Append-only record of one inventory change.

    ``quantity`` is positive for in/out movements and a signed delta for
    adjustments.  ``confirmed_quantity`` is what the movement contributed to
    on-hand (zero while Pending).
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        Index("idx_stock_movement_item", "business_id", "product_id", "location_id"),
        Index("idx_stock_movement_reference", "reference_type", "reference_id"),
    )

    business_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    location_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    movement_type: Mapped[MovementType] = mapped_column(String(20), nullable=False)
    status: Mapped[MovementStatus] = mapped_column(String(30), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    confirmed_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    unit_cost: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )
    total_cost: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    reference_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<StockMovement {self.movement_type} {self.quantity} "
            f"product={self.product_id} status={self.status}>"
        )

    @property
    def reference(self) -> Reference | None:
        return Reference.from_columns(self.reference_type, self.reference_id)
