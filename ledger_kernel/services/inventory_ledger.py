"""
InventoryLedger -- stock counters plus the append-only movement log.

Responsibility:
    Every change to an Inventory row goes through this service: movements
    (in, out, adjustment), reservations, bulk adjustments and the
    reconciliation that rebuilds counters from the movement log.

Architecture position:
    Kernel > Services.  Depends on storage only.  Called by the Document
    Engine (stock for documents) and the Transaction Orchestrator.

Invariants enforced:
    - on_hand_quantity >= 0 always.  A movement that would drive it below
      zero raises InsufficientStockError and writes nothing.
    - reserved_quantity >= 0; release() clamps at zero.
    - available = max(0, on_hand - reserved), computed, never stored.
    - Rows are locked (SELECT ... FOR UPDATE) before any read-then-write.
      bulk_adjust() locks every affected row in id order before mutating
      any of them.
    - The Inventory row always equals the sum of Confirmed and
      Partially_Fulfilled movements; reconcile() verifies and repairs this.

Pending movements:
    A Pending ``out`` reserves its quantity instead of consuming it; a
    Pending ``in`` is an expected receipt and changes nothing.  Both are
    applied to on-hand when confirmed (fully or partially).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, func, or_, select

from ledger_kernel.domain.dtos import ReconciliationRow, StockAdjustment
from ledger_kernel.domain.references import MOVEMENT_SOURCE_KINDS, Reference
from ledger_kernel.exceptions import (
    InsufficientStockError,
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.inventory import (
    COUNTED_STATUSES,
    Inventory,
    MovementStatus,
    MovementType,
    StockMovement,
    available,
)
from ledger_kernel.services.base import BaseService

logger = get_logger("services.inventory_ledger")

ZERO = Decimal("0")

# Storage scale of Numeric(38, 9)
COST_QUANTUM = Decimal("0.000000001")


def _check_quantity(quantity, field: str = "quantity", allow_negative: bool = False) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(f"{field} must be an integer, got {quantity!r}", field=field)
    if allow_negative:
        if quantity == 0:
            raise ValidationError(f"{field} must be non-zero", field=field)
    elif quantity <= 0:
        raise ValidationError(f"{field} must be positive, got {quantity}", field=field)
    return quantity


def _check_level(level, field: str) -> int | None:
    if level is None:
        return None
    if isinstance(level, bool) or not isinstance(level, int):
        raise ValidationError(f"{field} must be an integer, got {level!r}", field=field)
    if level < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    return level


class InventoryLedger(BaseService[Inventory]):
    """
    Inventory counters and movement log.

    Contract:
        Every method that writes locks the affected Inventory row(s) first
        and validates before mutating, so a raised error leaves the rows as
        they were.
    """

    # Reads

    @staticmethod
    def get_available(inventory: Inventory) -> int:
        """Units that can be sold or reserved: max(0, on_hand - reserved)."""
        return available(inventory.on_hand_quantity, inventory.reserved_quantity)

    def get(self, business_id: UUID, product_id: UUID, location_id: UUID) -> Inventory | None:
        return self.session.execute(
            select(Inventory).where(
                Inventory.business_id == business_id,
                Inventory.product_id == product_id,
                Inventory.location_id == location_id,
            )
        ).scalar_one_or_none()

    def get_movement(self, movement_id: UUID) -> StockMovement:
        movement = self.session.get(StockMovement, movement_id)
        if movement is None:
            raise NotFoundError("StockMovement", str(movement_id))
        return movement

    def movements_for(self, reference: Reference) -> list[StockMovement]:
        """Movements recorded against ``reference``, oldest first."""
        return list(
            self.session.execute(
                select(StockMovement)
                .where(
                    StockMovement.reference_type == reference.kind.value,
                    StockMovement.reference_id == reference.id,
                )
                .order_by(StockMovement.created_at, StockMovement.id)
            ).scalars()
        )

    # Movements

    def record_movement(
        self,
        business_id: UUID,
        product_id: UUID,
        location_id: UUID,
        movement_type: MovementType | str,
        quantity: int,
        actor_id: UUID,
        unit_cost: Decimal | int | str = ZERO,
        reference: Reference | None = None,
        status: MovementStatus | str = MovementStatus.CONFIRMED,
        notes: str | None = None,
    ) -> StockMovement:
        """
        Record a stock movement and apply it to the inventory row.

        ``quantity`` is positive for in/out and a signed delta for
        adjustment.  New rows are created for in movements and positive
        adjustments.

        Raises:
            ValidationError: bad type, status, quantity, cost or reference.
            InsufficientStockError: on-hand (or, for a Pending out, available)
                would drop below zero.
        """
        try:
            movement_type = MovementType(movement_type)
            status = MovementStatus(status)
        except ValueError as exc:
            raise ValidationError(str(exc), field="movement_type") from exc
        if status not in (MovementStatus.CONFIRMED, MovementStatus.PENDING):
            raise ValidationError(
                f"Movements are recorded as Confirmed or Pending, not {status.value}",
                field="status",
            )
        if movement_type == MovementType.ADJUSTMENT and status == MovementStatus.PENDING:
            raise ValidationError("Adjustments cannot be Pending", field="status")

        quantity = _check_quantity(
            quantity, allow_negative=movement_type == MovementType.ADJUSTMENT
        )
        unit_cost = self._money(unit_cost, "unit_cost")
        if unit_cost < 0:
            raise ValidationError("unit_cost cannot be negative", field="unit_cost")
        if reference is not None and reference.kind not in MOVEMENT_SOURCE_KINDS:
            raise ValidationError(
                f"Stock movements cannot reference a '{reference.kind.value}'",
                field="reference",
            )

        delta = -quantity if movement_type == MovementType.OUT else quantity
        row = self._lock_row(business_id, product_id, location_id)

        if status == MovementStatus.CONFIRMED:
            on_hand = row.on_hand_quantity if row else 0
            if on_hand + delta < 0:
                self._reject(product_id, location_id, on_hand, -delta)
        elif movement_type == MovementType.OUT:
            free = self.get_available(row) if row else 0
            if quantity > free:
                self._reject(product_id, location_id, free, quantity)

        if row is None:
            row = self._create_row(business_id, product_id, location_id, actor_id)

        if movement_type == MovementType.OUT and unit_cost == 0:
            unit_cost = self._round(row.unit_cost or ZERO)

        movement = StockMovement(
            business_id=business_id,
            product_id=product_id,
            location_id=location_id,
            movement_type=movement_type.value,
            status=status.value,
            quantity=quantity,
            confirmed_quantity=0,
            unit_cost=unit_cost,
            total_cost=self._round(unit_cost * abs(quantity)),
            reference_type=reference.kind.value if reference else None,
            reference_id=reference.id if reference else None,
            notes=notes,
            created_by_id=actor_id,
        )

        if status == MovementStatus.CONFIRMED:
            self._apply(row, movement_type, quantity, unit_cost, actor_id)
            movement.confirmed_quantity = quantity
        elif movement_type == MovementType.OUT:
            row.reserved_quantity += quantity
            row.updated_by_id = actor_id

        self.session.add(movement)
        self.session.flush()

        logger.info(
            "stock_movement_recorded",
            extra={
                "movement_id": str(movement.id),
                "product_id": str(product_id),
                "location_id": str(location_id),
                "movement_type": movement_type.value,
                "status": status.value,
                "quantity": quantity,
                "on_hand": row.on_hand_quantity,
                "reserved": row.reserved_quantity,
                "reference": str(reference) if reference else None,
            },
        )
        return movement

    def confirm_movement(
        self, movement_id: UUID, actor_id: UUID, quantity: int | None = None
    ) -> StockMovement:
        """
        Apply a Pending (or Partially_Fulfilled) movement to on-hand.

        Confirming less than the outstanding quantity leaves the movement
        Partially_Fulfilled.

        Raises:
            InvalidStatusTransitionError: movement is Confirmed or Cancelled.
            InsufficientStockError: an out confirmation exceeds on-hand.
        """
        movement = self.get_movement(movement_id)
        if movement.status not in (
            MovementStatus.PENDING.value,
            MovementStatus.PARTIALLY_FULFILLED.value,
        ):
            raise InvalidStatusTransitionError(
                "StockMovement", str(movement_id), movement.status, "confirm"
            )
        outstanding = movement.quantity - movement.confirmed_quantity
        quantity = outstanding if quantity is None else _check_quantity(quantity)
        if quantity > outstanding:
            raise ValidationError(
                f"Cannot confirm {quantity}; only {outstanding} outstanding",
                field="quantity",
            )

        row = self._lock_row(movement.business_id, movement.product_id, movement.location_id)
        if row is None:
            row = self._create_row(
                movement.business_id, movement.product_id, movement.location_id, actor_id
            )
        movement_type = MovementType(movement.movement_type)
        if movement_type == MovementType.OUT:
            if row.on_hand_quantity < quantity:
                self._reject(movement.product_id, movement.location_id,
                             row.on_hand_quantity, quantity)
            row.reserved_quantity = max(0, row.reserved_quantity - quantity)

        self._apply(row, movement_type, quantity, movement.unit_cost, actor_id)

        movement.confirmed_quantity += quantity
        movement.status = (
            MovementStatus.CONFIRMED.value
            if movement.confirmed_quantity == movement.quantity
            else MovementStatus.PARTIALLY_FULFILLED.value
        )
        movement.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "stock_movement_confirmed",
            extra={
                "movement_id": str(movement_id),
                "quantity": quantity,
                "status": movement.status,
                "on_hand": row.on_hand_quantity,
            },
        )
        return movement

    def cancel_movement(self, movement_id: UUID, actor_id: UUID) -> StockMovement:
        """
        Cancel a Pending movement, releasing the stock a Pending out held.

        Raises:
            InvalidStatusTransitionError: movement is not Pending.
        """
        movement = self.get_movement(movement_id)
        if movement.status != MovementStatus.PENDING.value:
            raise InvalidStatusTransitionError(
                "StockMovement", str(movement_id), movement.status, "cancel"
            )
        if movement.movement_type == MovementType.OUT.value:
            row = self._lock_row(
                movement.business_id, movement.product_id, movement.location_id
            )
            if row is not None:
                row.reserved_quantity = max(0, row.reserved_quantity - movement.quantity)
                row.updated_by_id = actor_id

        movement.status = MovementStatus.CANCELLED.value
        movement.updated_by_id = actor_id
        self.session.flush()
        logger.info("stock_movement_cancelled", extra={"movement_id": str(movement_id)})
        return movement

    # Reservations

    def reserve(
        self,
        business_id: UUID,
        product_id: UUID,
        location_id: UUID,
        quantity: int,
        actor_id: UUID,
    ) -> Inventory:
        """
        Hold ``quantity`` units without consuming them.

        Raises:
            ValidationError: quantity exceeds what is available.
        """
        quantity = _check_quantity(quantity)
        row = self._lock_row(business_id, product_id, location_id)
        free = self.get_available(row) if row else 0
        if quantity > free:
            raise ValidationError(
                f"Cannot reserve {quantity} of product {product_id}: only {free} available",
                field="quantity",
            )
        row.reserved_quantity += quantity
        row.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "stock_reserved",
            extra={
                "product_id": str(product_id),
                "location_id": str(location_id),
                "quantity": quantity,
                "reserved": row.reserved_quantity,
            },
        )
        return row

    def release(
        self,
        business_id: UUID,
        product_id: UUID,
        location_id: UUID,
        quantity: int,
        actor_id: UUID,
    ) -> Inventory:
        """Give back reserved units. Releasing more than is reserved clamps at zero."""
        quantity = _check_quantity(quantity)
        row = self._lock_row(business_id, product_id, location_id)
        if row is None:
            raise NotFoundError("Inventory", f"{product_id}@{location_id}")
        row.reserved_quantity = max(0, row.reserved_quantity - quantity)
        row.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "stock_released",
            extra={
                "product_id": str(product_id),
                "location_id": str(location_id),
                "quantity": quantity,
                "reserved": row.reserved_quantity,
            },
        )
        return row

    # Bulk

    def bulk_adjust(
        self,
        business_id: UUID,
        adjustments: list[StockAdjustment],
        actor_id: UUID,
        reference: Reference | None = None,
    ) -> list[StockMovement]:
        """
        Apply a batch of signed deltas all-or-nothing.

        All affected rows are locked in id order first, then every delta is
        validated against the locked counts, then all are applied.

        Raises:
            ValidationError: empty batch or a zero/non-integer delta.
            InsufficientStockError: any row would go below zero; nothing
                from the batch is applied.
        """
        if not adjustments:
            raise ValidationError("No adjustments given", field="adjustments")
        for adj in adjustments:
            _check_quantity(adj.delta, field="delta", allow_negative=True)

        keys = sorted({(a.product_id, a.location_id) for a in adjustments}, key=str)
        rows = self._lock_rows(business_id, keys)

        net: dict[tuple[UUID, UUID], int] = {}
        for adj in adjustments:
            key = (adj.product_id, adj.location_id)
            net[key] = net.get(key, 0) + adj.delta
        for key, delta in net.items():
            on_hand = rows[key].on_hand_quantity if key in rows else 0
            if on_hand + delta < 0:
                logger.warning(
                    "bulk_adjust_rejected",
                    extra={
                        "business_id": str(business_id),
                        "product_id": str(key[0]),
                        "location_id": str(key[1]),
                        "on_hand": on_hand,
                        "delta": delta,
                    },
                )
                self._reject(key[0], key[1], on_hand, -delta)

        # _create_row flushes, so new rows exist before any delta is applied
        for key in keys:
            if key not in rows:
                rows[key] = self._create_row(business_id, key[0], key[1], actor_id)

        movements = []
        for adj in adjustments:
            row = rows[(adj.product_id, adj.location_id)]
            self._apply(row, MovementType.ADJUSTMENT, adj.delta, ZERO, actor_id)
            movement = StockMovement(
                business_id=business_id,
                product_id=adj.product_id,
                location_id=adj.location_id,
                movement_type=MovementType.ADJUSTMENT.value,
                status=MovementStatus.CONFIRMED.value,
                quantity=adj.delta,
                confirmed_quantity=adj.delta,
                unit_cost=self._round(row.unit_cost or ZERO),
                total_cost=self._round((row.unit_cost or ZERO) * abs(adj.delta)),
                reference_type=reference.kind.value if reference else None,
                reference_id=reference.id if reference else None,
                notes=adj.notes,
                created_by_id=actor_id,
            )
            self.session.add(movement)
            movements.append(movement)
        self.session.flush()

        logger.info(
            "bulk_adjust_applied",
            extra={
                "business_id": str(business_id),
                "adjustment_count": len(adjustments),
                "row_count": len(keys),
            },
        )
        return movements

    # Levels

    def set_levels(
        self,
        business_id: UUID,
        product_id: UUID,
        location_id: UUID,
        actor_id: UUID,
        reorder_level: int | None = None,
        max_stock_level: int | None = None,
    ) -> Inventory:
        """Set reorder and maximum stock levels, creating the row if needed."""
        reorder_level = _check_level(reorder_level, "reorder_level")
        max_stock_level = _check_level(max_stock_level, "max_stock_level")

        row = self._lock_row(business_id, product_id, location_id)
        if row is None:
            row = self._create_row(business_id, product_id, location_id, actor_id)
        new_reorder = row.reorder_level if reorder_level is None else reorder_level
        new_max = row.max_stock_level if max_stock_level is None else max_stock_level
        if new_max is not None and new_max < new_reorder:
            raise ValidationError(
                "max_stock_level cannot be below reorder_level", field="max_stock_level"
            )
        row.reorder_level = new_reorder
        row.max_stock_level = new_max
        row.updated_by_id = actor_id
        self.session.flush()
        return row

    # Reconciliation

    def reconcile(
        self,
        business_id: UUID,
        actor_id: UUID | None = None,
        product_id: UUID | None = None,
        location_id: UUID | None = None,
        apply: bool = False,
    ) -> list[ReconciliationRow]:
        """
        Compare each row's on-hand with the sum of its counted movements.

        With ``apply=True`` drifting rows are rewritten from the log (and
        rows missing for logged stock are created); ``actor_id`` is then
        required.
        """
        if apply and actor_id is None:
            raise ValidationError("actor_id is required to apply a reconciliation",
                                  field="actor_id")

        signed = func.sum(StockMovement.confirmed_quantity)
        log_stmt = (
            select(
                StockMovement.product_id,
                StockMovement.location_id,
                StockMovement.movement_type,
                signed,
            )
            .where(
                StockMovement.business_id == business_id,
                StockMovement.status.in_(COUNTED_STATUSES),
            )
            .group_by(
                StockMovement.product_id,
                StockMovement.location_id,
                StockMovement.movement_type,
            )
        )
        row_stmt = select(Inventory).where(Inventory.business_id == business_id)
        if product_id is not None:
            log_stmt = log_stmt.where(StockMovement.product_id == product_id)
            row_stmt = row_stmt.where(Inventory.product_id == product_id)
        if location_id is not None:
            log_stmt = log_stmt.where(StockMovement.location_id == location_id)
            row_stmt = row_stmt.where(Inventory.location_id == location_id)
        if apply:
            row_stmt = row_stmt.order_by(Inventory.id).with_for_update()

        log_totals: dict[tuple[UUID, UUID], int] = {}
        for p_id, l_id, m_type, total in self.session.execute(log_stmt).all():
            total = int(total or 0)
            if m_type == MovementType.OUT.value:
                total = -total
            log_totals[(p_id, l_id)] = log_totals.get((p_id, l_id), 0) + total

        rows = {(r.product_id, r.location_id): r for r in self.session.execute(row_stmt).scalars()}
        if apply:
            for key in log_totals.keys() - rows.keys():
                rows[key] = self._create_row(business_id, key[0], key[1], actor_id)

        report = []
        for key in sorted(rows.keys() | log_totals.keys(), key=str):
            row = rows.get(key)
            result = ReconciliationRow(
                inventory_id=row.id if row is not None else None,
                product_id=key[0],
                location_id=key[1],
                snapshot_on_hand=row.on_hand_quantity if row is not None else 0,
                log_on_hand=log_totals.get(key, 0),
            )
            report.append(result)
            if result.is_consistent:
                continue
            logger.warning(
                "inventory_drift_detected",
                extra={
                    "business_id": str(business_id),
                    "product_id": str(key[0]),
                    "location_id": str(key[1]),
                    "snapshot_on_hand": result.snapshot_on_hand,
                    "log_on_hand": result.log_on_hand,
                    "applied": apply,
                },
            )
            if apply:
                row.on_hand_quantity = max(0, result.log_on_hand)
                row.updated_by_id = actor_id

        if apply:
            self.session.flush()
        logger.info(
            "inventory_reconciled",
            extra={
                "business_id": str(business_id),
                "rows": len(report),
                "drifting": sum(1 for r in report if not r.is_consistent),
                "applied": apply,
            },
        )
        return report

    # Internals

    def _reject(self, product_id: UUID, location_id: UUID, on_hand: int, requested: int):
        logger.warning(
            "insufficient_stock",
            extra={
                "product_id": str(product_id),
                "location_id": str(location_id),
                "on_hand": on_hand,
                "requested": requested,
            },
        )
        raise InsufficientStockError(str(product_id), str(location_id), on_hand, requested)

    def _lock_row(self, business_id: UUID, product_id: UUID, location_id: UUID) -> Inventory | None:
        return self.session.execute(
            select(Inventory)
            .where(
                Inventory.business_id == business_id,
                Inventory.product_id == product_id,
                Inventory.location_id == location_id,
            )
            .with_for_update()
        ).scalar_one_or_none()

    def _lock_rows(
        self, business_id: UUID, keys: list[tuple[UUID, UUID]]
    ) -> dict[tuple[UUID, UUID], Inventory]:
        """Lock the existing rows for ``keys`` one at a time in id order."""
        ids = self.session.execute(
            select(Inventory.id)
            .where(
                Inventory.business_id == business_id,
                or_(*(
                    and_(Inventory.product_id == p, Inventory.location_id == loc)
                    for p, loc in keys
                )),
            )
            .order_by(Inventory.id)
        ).scalars().all()
        rows = {}
        for row_id in ids:
            row = self.session.execute(
                select(Inventory).where(Inventory.id == row_id).with_for_update()
            ).scalar_one()
            rows[(row.product_id, row.location_id)] = row
        return rows

    def _create_row(
        self, business_id: UUID, product_id: UUID, location_id: UUID, actor_id: UUID
    ) -> Inventory:
        row = Inventory(
            business_id=business_id,
            product_id=product_id,
            location_id=location_id,
            on_hand_quantity=0,
            reserved_quantity=0,
            reorder_level=0,
            unit_cost=ZERO,
            created_by_id=actor_id,
        )
        self.session.add(row)
        self.session.flush()
        logger.debug(
            "inventory_row_created",
            extra={"product_id": str(product_id), "location_id": str(location_id)},
        )
        return row

    def _apply(
        self,
        row: Inventory,
        movement_type: MovementType,
        quantity: int,
        unit_cost: Decimal,
        actor_id: UUID,
    ) -> None:
        """Apply a validated movement to a locked row."""
        if movement_type == MovementType.IN:
            if unit_cost > 0:
                old_value = Decimal(row.on_hand_quantity) * (row.unit_cost or ZERO)
                new_on_hand = row.on_hand_quantity + quantity
                row.unit_cost = (
                    (old_value + Decimal(quantity) * unit_cost) / Decimal(new_on_hand)
                ).quantize(COST_QUANTUM)
            row.on_hand_quantity += quantity
            row.last_restocked = self.clock.now()
        elif movement_type == MovementType.OUT:
            row.on_hand_quantity -= quantity
        else:
            row.on_hand_quantity += quantity
        row.updated_by_id = actor_id
