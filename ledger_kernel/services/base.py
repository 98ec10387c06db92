"""
BaseService -- abstract base for all ledger kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for every
    service.  Services receive a SQLAlchemy ``Session`` and persist with
    ``session.flush()`` -- never ``session.commit()``.  The UnitOfWork (or a
    test) owns commit and rollback, which is what makes a multi-step
    operation such as recording a sale atomic.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.config import EngineConfig
from ledger_kernel.db.base import Base
from ledger_kernel.db.types import round_money, to_money
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import ValidationError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all services.

    Contract:
        Uses ``session.flush()`` to persist changes within the caller's
        transaction.  Never commits or rolls back.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.config = config or EngineConfig.with_defaults()

    def _round(self, value):
        return round_money(value, self.config.money_decimal_places)

    def _money(self, value, field: str):
        """Convert ``value`` to a rounded Decimal amount or raise ValidationError."""
        try:
            return self._round(to_money(value))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"{field}: {exc}", field=field) from exc
