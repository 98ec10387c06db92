"""
UnitOfWork -- one database transaction with every service bound to it.

Responsibility:
    Opens a session, hands the same session to each service, and commits
    once at the end.  Any exception rolls the whole scope back, so a
    multi-step operation such as recording a sale is atomic by construction
    rather than by caller discipline.

Architecture position:
    Kernel > Services.  The Transaction Orchestrator runs every top-level
    operation through a UnitOfWork; tests and scripts may use one directly.

Failure modes:
    - Ledger kernel errors raised inside the scope propagate unchanged after
      the rollback.
    - SQLAlchemyError (inside the scope or from the commit) is rolled back
      and re-raised as StorageError with the original chained as __cause__.

Usage:
    with UnitOfWork(clock=clock) as uow:
        sale = uow.documents.create_with_lines(...)
        uow.documents.post_settlement(sale, actor_id)
    # committed here

    entry = UnitOfWork().run(lambda uow: uow.journal.post(...))
"""

from typing import Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.config import EngineConfig
from ledger_kernel.db.engine import get_session_factory
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import StorageError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.account_directory import AccountDirectory
from ledger_kernel.services.document_engine import DocumentEngine
from ledger_kernel.services.inventory_ledger import InventoryLedger
from ledger_kernel.services.journal_engine import JournalEngine
from ledger_kernel.services.payment_allocator import PaymentAllocator

logger = get_logger("services.unit_of_work")

T = TypeVar("T")


class UnitOfWork:
    """
    Transaction scope exposing accounts, journal, inventory, documents and
    payments on one session.

    A UnitOfWork may be entered again after it exits; each entry is a new
    session and a new transaction.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ):
        self._session_factory = session_factory
        self.clock = clock or SystemClock()
        self.config = config or EngineConfig.with_defaults()
        self.session: Session | None = None

    def __enter__(self) -> "UnitOfWork":
        if self.session is not None:
            raise RuntimeError("UnitOfWork is already active")
        factory = self._session_factory or get_session_factory()
        self.session = factory()

        self.accounts = AccountDirectory(self.session, self.clock, self.config)
        self.journal = JournalEngine(self.session, self.clock, self.config)
        self.inventory = InventoryLedger(self.session, self.clock, self.config)
        self.documents = DocumentEngine(
            self.session, self.clock, self.config,
            accounts=self.accounts, journal=self.journal, inventory=self.inventory,
        )
        self.payments = PaymentAllocator(
            self.session, self.clock, self.config, documents=self.documents
        )
        logger.debug("unit_of_work_started")
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        session = self.session
        self.session = None
        try:
            if exc is not None:
                session.rollback()
                logger.warning(
                    "unit_of_work_rolled_back",
                    extra={"error_type": exc_type.__name__, "error": str(exc)},
                )
                if isinstance(exc, SQLAlchemyError):
                    raise StorageError("transaction", str(exc)) from exc
                return False
            try:
                session.commit()
            except SQLAlchemyError as commit_exc:
                session.rollback()
                logger.error(
                    "unit_of_work_commit_failed",
                    extra={"error_type": type(commit_exc).__name__, "error": str(commit_exc)},
                )
                raise StorageError("commit", str(commit_exc)) from commit_exc
            logger.debug("unit_of_work_committed")
            return False
        finally:
            session.close()

    def run(self, work: Callable[["UnitOfWork"], T]) -> T:
        """Run ``work`` inside this unit of work and commit its result."""
        with self:
            return work(self)
