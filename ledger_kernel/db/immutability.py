"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The books must never be edited in place.  A posted journal entry is
corrected by posting a reversing entry, and the stock-movement log is the
audit trail the inventory snapshot is rebuilt from.  This module intercepts
UPDATE and DELETE on those rows before SQL reaches the database:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | Rule
----------------|------------------------------------------------------------
JournalEntry    | Immutable from creation; never deleted
LedgerEntry     | Immutable from creation; never deleted
StockMovement   | Only status and confirmed_quantity may change; never deleted
Account         | Hard delete blocked while ledger entries reference it

Core-level bulk statements (``session.execute(update(...))``) bypass ORM
events; the services never issue them against protected tables.
"""

from sqlalchemy import event, func, inspect, select
from sqlalchemy.orm import Session

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _changed_fields(target, allowed: frozenset[str] = frozenset()) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in _AUDIT_FIELDS
        and attr.key not in allowed
        and attr.history.has_changes()
    ]


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_journal_entry_immutability(mapper, connection, target):
    """Journal entries are immutable once written."""
    changed = _changed_fields(target, allowed=frozenset({"lines"}))
    if changed:
        _block(
            "JournalEntry", target, "UPDATE",
            f"Cannot modify field '{changed[0]}' on a journal entry; post a reversal instead",
            field=changed[0],
        )


def _check_journal_entry_delete(mapper, connection, target):
    _block("JournalEntry", target, "DELETE", "Journal entries cannot be deleted")


def _check_ledger_entry_immutability(mapper, connection, target):
    """Ledger entries are immutable once written."""
    changed = _changed_fields(target, allowed=frozenset({"journal_entry"}))
    if changed:
        _block(
            "LedgerEntry", target, "UPDATE",
            f"Cannot modify field '{changed[0]}' on a ledger entry",
            field=changed[0],
        )


def _check_ledger_entry_delete(mapper, connection, target):
    _block("LedgerEntry", target, "DELETE", "Ledger entries cannot be deleted")


def _check_stock_movement_immutability(mapper, connection, target):
    """Stock movements are append-only; only the status may transition."""
    changed = _changed_fields(target, allowed=frozenset({"status", "confirmed_quantity"}))
    if changed:
        _block(
            "StockMovement", target, "UPDATE",
            f"Only the status of a stock movement may change, not '{changed[0]}'",
            field=changed[0],
        )


def _check_stock_movement_delete(mapper, connection, target):
    _block("StockMovement", target, "DELETE", "Stock movements cannot be deleted")


def _check_account_deletion_before_flush(session, flush_context, instances):
    """
    Block hard deletion of accounts that ledger entries reference.

    Runs in SessionEvents.before_flush, before the flush plan is final.
    """
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.journal import LedgerEntry

    for obj in list(session.deleted):
        if not isinstance(obj, Account):
            continue

        with session.no_autoflush:
            references = session.execute(
                select(func.count(LedgerEntry.id)).where(
                    LedgerEntry.account_id == obj.id
                )
            ).scalar_one()

        if references:
            _block(
                "Account", obj, "DELETE",
                f"Account has {references} ledger entries and cannot be deleted",
            )


def _listeners():
    from ledger_kernel.models.inventory import StockMovement
    from ledger_kernel.models.journal import JournalEntry, LedgerEntry

    return (
        (Session, "before_flush", _check_account_deletion_before_flush),
        (JournalEntry, "before_update", _check_journal_entry_immutability),
        (JournalEntry, "before_delete", _check_journal_entry_delete),
        (LedgerEntry, "before_update", _check_ledger_entry_immutability),
        (LedgerEntry, "before_delete", _check_ledger_entry_delete),
        (StockMovement, "before_update", _check_stock_movement_immutability),
        (StockMovement, "before_delete", _check_stock_movement_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; a listener already present is not added
    again.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)
