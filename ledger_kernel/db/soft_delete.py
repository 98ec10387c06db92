"""
Active-record predicate for soft-deleted rows.

Every model that inherits ``SoftDeleteMixin`` is filtered with
``deleted_at IS NULL`` on every ORM SELECT issued through a Session, including
relationship lazy loads and ``session.get()``.  Queries that must see
soft-deleted rows opt in explicitly:

    session.execute(
        select(Account).where(Account.id == account_id),
        execution_options={"include_deleted": True},
    )

or ``select(...).execution_options(include_deleted=True)``.
"""

from sqlalchemy import event
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria

from ledger_kernel.db.base import SoftDeleteMixin

INCLUDE_DELETED = "include_deleted"


def _apply_active_record_predicate(execute_state: ORMExecuteState) -> None:
    # Refreshes of an already-loaded row and relationship loads carry the
    # criteria from the originating query.
    if (
        not execute_state.is_select
        or execute_state.is_column_load
        or execute_state.is_relationship_load
    ):
        return
    if execute_state.execution_options.get(INCLUDE_DELETED, False):
        return
    execute_state.statement = execute_state.statement.options(
        with_loader_criteria(
            SoftDeleteMixin,
            lambda cls: cls.deleted_at.is_(None),
            include_aliases=True,
        )
    )


def register_soft_delete_filter() -> None:
    """Install the predicate on all Sessions. Idempotent."""
    if not event.contains(Session, "do_orm_execute", _apply_active_record_predicate):
        event.listen(Session, "do_orm_execute", _apply_active_record_predicate)
