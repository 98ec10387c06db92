"""Tests for UnitOfWork commit / rollback and storage error wrapping."""

from decimal import Decimal

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError, ProgrammingError

from ledger_kernel.db.engine import get_session_factory
from ledger_kernel.exceptions import StorageError, ValidationError
from ledger_kernel.models.account import Account
from ledger_kernel.services.unit_of_work import UnitOfWork


@pytest.fixture
def uow(clean_db, deterministic_clock, engine_config):
    return UnitOfWork(get_session_factory(), deterministic_clock, engine_config)


def _codes(session, business_id):
    session.expire_all()
    return session.execute(
        select(Account.code).where(Account.business_id == business_id)
    ).scalars().all()


def test_commits_on_success(uow, session, business_id, test_actor_id):
    with uow:
        uow.accounts.create(business_id, "1000", "Cash", "cash", test_actor_id)
    assert _codes(session, business_id) == ["1000"]


def test_rolls_back_on_error(uow, session, business_id, test_actor_id):
    with pytest.raises(ValidationError):
        with uow:
            uow.accounts.create(business_id, "1000", "Cash", "cash", test_actor_id)
            uow.accounts.create(business_id, "1000", "Cash again", "cash", test_actor_id)
    assert _codes(session, business_id) == []


def test_run_returns_result(uow, business_id, test_actor_id):
    account = uow.run(
        lambda u: u.accounts.create(business_id, "1000", "Cash", "cash", test_actor_id)
    )
    assert account.code == "1000"
    assert account.id is not None


def test_database_errors_become_storage_errors(uow):
    with pytest.raises(StorageError) as exc_info:
        with uow:
            uow.session.execute(text("SELECT * FROM no_such_table"))
    assert isinstance(exc_info.value.__cause__, (OperationalError, ProgrammingError))
    assert exc_info.value.code == "STORAGE_ERROR"


def test_can_be_entered_again(uow, session, business_id, test_actor_id):
    with uow:
        uow.accounts.create(business_id, "1000", "Cash", "cash", test_actor_id)
    with uow:
        uow.accounts.create(business_id, "1100", "Receivables", "receivable", test_actor_id)
    assert sorted(_codes(session, business_id)) == ["1000", "1100"]


def test_nested_entry_rejected(uow):
    with uow:
        with pytest.raises(RuntimeError, match="already active"):
            uow.__enter__()


def test_services_share_one_session(uow):
    with uow:
        assert uow.documents.journal is uow.journal
        assert uow.payments.documents is uow.documents
        assert uow.inventory.session is uow.session
        assert uow.config.rounding_tolerance == Decimal("0.01")
