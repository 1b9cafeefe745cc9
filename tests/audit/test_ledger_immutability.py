"""
Append-only ledger tests.

Verifies:
- LedgerTransaction rows cannot be updated or deleted through the ORM
- user.balance and user.ledger_version cannot be assigned through the ORM
- other user fields stay editable
- LedgerService's Core write path is unaffected by the listeners
- engine start-up and create_tables() register the listeners exactly once
"""

from contextlib import contextmanager
from decimal import Decimal

import pytest
from sqlalchemy import event, select

import saldo_kernel.db.engine as engine_module
from saldo_kernel.db.engine import create_tables, init_engine_from_url
from saldo_kernel.db.immutability import (
    _check_ledger_transaction_immutability,
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from saldo_kernel.domain.values import LedgerKind
from saldo_kernel.exceptions import ImmutabilityViolationError
from saldo_kernel.models.ledger import LedgerTransaction


@contextmanager
def disabled_immutability():
    """Temporarily remove the ORM listeners (simulates a careless writer)."""
    unregister_immutability_listeners()
    try:
        yield
    finally:
        register_immutability_listeners()


@pytest.fixture
def ledger_row(session, ledger_service, user, test_actor_id) -> LedgerTransaction:
    record = ledger_service.adjust(user.id, "50.00", "opening balance", test_actor_id)
    return session.execute(
        select(LedgerTransaction).where(LedgerTransaction.id == record.transaction_id)
    ).scalar_one()


class TestLedgerTransactionImmutability:

    def test_update_blocked(self, session, ledger_row):
        ledger_row.amount = Decimal("500.00")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "LedgerTransaction"

    def test_notes_update_blocked(self, session, ledger_row):
        ledger_row.notes = "rewritten history"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, ledger_row, captured_logs):
        session.delete(ledger_row)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["operation"] == "DELETE"


class TestUserBalanceImmutability:

    def test_balance_assignment_blocked(self, session, user):
        user.balance = Decimal("1000000.00")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "User"

    def test_version_assignment_blocked(self, session, user):
        user.ledger_version = 42

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_profile_fields_stay_editable(self, session, user):
        user.name = "Jan Nowak"
        session.flush()
        session.refresh(user)
        assert user.name == "Jan Nowak"

    def test_ledger_path_still_writes(self, session, ledger_service, ledger_selector, user, test_actor_id):
        ledger_service.adjust(user.id, "12.34", "listeners do not see Core updates", test_actor_id)

        session.refresh(user)
        assert Decimal(user.balance) == Decimal("12.34")
        assert ledger_selector.verify_chain(user.id).is_valid


class TestTamperingIsDetected:

    def test_edit_without_listeners_breaks_chain(self, session, ledger_row, ledger_selector, user):
        with disabled_immutability():
            ledger_row.amount = Decimal("75.00")
            session.flush()

        check = ledger_selector.verify_chain(user.id)

        assert not check.is_valid
        assert len(check.errors) >= 2


class TestListenerRegistration:

    def _registered(self) -> bool:
        return event.contains(
            LedgerTransaction, "before_update", _check_ledger_transaction_immutability,
        )

    def test_create_tables_registers(self, session, user):
        session.commit()
        unregister_immutability_listeners()
        assert not self._registered()

        create_tables()

        assert self._registered()
        user.balance = Decimal("999.00")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_engine_init_registers(self, session, monkeypatch):
        monkeypatch.setattr(engine_module, "_engine", None)
        monkeypatch.setattr(engine_module, "_SessionFactory", None)
        unregister_immutability_listeners()

        init_engine_from_url("sqlite://")

        assert self._registered()

    def test_double_registration_leaves_one_listener(self, session, user):
        register_immutability_listeners()
        create_tables()

        # a single removal must leave nothing behind
        unregister_immutability_listeners()

        assert not self._registered()
        user.name = "Jan Kowalski"
        user.ledger_version = 7
        session.flush()
