"""
Race tests for the saldo state machines.

Interleaved tests run everywhere: a competing writer commits in its own
session between a service's read and its guarded UPDATE, so the loser must
fail without side effects.  Threaded tests need real row locks and only run
against PostgreSQL (DATABASE_URL=postgresql://...).

Run with: pytest tests/concurrency/test_saldo_races.py -v
Skip with: pytest -m "not slow_locks"
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest
from sqlalchemy import func, select

from saldo_kernel.domain.values import AdvanceSourceType, LedgerKind
from saldo_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    LeaseHeldError,
)
from saldo_kernel.models.advance import Advance
from saldo_kernel.models.ledger import LedgerTransaction
from saldo_kernel.models.user import User
from saldo_kernel.selectors.ledger_selector import LedgerSelector
from saldo_kernel.services.advance_service import AdvanceService
from saldo_kernel.services.budget_request_service import BudgetRequestService
from saldo_kernel.services.invoice_repository import InvoiceRepository
from saldo_kernel.services.ledger_service import LedgerService
from saldo_kernel.services.review_lease import ReviewLeaseService


# =============================================================================
# Interleaving helpers
# =============================================================================


class _RunsCompetitorOnce:
    """Mixin: call ``competitor`` once, right after the first read."""

    competitor = None

    def _interleave(self):
        competitor, self.competitor = self.competitor, None
        if competitor is not None:
            competitor()


class InterleavedAdvanceService(_RunsCompetitorOnce, AdvanceService):
    """Reads without a row lock, then lets the competitor commit."""

    def _lock(self, model, entity_id):
        instance = self.session.get(model, entity_id, populate_existing=True)
        self._interleave()
        return instance


class InterleavedBudgetRequestService(_RunsCompetitorOnce, BudgetRequestService):

    def _lock(self, model, entity_id):
        instance = self.session.get(model, entity_id, populate_existing=True)
        self._interleave()
        return instance


class InterleavedLedgerService(_RunsCompetitorOnce, LedgerService):

    def _read_balance(self, user_id):
        snapshot = super()._read_balance(user_id)
        self._interleave()
        return snapshot


class InterleavedInvoiceRepository(_RunsCompetitorOnce, InvoiceRepository):

    def get(self, invoice_id):
        invoice = super().get(invoice_id)
        self._interleave()
        return invoice


@pytest.fixture
def in_other_session(session_factory):
    """Run ``work(session)`` in a fresh session and commit it."""

    def _run(work):
        other = session_factory()
        try:
            result = work(other)
            other.commit()
            return result
        finally:
            other.close()

    return _run


def _count(session, model, *conditions) -> int:
    return session.execute(
        select(func.count()).select_from(model).where(*conditions)
    ).scalar_one()


# =============================================================================
# Interleaved (all backends)
# =============================================================================


class TestInterleavedTransfer:

    @pytest.fixture
    def pending_advance(self, session, advance_service, user, company, test_actor_id):
        record = advance_service.create_manual(
            user.id, company.id, "700.00", "delegation to Gdansk", test_actor_id,
        )
        session.commit()
        return record

    def test_second_transfer_loses(
        self, session, deterministic_clock, settings, pending_advance, user,
        test_actor_id, in_other_session, captured_logs,
    ):
        service = InterleavedAdvanceService(session, deterministic_clock, settings)
        service.competitor = lambda: in_other_session(
            lambda other: AdvanceService(other, deterministic_clock, settings).transfer(
                pending_advance.advance_id, test_actor_id,
            )
        )

        with pytest.raises(InvalidTransitionError) as exc_info:
            service.transfer(pending_advance.advance_id, test_actor_id)

        assert exc_info.value.from_status == "transferred"
        session.rollback()
        credits = _count(
            session, LedgerTransaction,
            LedgerTransaction.kind == LedgerKind.ADVANCE_CREDIT.value,
            LedgerTransaction.reference_id == pending_advance.advance_id,
        )
        assert credits == 1
        session.expire_all()
        assert Decimal(session.get(User, user.id).balance) == Decimal("700.00")


class TestInterleavedApproval:

    @pytest.fixture
    def pending_request(self, session, budget_request_service, user, company):
        record = budget_request_service.create(user.id, company.id, "300.00", "training course")
        session.commit()
        return record

    def _advances_for(self, session, request_id) -> int:
        return _count(
            session, Advance,
            Advance.source_type == AdvanceSourceType.BUDGET_REQUEST.value,
            Advance.source_id == request_id,
        )

    def test_double_approval_opens_one_advance(
        self, session, deterministic_clock, settings, pending_request, test_actor_id,
        in_other_session,
    ):
        service = InterleavedBudgetRequestService(session, deterministic_clock, settings)
        service.competitor = lambda: in_other_session(
            lambda other: BudgetRequestService(other, deterministic_clock, settings).approve(
                pending_request.request_id, test_actor_id,
            )
        )

        with pytest.raises(InvalidTransitionError):
            service.approve(pending_request.request_id, test_actor_id)

        session.rollback()
        assert self._advances_for(session, pending_request.request_id) == 1

    def test_approve_loses_to_reject(
        self, session, deterministic_clock, settings, pending_request, test_actor_id,
        in_other_session,
    ):
        service = InterleavedBudgetRequestService(session, deterministic_clock, settings)
        service.competitor = lambda: in_other_session(
            lambda other: BudgetRequestService(other, deterministic_clock, settings).reject(
                pending_request.request_id, test_actor_id, "over budget",
            )
        )

        with pytest.raises(InvalidTransitionError) as exc_info:
            service.approve(pending_request.request_id, test_actor_id)

        assert exc_info.value.from_status == "rejected"
        session.rollback()
        assert self._advances_for(session, pending_request.request_id) == 0


class TestInterleavedLedgerWrite:

    def test_stale_version_rejected(
        self, session, deterministic_clock, settings, user, test_actor_id, in_other_session,
    ):
        session.commit()
        ledger = InterleavedLedgerService(session, deterministic_clock, settings)
        ledger.competitor = lambda: in_other_session(
            lambda other: LedgerService(other, deterministic_clock, settings).adjust(
                user.id, "25.00", "written first", test_actor_id,
            )
        )

        with pytest.raises(ConcurrentModificationError):
            ledger.append(
                user.id, "10.00", LedgerKind.ADJUSTMENT, test_actor_id, notes="written second",
            )

        session.rollback()
        session.expire_all()
        check = LedgerSelector(session, settings).verify_chain(user.id)
        assert check.is_valid
        assert check.ledger_version == 1
        assert check.stored_balance == Decimal("25.00")


class TestInterleavedLease:

    def test_lease_taken_between_read_and_claim(
        self, session, deterministic_clock, settings, create_invoice, create_user, user,
        company, test_actor_id, in_other_session, captured_logs,
    ):
        invoice = create_invoice(user, company, "55.00")
        rival = create_user("Marta Lewandowska")
        session.commit()

        repository = InterleavedInvoiceRepository(session, deterministic_clock)
        leases = ReviewLeaseService(session, deterministic_clock, settings, invoices=repository)
        repository.competitor = lambda: in_other_session(
            lambda other: ReviewLeaseService(other, deterministic_clock, settings).acquire(
                invoice.invoice_id, rival.id,
            )
        )

        with pytest.raises(LeaseHeldError) as exc_info:
            leases.acquire(invoice.invoice_id, test_actor_id)

        assert exc_info.value.code == "LEASE_HELD"
        messages = [r["message"] for r in captured_logs()]
        assert "review_lease_contended" in messages
        assert "review_lease_reclaimed" not in messages


# =============================================================================
# Threaded (PostgreSQL only)
# =============================================================================


@pytest.mark.postgres
@pytest.mark.slow_locks
class TestThreadedRaces:

    THREADS = 8

    def _run_concurrently(self, session_factory, work):
        """Run ``work(session)`` on THREADS threads released together."""
        barrier = Barrier(self.THREADS)

        def _attempt(_):
            barrier.wait()
            s = session_factory()
            try:
                result = work(s)
                s.commit()
                return ("ok", result)
            except Exception as exc:
                s.rollback()
                return ("error", exc)
            finally:
                s.close()

        with ThreadPoolExecutor(max_workers=self.THREADS) as pool:
            return list(pool.map(_attempt, range(self.THREADS)))

    def test_only_one_transfer_wins(
        self, session, session_factory, advance_service, deterministic_clock, settings,
        user, company, test_actor_id,
    ):
        advance = advance_service.create_manual(
            user.id, company.id, "400.00", "fleet fuel", test_actor_id,
        )
        session.commit()

        outcomes = self._run_concurrently(
            session_factory,
            lambda s: AdvanceService(s, deterministic_clock, settings).transfer(
                advance.advance_id, test_actor_id,
            ),
        )

        wins = [r for kind, r in outcomes if kind == "ok"]
        losses = [r for kind, r in outcomes if kind == "error"]
        assert len(wins) == 1
        assert all(isinstance(e, InvalidTransitionError) for e in losses)
        session.expire_all()
        assert Decimal(session.get(User, user.id).balance) == Decimal("400.00")

    def test_concurrent_adjustments_all_land(
        self, session, session_factory, deterministic_clock, settings, user, test_actor_id,
    ):
        session.commit()

        outcomes = self._run_concurrently(
            session_factory,
            lambda s: LedgerService(s, deterministic_clock, settings).append_with_retry(
                user.id, "5.00", LedgerKind.ADJUSTMENT, test_actor_id,
                notes="parallel adjustment", max_attempts=50,
            ),
        )

        assert all(kind == "ok" for kind, _ in outcomes)
        session.expire_all()
        check = LedgerSelector(session, settings).verify_chain(user.id)
        assert check.is_valid
        assert check.ledger_version == self.THREADS
        assert check.stored_balance == Decimal("5.00") * self.THREADS
