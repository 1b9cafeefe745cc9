"""
Tests for ReviewLeaseService.

The lease is exclusive while its heartbeat is younger than
``review_lease_expiry_seconds`` (10 s by default); after that anyone may
take it over.  Time is driven by the deterministic clock.
"""

from dataclasses import replace
from uuid import uuid4

import pytest

from saldo_kernel.domain.values import InvoiceStatus
from saldo_kernel.exceptions import (
    InvalidTransitionError,
    InvoiceNotFoundError,
    LeaseHeldError,
    LeaseNotHeldError,
)
from saldo_kernel.services.review_lease import ReviewLeaseService


@pytest.fixture
def invoice(create_invoice, user, company):
    return create_invoice(user, company, "60.00")


@pytest.fixture
def reviewer(create_user):
    return create_user("Anna Nowak")


# =============================================================================
# acquire
# =============================================================================


class TestAcquire:

    def test_acquire_moves_to_in_review(
        self, lease_service, invoice, test_actor_id, deterministic_clock,
    ):
        record = lease_service.acquire(invoice.invoice_id, test_actor_id)

        assert record.status is InvoiceStatus.IN_REVIEW
        assert record.current_reviewer_id == test_actor_id
        assert record.review_started_at == deterministic_clock.now()
        assert record.last_review_ping == deterministic_clock.now()

    def test_reacquire_renews_and_keeps_start(
        self, lease_service, invoice, test_actor_id, deterministic_clock,
    ):
        first = lease_service.acquire(invoice.invoice_id, test_actor_id)
        deterministic_clock.advance(5)

        second = lease_service.acquire(invoice.invoice_id, test_actor_id)

        assert second.review_started_at == first.review_started_at
        assert second.last_review_ping == deterministic_clock.now()

    def test_live_lease_blocks_others(
        self, lease_service, invoice, test_actor_id, reviewer, deterministic_clock,
    ):
        lease_service.acquire(invoice.invoice_id, test_actor_id)
        deterministic_clock.advance(9)

        with pytest.raises(LeaseHeldError) as exc_info:
            lease_service.acquire(invoice.invoice_id, reviewer.id)

        assert exc_info.value.code == "LEASE_HELD"

    def test_abandoned_lease_reclaimed(
        self, lease_service, invoice, test_actor_id, reviewer, deterministic_clock, captured_logs,
    ):
        lease_service.acquire(invoice.invoice_id, test_actor_id)
        deterministic_clock.advance(11)

        record = lease_service.acquire(invoice.invoice_id, reviewer.id)

        assert record.current_reviewer_id == reviewer.id
        assert record.review_started_at == deterministic_clock.now()
        reclaimed = [r for r in captured_logs() if r["message"] == "review_lease_reclaimed"]
        assert reclaimed[0]["abandoned_by"] == str(test_actor_id)

    def test_heartbeat_keeps_lease_alive(
        self, lease_service, invoice, test_actor_id, reviewer, deterministic_clock,
    ):
        lease_service.acquire(invoice.invoice_id, test_actor_id)
        for _ in range(3):
            deterministic_clock.advance(8)
            lease_service.heartbeat(invoice.invoice_id, test_actor_id)

        with pytest.raises(LeaseHeldError):
            lease_service.acquire(invoice.invoice_id, reviewer.id)

    def test_decided_invoice_cannot_be_leased(
        self, lease_service, accepted_invoice, reviewer,
    ):
        record = accepted_invoice()

        with pytest.raises(InvalidTransitionError):
            lease_service.acquire(record.invoice_id, reviewer.id)

    def test_unknown_invoice(self, lease_service, test_actor_id):
        with pytest.raises(InvoiceNotFoundError):
            lease_service.acquire(uuid4(), test_actor_id)


# =============================================================================
# heartbeat / release
# =============================================================================


class TestHeartbeat:

    def test_only_holder_may_heartbeat(self, lease_service, invoice, test_actor_id, reviewer):
        lease_service.acquire(invoice.invoice_id, test_actor_id)

        with pytest.raises(LeaseNotHeldError):
            lease_service.heartbeat(invoice.invoice_id, reviewer.id)

    def test_heartbeat_without_lease(self, lease_service, invoice, test_actor_id):
        with pytest.raises(LeaseNotHeldError):
            lease_service.heartbeat(invoice.invoice_id, test_actor_id)


class TestRelease:

    def test_release_returns_invoice_to_pending(
        self, lease_service, invoice_repository, invoice, test_actor_id,
    ):
        lease_service.acquire(invoice.invoice_id, test_actor_id)

        assert lease_service.release(invoice.invoice_id, test_actor_id) is True

        stored = invoice_repository.get(invoice.invoice_id)
        assert stored.status == InvoiceStatus.PENDING.value
        assert stored.current_reviewer_id is None
        assert stored.last_review_ping is None

    def test_release_by_non_holder_is_ignored(
        self, lease_service, invoice_repository, invoice, test_actor_id, reviewer,
    ):
        lease_service.acquire(invoice.invoice_id, test_actor_id)

        assert lease_service.release(invoice.invoice_id, reviewer.id) is False
        assert invoice_repository.get(invoice.invoice_id).current_reviewer_id == test_actor_id

    def test_released_invoice_free_for_others(self, lease_service, invoice, test_actor_id, reviewer):
        lease_service.acquire(invoice.invoice_id, test_actor_id)
        lease_service.release(invoice.invoice_id, test_actor_id)

        assert lease_service.acquire(invoice.invoice_id, reviewer.id).current_reviewer_id == reviewer.id


# =============================================================================
# Sweeping and liveness
# =============================================================================


class TestStaleLeases:

    def test_release_stale_only_touches_abandoned(
        self, lease_service, invoice_repository, create_invoice, user, company,
        test_actor_id, deterministic_clock,
    ):
        abandoned = create_invoice(user, company)
        active = create_invoice(user, company)
        lease_service.acquire(abandoned.invoice_id, test_actor_id)
        deterministic_clock.advance(20)
        lease_service.acquire(active.invoice_id, test_actor_id)

        assert lease_service.release_stale() == 1
        assert invoice_repository.get(abandoned.invoice_id).status == InvoiceStatus.PENDING.value
        assert invoice_repository.get(active.invoice_id).status == InvoiceStatus.IN_REVIEW.value

    def test_release_stale_with_nothing_to_do(self, lease_service):
        assert lease_service.release_stale() == 0

    def test_is_live(
        self, lease_service, invoice_repository, invoice, test_actor_id, deterministic_clock,
    ):
        assert not lease_service.is_live(invoice_repository.get(invoice.invoice_id))

        lease_service.acquire(invoice.invoice_id, test_actor_id)
        assert lease_service.is_live(invoice_repository.get(invoice.invoice_id))

        deterministic_clock.advance(11)
        assert not lease_service.is_live(invoice_repository.get(invoice.invoice_id))

    def test_expiry_follows_settings(
        self, session, deterministic_clock, settings, invoice_repository, invoice,
        test_actor_id, reviewer,
    ):
        short = ReviewLeaseService(
            session, deterministic_clock,
            replace(settings, review_lease_expiry_seconds=2),
            invoices=invoice_repository,
        )
        short.acquire(invoice.invoice_id, test_actor_id)
        deterministic_clock.advance(3)

        assert short.acquire(invoice.invoice_id, reviewer.id).current_reviewer_id == reviewer.id
