"""
Tests for InvoiceLinkageService.

Covers link rewriting (an invoice never points at two funding sources),
bulk reassignment, and the refund-aware invoice deletion.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from saldo_kernel.domain.values import LedgerKind
from saldo_kernel.exceptions import (
    AdvanceNotFoundError,
    BudgetRequestNotFoundError,
    InvoiceNotFoundError,
    ValidationError,
)


# =============================================================================
# Links
# =============================================================================


class TestLinks:

    def test_link_to_advance_clears_budget_request(
        self, linkage_service, budget_request_service, funded_advance, create_invoice,
        user, company, test_actor_id,
    ):
        request = budget_request_service.create(user.id, company.id, "100", "small purchases")
        invoice = create_invoice(user, company, budget_request_id=request.request_id)
        advance = funded_advance()

        record = linkage_service.link_to_advance(invoice.invoice_id, advance.advance_id, test_actor_id)

        assert record.advance_id == advance.advance_id
        assert record.budget_request_id is None

    def test_link_to_budget_request_clears_advance(
        self, linkage_service, budget_request_service, funded_advance, create_invoice,
        user, company, test_actor_id,
    ):
        advance = funded_advance()
        invoice = create_invoice(user, company, advance_id=advance.advance_id)
        request = budget_request_service.create(user.id, company.id, "100", "small purchases")

        record = linkage_service.link_to_budget_request(
            invoice.invoice_id, request.request_id, test_actor_id,
        )

        assert record.budget_request_id == request.request_id
        assert record.advance_id is None

    def test_unlink(self, linkage_service, funded_advance, create_invoice, user, company, test_actor_id):
        advance = funded_advance()
        invoice = create_invoice(user, company, advance_id=advance.advance_id)

        record = linkage_service.unlink(invoice.invoice_id, test_actor_id)

        assert record.advance_id is None
        assert record.budget_request_id is None

    def test_unknown_targets(self, linkage_service, create_invoice, user, company, test_actor_id):
        invoice = create_invoice(user, company)

        with pytest.raises(AdvanceNotFoundError):
            linkage_service.link_to_advance(invoice.invoice_id, uuid4(), test_actor_id)
        with pytest.raises(BudgetRequestNotFoundError):
            linkage_service.link_to_budget_request(invoice.invoice_id, uuid4(), test_actor_id)

    def test_unknown_invoice(self, linkage_service, funded_advance, test_actor_id):
        advance = funded_advance()
        with pytest.raises(InvoiceNotFoundError):
            linkage_service.link_to_advance(uuid4(), advance.advance_id, test_actor_id)


# =============================================================================
# reassign_all
# =============================================================================


class TestReassignAll:

    def test_moves_every_invoice(
        self, linkage_service, invoice_repository, funded_advance, create_invoice,
        user, company, test_actor_id,
    ):
        source = funded_advance()
        target = funded_advance()
        ids = {
            create_invoice(user, company, advance_id=source.advance_id).invoice_id
            for _ in range(3)
        }
        untouched = create_invoice(user, company)

        moved = linkage_service.reassign_all(source.advance_id, target.advance_id, test_actor_id)

        assert set(moved) == ids
        assert invoice_repository.list_invoices_linked_to(source.advance_id) == []
        assert {i.id for i in invoice_repository.list_invoices_linked_to(target.advance_id)} == ids
        assert invoice_repository.get(untouched.invoice_id).advance_id is None

    def test_nothing_to_move(self, linkage_service, funded_advance, test_actor_id):
        assert linkage_service.reassign_all(
            funded_advance().advance_id, funded_advance().advance_id, test_actor_id,
        ) == ()

    def test_same_source_and_target(self, linkage_service, funded_advance, test_actor_id):
        advance = funded_advance()
        with pytest.raises(ValidationError):
            linkage_service.reassign_all(advance.advance_id, advance.advance_id, test_actor_id)

    def test_missing_target(self, linkage_service, funded_advance, test_actor_id):
        with pytest.raises(AdvanceNotFoundError):
            linkage_service.reassign_all(funded_advance().advance_id, uuid4(), test_actor_id)


# =============================================================================
# Deletion and refunds
# =============================================================================


class TestDeleteInvoice:

    def test_pending_invoice_deleted_without_refund(
        self, linkage_service, invoice_repository, create_invoice, user, company, test_actor_id,
    ):
        invoice = create_invoice(user, company, "80.00")

        assert linkage_service.delete_invoice(invoice.invoice_id, test_actor_id) is None
        with pytest.raises(InvoiceNotFoundError):
            invoice_repository.get(invoice.invoice_id)

    def test_accepted_invoice_refunded(
        self, session, linkage_service, accepted_invoice, user, test_actor_id,
    ):
        invoice = accepted_invoice("120.00")

        refund = linkage_service.delete_invoice(invoice.invoice_id, test_actor_id)

        assert refund.kind is LedgerKind.INVOICE_DELETE_REFUND
        assert refund.amount == Decimal("120.00")
        assert refund.reference_id == invoice.invoice_id
        session.refresh(user)
        assert Decimal(user.balance) == Decimal("0.00")

    def test_delete_linked_totals_refunds(
        self, linkage_service, funded_advance, accepted_invoice, create_invoice,
        user, company, test_actor_id,
    ):
        advance = funded_advance()
        accepted_invoice("100.00", advance_id=advance.advance_id)
        accepted_invoice("25.50", advance_id=advance.advance_id)
        create_invoice(user, company, "999.00", advance_id=advance.advance_id)

        deleted, refunded = linkage_service.delete_linked(advance.advance_id, test_actor_id)

        assert len(deleted) == 3
        assert refunded == Decimal("125.50")


class TestDeductions:

    def test_outstanding_deduction_tracks_ledger(
        self, linkage_service, invoice_repository, accepted_invoice, review_service, test_actor_id,
    ):
        record = accepted_invoice("75.00")
        invoice = invoice_repository.get(record.invoice_id)
        assert linkage_service.outstanding_deduction(invoice) == Decimal("75.00")

        review_service.revoke_acceptance(record.invoice_id, test_actor_id, "duplicate scan")

        assert linkage_service.outstanding_deduction(invoice) == Decimal("0.00")

    def test_acceptance_deducts_once(
        self, linkage_service, invoice_repository, accepted_invoice, ledger_selector,
        test_actor_id, captured_logs,
    ):
        record = accepted_invoice("40.00")
        invoice = invoice_repository.get(record.invoice_id)

        assert linkage_service.record_acceptance(invoice, test_actor_id) is None
        assert len(ledger_selector.entries_for_reference(record.invoice_id)) == 1
        assert any(
            r["message"] == "invoice_deduction_already_recorded" for r in captured_logs()
        )

    def test_rejection_without_deduction_is_noop(
        self, linkage_service, invoice_repository, create_invoice, user, company, test_actor_id,
    ):
        record = create_invoice(user, company, "40.00")
        invoice = invoice_repository.get(record.invoice_id)
        assert linkage_service.record_rejection(invoice, test_actor_id) is None
