"""
InvoiceLinkageService -- keeps invoice links and invoice money consistent.

Responsibility:
    Rewrites invoice -> advance / budget request links, reassigns or deletes
    every invoice of an advance that is going away, and books the ledger side
    of invoice decisions: the deduction on acceptance and the compensating
    refund when an accepted invoice is rejected or deleted.

Architecture position:
    Kernel > Services.  Called by AdvanceService.delete, InvoiceReviewService
    and the bulk invoice task.  Link computation is the pure
    ``domain.linkage.rewrite_link``; ledger rows go through LedgerService.

Invariants enforced:
    - An invoice never links to both an advance and a budget request.
    - After ``reassign_all`` / ``delete_linked`` no invoice points at the
      source advance.
    - Corrections are new ledger rows; the original deduction is never
      edited.  A refund returns exactly the outstanding deduction (the
      negated net of the invoice's ledger rows), so refunds can never exceed
      what was deducted.

Failure modes:
    - AdvanceNotFoundError / BudgetRequestNotFoundError for unknown targets.
    - InvoiceNotFoundError for unknown invoices.
    - ConcurrentModificationError from the ledger append.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from saldo_kernel.config import SaldoSettings
from saldo_kernel.db.types import ZERO, round_money
from saldo_kernel.domain.clock import Clock
from saldo_kernel.domain.dtos import InvoiceRecord, LedgerTransactionRecord
from saldo_kernel.domain.linkage import rewrite_link
from saldo_kernel.domain.values import LedgerKind
from saldo_kernel.exceptions import (
    AdvanceNotFoundError,
    BudgetRequestNotFoundError,
    ValidationError,
)
from saldo_kernel.logging_config import get_logger
from saldo_kernel.models.advance import Advance
from saldo_kernel.models.budget_request import BudgetRequest
from saldo_kernel.models.invoice import Invoice
from saldo_kernel.selectors.ledger_selector import LedgerSelector
from saldo_kernel.services.base import BaseService
from saldo_kernel.services.invoice_repository import InvoiceRepository
from saldo_kernel.services.ledger_service import LedgerService

logger = get_logger("services.invoice_linkage")


class InvoiceLinkageService(BaseService[Invoice]):
    """Invoice-linkage reconciler."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: SaldoSettings | None = None,
        ledger: LedgerService | None = None,
        invoices: InvoiceRepository | None = None,
    ):
        super().__init__(session, clock)
        self.settings = settings or SaldoSettings()
        self.ledger = ledger or LedgerService(session, self.clock, self.settings)
        self.invoices = invoices or InvoiceRepository(session, self.clock)
        self._ledger_reads = LedgerSelector(session, self.settings)

    # Links

    def link_to_advance(self, invoice_id: UUID, advance_id: UUID, actor_id: UUID) -> InvoiceRecord:
        if self.session.get(Advance, advance_id) is None:
            raise AdvanceNotFoundError(str(advance_id))
        invoice = self.invoices.get(invoice_id)
        link = rewrite_link(invoice.link, advance_id=advance_id)
        return self.invoices.set_invoice_link(invoice_id, link, actor_id).to_record()

    def link_to_budget_request(
        self, invoice_id: UUID, budget_request_id: UUID, actor_id: UUID,
    ) -> InvoiceRecord:
        if self.session.get(BudgetRequest, budget_request_id) is None:
            raise BudgetRequestNotFoundError(str(budget_request_id))
        invoice = self.invoices.get(invoice_id)
        link = rewrite_link(invoice.link, budget_request_id=budget_request_id)
        return self.invoices.set_invoice_link(invoice_id, link, actor_id).to_record()

    def unlink(self, invoice_id: UUID, actor_id: UUID) -> InvoiceRecord:
        invoice = self.invoices.get(invoice_id)
        return self.invoices.set_invoice_link(
            invoice_id, rewrite_link(invoice.link), actor_id,
        ).to_record()

    def reassign_all(
        self, from_advance_id: UUID, to_advance_id: UUID, actor_id: UUID,
    ) -> tuple[UUID, ...]:
        """
        Point every invoice of ``from_advance_id`` at ``to_advance_id``.

        Returns the ids of the moved invoices.
        """
        if from_advance_id == to_advance_id:
            raise ValidationError(
                "to_advance_id", "source and target advance must differ",
            )
        if self.session.get(Advance, to_advance_id) is None:
            raise AdvanceNotFoundError(str(to_advance_id))

        moved = tuple(
            inv.id for inv in self.invoices.list_invoices_linked_to(from_advance_id)
        )
        if moved:
            self.session.execute(
                update(Invoice)
                .where(Invoice.advance_id == from_advance_id)
                .values(
                    advance_id=to_advance_id,
                    budget_request_id=None,
                    updated_by_id=actor_id,
                )
                .execution_options(synchronize_session="fetch")
            )
            self.session.flush()

        logger.info(
            "invoices_reassigned",
            extra={
                "from_advance_id": str(from_advance_id),
                "to_advance_id": str(to_advance_id),
                "count": len(moved),
            },
        )
        return moved

    def delete_linked(self, advance_id: UUID, actor_id: UUID) -> tuple[tuple[UUID, ...], Decimal]:
        """
        Delete every invoice of ``advance_id``, refunding outstanding
        deductions.

        Returns:
            (deleted invoice ids, total refunded).
        """
        deleted: list[UUID] = []
        refunded = ZERO
        for invoice in self.invoices.list_invoices_linked_to(advance_id):
            refund = self.delete_invoice(invoice.id, actor_id)
            deleted.append(invoice.id)
            if refund is not None:
                refunded += refund.amount
        logger.info(
            "linked_invoices_deleted",
            extra={
                "advance_id": str(advance_id),
                "count": len(deleted),
                "refunded_total": str(refunded),
            },
        )
        return tuple(deleted), round_money(refunded)

    def delete_invoice(self, invoice_id: UUID, actor_id: UUID) -> LedgerTransactionRecord | None:
        """
        Delete one invoice; refund its outstanding deduction first.

        Returns the refund row, or None when nothing was outstanding.
        """
        invoice = self.invoices.get(invoice_id)
        refund = self._refund_outstanding(
            invoice, actor_id, LedgerKind.INVOICE_DELETE_REFUND, "invoice deleted",
        )
        self.invoices.delete(invoice_id)
        return refund

    # Money

    def outstanding_deduction(self, invoice: Invoice) -> Decimal:
        """Deducted minus refunded for this invoice, never below zero."""
        net = self._ledger_reads.net_for_reference(invoice.id, user_id=invoice.user_id)
        return max(-net, ZERO)

    def record_acceptance(self, invoice: Invoice, actor_id: UUID) -> LedgerTransactionRecord | None:
        """
        Deduct an accepted invoice's amount from its owner's saldo.

        At most one deduction per invoice; invoices without a positive amount
        are accepted without a ledger effect.
        """
        amount = round_money(Decimal(invoice.amount)) if invoice.amount is not None else ZERO
        if amount <= ZERO:
            return None
        if self.outstanding_deduction(invoice) > ZERO:
            logger.warning(
                "invoice_deduction_already_recorded",
                extra={"invoice_id": str(invoice.id)},
            )
            return None
        return self.ledger.append(
            invoice.user_id,
            -amount,
            LedgerKind.INVOICE_DEDUCTION,
            actor_id,
            notes=f"invoice {invoice.invoice_number} accepted",
            reference_id=invoice.id,
            system=True,
        )

    def record_rejection(self, invoice: Invoice, actor_id: UUID) -> LedgerTransactionRecord | None:
        """Refund the outstanding deduction of a rejected invoice."""
        return self._refund_outstanding(
            invoice, actor_id, LedgerKind.INVOICE_REFUND, "invoice rejected",
        )

    def _refund_outstanding(
        self, invoice: Invoice, actor_id: UUID, kind: LedgerKind, reason: str,
    ) -> LedgerTransactionRecord | None:
        outstanding = self.outstanding_deduction(invoice)
        if outstanding <= ZERO:
            return None
        refund = self.ledger.append(
            invoice.user_id,
            outstanding,
            kind,
            actor_id,
            notes=f"{reason}: {invoice.invoice_number}",
            reference_id=invoice.id,
            system=True,
        )
        logger.info(
            "invoice_deduction_refunded",
            extra={
                "invoice_id": str(invoice.id),
                "kind": kind.value,
                "amount": str(outstanding),
            },
        )
        return refund
