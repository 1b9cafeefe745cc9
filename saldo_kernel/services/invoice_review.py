"""
InvoiceReviewService -- accountant decisions on invoices.

Responsibility:
    Accepts and rejects invoices under a review lease, revokes earlier
    acceptances and deletes invoices.  Each decision changes the invoice
    status and books its ledger effect in the caller's transaction.

Architecture position:
    Kernel > Services.  Lease bookkeeping comes from ReviewLeaseService's
    columns; money goes through InvoiceLinkageService.

Invariants enforced:
    - accept / reject only from ``in_review`` and only by the lease holder;
      the same guarded UPDATE clears the lease.
    - Acceptance deducts the invoice amount once (amount > 0).
    - Rejection after acceptance refunds exactly the outstanding deduction.

Failure modes:
    - LeaseNotHeldError: caller does not hold the lease.
    - InvalidTransitionError: invoice not in the required status.
    - ValidationError: rejection without a reason.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from saldo_kernel.config import SaldoSettings
from saldo_kernel.domain.clock import Clock
from saldo_kernel.domain.dtos import InvoiceDecision, LedgerTransactionRecord
from saldo_kernel.domain.values import InvoiceStatus
from saldo_kernel.exceptions import (
    InvalidTransitionError,
    LeaseNotHeldError,
    ValidationError,
)
from saldo_kernel.logging_config import LogContext, get_logger
from saldo_kernel.models.invoice import Invoice
from saldo_kernel.services.base import BaseService
from saldo_kernel.services.invoice_linkage import InvoiceLinkageService
from saldo_kernel.services.invoice_repository import InvoiceRepository
from saldo_kernel.services.ledger_service import LedgerService

logger = get_logger("services.invoice_review")

_LEASE_CLEARED = {
    "current_reviewer_id": None,
    "review_started_at": None,
    "last_review_ping": None,
}


class InvoiceReviewService(BaseService[Invoice]):
    """Accept, reject, revoke and delete invoices."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: SaldoSettings | None = None,
        ledger: LedgerService | None = None,
        invoices: InvoiceRepository | None = None,
        linkage: InvoiceLinkageService | None = None,
    ):
        super().__init__(session, clock)
        self.settings = settings or SaldoSettings()
        self.invoices = invoices or InvoiceRepository(session, self.clock)
        self.linkage = linkage or InvoiceLinkageService(
            session, self.clock, self.settings, ledger=ledger, invoices=self.invoices,
        )

    def accept(self, invoice_id: UUID, actor_id: UUID) -> InvoiceDecision:
        with LogContext.bind(invoice_id=invoice_id, actor_id=actor_id):
            invoice = self._decide(
                invoice_id, actor_id, InvoiceStatus.ACCEPTED, rejection_reason=None,
            )
            entry = self.linkage.record_acceptance(invoice, actor_id)
            logger.info(
                "invoice_accepted",
                extra={"amount": str(invoice.amount), "deducted": entry is not None},
            )
            return InvoiceDecision(invoice=invoice.to_record(), ledger_entry=entry)

    def reject(self, invoice_id: UUID, actor_id: UUID, reason: str) -> InvoiceDecision:
        reason = _require_reason(reason)
        with LogContext.bind(invoice_id=invoice_id, actor_id=actor_id):
            invoice = self._decide(
                invoice_id, actor_id, InvoiceStatus.REJECTED, rejection_reason=reason,
            )
            entry = self.linkage.record_rejection(invoice, actor_id)
            logger.info("invoice_rejected", extra={"refunded": entry is not None})
            return InvoiceDecision(invoice=invoice.to_record(), ledger_entry=entry)

    def revoke_acceptance(self, invoice_id: UUID, actor_id: UUID, reason: str) -> InvoiceDecision:
        """
        Turn an accepted invoice into a rejected one and refund its deduction.

        Settled or transferred invoices are final and cannot be revoked.
        """
        reason = _require_reason(reason)
        with LogContext.bind(invoice_id=invoice_id, actor_id=actor_id):
            invoice = self.invoices.get(invoice_id)
            self._guarded_transition(
                invoice,
                (InvoiceStatus.ACCEPTED,),
                InvoiceStatus.REJECTED,
                {
                    "reviewed_by_id": actor_id,
                    "reviewed_at": self.clock.now(),
                    "rejection_reason": reason,
                    "updated_by_id": actor_id,
                },
            )
            entry = self.linkage.record_rejection(invoice, actor_id)
            logger.info(
                "invoice_acceptance_revoked",
                extra={"refund": str(entry.amount) if entry else None},
            )
            return InvoiceDecision(invoice=invoice.to_record(), ledger_entry=entry)

    def delete(self, invoice_id: UUID, actor_id: UUID) -> LedgerTransactionRecord | None:
        """Delete an invoice, refunding any outstanding deduction."""
        with LogContext.bind(invoice_id=invoice_id, actor_id=actor_id):
            return self.linkage.delete_invoice(invoice_id, actor_id)

    def _decide(
        self,
        invoice_id: UUID,
        actor_id: UUID,
        target: InvoiceStatus,
        rejection_reason: str | None,
    ) -> Invoice:
        invoice = self.invoices.get(invoice_id)
        try:
            self._guarded_transition(
                invoice,
                (InvoiceStatus.IN_REVIEW,),
                target,
                {
                    "reviewed_by_id": actor_id,
                    "reviewed_at": self.clock.now(),
                    "rejection_reason": rejection_reason,
                    "updated_by_id": actor_id,
                    **_LEASE_CLEARED,
                },
                conditions=(Invoice.current_reviewer_id == actor_id,),
            )
        except InvalidTransitionError:
            # Right status, wrong reviewer
            if invoice.status == InvoiceStatus.IN_REVIEW.value:
                raise LeaseNotHeldError(str(invoice_id), str(actor_id)) from None
            raise
        return invoice


def _require_reason(reason: str | None) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("rejection_reason", "required")
    return reason
