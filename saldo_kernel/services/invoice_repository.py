"""
InvoiceRepository -- SQL-backed invoice CRUD collaborator.

Responsibility:
    The narrow set of invoice operations the saldo workflows need: create,
    load, list by funding advance, set status, set link, delete.  Everything
    else about invoices (scans, OCR, registry lookups, line items) lives
    outside this package.

Architecture position:
    Kernel > Services.  Used by InvoiceLinkageService, ReviewLeaseService,
    InvoiceReviewService, AdvanceService and the bulk invoice task.  It does
    not touch the ledger; compensation is InvoiceLinkageService's job.

Invariants enforced:
    - Links are written through ``InvoiceLink`` so an invoice never points at
      both an advance and a budget request.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from saldo_kernel.db.types import ZERO, to_money
from saldo_kernel.domain.dtos import InvoiceRecord
from saldo_kernel.domain.linkage import InvoiceLink
from saldo_kernel.domain.values import InvoiceStatus
from saldo_kernel.exceptions import (
    CompanyNotFoundError,
    InvoiceNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from saldo_kernel.logging_config import get_logger
from saldo_kernel.models.company import Company
from saldo_kernel.models.invoice import Invoice
from saldo_kernel.models.user import User
from saldo_kernel.services.base import BaseService

logger = get_logger("services.invoice_repository")


class InvoiceRepository(BaseService[Invoice]):
    """Invoice persistence used by the saldo workflows."""

    def create(
        self,
        user_id: UUID,
        company_id: UUID,
        invoice_number: str,
        actor_id: UUID,
        amount: Decimal | int | str | None = None,
        advance_id: UUID | None = None,
        budget_request_id: UUID | None = None,
    ) -> InvoiceRecord:
        """Register an invoice in ``pending`` status."""
        if not invoice_number or not invoice_number.strip():
            raise ValidationError("invoice_number", "required")
        if amount is not None:
            try:
                amount = to_money(amount)
            except (TypeError, ValueError) as exc:
                raise ValidationError("amount", str(exc)) from exc
            if amount < ZERO:
                raise ValidationError("amount", "must not be negative")
        try:
            link = InvoiceLink(advance_id=advance_id, budget_request_id=budget_request_id)
        except ValueError as exc:
            raise ValidationError("link", str(exc)) from exc

        if self.session.get(User, user_id) is None:
            raise UserNotFoundError(str(user_id))
        if self.session.get(Company, company_id) is None:
            raise CompanyNotFoundError(str(company_id))

        now = self.clock.now()
        invoice = Invoice(
            user_id=user_id,
            company_id=company_id,
            invoice_number=invoice_number.strip(),
            amount=amount,
            status=InvoiceStatus.PENDING.value,
            advance_id=link.advance_id,
            budget_request_id=link.budget_request_id,
            created_by_id=actor_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(invoice)
        self.session.flush()

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "user_id": str(user_id),
                "amount": str(amount) if amount is not None else None,
            },
        )
        return invoice.to_record()

    def get(self, invoice_id: UUID) -> Invoice:
        """
        Load an invoice.

        Raises:
            InvoiceNotFoundError: unknown id.
        """
        invoice = self.session.get(Invoice, invoice_id, populate_existing=True)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def list_invoices_linked_to(self, advance_id: UUID) -> list[Invoice]:
        """Invoices whose ``advance_id`` is ``advance_id``, oldest first."""
        return list(
            self.session.execute(
                select(Invoice)
                .where(Invoice.advance_id == advance_id)
                .order_by(Invoice.created_at, Invoice.id)
            ).scalars()
        )

    def set_invoice_status(
        self,
        invoice_id: UUID,
        status: InvoiceStatus,
        actor_id: UUID,
        expected: tuple[InvoiceStatus, ...] | None = None,
        values: dict | None = None,
    ) -> Invoice:
        """
        Move an invoice to ``status``.

        With ``expected`` the write is a guarded transition and raises
        InvalidTransitionError when the stored status is not one of them.
        """
        invoice = self.get(invoice_id)
        if expected is None:
            expected = (InvoiceStatus(invoice.status),)
        self._guarded_transition(
            invoice,
            expected,
            status,
            {"updated_by_id": actor_id, **(values or {})},
        )
        logger.info(
            "invoice_status_set",
            extra={"invoice_id": str(invoice_id), "status": invoice.status},
        )
        return invoice

    def set_invoice_link(self, invoice_id: UUID, link: InvoiceLink, actor_id: UUID) -> Invoice:
        """Store ``link`` on the invoice, clearing the other link field."""
        invoice = self.get(invoice_id)
        invoice.advance_id = link.advance_id
        invoice.budget_request_id = link.budget_request_id
        invoice.updated_by_id = actor_id
        self.session.flush()
        logger.debug(
            "invoice_link_set",
            extra={
                "invoice_id": str(invoice_id),
                "advance_id": str(link.advance_id) if link.advance_id else None,
                "budget_request_id": (
                    str(link.budget_request_id) if link.budget_request_id else None
                ),
            },
        )
        return invoice

    def delete(self, invoice_id: UUID) -> None:
        invoice = self.get(invoice_id)
        self.session.delete(invoice)
        self.session.flush()
        logger.info("invoice_deleted", extra={"invoice_id": str(invoice_id)})
