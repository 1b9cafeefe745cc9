"""
Bulk tasks: invoices (bulk delete).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from saldo_batch.domain.types import BulkCandidate, BulkFilters
from saldo_batch.tasks.base import BulkContext, BulkTaskResult, apply_filters
from saldo_kernel.models.invoice import Invoice
from saldo_kernel.services.invoice_linkage import InvoiceLinkageService


class InvoiceBulkDeleteTask:
    """Delete every matching invoice, refunding outstanding deductions."""

    @property
    def task_type(self) -> str:
        return "invoices.bulk_delete"

    @property
    def description(self) -> str:
        return "Delete invoices (accepted deductions are refunded)"

    def find_candidates(
        self,
        filters: BulkFilters,
        session: Session,
        as_of: datetime,
    ) -> tuple[BulkCandidate, ...]:
        invoices = session.execute(
            apply_filters(select(Invoice), Invoice, filters, as_of)
        ).scalars().all()

        return tuple(
            BulkCandidate(
                entity_id=inv.id,
                user_id=inv.user_id,
                label=inv.invoice_number,
                status=inv.status,
                amount=inv.amount,
            )
            for inv in invoices
        )

    def execute_item(
        self,
        candidate: BulkCandidate,
        session: Session,
        context: BulkContext,
    ) -> BulkTaskResult:
        linkage = InvoiceLinkageService(session, context.clock, context.settings)
        refund = linkage.delete_invoice(candidate.entity_id, context.actor_id)
        return BulkTaskResult.succeeded(
            invoice_id=str(candidate.entity_id),
            refunded=str(refund.amount) if refund is not None else None,
        )
