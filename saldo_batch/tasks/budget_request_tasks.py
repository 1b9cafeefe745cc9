"""
Bulk tasks: budget requests (bulk delete).

A request that produced an advance is the advance's source of record and is
reported as a failed item instead of being deleted.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from saldo_batch.domain.types import BulkCandidate, BulkFilters
from saldo_batch.tasks.base import BulkContext, BulkTaskResult, apply_filters
from saldo_kernel.domain.values import AdvanceSourceType
from saldo_kernel.exceptions import BudgetRequestNotFoundError
from saldo_kernel.logging_config import get_logger
from saldo_kernel.models.advance import Advance
from saldo_kernel.models.budget_request import BudgetRequest
from saldo_kernel.models.invoice import Invoice

logger = get_logger("batch.tasks.budget_requests")

HAS_ADVANCE = "BUDGET_REQUEST_HAS_ADVANCE"


class BudgetRequestBulkDeleteTask:
    """Delete matching budget requests and unlink their invoices."""

    @property
    def task_type(self) -> str:
        return "budget_requests.bulk_delete"

    @property
    def description(self) -> str:
        return "Delete budget requests (linked invoices are unlinked)"

    def find_candidates(
        self,
        filters: BulkFilters,
        session: Session,
        as_of: datetime,
    ) -> tuple[BulkCandidate, ...]:
        requests = session.execute(
            apply_filters(select(BudgetRequest), BudgetRequest, filters, as_of)
        ).scalars().all()

        return tuple(
            BulkCandidate(
                entity_id=req.id,
                user_id=req.user_id,
                label=(req.justification or "")[:80],
                status=req.status,
                amount=req.requested_amount,
            )
            for req in requests
        )

    def execute_item(
        self,
        candidate: BulkCandidate,
        session: Session,
        context: BulkContext,
    ) -> BulkTaskResult:
        request_id = candidate.entity_id
        if session.get(BudgetRequest, request_id) is None:
            raise BudgetRequestNotFoundError(str(request_id))

        advance_id = session.execute(
            select(Advance.id).where(
                Advance.source_type == AdvanceSourceType.BUDGET_REQUEST.value,
                Advance.source_id == request_id,
            )
        ).scalars().first()
        if advance_id is not None:
            return BulkTaskResult.failed(
                HAS_ADVANCE,
                f"budget request {request_id} produced advance {advance_id}",
            )

        unlinked = session.execute(
            update(Invoice)
            .where(Invoice.budget_request_id == request_id)
            .values(budget_request_id=None, updated_by_id=context.actor_id)
            .execution_options(synchronize_session="fetch")
        ).rowcount
        session.execute(
            delete(BudgetRequest)
            .where(BudgetRequest.id == request_id)
            .execution_options(synchronize_session="fetch")
        )
        logger.info(
            "budget_request_bulk_deleted",
            extra={"request_id": str(request_id), "unlinked_invoices": unlinked},
        )
        return BulkTaskResult.succeeded(
            request_id=str(request_id), unlinked_invoices=unlinked,
        )
