"""
Module: saldo_kernel.selectors.budget_request_selector
Responsibility: Read-only budget request queries for the review queue and
    the user's own request list.
Architecture position: Kernel > Selectors.  MUST NOT import from services/.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select

from saldo_kernel.domain.dtos import BudgetRequestRecord
from saldo_kernel.domain.values import BudgetRequestStatus
from saldo_kernel.exceptions import BudgetRequestNotFoundError, ValidationError
from saldo_kernel.models.budget_request import BudgetRequest
from saldo_kernel.selectors.base import BaseSelector

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class BudgetRequestPage:
    items: tuple[BudgetRequestRecord, ...]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


class BudgetRequestSelector(BaseSelector[BudgetRequest]):

    def get(self, request_id: UUID) -> BudgetRequestRecord:
        request = self.session.get(BudgetRequest, request_id)
        if request is None:
            raise BudgetRequestNotFoundError(str(request_id))
        return request.to_record()

    def list(
        self,
        status: BudgetRequestStatus | str | None = None,
        user_id: UUID | None = None,
        company_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> BudgetRequestPage:
        """Requests newest first, optionally filtered."""
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError("limit", f"must be between 1 and {MAX_PAGE_SIZE}")
        conditions = []
        if status is not None:
            conditions.append(BudgetRequest.status == BudgetRequestStatus(status).value)
        if user_id is not None:
            conditions.append(BudgetRequest.user_id == user_id)
        if company_id is not None:
            conditions.append(BudgetRequest.company_id == company_id)

        total = self.session.execute(
            select(func.count()).select_from(BudgetRequest).where(*conditions)
        ).scalar_one()
        rows = self.session.execute(
            select(BudgetRequest)
            .where(*conditions)
            .order_by(BudgetRequest.created_at.desc(), BudgetRequest.id)
            .limit(limit)
            .offset(offset)
        ).scalars()
        return BudgetRequestPage(
            items=tuple(r.to_record() for r in rows),
            total=total,
            limit=limit,
            offset=offset,
        )

    def pending_for(self, user_id: UUID, company_id: UUID) -> BudgetRequestRecord | None:
        """The user's open request for a company, if any."""
        request = self.session.execute(
            select(BudgetRequest).where(
                BudgetRequest.user_id == user_id,
                BudgetRequest.company_id == company_id,
                BudgetRequest.status == BudgetRequestStatus.PENDING.value,
            )
        ).scalars().first()
        return request.to_record() if request else None
