"""
Module: saldo_kernel.models.budget_request
Responsibility: ORM persistence for budget requests -- a user's ask for more
    saldo, reviewed by an accountant.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - requested_amount > 0 (ck_budget_request_amount_positive).
    - Status moves pending -> approved | rejected exactly once, through
      services/budget_request_service.py.  A request that produced an advance
      is history and is never edited again.
    - current_balance_at_request is a snapshot taken at creation.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from saldo_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from saldo_kernel.domain.dtos import BudgetRequestRecord
from saldo_kernel.domain.values import BudgetRequestStatus


class BudgetRequest(TrackedBase):
    """A user's request for additional budget for one company."""

    __tablename__ = "budget_requests"

    __table_args__ = (
        CheckConstraint("requested_amount > 0", name="ck_budget_request_amount_positive"),
        Index("idx_budget_request_user_status", "user_id", "status"),
        Index("idx_budget_request_company", "company_id"),
        Index("idx_budget_request_created_at", "created_at"),
    )

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("companies.id"),
        nullable=False,
    )

    requested_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Saldo when the request was submitted
    current_balance_at_request: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    justification: Mapped[str] = mapped_column(String(2000), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=BudgetRequestStatus.PENDING.value,
    )

    reviewed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reviewed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    rejection_reason: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    def to_record(self) -> BudgetRequestRecord:
        return BudgetRequestRecord(
            request_id=self.id,
            user_id=self.user_id,
            company_id=self.company_id,
            requested_amount=Decimal(self.requested_amount),
            current_balance_at_request=Decimal(self.current_balance_at_request),
            justification=self.justification,
            status=BudgetRequestStatus(self.status),
            reviewed_by=self.reviewed_by_id,
            reviewed_at=self.reviewed_at,
            rejection_reason=self.rejection_reason,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<BudgetRequest {self.id} {self.status} {self.requested_amount}>"
