"""
Module: saldo_kernel.models.invoice
Responsibility: ORM persistence for the core invoice fields the saldo
    workflows touch: amount, status, funding link and review lease.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.
    Scans, e-invoice registry data and line items belong to the invoice CRUD
    collaborator and are not modelled here.

Invariants enforced:
    - At most one of advance_id / budget_request_id is set
      (ck_invoice_single_link).
    - Review lease fields (current_reviewer_id, review_started_at,
      last_review_ping) are written only by services/review_lease.py and the
      decision methods of services/invoice_review.py.
    - amount, when present, is >= 0 (ck_invoice_amount_non_negative).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from saldo_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from saldo_kernel.domain.dtos import InvoiceRecord
from saldo_kernel.domain.linkage import InvoiceLink
from saldo_kernel.domain.values import InvoiceStatus


class Invoice(TrackedBase):
    """An invoice submitted by a user and decided by an accountant."""

    __tablename__ = "invoices"

    __table_args__ = (
        CheckConstraint(
            "advance_id IS NULL OR budget_request_id IS NULL",
            name="ck_invoice_single_link",
        ),
        CheckConstraint(
            "amount IS NULL OR amount >= 0",
            name="ck_invoice_amount_non_negative",
        ),
        Index("idx_invoice_user_status", "user_id", "status"),
        Index("idx_invoice_advance", "advance_id"),
        Index("idx_invoice_budget_request", "budget_request_id"),
        Index("idx_invoice_created_at", "created_at"),
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

    invoice_number: Mapped[str] = mapped_column(String(255), nullable=False)

    amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=InvoiceStatus.PENDING.value,
    )

    # Funding link
    advance_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("advances.id"),
        nullable=True,
    )

    budget_request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("budget_requests.id"),
        nullable=True,
    )

    # Review lease
    current_reviewer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    review_started_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    last_review_ping: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    # Decision
    reviewed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reviewed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    rejection_reason: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    settled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    settled_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    @property
    def link(self) -> InvoiceLink:
        return InvoiceLink(
            advance_id=self.advance_id,
            budget_request_id=self.budget_request_id,
        )

    def to_record(self) -> InvoiceRecord:
        return InvoiceRecord(
            invoice_id=self.id,
            user_id=self.user_id,
            company_id=self.company_id,
            invoice_number=self.invoice_number,
            amount=Decimal(self.amount) if self.amount is not None else None,
            status=InvoiceStatus(self.status),
            advance_id=self.advance_id,
            budget_request_id=self.budget_request_id,
            current_reviewer_id=self.current_reviewer_id,
            review_started_at=self.review_started_at,
            last_review_ping=self.last_review_ping,
            reviewed_by=self.reviewed_by_id,
            reviewed_at=self.reviewed_at,
            rejection_reason=self.rejection_reason,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number} {self.status}>"
