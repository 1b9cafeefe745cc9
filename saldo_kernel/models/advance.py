"""
Module: saldo_kernel.models.advance
Responsibility: ORM persistence for advances (zaliczki) -- funds advanced to a
    user and tracked pending -> transferred -> settled.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - amount > 0 (ck_advance_amount_positive).
    - Lifecycle is monotonic; services/advance_service.py performs every
      transition with a guarded UPDATE.
    - A transferred advance has exactly one advance_credit row in the ledger
      referencing it.

Failure modes:
    - InvalidTransitionError (service level) on skip, reversal or a lost race.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from saldo_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from saldo_kernel.domain.dtos import AdvanceRecord
from saldo_kernel.domain.values import AdvanceSourceType, AdvanceStatus


class Advance(TrackedBase):
    """A unit of funds advanced to a user."""

    __tablename__ = "advances"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_advance_amount_positive"),
        Index("idx_advance_user_status", "user_id", "status"),
        Index("idx_advance_source", "source_type", "source_id"),
        Index("idx_advance_created_at", "created_at"),
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

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AdvanceStatus.PENDING.value,
    )

    source_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Budget request id when source_type is budget_request
    source_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    transfer_number: Mapped[str | None] = mapped_column(String(255), nullable=True)

    transfer_date: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    transfer_confirmed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    transfer_confirmed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    settled_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    settled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    @property
    def status_value(self) -> AdvanceStatus:
        return AdvanceStatus(self.status)

    def to_record(self) -> AdvanceRecord:
        return AdvanceRecord(
            advance_id=self.id,
            user_id=self.user_id,
            company_id=self.company_id,
            amount=Decimal(self.amount),
            status=AdvanceStatus(self.status),
            source_type=AdvanceSourceType(self.source_type),
            source_id=self.source_id,
            description=self.description,
            transfer_number=self.transfer_number,
            transfer_date=self.transfer_date,
            transfer_confirmed_by=self.transfer_confirmed_by_id,
            settled_at=self.settled_at,
            settled_by=self.settled_by_id,
            created_by=self.created_by_id,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<Advance {self.id} {self.status} {self.amount}>"
