"""
Module: saldo_kernel.models.ledger
Responsibility: ORM persistence for saldo ledger rows -- the append-only
    history every balance change is reconstructed from.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.
    Rows are created exclusively by services/ledger_service.py.

Invariants enforced:
    - Append-only: db/immutability.py rejects UPDATE and DELETE.
    - balance_after = balance_before + amount, computed in Decimal by the
      ledger service and checked by LedgerSelector.verify_chain.
    - amount is never zero (ck_ledger_amount_nonzero).
    - Chain: per user, sequence runs 1, 2, 3 ... and each row's balance_before
      equals the previous row's balance_after (uq_ledger_user_sequence makes
      two writers claiming the same position impossible).

Failure modes:
    - IntegrityError on a duplicate (user_id, sequence).
    - ImmutabilityViolationError on any attempt to edit or delete a row.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from saldo_kernel.db.base import Base, UTCDateTime, UUIDString
from saldo_kernel.domain.dtos import LedgerTransactionRecord
from saldo_kernel.domain.values import LedgerKind


class LedgerTransaction(Base):
    """
    One immutable saldo movement.

    Guarantees:
        - Never updated, never deleted.
        - ``reference_id`` points at the advance or invoice that caused it;
          it is a plain UUID, not a foreign key, so the history survives the
          deletion of what it references.
    """

    __tablename__ = "saldo_transactions"

    __table_args__ = (
        UniqueConstraint("user_id", "sequence", name="uq_ledger_user_sequence"),
        CheckConstraint("amount <> 0", name="ck_ledger_amount_nonzero"),
        Index("idx_ledger_user", "user_id"),
        Index("idx_ledger_created_at", "created_at"),
        Index("idx_ledger_reference", "reference_id"),
    )

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )

    # 1-based position in the user's chain
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    balance_before: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    balance_after: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    kind: Mapped[str] = mapped_column(String(50), nullable=False)

    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def to_record(self) -> LedgerTransactionRecord:
        return LedgerTransactionRecord(
            transaction_id=self.id,
            user_id=self.user_id,
            sequence=self.sequence,
            amount=Decimal(self.amount),
            balance_before=Decimal(self.balance_before),
            balance_after=Decimal(self.balance_after),
            kind=LedgerKind(self.kind),
            reference_id=self.reference_id,
            notes=self.notes,
            created_by=self.created_by_id,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<LedgerTransaction user={self.user_id} #{self.sequence} {self.kind} {self.amount}>"
