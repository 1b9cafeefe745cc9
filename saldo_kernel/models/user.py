"""
Module: saldo_kernel.models.user
Responsibility: ORM persistence for the users whose saldo the ledger tracks.
Architecture position: Kernel > Models.  May import from db/ and domain/values
    only.  MUST NOT import from services/ or selectors/.

Invariants enforced:
    - balance equals the sum of the user's ledger rows.  balance and
      ledger_version are written ONLY by LedgerService.append through a
      conditional UPDATE; db/immutability.py rejects ORM writes to them on a
      persisted user.
    - ledger_version equals the number of ledger rows behind balance.

Failure modes:
    - IntegrityError on duplicate email (uq_user_email).
    - ImmutabilityViolationError when balance is assigned on a loaded user.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, Integer, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from saldo_kernel.db.base import Base, UTCDateTime
from saldo_kernel.domain.values import Role


class User(Base):
    """
    A person with a saldo.

    Identity, password and session handling belong to the auth collaborator;
    this row only carries what the ledger and the state machines need.
    """

    __tablename__ = "users"

    __table_args__ = (
        UniqueConstraint("email", name="uq_user_email"),
        Index("idx_user_role", "role"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    email: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=Role.USER.value,
    )

    # Ledger-owned columns
    balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    ledger_version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    @property
    def role_value(self) -> Role:
        return Role(self.role)

    def __repr__(self) -> str:
        return f"<User {self.email} balance={self.balance}>"
