"""
Module: saldo_kernel.models.company
Responsibility: ORM persistence for the companies invoices, budget requests
    and advances are booked against.
Architecture position: Kernel > Models.  May import from db/ only.
"""

from datetime import datetime

from sqlalchemy import Boolean, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from saldo_kernel.db.base import Base, UTCDateTime


class Company(Base):
    """A company (by NIP) that a user spends on behalf of."""

    __tablename__ = "companies"

    __table_args__ = (
        UniqueConstraint("nip", name="uq_company_nip"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Polish tax identification number
    nip: Mapped[str] = mapped_column(String(20), nullable=False)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Company {self.name} ({self.nip})>"
