"""
Module: saldo_kernel.selectors.advance_selector
Responsibility: Read-only advance queries: filtered listing and the detail
    view (linked invoices, source budget request, the user's previous
    advance and the advance's net ledger effect).
Architecture position: Kernel > Selectors.  MUST NOT import from services/.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from saldo_kernel.db.types import ZERO, round_money
from saldo_kernel.domain.dtos import AdvanceRecord, BudgetRequestRecord, InvoiceRecord
from saldo_kernel.domain.values import AdvanceSourceType, AdvanceStatus
from saldo_kernel.exceptions import AdvanceNotFoundError, ValidationError
from saldo_kernel.models.advance import Advance
from saldo_kernel.models.budget_request import BudgetRequest
from saldo_kernel.models.invoice import Invoice
from saldo_kernel.models.ledger import LedgerTransaction
from saldo_kernel.selectors.base import BaseSelector

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class AdvancePage:
    items: tuple[AdvanceRecord, ...]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass(frozen=True)
class AdvanceDetail:
    advance: AdvanceRecord
    invoices: tuple[InvoiceRecord, ...] = field(default_factory=tuple)
    source_request: BudgetRequestRecord | None = None
    previous_advance: AdvanceRecord | None = None
    ledger_net: Decimal = ZERO

    @property
    def invoice_total(self) -> Decimal:
        return round_money(sum((i.amount or ZERO for i in self.invoices), ZERO))


class AdvanceSelector(BaseSelector[Advance]):
    """Listing and detail reads for advances."""

    def list(
        self,
        status: AdvanceStatus | str | None = None,
        user_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> AdvancePage:
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError("limit", f"must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValidationError("offset", "must not be negative")

        conditions = []
        if status is not None:
            conditions.append(Advance.status == AdvanceStatus(status).value)
        if user_id is not None:
            conditions.append(Advance.user_id == user_id)

        total = self.session.execute(
            select(func.count()).select_from(Advance).where(*conditions)
        ).scalar_one()
        rows = self.session.execute(
            select(Advance)
            .where(*conditions)
            .order_by(Advance.created_at.desc(), Advance.id)
            .limit(limit)
            .offset(offset)
        ).scalars()
        return AdvancePage(
            items=tuple(a.to_record() for a in rows),
            total=total,
            limit=limit,
            offset=offset,
        )

    def detail(self, advance_id: UUID) -> AdvanceDetail:
        advance = self.session.get(Advance, advance_id)
        if advance is None:
            raise AdvanceNotFoundError(str(advance_id))

        invoices = self.session.execute(
            select(Invoice)
            .where(Invoice.advance_id == advance_id)
            .order_by(Invoice.created_at, Invoice.id)
        ).scalars()

        source_request = None
        if advance.source_type == AdvanceSourceType.BUDGET_REQUEST.value and advance.source_id:
            request = self.session.get(BudgetRequest, advance.source_id)
            source_request = request.to_record() if request else None

        previous = self.session.execute(
            select(Advance)
            .where(
                Advance.user_id == advance.user_id,
                Advance.id != advance.id,
                Advance.created_at < advance.created_at,
            )
            .order_by(Advance.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

        net = self.session.execute(
            select(LedgerTransaction.amount).where(
                LedgerTransaction.reference_id == advance_id
            )
        ).scalars()

        return AdvanceDetail(
            advance=advance.to_record(),
            invoices=tuple(i.to_record() for i in invoices),
            source_request=source_request,
            previous_advance=previous.to_record() if previous else None,
            ledger_net=round_money(sum((Decimal(a) for a in net), ZERO)),
        )

    def linked_invoice_count(self, advance_id: UUID) -> int:
        """Number of invoices the deletion dialog has to reconcile."""
        return self.session.execute(
            select(func.count()).select_from(Invoice).where(Invoice.advance_id == advance_id)
        ).scalar_one()
