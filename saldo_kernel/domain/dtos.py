"""
Frozen records returned by services and selectors (``saldo_kernel.domain.dtos``).

Services hand these out instead of ORM instances so that callers cannot
mutate persisted state behind the state machines' backs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from saldo_kernel.domain.values import (
    AdvanceSourceType,
    AdvanceStatus,
    BudgetRequestStatus,
    InvoiceStatus,
    LedgerKind,
)


@dataclass(frozen=True)
class LedgerTransactionRecord:
    """One immutable ledger row."""

    transaction_id: UUID
    user_id: UUID
    sequence: int
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    kind: LedgerKind
    reference_id: UUID | None
    notes: str | None
    created_by: UUID
    created_at: datetime


@dataclass(frozen=True)
class BudgetRequestRecord:
    request_id: UUID
    user_id: UUID
    company_id: UUID
    requested_amount: Decimal
    current_balance_at_request: Decimal
    justification: str
    status: BudgetRequestStatus
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    rejection_reason: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class AdvanceRecord:
    advance_id: UUID
    user_id: UUID
    company_id: UUID
    amount: Decimal
    status: AdvanceStatus
    source_type: AdvanceSourceType
    source_id: UUID | None
    description: str | None
    transfer_number: str | None = None
    transfer_date: datetime | None = None
    transfer_confirmed_by: UUID | None = None
    settled_at: datetime | None = None
    settled_by: UUID | None = None
    created_by: UUID | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class InvoiceRecord:
    invoice_id: UUID
    user_id: UUID
    company_id: UUID
    invoice_number: str
    amount: Decimal | None
    status: InvoiceStatus
    advance_id: UUID | None = None
    budget_request_id: UUID | None = None
    current_reviewer_id: UUID | None = None
    review_started_at: datetime | None = None
    last_review_ping: datetime | None = None
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    rejection_reason: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ApprovalResult:
    """Outcome of approving a budget request."""

    request: BudgetRequestRecord
    advance: AdvanceRecord


@dataclass(frozen=True)
class TransferResult:
    """Outcome of transferring an advance."""

    advance: AdvanceRecord
    credit: LedgerTransactionRecord


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of settling an advance."""

    advance: AdvanceRecord
    settled_invoice_ids: tuple[UUID, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class InvoiceDecision:
    """Outcome of an accept/reject/revoke decision on an invoice."""

    invoice: InvoiceRecord
    ledger_entry: LedgerTransactionRecord | None = None
