"""
Status and kind enumerations (``saldo_kernel.domain.values``).

Pure value types shared by models, services, selectors and saldo_batch.
ZERO I/O.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Role supplied by the auth collaborator with every call."""

    USER = "user"
    ACCOUNTANT = "accountant"
    ADMIN = "admin"


class LedgerKind(str, Enum):
    """Closed set of ledger transaction kinds."""

    ADJUSTMENT = "adjustment"  # Accountant correction (manual input allowed)
    INVOICE_DEDUCTION = "invoice_deduction"  # Invoice accepted, amount negative
    INVOICE_REFUND = "invoice_refund"  # Accepted invoice later rejected
    ADVANCE_CREDIT = "advance_credit"  # Advance transferred to the user
    INVOICE_DELETE_REFUND = "invoice_delete_refund"  # Deducted invoice deleted

    @property
    def is_system(self) -> bool:
        """True for kinds only the state machines may produce."""
        return self is not LedgerKind.ADJUSTMENT


class BudgetRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AdvanceStatus(str, Enum):
    PENDING = "pending"
    TRANSFERRED = "transferred"
    SETTLED = "settled"

    @property
    def stage(self) -> int:
        """Position in the monotonic lifecycle (0, 1, 2)."""
        return _ADVANCE_STAGES[self]

    @property
    def is_funded(self) -> bool:
        """True once the advance has credited the ledger."""
        return self is not AdvanceStatus.PENDING


_ADVANCE_STAGES = {
    AdvanceStatus.PENDING: 0,
    AdvanceStatus.TRANSFERRED: 1,
    AdvanceStatus.SETTLED: 2,
}


class AdvanceSourceType(str, Enum):
    BUDGET_REQUEST = "budget_request"
    MANUAL = "manual"


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    ACCEPTED = "accepted"
    TRANSFERRED = "transferred"
    SETTLED = "settled"
    REJECTED = "rejected"


class DeletionStrategy(str, Enum):
    """How an advance's linked invoices are reconciled when it is deleted."""

    DELETE_WITH_INVOICES = "delete_with_invoices"
    REASSIGN_INVOICES = "reassign_invoices"
