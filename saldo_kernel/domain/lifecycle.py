"""
Lifecycle transition tables (``saldo_kernel.domain.lifecycle``).

Responsibility
--------------
Declares, for every stateful entity, the only status transitions the
services may perform.  Services look the transition up here before issuing
their guarded UPDATE; nothing else decides whether a move is legal.

Invariants enforced
-------------------
* Budget requests: pending -> approved | rejected; both terminal.
* Advances: pending -> transferred -> settled; no skip, no reversal.
* Invoices: decisions only from in_review; settlement only from accepted.
"""

from __future__ import annotations

from saldo_kernel.domain.values import (
    AdvanceStatus,
    BudgetRequestStatus,
    InvoiceStatus,
)

BUDGET_REQUEST_TRANSITIONS: dict[BudgetRequestStatus, frozenset[BudgetRequestStatus]] = {
    BudgetRequestStatus.PENDING: frozenset({
        BudgetRequestStatus.APPROVED,
        BudgetRequestStatus.REJECTED,
    }),
    BudgetRequestStatus.APPROVED: frozenset(),
    BudgetRequestStatus.REJECTED: frozenset(),
}

ADVANCE_TRANSITIONS: dict[AdvanceStatus, frozenset[AdvanceStatus]] = {
    AdvanceStatus.PENDING: frozenset({AdvanceStatus.TRANSFERRED}),
    AdvanceStatus.TRANSFERRED: frozenset({AdvanceStatus.SETTLED}),
    AdvanceStatus.SETTLED: frozenset(),
}

INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.PENDING: frozenset({InvoiceStatus.IN_REVIEW}),
    InvoiceStatus.IN_REVIEW: frozenset({
        InvoiceStatus.PENDING,  # lease released without a decision
        InvoiceStatus.ACCEPTED,
        InvoiceStatus.REJECTED,
    }),
    InvoiceStatus.ACCEPTED: frozenset({
        InvoiceStatus.TRANSFERRED,
        InvoiceStatus.SETTLED,
        InvoiceStatus.REJECTED,  # acceptance revoked, deduction refunded
    }),
    InvoiceStatus.TRANSFERRED: frozenset({InvoiceStatus.SETTLED}),
    InvoiceStatus.SETTLED: frozenset(),
    InvoiceStatus.REJECTED: frozenset(),
}

# Invoices a reviewer may lease
LEASABLE_INVOICE_STATUSES = frozenset({InvoiceStatus.PENDING, InvoiceStatus.IN_REVIEW})


def can_transition(table: dict, current, target) -> bool:
    """Return True if ``table`` allows ``current`` -> ``target``."""
    return target in table.get(current, frozenset())
