"""
Invoice link rewriting (``saldo_kernel.domain.linkage``).

Responsibility
--------------
Pure function behind the invoice-linkage reconciler: given an invoice's
current link and a new target, compute the link to store.  An invoice points
at an advance, at a budget request, or at nothing -- never at both.

Architecture position
---------------------
Kernel > Domain.  ZERO I/O.  ``services.invoice_linkage`` applies the result.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class InvoiceLink:
    """The funding link of one invoice.

    Guarantees: at most one of ``advance_id`` / ``budget_request_id`` is set.
    """

    advance_id: UUID | None = None
    budget_request_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.advance_id is not None and self.budget_request_id is not None:
            raise ValueError("An invoice links to an advance or a budget request, not both")

    @property
    def is_empty(self) -> bool:
        return self.advance_id is None and self.budget_request_id is None


def rewrite_link(
    current: InvoiceLink,
    advance_id: UUID | None = None,
    budget_request_id: UUID | None = None,
) -> InvoiceLink:
    """
    Return the link an invoice should carry after pointing it at a new target.

    Exactly one target may be given; the other link field is cleared.  With
    no target the invoice becomes unlinked.  ``current`` is accepted so that
    callers can detect no-op rewrites (the result equals ``current``).

    Raises:
        ValueError: if both targets are given.
    """
    if advance_id is not None and budget_request_id is not None:
        raise ValueError("Give either advance_id or budget_request_id, not both")
    new_link = InvoiceLink(advance_id=advance_id, budget_request_id=budget_request_id)
    if new_link == current:
        return current
    return new_link
