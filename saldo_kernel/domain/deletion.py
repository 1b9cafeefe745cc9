"""
Advance deletion request (``saldo_kernel.domain.deletion``).

Responsibility
--------------
Value object carrying everything needed to delete an advance in one call:
the advance, the reconciliation strategy, and the reassignment target.
However many UI steps collected it, the request is validated as a whole
before the advance service mutates anything.

Invariants enforced
-------------------
* ``reassign_invoices`` with linked invoices requires a target.
* The target may never be the advance being deleted.
* ``delete_with_invoices`` ignores any target.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from saldo_kernel.domain.values import DeletionStrategy
from saldo_kernel.exceptions import MissingReassignmentTargetError, ValidationError


@dataclass(frozen=True)
class DeletionRequest:
    advance_id: UUID
    strategy: DeletionStrategy
    target_advance_id: UUID | None = None

    def __post_init__(self) -> None:
        # Accept the raw strategy string from request payloads
        if not isinstance(self.strategy, DeletionStrategy):
            try:
                object.__setattr__(self, "strategy", DeletionStrategy(self.strategy))
            except ValueError:
                raise ValidationError(
                    "strategy", f"unknown deletion strategy {self.strategy!r}",
                ) from None

    def validate(self, linked_invoice_count: int) -> None:
        """Check the request against the advance's current invoice count.

        Raises:
            MissingReassignmentTargetError: reassignment with invoices, no target.
            ValidationError: target equals the advance being deleted.
        """
        if self.strategy is not DeletionStrategy.REASSIGN_INVOICES:
            return
        if self.target_advance_id == self.advance_id:
            raise ValidationError(
                "target_advance_id",
                "invoices cannot be reassigned to the advance being deleted",
            )
        if linked_invoice_count > 0 and self.target_advance_id is None:
            raise MissingReassignmentTargetError(
                str(self.advance_id), linked_invoice_count,
            )


@dataclass(frozen=True)
class DeletionOutcome:
    """What deleting an advance did to invoices and the ledger."""

    advance_id: UUID
    strategy: DeletionStrategy
    deleted_invoice_ids: tuple[UUID, ...] = field(default_factory=tuple)
    reassigned_invoice_ids: tuple[UUID, ...] = field(default_factory=tuple)
    target_advance_id: UUID | None = None
    refunded_total: Decimal = Decimal("0.00")
    reversal_transaction_id: UUID | None = None

    @property
    def deleted_invoice_count(self) -> int:
        return len(self.deleted_invoice_ids)

    @property
    def reassigned_invoice_count(self) -> int:
        return len(self.reassigned_invoice_ids)
