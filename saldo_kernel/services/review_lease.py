"""
ReviewLeaseService -- heartbeat-renewed soft lock on an invoice review.

Responsibility:
    Lets exactly one accountant at a time work on an invoice decision.  A
    lease is three columns on the invoice (``current_reviewer_id``,
    ``review_started_at``, ``last_review_ping``); it is live while the last
    heartbeat is younger than ``review_lease_expiry_seconds``.

Architecture position:
    Kernel > Services.  InvoiceReviewService requires the lease for accept and
    reject; the UI calls acquire / heartbeat / release around its review view.

Invariants enforced:
    - Lease exclusivity: acquire is one conditional UPDATE
      (``WHERE current_reviewer_id IS NULL OR = actor OR last_review_ping <
      now - expiry``), so two concurrent acquires within the window yield
      exactly one success.
    - Only ``pending`` / ``in_review`` invoices can be leased; acquiring moves
      the invoice to ``in_review`` and release returns it to ``pending``.
    - The expiry is evaluated in SQL against timestamps written from the
      injected Clock.

Failure modes:
    - LeaseHeldError: another reviewer holds a live lease.
    - LeaseNotHeldError: heartbeat by someone other than the holder.
    - InvalidTransitionError: invoice already decided.
    - InvoiceNotFoundError: unknown invoice.
"""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import case, or_, select, update
from sqlalchemy.orm import Session

from saldo_kernel.config import SaldoSettings
from saldo_kernel.domain.clock import Clock
from saldo_kernel.domain.dtos import InvoiceRecord
from saldo_kernel.domain.lifecycle import LEASABLE_INVOICE_STATUSES
from saldo_kernel.domain.values import InvoiceStatus
from saldo_kernel.exceptions import (
    InvalidTransitionError,
    LeaseHeldError,
    LeaseNotHeldError,
)
from saldo_kernel.logging_config import get_logger
from saldo_kernel.models.invoice import Invoice
from saldo_kernel.services.base import BaseService
from saldo_kernel.services.invoice_repository import InvoiceRepository

logger = get_logger("services.review_lease")

_LEASABLE = [s.value for s in LEASABLE_INVOICE_STATUSES]


class ReviewLeaseService(BaseService[Invoice]):
    """Acquire, renew and release review leases."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: SaldoSettings | None = None,
        invoices: InvoiceRepository | None = None,
    ):
        super().__init__(session, clock)
        self.settings = settings or SaldoSettings()
        self.invoices = invoices or InvoiceRepository(session, self.clock)

    @property
    def expiry(self) -> timedelta:
        return timedelta(seconds=self.settings.review_lease_expiry_seconds)

    def stale_before(self, now: datetime) -> datetime:
        """Heartbeats older than this belong to abandoned leases."""
        return now - self.expiry

    def acquire(self, invoice_id: UUID, actor_id: UUID) -> InvoiceRecord:
        """
        Claim the review of an invoice.

        Re-acquiring one's own lease renews it and keeps ``review_started_at``.
        An abandoned lease is taken over.
        """
        invoice = self.invoices.get(invoice_id)
        previous_holder = invoice.current_reviewer_id
        now = self.clock.now()

        result = self.session.execute(
            update(Invoice)
            .where(
                Invoice.id == invoice_id,
                Invoice.status.in_(_LEASABLE),
                or_(
                    Invoice.current_reviewer_id.is_(None),
                    Invoice.current_reviewer_id == actor_id,
                    Invoice.last_review_ping.is_(None),
                    Invoice.last_review_ping < self.stale_before(now),
                ),
            )
            .values(
                status=InvoiceStatus.IN_REVIEW.value,
                current_reviewer_id=actor_id,
                review_started_at=case(
                    (Invoice.current_reviewer_id == actor_id, Invoice.review_started_at),
                    else_=now,
                ),
                last_review_ping=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(invoice)

        if result.rowcount != 1:
            if invoice.status not in _LEASABLE:
                raise InvalidTransitionError(
                    "Invoice", str(invoice_id), invoice.status,
                    InvoiceStatus.IN_REVIEW.value,
                )
            logger.info(
                "review_lease_contended",
                extra={
                    "invoice_id": str(invoice_id),
                    "holder_id": str(invoice.current_reviewer_id),
                    "requested_by": str(actor_id),
                },
            )
            raise LeaseHeldError(
                str(invoice_id),
                str(invoice.current_reviewer_id) if invoice.current_reviewer_id else None,
            )

        if previous_holder is not None and previous_holder != actor_id:
            logger.warning(
                "review_lease_reclaimed",
                extra={
                    "invoice_id": str(invoice_id),
                    "abandoned_by": str(previous_holder),
                    "reviewer_id": str(actor_id),
                },
            )
        else:
            logger.info(
                "review_lease_acquired",
                extra={"invoice_id": str(invoice_id), "reviewer_id": str(actor_id)},
            )
        return invoice.to_record()

    def heartbeat(self, invoice_id: UUID, actor_id: UUID) -> InvoiceRecord:
        """Refresh ``last_review_ping``; only the holder may do this."""
        invoice = self.invoices.get(invoice_id)
        result = self.session.execute(
            update(Invoice)
            .where(
                Invoice.id == invoice_id,
                Invoice.status == InvoiceStatus.IN_REVIEW.value,
                Invoice.current_reviewer_id == actor_id,
            )
            .values(last_review_ping=self.clock.now())
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(invoice)
        if result.rowcount != 1:
            raise LeaseNotHeldError(str(invoice_id), str(actor_id))
        logger.debug("review_lease_heartbeat", extra={"invoice_id": str(invoice_id)})
        return invoice.to_record()

    def release(self, invoice_id: UUID, actor_id: UUID) -> bool:
        """
        Give the lease back without a decision.

        Returns False (and changes nothing) when ``actor_id`` does not hold
        the lease, so a closing review view can always call it.
        """
        invoice = self.invoices.get(invoice_id)
        result = self.session.execute(
            update(Invoice)
            .where(
                Invoice.id == invoice_id,
                Invoice.status == InvoiceStatus.IN_REVIEW.value,
                Invoice.current_reviewer_id == actor_id,
            )
            .values(
                status=InvoiceStatus.PENDING.value,
                current_reviewer_id=None,
                review_started_at=None,
                last_review_ping=None,
            )
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(invoice)
        released = result.rowcount == 1
        logger.info(
            "review_lease_released" if released else "review_lease_release_ignored",
            extra={"invoice_id": str(invoice_id), "reviewer_id": str(actor_id)},
        )
        return released

    def release_stale(self) -> int:
        """
        Return every in-review invoice with an abandoned lease to ``pending``.

        acquire already reclaims abandoned leases; this sweep only keeps
        listings honest.  Returns the number of invoices released.
        """
        now = self.clock.now()
        stale_ids = list(
            self.session.execute(
                select(Invoice.id).where(
                    Invoice.status == InvoiceStatus.IN_REVIEW.value,
                    or_(
                        Invoice.last_review_ping.is_(None),
                        Invoice.last_review_ping < self.stale_before(now),
                    ),
                )
            ).scalars()
        )
        if not stale_ids:
            return 0

        result = self.session.execute(
            update(Invoice)
            .where(
                Invoice.id.in_(stale_ids),
                Invoice.status == InvoiceStatus.IN_REVIEW.value,
                or_(
                    Invoice.last_review_ping.is_(None),
                    Invoice.last_review_ping < self.stale_before(now),
                ),
            )
            .values(
                status=InvoiceStatus.PENDING.value,
                current_reviewer_id=None,
                review_started_at=None,
                last_review_ping=None,
            )
            .execution_options(synchronize_session="fetch")
        )
        logger.info("review_leases_swept", extra={"released": result.rowcount})
        return result.rowcount

    def is_live(self, invoice: Invoice) -> bool:
        """True if ``invoice`` carries a lease whose heartbeat is within the window."""
        if invoice.current_reviewer_id is None or invoice.last_review_ping is None:
            return False
        return invoice.last_review_ping >= self.stale_before(self.clock.now())
