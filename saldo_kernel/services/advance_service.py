"""
AdvanceService -- state machine for advances (zaliczki).

Responsibility:
    Creates advances (from an approved budget request or manually), transfers
    them (crediting the user's saldo), settles them (closing their accepted
    invoices) and deletes them with an explicit reconciliation strategy for
    their invoices.

Architecture position:
    Kernel > Services.  The only caller of ``LedgerService.append`` with
    ``advance_credit``; invoice reconciliation is delegated to
    InvoiceLinkageService.

Invariants enforced:
    - pending -> transferred -> settled; no skip, no reversal.  Every move is
      a guarded UPDATE after ``SELECT ... FOR UPDATE``.
    - Exactly-once credit: the ``advance_credit`` is appended in the same
      transaction as the pending -> transferred UPDATE, and only the request
      whose UPDATE matched may append it.
    - Deletion leaves no invoice pointing at the deleted advance.
    - Deleting a funded advance appends a compensating ``adjustment`` of
      -amount (``reverse_funded_advance_on_delete``) so the saldo never keeps
      credit for an advance that no longer exists.

Failure modes:
    - ValidationError / MissingReassignmentTargetError: bad input, rejected
      before any write.
    - InvalidPasswordError / AuthorizationError: re-authentication failed.
    - AdvanceNotFoundError, UserNotFoundError, CompanyNotFoundError.
    - InvalidTransitionError: wrong status or lost race.
    - ConcurrentModificationError: from the ledger append.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from saldo_kernel.config import SaldoSettings
from saldo_kernel.db.types import ZERO, to_money
from saldo_kernel.domain.auth import PasswordVerifier
from saldo_kernel.domain.clock import Clock
from saldo_kernel.domain.deletion import DeletionOutcome, DeletionRequest
from saldo_kernel.domain.dtos import AdvanceRecord, SettlementResult, TransferResult
from saldo_kernel.domain.events import (
    ADVANCE_DELETED,
    ADVANCE_SETTLED,
    ADVANCE_TRANSFERRED,
    DomainEvent,
    EventPublisher,
    LoggingEventPublisher,
)
from saldo_kernel.domain.lifecycle import ADVANCE_TRANSITIONS, can_transition
from saldo_kernel.domain.values import (
    AdvanceSourceType,
    AdvanceStatus,
    DeletionStrategy,
    InvoiceStatus,
    LedgerKind,
)
from saldo_kernel.exceptions import (
    AdvanceNotFoundError,
    AuthorizationError,
    CompanyNotFoundError,
    InvalidPasswordError,
    InvalidTransitionError,
    UserNotFoundError,
    ValidationError,
)
from saldo_kernel.logging_config import LogContext, get_logger
from saldo_kernel.models.advance import Advance
from saldo_kernel.models.budget_request import BudgetRequest
from saldo_kernel.models.company import Company
from saldo_kernel.models.invoice import Invoice
from saldo_kernel.models.user import User
from saldo_kernel.services.base import BaseService
from saldo_kernel.services.invoice_linkage import InvoiceLinkageService
from saldo_kernel.services.ledger_service import LedgerService

logger = get_logger("services.advance")

MIN_DESCRIPTION_LENGTH = 5
MAX_DESCRIPTION_LENGTH = 2000
MAX_TRANSFER_NUMBER_LENGTH = 255


class AdvanceService(BaseService[Advance]):
    """Advance lifecycle: create, transfer, settle, delete."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: SaldoSettings | None = None,
        publisher: EventPublisher | None = None,
        password_verifier: PasswordVerifier | None = None,
        ledger: LedgerService | None = None,
        linkage: InvoiceLinkageService | None = None,
    ):
        super().__init__(session, clock)
        self.settings = settings or SaldoSettings()
        self.publisher = publisher or LoggingEventPublisher()
        self.password_verifier = password_verifier
        self.ledger = ledger or LedgerService(
            session, self.clock, self.settings, publisher=self.publisher,
        )
        self.linkage = linkage or InvoiceLinkageService(
            session, self.clock, self.settings, ledger=self.ledger,
        )

    # Creation

    def create_manual(
        self,
        user_id: UUID,
        company_id: UUID,
        amount: Decimal | int | str,
        description: str,
        actor_id: UUID,
    ) -> AdvanceRecord:
        """Open a pending advance without a budget request behind it."""
        amount = _positive_amount(amount)
        description = (description or "").strip()
        if not MIN_DESCRIPTION_LENGTH <= len(description) <= MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                "description",
                f"must be {MIN_DESCRIPTION_LENGTH}..{MAX_DESCRIPTION_LENGTH} characters",
            )
        if self.session.get(User, user_id) is None:
            raise UserNotFoundError(str(user_id))
        if self.session.get(Company, company_id) is None:
            raise CompanyNotFoundError(str(company_id))

        advance = self._new_advance(
            user_id=user_id,
            company_id=company_id,
            amount=amount,
            source_type=AdvanceSourceType.MANUAL,
            source_id=None,
            description=description,
            actor_id=actor_id,
        )
        logger.info(
            "advance_created",
            extra={
                "advance_id": str(advance.id),
                "source_type": AdvanceSourceType.MANUAL.value,
                "amount": str(amount),
            },
        )
        return advance.to_record()

    def create_from_budget_request(self, request: BudgetRequest, actor_id: UUID) -> AdvanceRecord:
        """Open the pending advance for an approved budget request."""
        advance = self._new_advance(
            user_id=request.user_id,
            company_id=request.company_id,
            amount=to_money(Decimal(request.requested_amount)),
            source_type=AdvanceSourceType.BUDGET_REQUEST,
            source_id=request.id,
            description=request.justification,
            actor_id=actor_id,
        )
        logger.info(
            "advance_created",
            extra={
                "advance_id": str(advance.id),
                "source_type": AdvanceSourceType.BUDGET_REQUEST.value,
                "source_id": str(request.id),
            },
        )
        return advance.to_record()

    # Transitions

    def transfer(
        self,
        advance_id: UUID,
        actor_id: UUID,
        transfer_number: str | None = None,
    ) -> TransferResult:
        """
        Mark a pending advance as paid out and credit the user's saldo.

        Of two concurrent transfers exactly one succeeds; the other raises
        InvalidTransitionError and appends nothing.
        """
        if transfer_number is not None:
            transfer_number = transfer_number.strip() or None
        if transfer_number and len(transfer_number) > MAX_TRANSFER_NUMBER_LENGTH:
            raise ValidationError(
                "transfer_number", f"at most {MAX_TRANSFER_NUMBER_LENGTH} characters",
            )

        with LogContext.bind(advance_id=advance_id, actor_id=actor_id):
            advance = self._load_for_transition(advance_id, AdvanceStatus.TRANSFERRED)
            now = self.clock.now()
            self._guarded_transition(
                advance,
                (AdvanceStatus.PENDING,),
                AdvanceStatus.TRANSFERRED,
                {
                    "transfer_number": transfer_number,
                    "transfer_date": now,
                    "transfer_confirmed_by_id": actor_id,
                    "transfer_confirmed_at": now,
                    "updated_by_id": actor_id,
                },
            )
            credit = self.ledger.append(
                advance.user_id,
                Decimal(advance.amount),
                LedgerKind.ADVANCE_CREDIT,
                actor_id,
                notes=_credit_notes(advance),
                reference_id=advance.id,
                system=True,
            )

            logger.info(
                "advance_transferred",
                extra={
                    "amount": str(advance.amount),
                    "balance_after": str(credit.balance_after),
                },
            )
            self._publish(
                ADVANCE_TRANSFERRED,
                advance,
                actor_id,
                balance_after=str(credit.balance_after),
                transfer_number=transfer_number,
            )
            return TransferResult(advance=advance.to_record(), credit=credit)

    def settle(self, advance_id: UUID, actor_id: UUID) -> SettlementResult:
        """
        Close a transferred advance.

        Every linked invoice in ``accepted`` becomes ``settled``; the saldo
        does not change (the invoices were deducted on acceptance).
        """
        with LogContext.bind(advance_id=advance_id, actor_id=actor_id):
            advance = self._load_for_transition(advance_id, AdvanceStatus.SETTLED)
            now = self.clock.now()
            self._guarded_transition(
                advance,
                (AdvanceStatus.TRANSFERRED,),
                AdvanceStatus.SETTLED,
                {
                    "settled_at": now,
                    "settled_by_id": actor_id,
                    "updated_by_id": actor_id,
                },
            )

            settled_ids = tuple(
                self.session.execute(
                    select(Invoice.id).where(
                        Invoice.advance_id == advance_id,
                        Invoice.status == InvoiceStatus.ACCEPTED.value,
                    )
                ).scalars()
            )
            if settled_ids:
                self.session.execute(
                    update(Invoice)
                    .where(
                        Invoice.id.in_(settled_ids),
                        Invoice.status == InvoiceStatus.ACCEPTED.value,
                    )
                    .values(
                        status=InvoiceStatus.SETTLED.value,
                        settled_by_id=actor_id,
                        settled_at=now,
                        updated_by_id=actor_id,
                    )
                    .execution_options(synchronize_session="fetch")
                )
                self.session.flush()

            logger.info(
                "advance_settled",
                extra={"settled_invoice_count": len(settled_ids)},
            )
            self._publish(
                ADVANCE_SETTLED, advance, actor_id, settled_invoice_count=len(settled_ids),
            )
            return SettlementResult(advance=advance.to_record(), settled_invoice_ids=settled_ids)

    # Deletion

    def delete(self, request: DeletionRequest, actor_id: UUID, password: str) -> DeletionOutcome:
        """
        Delete an advance and reconcile its invoices in one call.

        Order: re-authenticate, validate the whole request, then mutate.
        Nothing is written if re-authentication or validation fails.
        """
        with LogContext.bind(advance_id=request.advance_id, actor_id=actor_id):
            self._verify_password(actor_id, password)

            advance = self._lock(Advance, request.advance_id)
            if advance is None:
                raise AdvanceNotFoundError(str(request.advance_id))
            linked = self.linkage.invoices.list_invoices_linked_to(advance.id)
            request.validate(len(linked))

            deleted_ids: tuple[UUID, ...] = ()
            reassigned_ids: tuple[UUID, ...] = ()
            refunded = ZERO
            target_id = None

            if request.strategy is DeletionStrategy.REASSIGN_INVOICES:
                if request.target_advance_id is not None:
                    target_id = request.target_advance_id
                    reassigned_ids = self.linkage.reassign_all(advance.id, target_id, actor_id)
            else:
                deleted_ids, refunded = self.linkage.delete_linked(advance.id, actor_id)

            reversal = self._reverse_credit(advance, actor_id)

            record = advance.to_record()
            self.session.delete(advance)
            self.session.flush()

            outcome = DeletionOutcome(
                advance_id=record.advance_id,
                strategy=request.strategy,
                deleted_invoice_ids=deleted_ids,
                reassigned_invoice_ids=reassigned_ids,
                target_advance_id=target_id,
                refunded_total=refunded,
                reversal_transaction_id=reversal.transaction_id if reversal else None,
            )
            logger.info(
                "advance_deleted",
                extra={
                    "strategy": request.strategy.value,
                    "status_at_deletion": record.status.value,
                    "deleted_invoices": outcome.deleted_invoice_count,
                    "reassigned_invoices": outcome.reassigned_invoice_count,
                    "refunded_total": str(refunded),
                    "reversed": reversal is not None,
                },
            )
            self.publisher.publish(
                DomainEvent(
                    name=ADVANCE_DELETED,
                    entity_id=record.advance_id,
                    user_id=record.user_id,
                    actor_id=actor_id,
                    occurred_at=self.clock.now(),
                    payload={
                        "amount": str(record.amount),
                        "strategy": request.strategy.value,
                        "deleted_invoice_count": outcome.deleted_invoice_count,
                        "reassigned_invoice_count": outcome.reassigned_invoice_count,
                        "target_advance_id": str(target_id) if target_id else None,
                    },
                )
            )
            return outcome

    # Internals

    def _reverse_credit(self, advance: Advance, actor_id: UUID):
        status = AdvanceStatus(advance.status)
        if not status.is_funded:
            return None
        if not self.settings.reverse_funded_advance_on_delete:
            logger.warning(
                "funded_advance_deleted_without_reversal",
                extra={"amount": str(advance.amount)},
            )
            return None
        return self.ledger.append(
            advance.user_id,
            -Decimal(advance.amount),
            LedgerKind.ADJUSTMENT,
            actor_id,
            notes="reversal of credit for deleted advance",
            reference_id=advance.id,
            system=True,
        )

    def _verify_password(self, actor_id: UUID, password: str) -> None:
        if self.password_verifier is None:
            raise AuthorizationError("No password verifier configured for destructive actions")
        if not password or not self.password_verifier.verify_password(actor_id, password):
            logger.warning("password_verification_failed")
            raise InvalidPasswordError(str(actor_id))

    def _load_for_transition(self, advance_id: UUID, target: AdvanceStatus) -> Advance:
        advance = self._lock(Advance, advance_id)
        if advance is None:
            raise AdvanceNotFoundError(str(advance_id))
        current = AdvanceStatus(advance.status)
        if not can_transition(ADVANCE_TRANSITIONS, current, target):
            raise InvalidTransitionError("Advance", str(advance_id), current.value, target.value)
        return advance

    def _new_advance(
        self,
        *,
        user_id: UUID,
        company_id: UUID,
        amount: Decimal,
        source_type: AdvanceSourceType,
        source_id: UUID | None,
        description: str | None,
        actor_id: UUID,
    ) -> Advance:
        now = self.clock.now()
        advance = Advance(
            user_id=user_id,
            company_id=company_id,
            amount=amount,
            status=AdvanceStatus.PENDING.value,
            source_type=source_type.value,
            source_id=source_id,
            description=description,
            created_by_id=actor_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(advance)
        self.session.flush()
        return advance

    def _publish(self, name: str, advance: Advance, actor_id: UUID, **payload) -> None:
        self.publisher.publish(
            DomainEvent(
                name=name,
                entity_id=advance.id,
                user_id=advance.user_id,
                actor_id=actor_id,
                occurred_at=self.clock.now(),
                payload={"amount": str(advance.amount), **payload},
            )
        )


def _positive_amount(value: Decimal | int | str) -> Decimal:
    try:
        amount = to_money(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("amount", str(exc)) from exc
    if amount <= ZERO:
        raise ValidationError("amount", "must be greater than zero")
    return amount


def _credit_notes(advance: Advance) -> str:
    if advance.transfer_number:
        return f"advance transferred ({advance.transfer_number})"
    return "advance transferred"
