"""
BudgetRequestService -- state machine for budget requests.

Responsibility:
    Users ask for more saldo for a company; accountants approve (which opens
    a pending advance for the requested amount) or reject with a reason.
    The owner may withdraw a request while it is still pending.

Architecture position:
    Kernel > Services.  Approval hands the new advance to AdvanceService; no
    method here touches the ledger -- money only moves when the advance is
    transferred.

Invariants enforced:
    - pending -> approved | rejected, each exactly once, via a guarded
      UPDATE; two reviewers racing on one request yield one decision.
    - At most one pending request per user and company.
    - current_balance_at_request is snapshotted at creation.
    - A decided request is immutable history.

Failure modes:
    - ValidationError: non-positive amount, justification too short/long,
      blank rejection reason.
    - DuplicatePendingRequestError: pending request already open.
    - UserNotFoundError / CompanyNotFoundError / BudgetRequestNotFoundError.
    - InvalidTransitionError: request already decided.
    - AuthorizationError: cancel by someone other than the owner.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from saldo_kernel.config import SaldoSettings
from saldo_kernel.db.types import ZERO, round_money, to_money
from saldo_kernel.domain.clock import Clock
from saldo_kernel.domain.dtos import ApprovalResult, BudgetRequestRecord
from saldo_kernel.domain.events import (
    BUDGET_REQUEST_APPROVED,
    BUDGET_REQUEST_REJECTED,
    BUDGET_REQUEST_SUBMITTED,
    DomainEvent,
    EventPublisher,
    LoggingEventPublisher,
)
from saldo_kernel.domain.lifecycle import BUDGET_REQUEST_TRANSITIONS, can_transition
from saldo_kernel.domain.values import BudgetRequestStatus
from saldo_kernel.exceptions import (
    AuthorizationError,
    BudgetRequestNotFoundError,
    CompanyNotFoundError,
    DuplicatePendingRequestError,
    InvalidTransitionError,
    UserNotFoundError,
    ValidationError,
)
from saldo_kernel.logging_config import LogContext, get_logger
from saldo_kernel.models.budget_request import BudgetRequest
from saldo_kernel.models.company import Company
from saldo_kernel.models.invoice import Invoice
from saldo_kernel.models.user import User
from saldo_kernel.services.advance_service import AdvanceService
from saldo_kernel.services.base import BaseService

logger = get_logger("services.budget_request")

MIN_JUSTIFICATION_LENGTH = 5
MAX_JUSTIFICATION_LENGTH = 2000


class BudgetRequestService(BaseService[BudgetRequest]):
    """Create, approve, reject and cancel budget requests."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: SaldoSettings | None = None,
        publisher: EventPublisher | None = None,
        advances: AdvanceService | None = None,
    ):
        super().__init__(session, clock)
        self.settings = settings or SaldoSettings()
        self.publisher = publisher or LoggingEventPublisher()
        self.advances = advances or AdvanceService(
            session, self.clock, self.settings, publisher=self.publisher,
        )

    def create(
        self,
        user_id: UUID,
        company_id: UUID,
        requested_amount: Decimal | int | str,
        justification: str,
    ) -> BudgetRequestRecord:
        """
        Submit a request on behalf of ``user_id``.

        The user's row is locked first so that two concurrent submissions for
        the same company cannot both pass the duplicate check.
        """
        amount = _positive_amount(requested_amount)
        justification = _justification(justification)

        user = self._lock(User, user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))
        if self.session.get(Company, company_id) is None:
            raise CompanyNotFoundError(str(company_id))

        existing = self.session.execute(
            select(BudgetRequest.id).where(
                BudgetRequest.user_id == user_id,
                BudgetRequest.company_id == company_id,
                BudgetRequest.status == BudgetRequestStatus.PENDING.value,
            )
        ).scalars().first()
        if existing is not None:
            raise DuplicatePendingRequestError(str(user_id), str(company_id), str(existing))

        now = self.clock.now()
        request = BudgetRequest(
            user_id=user_id,
            company_id=company_id,
            requested_amount=amount,
            current_balance_at_request=round_money(Decimal(user.balance)),
            justification=justification,
            status=BudgetRequestStatus.PENDING.value,
            created_by_id=user_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(request)
        self.session.flush()

        logger.info(
            "budget_request_submitted",
            extra={
                "request_id": str(request.id),
                "user_id": str(user_id),
                "requested_amount": str(amount),
            },
        )
        self._publish(BUDGET_REQUEST_SUBMITTED, request, actor_id=user_id)
        return request.to_record()

    def approve(self, request_id: UUID, reviewer_id: UUID) -> ApprovalResult:
        """
        Approve a pending request and open a pending advance for it.

        No ledger effect: the saldo grows when the advance is transferred.
        """
        with LogContext.bind(actor_id=reviewer_id):
            request = self._load_for_decision(request_id, BudgetRequestStatus.APPROVED)
            self._guarded_transition(
                request,
                (BudgetRequestStatus.PENDING,),
                BudgetRequestStatus.APPROVED,
                {
                    "reviewed_by_id": reviewer_id,
                    "reviewed_at": self.clock.now(),
                    "updated_by_id": reviewer_id,
                },
            )
            advance = self.advances.create_from_budget_request(request, reviewer_id)

            logger.info(
                "budget_request_approved",
                extra={"request_id": str(request_id), "new_advance_id": str(advance.advance_id)},
            )
            self._publish(
                BUDGET_REQUEST_APPROVED,
                request,
                actor_id=reviewer_id,
                advance_id=str(advance.advance_id),
            )
            return ApprovalResult(request=request.to_record(), advance=advance)

    def reject(self, request_id: UUID, reviewer_id: UUID, rejection_reason: str) -> BudgetRequestRecord:
        reason = (rejection_reason or "").strip()
        if not reason:
            raise ValidationError("rejection_reason", "required")

        with LogContext.bind(actor_id=reviewer_id):
            request = self._load_for_decision(request_id, BudgetRequestStatus.REJECTED)
            self._guarded_transition(
                request,
                (BudgetRequestStatus.PENDING,),
                BudgetRequestStatus.REJECTED,
                {
                    "reviewed_by_id": reviewer_id,
                    "reviewed_at": self.clock.now(),
                    "rejection_reason": reason,
                    "updated_by_id": reviewer_id,
                },
            )
            logger.info("budget_request_rejected", extra={"request_id": str(request_id)})
            self._publish(
                BUDGET_REQUEST_REJECTED, request, actor_id=reviewer_id, reason=reason,
            )
            return request.to_record()

    def cancel(self, request_id: UUID, user_id: UUID) -> None:
        """
        Withdraw (delete) the caller's own pending request.

        Invoices that pointed at it become unlinked.  The row is locked and
        checked for ``pending`` before any invoice is touched, so a decided
        request raises with nothing written.
        """
        request = self._lock(BudgetRequest, request_id)
        if request is None:
            raise BudgetRequestNotFoundError(str(request_id))
        if request.user_id != user_id:
            raise AuthorizationError(
                f"Budget request {request_id} belongs to another user"
            )
        if request.status != BudgetRequestStatus.PENDING.value:
            raise InvalidTransitionError(
                "BudgetRequest", str(request_id), request.status, "cancelled",
            )

        unlinked = self.session.execute(
            update(Invoice)
            .where(Invoice.budget_request_id == request_id)
            .values(budget_request_id=None, updated_by_id=user_id)
            .execution_options(synchronize_session="fetch")
        ).rowcount
        result = self.session.execute(
            delete(BudgetRequest)
            .where(
                BudgetRequest.id == request_id,
                BudgetRequest.status == BudgetRequestStatus.PENDING.value,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.refresh(request)
            raise InvalidTransitionError(
                "BudgetRequest", str(request_id), request.status, "cancelled",
            )
        self.session.expunge(request)
        logger.info(
            "budget_request_cancelled",
            extra={"request_id": str(request_id), "unlinked_invoices": unlinked},
        )

    def _load_for_decision(self, request_id: UUID, target: BudgetRequestStatus) -> BudgetRequest:
        request = self._lock(BudgetRequest, request_id)
        if request is None:
            raise BudgetRequestNotFoundError(str(request_id))
        current = BudgetRequestStatus(request.status)
        if not can_transition(BUDGET_REQUEST_TRANSITIONS, current, target):
            raise InvalidTransitionError(
                "BudgetRequest", str(request_id), current.value, target.value,
            )
        return request

    def _publish(self, name: str, request: BudgetRequest, actor_id: UUID, **payload) -> None:
        self.publisher.publish(
            DomainEvent(
                name=name,
                entity_id=request.id,
                user_id=request.user_id,
                actor_id=actor_id,
                occurred_at=self.clock.now(),
                payload={"requested_amount": str(request.requested_amount), **payload},
            )
        )


def _positive_amount(value: Decimal | int | str) -> Decimal:
    try:
        amount = to_money(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("requested_amount", str(exc)) from exc
    if amount <= ZERO:
        raise ValidationError("requested_amount", "must be greater than zero")
    return amount


def _justification(text: str) -> str:
    text = (text or "").strip()
    if len(text) < MIN_JUSTIFICATION_LENGTH:
        raise ValidationError(
            "justification", f"at least {MIN_JUSTIFICATION_LENGTH} characters required",
        )
    if len(text) > MAX_JUSTIFICATION_LENGTH:
        raise ValidationError(
            "justification", f"at most {MAX_JUSTIFICATION_LENGTH} characters",
        )
    return text
