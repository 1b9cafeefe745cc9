"""
LedgerService -- the single entry point for saldo mutation.

Responsibility:
    Appends immutable rows to ``saldo_transactions`` and moves
    ``users.balance`` in the same unit of work.  Nothing else in the code base
    writes a balance; state machines call ``append`` with ``system=True`` and
    accountants reach it through ``adjust``.

Architecture position:
    Kernel > Services -- imperative shell.  Called by AdvanceService,
    InvoiceLinkageService (deductions and refunds) and the bulk tasks.

Invariants enforced:
    - Ledger invariant: after every append, ``users.balance`` equals the sum
      of the user's ledger amounts.
    - Chain invariant: row N has ``sequence = N`` and ``balance_before`` equal
      to row N-1's ``balance_after``.
    - Optimistic write: the balance UPDATE carries ``WHERE ledger_version = v``
      (the version read together with the balance).  If another writer got
      there first no row matches and the whole append fails; it never lands
      on a stale balance.
    - Direct input may only produce ``adjustment`` rows.

Failure modes:
    - ValidationError: zero amount, notes too long, unknown kind.
    - SystemKindNotPermittedError: system kind without ``system=True``.
    - UserNotFoundError: unknown user.
    - ConcurrentModificationError: balance changed between read and write.

Audit relevance:
    Every append is logged as ``ledger_transaction_appended`` with the
    sequence, amount and resulting balance.
"""

from collections.abc import Callable
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from saldo_kernel.config import SaldoSettings
from saldo_kernel.db.types import ZERO, round_money, to_money
from saldo_kernel.domain.clock import Clock
from saldo_kernel.domain.dtos import LedgerTransactionRecord
from saldo_kernel.domain.events import (
    SALDO_ADJUSTED,
    DomainEvent,
    EventPublisher,
    LoggingEventPublisher,
)
from saldo_kernel.domain.values import LedgerKind
from saldo_kernel.exceptions import (
    ConcurrentModificationError,
    SystemKindNotPermittedError,
    UserNotFoundError,
    ValidationError,
)
from saldo_kernel.logging_config import get_logger
from saldo_kernel.models.ledger import LedgerTransaction
from saldo_kernel.models.user import User
from saldo_kernel.services.base import BaseService

logger = get_logger("services.ledger")

T = TypeVar("T")

MAX_NOTES_LENGTH = 500
MIN_ADJUSTMENT_NOTES_LENGTH = 5


class LedgerService(BaseService[LedgerTransaction]):
    """
    Append-only saldo ledger.

    Contract:
        ``append`` validates, reads balance and version, issues the
        conditional balance UPDATE and inserts the ledger row, then flushes.
        It never commits.

    Guarantees:
        - Exactly one ledger row per successful call, with
          ``balance_after = balance_before + amount``.
        - A failed call leaves no partial state once the caller rolls back.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: SaldoSettings | None = None,
        publisher: EventPublisher | None = None,
    ):
        super().__init__(session, clock)
        self.settings = settings or SaldoSettings()
        self.publisher = publisher or LoggingEventPublisher()

    def append(
        self,
        user_id: UUID,
        amount: Decimal | int | str,
        kind: LedgerKind | str,
        actor_id: UUID,
        notes: str | None = None,
        reference_id: UUID | None = None,
        *,
        system: bool = False,
    ) -> LedgerTransactionRecord:
        """
        Append one movement to a user's saldo.

        Args:
            user_id: Whose saldo moves.
            amount: Signed, non-zero amount.
            kind: Transaction kind.
            actor_id: Who caused the movement.
            notes: Optional free text (at most 500 chars).
            reference_id: Advance or invoice the movement belongs to.
            system: True only when called by a state machine; required for
                every kind except ``adjustment``.

        Returns:
            The persisted ledger row.
        """
        amount = self._validate_amount(amount)
        kind = self._validate_kind(kind, system)
        if notes is not None and len(notes) > MAX_NOTES_LENGTH:
            raise ValidationError("notes", f"at most {MAX_NOTES_LENGTH} characters")

        user, balance_before, version = self._read_balance(user_id)
        balance_after = round_money(balance_before + amount)

        result = self.session.execute(
            update(User)
            .where(User.id == user_id, User.ledger_version == version)
            .values(balance=balance_after, ledger_version=version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "ledger_version_conflict",
                extra={
                    "user_id": str(user_id),
                    "expected_version": version,
                    "kind": kind.value,
                },
            )
            raise ConcurrentModificationError("User", str(user_id))

        # Keep the loaded user in step without marking it dirty
        set_committed_value(user, "balance", balance_after)
        set_committed_value(user, "ledger_version", version + 1)

        row = LedgerTransaction(
            user_id=user_id,
            sequence=version + 1,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            kind=kind.value,
            reference_id=reference_id,
            notes=notes,
            created_by_id=actor_id,
            created_at=self.clock.now(),
        )
        self.session.add(row)
        self.session.flush()

        logger.info(
            "ledger_transaction_appended",
            extra={
                "user_id": str(user_id),
                "sequence": row.sequence,
                "kind": kind.value,
                "amount": str(amount),
                "balance_after": str(balance_after),
                "reference_id": str(reference_id) if reference_id else None,
            },
        )
        return row.to_record()

    def append_with_retry(
        self,
        user_id: UUID,
        amount: Decimal | int | str,
        kind: LedgerKind | str,
        actor_id: UUID,
        notes: str | None = None,
        reference_id: UUID | None = None,
        *,
        system: bool = False,
        max_attempts: int | None = None,
    ) -> LedgerTransactionRecord:
        """
        ``append`` retried on ConcurrentModificationError.

        Each attempt runs inside a SAVEPOINT so a lost race rolls back only
        that attempt, not the caller's earlier work.

        Raises:
            ConcurrentModificationError: every attempt lost the race.
        """
        return self._with_retry(
            lambda: self.append(
                user_id,
                amount,
                kind,
                actor_id,
                notes=notes,
                reference_id=reference_id,
                system=system,
            ),
            max_attempts or self.settings.ledger_max_retries,
        )

    def adjust(
        self,
        user_id: UUID,
        amount: Decimal | int | str,
        notes: str,
        actor_id: UUID,
    ) -> LedgerTransactionRecord:
        """
        Manual saldo correction by an accountant.

        Notes are mandatory (5..500 characters) so that every correction
        explains itself in the history.
        """
        notes = (notes or "").strip()
        if len(notes) < MIN_ADJUSTMENT_NOTES_LENGTH:
            raise ValidationError(
                "notes", f"at least {MIN_ADJUSTMENT_NOTES_LENGTH} characters required",
            )

        record = self.append_with_retry(
            user_id,
            amount,
            LedgerKind.ADJUSTMENT,
            actor_id,
            notes=notes,
        )

        logger.info(
            "saldo_adjusted",
            extra={
                "user_id": str(user_id),
                "amount": str(record.amount),
                "balance_after": str(record.balance_after),
            },
        )
        self.publisher.publish(
            DomainEvent(
                name=SALDO_ADJUSTED,
                entity_id=record.transaction_id,
                user_id=user_id,
                actor_id=actor_id,
                occurred_at=record.created_at,
                payload={
                    "amount": str(record.amount),
                    "balance_before": str(record.balance_before),
                    "balance_after": str(record.balance_after),
                    "notes": notes,
                },
            )
        )
        return record

    # Internals

    def _read_balance(self, user_id: UUID) -> tuple[User, Decimal, int]:
        """Read the user's current balance and ledger version."""
        user = self.session.execute(
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if user is None:
            raise UserNotFoundError(str(user_id))
        return user, round_money(Decimal(user.balance)), user.ledger_version

    def _with_retry(self, attempt: Callable[[], T], max_attempts: int) -> T:
        for number in range(1, max_attempts + 1):
            try:
                with self.session.begin_nested():
                    return attempt()
            except ConcurrentModificationError:
                if number == max_attempts:
                    logger.error(
                        "ledger_retry_exhausted",
                        extra={"attempts": max_attempts},
                    )
                    raise
                logger.info("ledger_append_retry", extra={"attempt": number})
        raise AssertionError("unreachable")

    @staticmethod
    def _validate_amount(amount: Decimal | int | str) -> Decimal:
        try:
            value = to_money(amount)
        except (TypeError, ValueError) as exc:
            raise ValidationError("amount", str(exc)) from exc
        if value == ZERO:
            raise ValidationError("amount", "must be non-zero")
        return value

    @staticmethod
    def _validate_kind(kind: LedgerKind | str, system: bool) -> LedgerKind:
        try:
            kind = LedgerKind(kind)
        except ValueError:
            raise ValidationError("kind", f"unknown ledger kind {kind!r}") from None
        if kind.is_system and not system:
            logger.warning(
                "system_kind_rejected",
                extra={"kind": kind.value},
            )
            raise SystemKindNotPermittedError(kind.value)
        return kind
