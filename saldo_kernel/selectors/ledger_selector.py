"""
Module: saldo_kernel.selectors.ledger_selector
Responsibility: Read-only saldo queries: paginated history, company-wide
    statistics, trust score, per-user statistics, chain verification and the
    net ledger effect of one reference (advance or invoice).
Architecture position: Kernel > Selectors.  May import from models/, domain/
    and selectors/base.py.  MUST NOT import from services/.

Invariants checked:
    - Ledger invariant: users.balance equals the sum of the user's ledger
      amounts (verify_chain).
    - Chain invariant: sequences 1..N without gaps, each balance_before equal
      to the previous balance_after, each row arithmetically consistent.

Failure modes:
    - UserNotFoundError for per-user queries on an unknown user.
    - ValidationError for a history page limit outside 1..history_max_limit.

Audit relevance:
    The export collaborator reads history() and stats_for_all(); the chain
    verification is the audit check that the stored balance can be rebuilt
    from the history alone.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from saldo_kernel.config import SaldoSettings
from saldo_kernel.db.types import ZERO, round_money
from saldo_kernel.domain.dtos import LedgerTransactionRecord
from saldo_kernel.domain.values import BudgetRequestStatus, Role
from saldo_kernel.exceptions import UserNotFoundError, ValidationError
from saldo_kernel.models.budget_request import BudgetRequest
from saldo_kernel.models.ledger import LedgerTransaction
from saldo_kernel.models.user import User
from saldo_kernel.selectors.base import BaseSelector

FULL_TRUST = 100


@dataclass(frozen=True)
class HistoryPage:
    """One page of a user's ledger history, newest first."""

    items: tuple[LedgerTransactionRecord, ...]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass(frozen=True)
class SaldoStats:
    """Balance statistics over all users with role ``user``."""

    total_users: int
    total_balance: Decimal
    average_balance: Decimal
    positive_balance: int
    negative_balance: int
    zero_balance: int


@dataclass(frozen=True)
class UserSaldoStats:
    user_id: UUID
    balance: Decimal
    transaction_count: int
    total_requests: int
    approved_requests: int
    rejected_requests: int
    pending_requests: int
    trust_score: int


@dataclass(frozen=True)
class ChainVerification:
    """Result of rebuilding a user's balance from the ledger."""

    user_id: UUID
    stored_balance: Decimal
    ledger_sum: Decimal
    transaction_count: int
    ledger_version: int
    errors: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_valid(self) -> bool:
        return not self.errors


class LedgerSelector(BaseSelector[LedgerTransaction]):
    """Read side of the saldo ledger."""

    def __init__(self, session: Session, settings: SaldoSettings | None = None):
        super().__init__(session)
        self.settings = settings or SaldoSettings()

    def history(
        self,
        user_id: UUID,
        limit: int | None = None,
        offset: int = 0,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> HistoryPage:
        """
        Page through a user's ledger rows, newest first.

        Args:
            user_id: Whose history.
            limit: Page size (1..history_max_limit, default history_default_limit).
            offset: Rows to skip.
            start: Inclusive lower bound on created_at.
            end: Inclusive upper bound on created_at.
        """
        if limit is None:
            limit = self.settings.history_default_limit
        if not 1 <= limit <= self.settings.history_max_limit:
            raise ValidationError(
                "limit", f"must be between 1 and {self.settings.history_max_limit}",
            )
        if offset < 0:
            raise ValidationError("offset", "must not be negative")
        self._require_user(user_id)

        conditions = [LedgerTransaction.user_id == user_id]
        if start is not None:
            conditions.append(LedgerTransaction.created_at >= start)
        if end is not None:
            conditions.append(LedgerTransaction.created_at <= end)

        total = self.session.execute(
            select(func.count()).select_from(LedgerTransaction).where(*conditions)
        ).scalar_one()

        rows = self.session.execute(
            select(LedgerTransaction)
            .where(*conditions)
            .order_by(
                LedgerTransaction.created_at.desc(),
                LedgerTransaction.sequence.desc(),
            )
            .limit(limit)
            .offset(offset)
        ).scalars()

        return HistoryPage(
            items=tuple(row.to_record() for row in rows),
            total=total,
            limit=limit,
            offset=offset,
        )

    def stats_for_all(self) -> SaldoStats:
        """Aggregate balances over every user with role ``user``."""
        balances = [
            round_money(Decimal(b))
            for b in self.session.execute(
                select(User.balance).where(User.role == Role.USER.value)
            ).scalars()
        ]
        total = round_money(sum(balances, ZERO))
        count = len(balances)
        return SaldoStats(
            total_users=count,
            total_balance=total,
            average_balance=round_money(total / count) if count else ZERO,
            positive_balance=sum(1 for b in balances if b > ZERO),
            negative_balance=sum(1 for b in balances if b < ZERO),
            zero_balance=sum(1 for b in balances if b == ZERO),
        )

    def trust_score(self, user_id: UUID) -> int:
        """
        Share of the user's budget requests that were approved, 0..100.

        A user who never asked is fully trusted (100).
        """
        self._require_user(user_id)
        counts = self._request_counts(user_id)
        return _trust_from_counts(counts)

    def user_stats(self, user_id: UUID) -> UserSaldoStats:
        user = self._require_user(user_id)
        counts = self._request_counts(user_id)
        transaction_count = self.session.execute(
            select(func.count())
            .select_from(LedgerTransaction)
            .where(LedgerTransaction.user_id == user_id)
        ).scalar_one()
        return UserSaldoStats(
            user_id=user_id,
            balance=round_money(Decimal(user.balance)),
            transaction_count=transaction_count,
            total_requests=sum(counts.values()),
            approved_requests=counts.get(BudgetRequestStatus.APPROVED.value, 0),
            rejected_requests=counts.get(BudgetRequestStatus.REJECTED.value, 0),
            pending_requests=counts.get(BudgetRequestStatus.PENDING.value, 0),
            trust_score=_trust_from_counts(counts),
        )

    def verify_chain(self, user_id: UUID) -> ChainVerification:
        """
        Rebuild the user's balance from the ledger and compare.

        Never raises for a broken chain; every violation is reported in
        ``errors``.
        """
        user = self._require_user(user_id)
        rows = self.session.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.user_id == user_id)
            .order_by(LedgerTransaction.sequence)
        ).scalars().all()

        errors: list[str] = []
        running = ZERO
        for expected_sequence, row in enumerate(rows, start=1):
            amount = round_money(Decimal(row.amount))
            before = round_money(Decimal(row.balance_before))
            after = round_money(Decimal(row.balance_after))
            if row.sequence != expected_sequence:
                errors.append(
                    f"sequence {row.sequence} found where {expected_sequence} expected"
                )
            if before != running:
                errors.append(
                    f"sequence {row.sequence}: balance_before {before} != previous "
                    f"balance_after {running}"
                )
            if after != round_money(before + amount):
                errors.append(
                    f"sequence {row.sequence}: {before} + {amount} != {after}"
                )
            running = after

        ledger_sum = round_money(sum((Decimal(r.amount) for r in rows), ZERO))
        stored = round_money(Decimal(user.balance))
        if stored != ledger_sum:
            errors.append(f"stored balance {stored} != ledger sum {ledger_sum}")
        if user.ledger_version != len(rows):
            errors.append(
                f"ledger_version {user.ledger_version} != {len(rows)} ledger rows"
            )

        return ChainVerification(
            user_id=user_id,
            stored_balance=stored,
            ledger_sum=ledger_sum,
            transaction_count=len(rows),
            ledger_version=user.ledger_version,
            errors=tuple(errors),
        )

    def net_for_reference(self, reference_id: UUID, user_id: UUID | None = None) -> Decimal:
        """Sum of ledger amounts carrying ``reference_id`` (0 when none)."""
        stmt = select(LedgerTransaction.amount).where(
            LedgerTransaction.reference_id == reference_id
        )
        if user_id is not None:
            stmt = stmt.where(LedgerTransaction.user_id == user_id)
        amounts = self.session.execute(stmt).scalars()
        return round_money(sum((Decimal(a) for a in amounts), ZERO))

    def entries_for_reference(self, reference_id: UUID) -> list[LedgerTransactionRecord]:
        rows = self.session.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.reference_id == reference_id)
            .order_by(LedgerTransaction.created_at, LedgerTransaction.sequence)
        ).scalars()
        return [row.to_record() for row in rows]

    def _require_user(self, user_id: UUID) -> User:
        user = self.session.get(User, user_id, populate_existing=True)
        if user is None:
            raise UserNotFoundError(str(user_id))
        return user

    def _request_counts(self, user_id: UUID) -> dict[str, int]:
        rows = self.session.execute(
            select(BudgetRequest.status, func.count())
            .where(BudgetRequest.user_id == user_id)
            .group_by(BudgetRequest.status)
        ).all()
        return {status: count for status, count in rows}


def _trust_from_counts(counts: dict[str, int]) -> int:
    total = sum(counts.values())
    if total == 0:
        return FULL_TRUST
    approved = counts.get(BudgetRequestStatus.APPROVED.value, 0)
    score = (Decimal(FULL_TRUST * approved) / Decimal(total)).quantize(
        Decimal(1), rounding=ROUND_HALF_UP,
    )
    return int(score)
