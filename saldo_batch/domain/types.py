"""
saldo_batch.domain.types -- Pure frozen dataclasses for bulk operations.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - Phases only move along BULK_PHASE_TRANSITIONS.
    - Filters are validated on construction and serialise to plain JSON for
      the ``bulk_runs.filters`` column.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from saldo_kernel.exceptions import ValidationError


# =============================================================================
# Status enums
# =============================================================================


class BulkPhase(str, Enum):
    """Run-level phase, persisted on ``bulk_runs.phase``."""

    IDLE = "idle"  # Nothing selected (or preview found nothing)
    PREVIEW = "preview"  # Candidate set recorded, awaiting re-authentication
    CONFIRM_PASSWORD = "confirm_password"  # Actor re-authenticated
    EXECUTING = "executing"  # Items being processed
    VERIFYING = "verifying"  # Execution done, awaiting verification
    COMPLETE = "complete"  # Verified


class BulkItemStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


BULK_PHASE_TRANSITIONS: dict[BulkPhase, frozenset[BulkPhase]] = {
    BulkPhase.IDLE: frozenset({BulkPhase.PREVIEW}),
    BulkPhase.PREVIEW: frozenset({BulkPhase.CONFIRM_PASSWORD, BulkPhase.IDLE}),
    BulkPhase.CONFIRM_PASSWORD: frozenset({BulkPhase.EXECUTING, BulkPhase.IDLE}),
    BulkPhase.EXECUTING: frozenset({BulkPhase.VERIFYING}),
    BulkPhase.VERIFYING: frozenset({BulkPhase.COMPLETE}),
    BulkPhase.COMPLETE: frozenset(),
}


# =============================================================================
# Filters
# =============================================================================


_ALL_STATUSES = "all"


@dataclass(frozen=True)
class BulkFilters:
    """
    Selection criteria shared by every bulk task.

    An empty ``statuses`` tuple (or one containing ``"all"``) matches every
    status.  Date filters apply to ``created_at`` and are intersected:

    * ``year`` (optionally with ``month``): that calendar year / month, UTC.
    * ``start_date`` / ``end_date``: inclusive calendar dates.
    * ``older_than_months``: created before ``as_of`` minus N months.
    """

    statuses: tuple[str, ...] = ()
    user_id: UUID | None = None
    year: int | None = None
    month: int | None = None
    start_date: date | None = None
    end_date: date | None = None
    older_than_months: int | None = None

    def __post_init__(self) -> None:
        statuses = tuple(getattr(s, "value", s) for s in self.statuses)
        if _ALL_STATUSES in statuses:
            statuses = ()
        object.__setattr__(self, "statuses", statuses)

        if self.month is not None:
            if self.year is None:
                raise ValidationError("month", "a month filter needs a year")
            if not 1 <= self.month <= 12:
                raise ValidationError("month", "must be between 1 and 12")
        if (
            self.start_date is not None
            and self.end_date is not None
            and self.start_date > self.end_date
        ):
            raise ValidationError("end_date", "must not be before start_date")
        if self.older_than_months is not None and self.older_than_months < 1:
            raise ValidationError("older_than_months", "must be at least 1")

    def date_bounds(self, as_of: datetime) -> tuple[datetime | None, datetime | None]:
        """
        Return ``(lower, upper)`` on ``created_at``: lower inclusive, upper
        exclusive, either may be None.
        """
        lowers: list[datetime] = []
        uppers: list[datetime] = []

        if self.year is not None:
            if self.month is not None:
                lowers.append(_utc(self.year, self.month))
                uppers.append(_next_month(self.year, self.month))
            else:
                lowers.append(_utc(self.year, 1))
                uppers.append(_utc(self.year + 1, 1))
        if self.start_date is not None:
            lowers.append(_utc(self.start_date.year, self.start_date.month, self.start_date.day))
        if self.end_date is not None:
            uppers.append(
                _utc(self.end_date.year, self.end_date.month, self.end_date.day)
                + timedelta(days=1)
            )
        if self.older_than_months is not None:
            uppers.append(_months_before(as_of, self.older_than_months))

        return (max(lowers) if lowers else None, min(uppers) if uppers else None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "statuses": list(self.statuses),
            "user_id": str(self.user_id) if self.user_id else None,
            "year": self.year,
            "month": self.month,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "older_than_months": self.older_than_months,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BulkFilters:
        return cls(
            statuses=tuple(data.get("statuses") or ()),
            user_id=UUID(data["user_id"]) if data.get("user_id") else None,
            year=data.get("year"),
            month=data.get("month"),
            start_date=date.fromisoformat(data["start_date"]) if data.get("start_date") else None,
            end_date=date.fromisoformat(data["end_date"]) if data.get("end_date") else None,
            older_than_months=data.get("older_than_months"),
        )


def _utc(year: int, month: int, day: int = 1) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


def _next_month(year: int, month: int) -> datetime:
    if month == 12:
        return _utc(year + 1, 1)
    return _utc(year, month + 1)


def _months_before(moment: datetime, months: int) -> datetime:
    """Same day-of-month N months earlier, clamped to the month's length."""
    total = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    last_day = (_next_month(year, month) - timedelta(days=1)).day
    return moment.replace(year=year, month=month, day=min(moment.day, last_day))


# =============================================================================
# Preview / execution DTOs
# =============================================================================


@dataclass(frozen=True)
class BulkCandidate:
    """One row a bulk task would act on."""

    entity_id: UUID
    user_id: UUID | None = None
    label: str = ""
    status: str | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class BulkPreview:
    """The exact candidate set a run will process."""

    run_id: UUID
    task_type: str
    phase: BulkPhase
    candidates: tuple[BulkCandidate, ...] = field(default_factory=tuple)

    @property
    def count(self) -> int:
        return len(self.candidates)

    @property
    def total_amount(self) -> Decimal:
        return sum((c.amount or Decimal("0") for c in self.candidates), Decimal("0"))


@dataclass(frozen=True)
class BulkItemResult:
    """Outcome of processing one candidate."""

    item_index: int
    entity_id: UUID
    status: BulkItemStatus
    error_code: str | None = None
    error_message: str | None = None
    result_data: dict[str, Any] | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class BulkWarning:
    """Structured verification finding."""

    code: str
    message: str
    count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "count": self.count}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BulkWarning:
        return cls(code=data["code"], message=data["message"], count=data.get("count", 0))


@dataclass(frozen=True)
class BulkRun:
    """Persisted state of a bulk run."""

    run_id: UUID
    task_type: str
    phase: BulkPhase
    filters: BulkFilters
    candidate_count: int
    succeeded_items: int = 0
    failed_items: int = 0
    remaining_after_verify: int | None = None
    created_by: UUID | None = None
    created_at: datetime | None = None
    password_confirmed_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    warnings: tuple[BulkWarning, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class BulkRunResult:
    """Summary returned by ``execute``."""

    run_id: UUID
    phase: BulkPhase
    total_items: int
    succeeded: int
    failed: int
    item_results: tuple[BulkItemResult, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class BulkVerification:
    """Post-hoc check: what still matches the filter after execution."""

    run_id: UUID
    phase: BulkPhase
    remaining: int
    succeeded: int
    failed: int
    warnings: tuple[BulkWarning, ...] = field(default_factory=tuple)

    @property
    def is_clean(self) -> bool:
        return self.remaining == 0 and self.failed == 0
