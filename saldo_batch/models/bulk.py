"""
ORM models for bulk operation persistence.

Contract:
    BulkRunModel and BulkItemModel persist the phase of a bulk run, the exact
    candidate set recorded at preview time, and one outcome row per processed
    candidate.  Each has a ``to_dto()`` method returning the frozen domain
    type.

Architecture: saldo_batch/models. Imports from saldo_kernel.db.base only.

Invariants enforced:
    - ``phase`` moves only through the orchestrator's guarded UPDATEs.
    - ``candidates`` is written once, by preview; execute processes exactly
      that list.
    - One BulkItemModel per (run_id, item_index).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from saldo_kernel.db.base import TrackedBase, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from saldo_batch.domain.types import BulkCandidate, BulkItemResult, BulkRun


class BulkRunModel(TrackedBase):
    """Persistent bulk run: filter, candidate snapshot, phase and counters."""

    __tablename__ = "bulk_runs"

    __table_args__ = (
        Index("ix_bulk_runs_phase", "phase"),
        Index("ix_bulk_runs_task_type", "task_type"),
        Index("ix_bulk_runs_created_at", "created_at"),
    )

    task_type: Mapped[str] = mapped_column(String(200), nullable=False)
    phase: Mapped[str] = mapped_column(String(50), nullable=False)
    filters: Mapped[dict] = mapped_column(JSON, nullable=False)
    candidates: Mapped[list] = mapped_column(JSON, nullable=False)
    candidate_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    succeeded_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    remaining_after_verify: Mapped[int | None] = mapped_column(Integer, nullable=True)
    warnings: Mapped[list | None] = mapped_column(JSON, nullable=True)
    password_confirmed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    correlation_id: Mapped[str | None] = mapped_column(String(200), nullable=True)

    items: Mapped[list["BulkItemModel"]] = relationship(
        "BulkItemModel",
        back_populates="run",
        foreign_keys="BulkItemModel.run_id",
        order_by="BulkItemModel.item_index",
    )

    def candidate_dtos(self) -> tuple[BulkCandidate, ...]:
        from saldo_batch.domain.types import BulkCandidate

        return tuple(
            BulkCandidate(
                entity_id=UUID(c["entity_id"]),
                user_id=UUID(c["user_id"]) if c.get("user_id") else None,
                label=c.get("label") or "",
                status=c.get("status"),
                amount=Decimal(c["amount"]) if c.get("amount") is not None else None,
            )
            for c in self.candidates or ()
        )

    @staticmethod
    def serialize_candidates(candidates: tuple[BulkCandidate, ...]) -> list[dict]:
        return [
            {
                "entity_id": str(c.entity_id),
                "user_id": str(c.user_id) if c.user_id else None,
                "label": c.label,
                "status": c.status,
                "amount": str(c.amount) if c.amount is not None else None,
            }
            for c in candidates
        ]

    def to_dto(self) -> BulkRun:
        from saldo_batch.domain.types import BulkFilters, BulkPhase, BulkRun, BulkWarning

        return BulkRun(
            run_id=self.id,
            task_type=self.task_type,
            phase=BulkPhase(self.phase),
            filters=BulkFilters.from_dict(self.filters or {}),
            candidate_count=self.candidate_count,
            succeeded_items=self.succeeded_items,
            failed_items=self.failed_items,
            remaining_after_verify=self.remaining_after_verify,
            created_by=self.created_by_id,
            created_at=self.created_at,
            password_confirmed_at=self.password_confirmed_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            warnings=tuple(BulkWarning.from_dict(w) for w in self.warnings or ()),
        )


class BulkItemModel(TrackedBase):
    """Outcome of one candidate within a bulk run."""

    __tablename__ = "bulk_items"

    __table_args__ = (
        UniqueConstraint("run_id", "item_index", name="uq_bulk_item_run_index"),
        Index("ix_bulk_items_run_status", "run_id", "status"),
        Index("ix_bulk_items_entity", "entity_id"),
    )

    run_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bulk_runs.id", ondelete="CASCADE"),
        nullable=False,
    )
    item_index: Mapped[int] = mapped_column(Integer, nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )

    run: Mapped["BulkRunModel"] = relationship(
        "BulkRunModel",
        back_populates="items",
        foreign_keys=[run_id],
    )

    def to_dto(self) -> BulkItemResult:
        from saldo_batch.domain.types import BulkItemResult, BulkItemStatus

        return BulkItemResult(
            item_index=self.item_index,
            entity_id=self.entity_id,
            status=BulkItemStatus(self.status),
            error_code=self.error_code,
            error_message=self.error_message,
            result_data=self.result_data,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )

    @classmethod
    def from_dto(
        cls, dto: BulkItemResult, run_id: UUID, created_by_id: UUID,
    ) -> BulkItemModel:
        return cls(
            run_id=run_id,
            item_index=dto.item_index,
            entity_id=dto.entity_id,
            status=dto.status.value,
            error_code=dto.error_code,
            error_message=dto.error_message,
            result_data=dto.result_data,
            started_at=dto.started_at,
            completed_at=dto.completed_at,
            created_by_id=created_by_id,
            updated_by_id=None,
        )
