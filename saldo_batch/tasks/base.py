"""
BulkTask protocol, supporting types, and TaskRegistry.

Contract:
    ``BulkTask`` defines the interface every bulk task must implement.
    ``TaskRegistry`` stores registered tasks keyed by ``task_type``.
    ``default_task_registry()`` returns a fresh, empty registry.

Architecture:
    saldo_batch/tasks.  base.py imports only saldo_batch.domain, the kernel
    clock/config/exceptions and SQLAlchemy's Session type.  Task modules
    import the kernel services they drive.

Invariants enforced:
    - One task per ``task_type`` string.
    - ``find_candidates`` never mutates business rows; preview and verify
      both call it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import Select
from sqlalchemy.orm import Session

from saldo_batch.domain.types import BulkCandidate, BulkFilters, BulkItemStatus
from saldo_kernel.config import SaldoSettings
from saldo_kernel.domain.clock import Clock
from saldo_kernel.exceptions import TaskNotRegisteredError


# =============================================================================
# Supporting DTOs
# =============================================================================


@dataclass(frozen=True)
class BulkContext:
    """What a task needs to build kernel services for one item."""

    run_id: UUID
    actor_id: UUID
    clock: Clock
    settings: SaldoSettings

    @property
    def as_of(self) -> datetime:
        return self.clock.now()


@dataclass(frozen=True)
class BulkTaskResult:
    """Result returned by ``BulkTask.execute_item()``.

    The orchestrator uses this to build ``BulkItemResult`` DTOs.
    """

    status: BulkItemStatus
    result_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def succeeded(cls, **result_data: Any) -> BulkTaskResult:
        return cls(status=BulkItemStatus.SUCCEEDED, result_data=result_data or None)

    @classmethod
    def failed(cls, error_code: str, error_message: str) -> BulkTaskResult:
        return cls(
            status=BulkItemStatus.FAILED,
            error_code=error_code,
            error_message=error_message,
        )


# =============================================================================
# BulkTask Protocol
# =============================================================================


@runtime_checkable
class BulkTask(Protocol):
    """Protocol defining the interface for bulk task implementations.

    Each implementation handles one ``task_type`` (e.g. "invoices.bulk_delete").

    Contract:
        - ``task_type``: unique string key registered in TaskRegistry.
        - ``description``: human-readable label for the confirmation dialog.
        - ``find_candidates()``: read-only query for rows matching the filter.
        - ``execute_item()``: processes ONE candidate inside its own
          transaction.

    Non-goals:
        - Does NOT manage transactions -- the orchestrator opens and commits
          one transaction per item.
        - Does NOT retry -- a failed item is recorded and the loop moves on.
    """

    @property
    def task_type(self) -> str: ...

    @property
    def description(self) -> str: ...

    def find_candidates(
        self,
        filters: BulkFilters,
        session: Session,
        as_of: datetime,
    ) -> tuple[BulkCandidate, ...]:
        """Query rows matching ``filters``, oldest first.

        Args:
            filters: Validated selection criteria.
            session: Database session for reading.
            as_of: Clock-injected timestamp used for relative date filters.
        """
        ...

    def execute_item(
        self,
        candidate: BulkCandidate,
        session: Session,
        context: BulkContext,
    ) -> BulkTaskResult:
        """Act on a single candidate.

        Kernel errors may propagate; the orchestrator records them as a
        failed item with the error's ``code``.
        """
        ...


# =============================================================================
# TaskRegistry
# =============================================================================


class TaskRegistry:
    """Registry mapping task_type strings to BulkTask implementations.

    Contract:
        - ``register()`` adds a task; raises ValueError on duplicate.
        - ``get()`` retrieves by task_type; raises TaskNotRegisteredError if
          missing.
        - ``list_tasks()`` returns all registered task_type strings.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, BulkTask] = {}

    def register(self, task: BulkTask) -> None:
        if task.task_type in self._tasks:
            raise ValueError(
                f"Task type '{task.task_type}' is already registered"
            )
        self._tasks[task.task_type] = task

    def get(self, task_type: str) -> BulkTask:
        try:
            return self._tasks[task_type]
        except KeyError:
            raise TaskNotRegisteredError(task_type, self.list_tasks()) from None

    def list_tasks(self) -> tuple[str, ...]:
        """Return all registered task_type strings, sorted."""
        return tuple(sorted(self._tasks.keys()))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_type: str) -> bool:
        return task_type in self._tasks


def default_task_registry() -> TaskRegistry:
    """Create and return a fresh, empty TaskRegistry."""
    return TaskRegistry()


# =============================================================================
# Shared filter application
# =============================================================================


def apply_filters(stmt: Select, model: Any, filters: BulkFilters, as_of: datetime) -> Select:
    """Narrow ``stmt`` by the status, owner and ``created_at`` filters.

    ``model`` must expose ``status``, ``user_id`` and ``created_at`` columns.
    """
    if filters.statuses:
        stmt = stmt.where(model.status.in_(filters.statuses))
    if filters.user_id is not None:
        stmt = stmt.where(model.user_id == filters.user_id)
    lower, upper = filters.date_bounds(as_of)
    if lower is not None:
        stmt = stmt.where(model.created_at >= lower)
    if upper is not None:
        stmt = stmt.where(model.created_at < upper)
    return stmt.order_by(model.created_at, model.id)
