"""
BulkOrchestrator -- DI container for the bulk operation system.

Contract:
    Wires a TaskRegistry with the bulk task implementations and creates
    BulkExecutor instances.  Single place where all bulk dependencies are
    composed.

Architecture: saldo_batch (top-level).  This is the canonical entry point
    for configuring and running bulk operations.  The kernel never imports
    saldo_batch.

Invariants enforced:
    - Clock injection: every executor receives the same Clock.
    - Password re-verification: executors share one PasswordVerifier.
"""

from __future__ import annotations

from collections.abc import Callable

from sqlalchemy.orm import Session

from saldo_batch.services.bulk_executor import BulkExecutor
from saldo_batch.tasks.base import TaskRegistry
from saldo_batch.tasks.budget_request_tasks import BudgetRequestBulkDeleteTask
from saldo_batch.tasks.invoice_tasks import InvoiceBulkDeleteTask
from saldo_kernel.config import SaldoSettings
from saldo_kernel.domain.auth import PasswordVerifier
from saldo_kernel.domain.clock import Clock, SystemClock
from saldo_kernel.logging_config import get_logger

logger = get_logger("batch.orchestrator")


def _default_task_registry() -> TaskRegistry:
    """Create a TaskRegistry pre-loaded with all bulk task implementations."""
    registry = TaskRegistry()
    registry.register(InvoiceBulkDeleteTask())
    registry.register(BudgetRequestBulkDeleteTask())
    return registry


class BulkOrchestrator:
    """DI container for the bulk operation system.

    Contract:
        - ``from_session_factory()`` creates a fully wired orchestrator.
        - ``create_executor()`` returns a BulkExecutor.
        - ``task_registry`` provides access to registered tasks.

    Non-goals:
        - Does NOT manage engines -- the caller passes a session factory.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        task_registry: TaskRegistry,
        clock: Clock | None = None,
        settings: SaldoSettings | None = None,
        password_verifier: PasswordVerifier | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._task_registry = task_registry
        self._clock = clock or SystemClock()
        self._settings = settings or SaldoSettings()
        self._password_verifier = password_verifier

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session_factory(
        cls,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        settings: SaldoSettings | None = None,
        password_verifier: PasswordVerifier | None = None,
        task_registry: TaskRegistry | None = None,
    ) -> BulkOrchestrator:
        """Create a fully wired BulkOrchestrator.

        Args:
            session_factory: Callable returning a new Session per transaction.
            clock: Optional clock for deterministic testing.
            settings: Optional settings; defaults to ``SaldoSettings()``.
            password_verifier: Auth collaborator for re-authentication.
            task_registry: Optional pre-configured registry. If None, uses
                the default registry with all bulk tasks.
        """
        registry = task_registry if task_registry is not None else _default_task_registry()
        logger.debug("bulk_orchestrator_wired", extra={"tasks": list(registry.list_tasks())})
        return cls(
            session_factory=session_factory,
            task_registry=registry,
            clock=clock or SystemClock(),
            settings=settings,
            password_verifier=password_verifier,
        )

    # -------------------------------------------------------------------------
    # Executor
    # -------------------------------------------------------------------------

    def create_executor(self) -> BulkExecutor:
        """Create a BulkExecutor wired with the orchestrator's dependencies."""
        return BulkExecutor(
            session_factory=self._session_factory,
            task_registry=self._task_registry,
            clock=self._clock,
            settings=self._settings,
            password_verifier=self._password_verifier,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def settings(self) -> SaldoSettings:
        return self._settings

    @property
    def task_registry(self) -> TaskRegistry:
        return self._task_registry
