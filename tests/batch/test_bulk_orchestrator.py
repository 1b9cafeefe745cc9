"""
Tests for saldo_batch.tasks.base and saldo_batch.orchestrator.

Validates TaskRegistry registration/lookup/listing, the BulkTaskResult
constructors, and BulkOrchestrator wiring of the shipped tasks.
"""

from dataclasses import FrozenInstanceError

import pytest

from saldo_batch.domain.types import BulkItemStatus
from saldo_batch.orchestrator import BulkOrchestrator, _default_task_registry
from saldo_batch.services.bulk_executor import BulkExecutor
from saldo_batch.tasks.base import (
    BulkTask,
    BulkTaskResult,
    TaskRegistry,
    default_task_registry,
)
from saldo_batch.tasks.budget_request_tasks import BudgetRequestBulkDeleteTask
from saldo_batch.tasks.invoice_tasks import InvoiceBulkDeleteTask
from saldo_kernel.exceptions import TaskNotRegisteredError


# =============================================================================
# BulkTaskResult
# =============================================================================


class TestBulkTaskResult:

    def test_succeeded(self):
        result = BulkTaskResult.succeeded(invoice_id="abc", refunded=None)
        assert result.status is BulkItemStatus.SUCCEEDED
        assert result.result_data == {"invoice_id": "abc", "refunded": None}
        assert result.error_code is None

    def test_succeeded_without_data(self):
        assert BulkTaskResult.succeeded().result_data is None

    def test_failed(self):
        result = BulkTaskResult.failed("SOME_CODE", "went wrong")
        assert result.status is BulkItemStatus.FAILED
        assert (result.error_code, result.error_message) == ("SOME_CODE", "went wrong")

    def test_frozen(self):
        result = BulkTaskResult.succeeded()
        with pytest.raises(FrozenInstanceError):
            result.status = BulkItemStatus.FAILED


# =============================================================================
# TaskRegistry
# =============================================================================


class TestTaskRegistry:

    def test_shipped_tasks_satisfy_protocol(self):
        assert isinstance(InvoiceBulkDeleteTask(), BulkTask)
        assert isinstance(BudgetRequestBulkDeleteTask(), BulkTask)

    def test_register_and_get(self):
        registry = TaskRegistry()
        task = InvoiceBulkDeleteTask()

        registry.register(task)

        assert registry.get("invoices.bulk_delete") is task
        assert "invoices.bulk_delete" in registry
        assert len(registry) == 1

    def test_duplicate_rejected(self):
        registry = TaskRegistry()
        registry.register(InvoiceBulkDeleteTask())

        with pytest.raises(ValueError, match="already registered"):
            registry.register(InvoiceBulkDeleteTask())

    def test_missing_task(self):
        registry = TaskRegistry()
        registry.register(InvoiceBulkDeleteTask())

        with pytest.raises(TaskNotRegisteredError) as exc_info:
            registry.get("advances.bulk_delete")

        assert exc_info.value.task_type == "advances.bulk_delete"
        assert exc_info.value.available == ("invoices.bulk_delete",)

    def test_list_tasks_sorted(self):
        registry = TaskRegistry()
        registry.register(InvoiceBulkDeleteTask())
        registry.register(BudgetRequestBulkDeleteTask())

        assert registry.list_tasks() == ("budget_requests.bulk_delete", "invoices.bulk_delete")

    def test_default_registry_is_empty_and_fresh(self):
        first = default_task_registry()
        first.register(InvoiceBulkDeleteTask())

        assert len(default_task_registry()) == 0


# =============================================================================
# BulkOrchestrator
# =============================================================================


class TestBulkOrchestrator:

    def test_default_registry_has_shipped_tasks(self):
        assert _default_task_registry().list_tasks() == (
            "budget_requests.bulk_delete",
            "invoices.bulk_delete",
        )

    def test_from_session_factory(self, session_factory, deterministic_clock, settings):
        orchestrator = BulkOrchestrator.from_session_factory(
            session_factory, clock=deterministic_clock, settings=settings,
        )

        assert orchestrator.clock is deterministic_clock
        assert orchestrator.settings is settings
        assert len(orchestrator.task_registry) == 2

    def test_custom_registry(self, session_factory):
        registry = TaskRegistry()

        orchestrator = BulkOrchestrator.from_session_factory(
            session_factory, task_registry=registry,
        )

        assert orchestrator.task_registry is registry

    def test_create_executor(self, session_factory, deterministic_clock, password_verifier):
        orchestrator = BulkOrchestrator.from_session_factory(
            session_factory, clock=deterministic_clock, password_verifier=password_verifier,
        )

        executor = orchestrator.create_executor()

        assert isinstance(executor, BulkExecutor)
        assert executor is not orchestrator.create_executor()

    def test_wiring_logged(self, session_factory, captured_logs):
        BulkOrchestrator.from_session_factory(session_factory)

        wired = [r for r in captured_logs() if r["message"] == "bulk_orchestrator_wired"]
        assert wired[0]["tasks"] == ["budget_requests.bulk_delete", "invoices.bulk_delete"]
