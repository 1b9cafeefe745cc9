"""
saldo_batch.tasks -- Task protocol, registry, and bulk task implementations.

base.py imports no kernel services; task modules drive the kernel services
they need.
"""

from saldo_batch.tasks.base import (
    BulkContext,
    BulkTask,
    BulkTaskResult,
    TaskRegistry,
    apply_filters,
    default_task_registry,
)

__all__ = [
    "BulkContext",
    "BulkTask",
    "BulkTaskResult",
    "TaskRegistry",
    "apply_filters",
    "default_task_registry",
]
