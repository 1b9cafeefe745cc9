"""saldo_batch.services -- bulk execution engine."""

from saldo_batch.services.bulk_executor import BulkExecutor

__all__ = ["BulkExecutor"]
