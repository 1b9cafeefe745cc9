"""
saldo_batch.models -- ORM models for bulk operation persistence.

Architecture: saldo_batch/models. Imports from saldo_kernel.db.base only.
"""

from saldo_batch.models.bulk import BulkItemModel, BulkRunModel

__all__ = [
    "BulkItemModel",
    "BulkRunModel",
]
