"""
saldo_batch.domain -- Pure types and value objects for bulk operations.

ZERO I/O.  All types are frozen dataclasses.
"""

from saldo_batch.domain.types import (
    BULK_PHASE_TRANSITIONS,
    BulkCandidate,
    BulkFilters,
    BulkItemResult,
    BulkItemStatus,
    BulkPhase,
    BulkPreview,
    BulkRun,
    BulkRunResult,
    BulkVerification,
    BulkWarning,
)

__all__ = [
    "BULK_PHASE_TRANSITIONS",
    "BulkCandidate",
    "BulkFilters",
    "BulkItemResult",
    "BulkItemStatus",
    "BulkPhase",
    "BulkPreview",
    "BulkRun",
    "BulkRunResult",
    "BulkVerification",
    "BulkWarning",
]
