"""
saldo_batch -- Bulk operation orchestrator.

Filter, preview, re-authenticate, execute item by item, verify.  Used for
administrative clean-ups (bulk deletion of invoices and budget requests)
that must not run as one oversized transaction.

Architecture:
    saldo_batch/ is a top-level package on top of saldo_kernel.  Nothing in
    saldo_kernel imports from saldo_batch (db.engine only imports its models
    lazily so create_tables knows every table).

Guarantees:
    - The phase of every run is persisted on ``bulk_runs``.
    - Each item is processed in its own database transaction and leaves a
      ``bulk_items`` outcome row; one failure never aborts the batch.
    - Verification re-runs the filter and reports what is left as warnings.
"""
