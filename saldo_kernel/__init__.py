"""
Saldo Kernel - per-user balance ledger and advance workflows

An append-only balance ledger with:
- A single optimistic-concurrency entry point for every balance change
- Budget request and advance state machines
- Invoice-to-advance link reconciliation on advance deletion
- A heartbeat review lease serializing invoice decisions
"""

__version__ = "0.1.0"
