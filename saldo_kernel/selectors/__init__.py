"""Read-only query selectors for the saldo kernel."""

from saldo_kernel.selectors.advance_selector import AdvanceDetail, AdvancePage, AdvanceSelector
from saldo_kernel.selectors.budget_request_selector import (
    BudgetRequestPage,
    BudgetRequestSelector,
)
from saldo_kernel.selectors.ledger_selector import (
    ChainVerification,
    HistoryPage,
    LedgerSelector,
    SaldoStats,
    UserSaldoStats,
)

__all__ = [
    "LedgerSelector",
    "HistoryPage",
    "SaldoStats",
    "UserSaldoStats",
    "ChainVerification",
    "AdvanceSelector",
    "AdvancePage",
    "AdvanceDetail",
    "BudgetRequestSelector",
    "BudgetRequestPage",
]
