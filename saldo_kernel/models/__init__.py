"""Domain models for the saldo kernel."""

from saldo_kernel.models.advance import Advance
from saldo_kernel.models.budget_request import BudgetRequest
from saldo_kernel.models.company import Company
from saldo_kernel.models.invoice import Invoice
from saldo_kernel.models.ledger import LedgerTransaction
from saldo_kernel.models.user import User

__all__ = [
    "User",
    "Company",
    "LedgerTransaction",
    "BudgetRequest",
    "Advance",
    "Invoice",
]
