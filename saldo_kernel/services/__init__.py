"""Kernel services: every write path of the saldo kernel."""

from saldo_kernel.services.advance_service import AdvanceService
from saldo_kernel.services.budget_request_service import BudgetRequestService
from saldo_kernel.services.invoice_linkage import InvoiceLinkageService
from saldo_kernel.services.invoice_repository import InvoiceRepository
from saldo_kernel.services.invoice_review import InvoiceReviewService
from saldo_kernel.services.ledger_service import LedgerService
from saldo_kernel.services.review_lease import ReviewLeaseService

__all__ = [
    "LedgerService",
    "BudgetRequestService",
    "AdvanceService",
    "InvoiceRepository",
    "InvoiceLinkageService",
    "ReviewLeaseService",
    "InvoiceReviewService",
]
