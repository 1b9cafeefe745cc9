"""
Typed Exception Hierarchy for the Saldo Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel (request handlers, the bulk orchestrator, export jobs)
must react differently to "bad input", "someone else got there first" and
"try again".  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        advance_service.transfer(advance_id, actor_id=accountant_id)
    except InvalidTransitionError as e:
        return conflict(code=e.code, current=e.from_status)
    except ConcurrentModificationError:
        retry_request()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from SaldoKernelError:

    SaldoKernelError (base)
    |
    +-- ValidationError
    |   +-- DuplicatePendingRequestError
    |   +-- MissingReassignmentTargetError
    |
    +-- NotFoundError
    |   +-- UserNotFoundError
    |   +-- CompanyNotFoundError
    |   +-- BudgetRequestNotFoundError
    |   +-- AdvanceNotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- BulkRunNotFoundError
    |
    +-- InvalidTransitionError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- LeaseError
    |   +-- LeaseHeldError
    |   +-- LeaseNotHeldError
    |
    +-- AuthorizationError
    |   +-- InvalidPasswordError
    |   +-- SystemKindNotPermittedError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- BulkOperationError
        +-- BulkPhaseError
        +-- TaskNotRegisteredError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                         | When Raised
----------------|------------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR             | Non-positive amount, short text, bad input
                | DUPLICATE_PENDING_REQUEST    | Pending budget request exists for company
                | MISSING_REASSIGNMENT_TARGET  | Reassign strategy without a target advance
----------------|------------------------------|-----------------------------------------
Not found       | USER_NOT_FOUND               | User ID doesn't exist
                | COMPANY_NOT_FOUND            | Company ID doesn't exist
                | BUDGET_REQUEST_NOT_FOUND     | Budget request ID doesn't exist
                | ADVANCE_NOT_FOUND            | Advance ID doesn't exist
                | INVOICE_NOT_FOUND            | Invoice ID doesn't exist
                | BULK_RUN_NOT_FOUND           | Bulk run ID doesn't exist
----------------|------------------------------|-----------------------------------------
Transition      | INVALID_TRANSITION           | State machine precondition failed
----------------|------------------------------|-----------------------------------------
Concurrency     | CONCURRENT_MODIFICATION      | Balance changed between read and write
----------------|------------------------------|-----------------------------------------
Lease           | LEASE_HELD                   | Another reviewer holds a live lease
                | LEASE_NOT_HELD               | Caller does not hold the lease
----------------|------------------------------|-----------------------------------------
Authorization   | AUTHORIZATION_ERROR          | Role or re-authentication check failed
                | INVALID_PASSWORD             | Password re-verification failed
                | SYSTEM_KIND_NOT_PERMITTED    | Direct write of a system ledger kind
----------------|------------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION       | Ledger row or balance edited in place
----------------|------------------------------|-----------------------------------------
Bulk            | BULK_PHASE_ERROR             | Bulk step called out of order
                | TASK_NOT_REGISTERED          | Unknown bulk task type

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ValidationError / AuthorizationError are raised before any write; the
   caller fixes input and resubmits.

2. InvalidTransitionError and LeaseHeldError are conflicts: another request
   already moved the entity.  Surface them, don't retry blindly.

3. ConcurrentModificationError means the whole operation was rejected
   atomically.  Roll back and retry (LedgerService.append_with_retry does the
   retry for single appends).

4. ImmutabilityViolationError is a programming error.  Log and investigate.

===============================================================================
"""


class SaldoKernelError(Exception):
    """
    Base exception for all saldo kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SALDO_KERNEL_ERROR"


# Validation


class ValidationError(SaldoKernelError):
    """Input rejected before any write took place."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"Invalid {field}: {message}")


class DuplicatePendingRequestError(ValidationError):
    """The user already has a pending budget request for this company."""

    code: str = "DUPLICATE_PENDING_REQUEST"

    def __init__(self, user_id: str, company_id: str, existing_request_id: str):
        self.user_id = user_id
        self.company_id = company_id
        self.existing_request_id = existing_request_id
        super().__init__(
            "company_id",
            f"user {user_id} already has pending request "
            f"{existing_request_id} for company {company_id}",
        )


class MissingReassignmentTargetError(ValidationError):
    """Reassignment requested for linked invoices without a target advance."""

    code: str = "MISSING_REASSIGNMENT_TARGET"

    def __init__(self, advance_id: str, linked_invoice_count: int):
        self.advance_id = advance_id
        self.linked_invoice_count = linked_invoice_count
        super().__init__(
            "target_advance_id",
            f"advance {advance_id} has {linked_invoice_count} linked "
            "invoice(s); a target advance is required",
        )


# Lookups


class NotFoundError(SaldoKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"
    entity_type: str = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class UserNotFoundError(NotFoundError):
    code: str = "USER_NOT_FOUND"
    entity_type = "User"


class CompanyNotFoundError(NotFoundError):
    code: str = "COMPANY_NOT_FOUND"
    entity_type = "Company"


class BudgetRequestNotFoundError(NotFoundError):
    code: str = "BUDGET_REQUEST_NOT_FOUND"
    entity_type = "BudgetRequest"


class AdvanceNotFoundError(NotFoundError):
    code: str = "ADVANCE_NOT_FOUND"
    entity_type = "Advance"


class InvoiceNotFoundError(NotFoundError):
    code: str = "INVOICE_NOT_FOUND"
    entity_type = "Invoice"


class BulkRunNotFoundError(NotFoundError):
    code: str = "BULK_RUN_NOT_FOUND"
    entity_type = "BulkRun"


# State machines


class InvalidTransitionError(SaldoKernelError):
    """
    State machine precondition failed.

    Raised both when the loaded status forbids the transition and when the
    guarded UPDATE matched no row because a concurrent request moved the
    entity first.
    """

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        from_status: str,
        to_status: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot move {entity_type} {entity_id} "
            f"from '{from_status}' to '{to_status}'"
        )


# Concurrency


class ConcurrencyError(SaldoKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Optimistic check failed: another writer changed the row first."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            "retry the operation"
        )


# Review lease


class LeaseError(SaldoKernelError):
    """Base exception for review lease errors."""

    code: str = "LEASE_ERROR"


class LeaseHeldError(LeaseError):
    """Another reviewer holds a live lease on the invoice."""

    code: str = "LEASE_HELD"

    def __init__(self, invoice_id: str, holder_id: str | None):
        self.invoice_id = invoice_id
        self.holder_id = holder_id
        super().__init__(
            f"Invoice {invoice_id} is being reviewed by {holder_id}"
        )


class LeaseNotHeldError(LeaseError):
    """The caller does not hold the lease it tried to use."""

    code: str = "LEASE_NOT_HELD"

    def __init__(self, invoice_id: str, actor_id: str):
        self.invoice_id = invoice_id
        self.actor_id = actor_id
        super().__init__(
            f"Actor {actor_id} does not hold the review lease on invoice {invoice_id}"
        )


# Authorization


class AuthorizationError(SaldoKernelError):
    """Role or re-authentication check failed."""

    code: str = "AUTHORIZATION_ERROR"


class InvalidPasswordError(AuthorizationError):
    """Password re-verification failed."""

    code: str = "INVALID_PASSWORD"

    def __init__(self, actor_id: str):
        self.actor_id = actor_id
        super().__init__(f"Password verification failed for actor {actor_id}")


class SystemKindNotPermittedError(AuthorizationError):
    """A system-internal ledger kind was written from direct input."""

    code: str = "SYSTEM_KIND_NOT_PERMITTED"

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(
            f"Ledger kind '{kind}' is produced by state machines only"
        )


# Immutability


class ImmutabilityError(SaldoKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Bulk operations


class BulkOperationError(SaldoKernelError):
    """Base exception for bulk operation errors."""

    code: str = "BULK_OPERATION_ERROR"


class BulkPhaseError(BulkOperationError):
    """A bulk step was requested from the wrong phase."""

    code: str = "BULK_PHASE_ERROR"

    def __init__(self, run_id: str, current_phase: str, requested_phase: str):
        self.run_id = run_id
        self.current_phase = current_phase
        self.requested_phase = requested_phase
        super().__init__(
            f"Bulk run {run_id} is in phase '{current_phase}', "
            f"cannot move to '{requested_phase}'"
        )


class TaskNotRegisteredError(BulkOperationError):
    """No bulk task registered for the requested type."""

    code: str = "TASK_NOT_REGISTERED"

    def __init__(self, task_type: str, available: tuple[str, ...]):
        self.task_type = task_type
        self.available = available
        super().__init__(
            f"No bulk task registered for '{task_type}'. Available: {list(available)}"
        )
