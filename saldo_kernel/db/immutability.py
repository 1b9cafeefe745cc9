"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The saldo history must be reconstructable: ``user.balance`` equals the sum of
the user's ledger rows, and every correction is a NEW row.  Two things would
silently break that:

  1. Editing or deleting a ``LedgerTransaction`` in place.
  2. Assigning ``user.balance`` directly on an ORM instance instead of going
     through ``LedgerService.append``.

SQLAlchemy fires mapper events before UPDATE/DELETE SQL is emitted for ORM
instances.  The listeners below intercept those events:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_ledger_transaction_delete() --+
         |                                                   |
         v                                                   v
    SQL sent to database (only if checks pass)        transaction aborted

The ledger service writes the balance with a Core ``UPDATE ... WHERE
ledger_version = ?`` statement.  Core statements do not fire mapper events,
so the single sanctioned write path is unaffected.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable        | What is blocked
--------------------|-----------------------|---------------------------------
LedgerTransaction   | ALWAYS (from insert)  | Any UPDATE, any DELETE
User                | Once persisted        | ORM change of ``balance`` or
                    |                       | ``ledger_version``

===============================================================================
USAGE
===============================================================================

Registered by ``init_engine_from_url`` and again by ``create_tables``, so any
process that opens the database is covered.  Calling it twice is harmless:

    from saldo_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from saldo_kernel.exceptions import ImmutabilityViolationError
from saldo_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_LEDGER_OWNED_USER_FIELDS = ("balance", "ledger_version")


def _check_ledger_transaction_immutability(mapper, connection, target):
    """Prevent any update to a ledger row."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "LedgerTransaction",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="LedgerTransaction",
        entity_id=str(target.id),
        reason="Ledger transactions are append-only; post a correcting entry instead",
    )


def _check_ledger_transaction_delete(mapper, connection, target):
    """Prevent deletion of a ledger row."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "LedgerTransaction",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="LedgerTransaction",
        entity_id=str(target.id),
        reason="Ledger transactions cannot be deleted",
    )


def _check_user_balance_immutability(mapper, connection, target):
    """
    Block direct ORM writes to the ledger-owned columns of a persisted user.

    Other user fields (name, email, role) stay editable.
    """
    changed = [
        name for name in _LEDGER_OWNED_USER_FIELDS
        if get_history(target, name).has_changes()
    ]
    if not changed:
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "User",
            "entity_id": str(target.id),
            "operation": "UPDATE",
            "fields": changed,
        },
    )
    raise ImmutabilityViolationError(
        entity_type="User",
        entity_id=str(target.id),
        reason=(
            f"{', '.join(changed)} may only change through the ledger; "
            "use LedgerService.append"
        ),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are left alone.
    """
    from saldo_kernel.models.ledger import LedgerTransaction
    from saldo_kernel.models.user import User

    for target, event_name, listener_fn in _listeners(LedgerTransaction, User):
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _listeners(ledger_model, user_model):
    return (
        (ledger_model, "before_update", _check_ledger_transaction_immutability),
        (ledger_model, "before_delete", _check_ledger_transaction_delete),
        (user_model, "before_update", _check_user_balance_immutability),
    )


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that must violate the rules on purpose.
    """
    from saldo_kernel.models.ledger import LedgerTransaction
    from saldo_kernel.models.user import User

    for target, event_name, listener_fn in _listeners(LedgerTransaction, User):
        _safe_remove_listener(target, event_name, listener_fn)
