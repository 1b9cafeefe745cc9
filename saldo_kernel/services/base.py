"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for every
    service in the kernel layer, plus the guarded status UPDATE every state
    machine uses.  Services use ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's transaction
      and never commit or rollback themselves.  A status change and its
      ledger append therefore commit together or not at all.
    - Status transitions are compare-and-set: ``UPDATE ... WHERE id = ? AND
      status IN (<expected>)``.  Zero matched rows means another request moved
      the entity first and the call fails with InvalidTransitionError.

Failure modes:
    - If a subclass calls ``session.commit()`` the atomicity of status change
      plus ledger append is broken.
"""

from abc import ABC
from collections.abc import Iterable
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from saldo_kernel.db.base import Base
from saldo_kernel.domain.clock import Clock, SystemClock
from saldo_kernel.exceptions import InvalidTransitionError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-model queries -- those belong in
          ``saldo_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source; defaults to SystemClock.
        """
        self.session = session
        self.clock = clock or SystemClock()

    def _lock(self, model: type[ModelType], entity_id: UUID) -> ModelType | None:
        """
        Load a row with ``SELECT ... FOR UPDATE`` and fresh attribute values.

        On backends without row locks (SQLite) the clause is omitted and the
        guarded UPDATE alone decides the race.
        """
        return self.session.execute(
            select(model)
            .where(model.id == entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _guarded_transition(
        self,
        instance: ModelType,
        expected: Iterable[Any],
        target: Any,
        values: dict[str, Any],
        conditions: tuple = (),
    ) -> None:
        """
        Move ``instance`` to ``target`` only if its stored status is in
        ``expected``.

        ``values`` are the columns written together with the status and
        ``conditions`` are extra WHERE criteria (e.g. the lease holder).  The
        instance is refreshed afterwards so callers see the stored state.

        Raises:
            InvalidTransitionError: no row matched (a concurrent request won).
        """
        model = type(instance)
        expected_values = [getattr(s, "value", s) for s in expected]
        target_value = getattr(target, "value", target)
        result = self.session.execute(
            update(model)
            .where(
                model.id == instance.id,
                model.status.in_(expected_values),
                *conditions,
            )
            .values(status=target_value, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.refresh(instance)
            raise InvalidTransitionError(
                entity_type=model.__name__,
                entity_id=str(instance.id),
                from_status=instance.status,
                to_status=target_value,
            )
        self.session.refresh(instance)
