"""
BulkExecutor -- phased, transaction-per-item bulk operations.

Contract:
    Drives one bulk run through ``idle -> preview -> confirm_password ->
    executing -> verifying -> complete``: record the candidate set, re-verify
    the actor's password, process candidates one by one, then re-run the
    filter and report what is left.

Architecture: saldo_batch/services.  Imports from saldo_batch.domain,
    saldo_batch.models, saldo_batch.tasks and kernel infrastructure.  Unlike
    kernel services it owns transaction boundaries: every step and every item
    runs in its own session from the injected ``session_factory``.

Invariants enforced:
    - Phase moves are guarded UPDATEs on ``bulk_runs.phase``; a step called
      out of order (or twice concurrently) fails with BulkPhaseError.
    - Preview never mutates business rows and records the exact candidate
      set; execute processes that set and nothing else.
    - Each item commits or rolls back alone.  One failure never aborts the
      run; it becomes a ``failed`` item row with an error code.
    - Item outcome rows are written in their own transaction, so a rolled
      back item still leaves its audit row.
    - All timestamps come from the injected Clock.

Failure modes:
    - TaskNotRegisteredError: unknown task type.
    - BulkRunNotFoundError: unknown run id.
    - BulkPhaseError: step requested from the wrong phase.
    - AuthorizationError: no password verifier configured, or a step
      requested by someone other than the run's creator.
    - InvalidPasswordError: re-authentication failed; the run stays in
      ``preview``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

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
from saldo_batch.models.bulk import BulkItemModel, BulkRunModel
from saldo_batch.tasks.base import BulkContext, BulkTask, BulkTaskResult, TaskRegistry
from saldo_kernel.config import SaldoSettings
from saldo_kernel.domain.auth import PasswordVerifier
from saldo_kernel.domain.clock import Clock, SystemClock
from saldo_kernel.exceptions import (
    AuthorizationError,
    BulkPhaseError,
    BulkRunNotFoundError,
    InvalidPasswordError,
    SaldoKernelError,
)
from saldo_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.executor")

UNHANDLED_EXCEPTION = "UNHANDLED_EXCEPTION"


class BulkExecutor:
    """Bulk operation engine with one transaction per item.

    Contract:
        - ``preview()`` records a run and its candidate set.
        - ``confirm_password()`` re-authenticates the run's creator.
        - ``execute()`` processes every recorded candidate.
        - ``verify()`` re-runs the filter and completes the run.
        - ``cancel()`` abandons a run that has not started executing.
        - ``get_run()`` / ``get_items()`` for queries.

    Non-goals:
        - Does NOT retry failed items -- start a new preview instead.
        - Does NOT run in the background.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        task_registry: TaskRegistry,
        clock: Clock | None = None,
        settings: SaldoSettings | None = None,
        password_verifier: PasswordVerifier | None = None,
    ):
        self._session_factory = session_factory
        self._task_registry = task_registry
        self._clock = clock or SystemClock()
        self._settings = settings or SaldoSettings()
        self._password_verifier = password_verifier

    # -------------------------------------------------------------------------
    # Preview
    # -------------------------------------------------------------------------

    def preview(
        self,
        task_type: str,
        filters: BulkFilters,
        actor_id: UUID,
        correlation_id: str | None = None,
    ) -> BulkPreview:
        """Record the rows ``task_type`` would act on.

        A filter matching nothing yields a run that stays ``idle``.

        Raises:
            TaskNotRegisteredError: If task_type is not in the registry.
        """
        task = self._task_registry.get(task_type)
        now = self._clock.now()
        run_id = uuid4()

        with LogContext.bind(bulk_run_id=run_id, actor_id=actor_id), \
                self._session_factory() as session, session.begin():
            candidates = task.find_candidates(filters, session, now)
            phase = BulkPhase.PREVIEW if candidates else BulkPhase.IDLE

            session.add(
                BulkRunModel(
                    id=run_id,
                    task_type=task_type,
                    phase=phase.value,
                    filters=filters.to_dict(),
                    candidates=BulkRunModel.serialize_candidates(candidates),
                    candidate_count=len(candidates),
                    correlation_id=correlation_id,
                    created_at=now,
                    updated_at=now,
                    created_by_id=actor_id,
                    updated_by_id=None,
                )
            )

            logger.info(
                "bulk_preview_recorded",
                extra={
                    "task_type": task_type,
                    "candidate_count": len(candidates),
                    "phase": phase.value,
                },
            )

        return BulkPreview(
            run_id=run_id, task_type=task_type, phase=phase, candidates=candidates,
        )

    # -------------------------------------------------------------------------
    # Confirm password
    # -------------------------------------------------------------------------

    def confirm_password(self, run_id: UUID, actor_id: UUID, password: str) -> BulkRun:
        """Re-authenticate the run's creator before anything is changed.

        Raises:
            AuthorizationError: No verifier configured or actor is not the
                creator.
            InvalidPasswordError: Password rejected; the run stays in preview.
            BulkPhaseError: Run is not in preview.
        """
        if self._password_verifier is None:
            raise AuthorizationError("Bulk operations require a password verifier")

        with LogContext.bind(bulk_run_id=run_id, actor_id=actor_id), \
                self._session_factory() as session, session.begin():
            run = self._load_run(session, run_id)
            self._require_creator(run, actor_id)
            self._require_transition(run, BulkPhase.CONFIRM_PASSWORD)

            if not self._password_verifier.verify_password(actor_id, password):
                logger.warning("bulk_password_rejected")
                raise InvalidPasswordError(str(actor_id))

            self._move_phase(
                session, run,
                (BulkPhase.PREVIEW,), BulkPhase.CONFIRM_PASSWORD,
                password_confirmed_at=self._clock.now(),
            )
            logger.info("bulk_password_confirmed")
            return run.to_dto()

    # -------------------------------------------------------------------------
    # Execute
    # -------------------------------------------------------------------------

    def execute(self, run_id: UUID, actor_id: UUID) -> BulkRunResult:
        """Process every candidate recorded at preview time.

        Each item runs in its own transaction; its outcome row is written in
        a second one.  Kernel errors are recorded under their ``code``; any
        other exception as UNHANDLED_EXCEPTION.

        Raises:
            BulkRunNotFoundError / AuthorizationError / BulkPhaseError.
        """
        with LogContext.bind(bulk_run_id=run_id, actor_id=actor_id):
            with self._session_factory() as session, session.begin():
                run = self._load_run(session, run_id)
                self._require_creator(run, actor_id)
                self._require_transition(run, BulkPhase.EXECUTING)
                task = self._task_registry.get(run.task_type)
                self._move_phase(
                    session, run,
                    (BulkPhase.CONFIRM_PASSWORD,), BulkPhase.EXECUTING,
                    started_at=self._clock.now(),
                )
                candidates = run.candidate_dtos()

            logger.info(
                "bulk_execution_started",
                extra={"task_type": task.task_type, "total_items": len(candidates)},
            )

            context = BulkContext(
                run_id=run_id, actor_id=actor_id, clock=self._clock, settings=self._settings,
            )
            item_results: list[BulkItemResult] = []
            for index, candidate in enumerate(candidates):
                item_result = self._execute_item(task, index, candidate, context)
                self._record_item(run_id, actor_id, item_result)
                item_results.append(item_result)

            succeeded = sum(1 for r in item_results if r.status == BulkItemStatus.SUCCEEDED)
            failed = len(item_results) - succeeded

            with self._session_factory() as session, session.begin():
                run = self._load_run(session, run_id)
                self._move_phase(session, run, (BulkPhase.EXECUTING,), BulkPhase.VERIFYING)

            logger.info(
                "bulk_execution_finished",
                extra={"succeeded": succeeded, "failed": failed},
            )

            return BulkRunResult(
                run_id=run_id,
                phase=BulkPhase.VERIFYING,
                total_items=len(candidates),
                succeeded=succeeded,
                failed=failed,
                item_results=tuple(item_results),
            )

    # -------------------------------------------------------------------------
    # Verify
    # -------------------------------------------------------------------------

    def verify(self, run_id: UUID) -> BulkVerification:
        """Re-run the filter and complete the run.

        Leftovers are reported as warnings, never raised.
        """
        with LogContext.bind(bulk_run_id=run_id), \
                self._session_factory() as session, session.begin():
            run = self._load_run(session, run_id)
            self._require_transition(run, BulkPhase.COMPLETE)
            task = self._task_registry.get(run.task_type)

            filters = BulkFilters.from_dict(run.filters or {})
            still_matching = task.find_candidates(filters, session, run.created_at)
            recorded = {c.entity_id for c in run.candidate_dtos()}
            leftover = [c for c in still_matching if c.entity_id in recorded]
            newcomers = [c for c in still_matching if c.entity_id not in recorded]

            warnings: list[BulkWarning] = []
            if leftover:
                warnings.append(BulkWarning(
                    code="RECORDS_REMAIN",
                    message=f"{len(leftover)} previewed record(s) still match the filter",
                    count=len(leftover),
                ))
            if newcomers:
                warnings.append(BulkWarning(
                    code="NEW_MATCHES",
                    message=f"{len(newcomers)} record(s) matched the filter after preview",
                    count=len(newcomers),
                ))
            if run.failed_items:
                warnings.append(BulkWarning(
                    code="ITEMS_FAILED",
                    message=f"{run.failed_items} item(s) failed during execution",
                    count=run.failed_items,
                ))

            self._move_phase(
                session, run,
                (BulkPhase.VERIFYING,), BulkPhase.COMPLETE,
                remaining_after_verify=len(still_matching),
                warnings=[w.to_dict() for w in warnings],
                completed_at=self._clock.now(),
            )

            log = logger.warning if warnings else logger.info
            log(
                "bulk_run_verified",
                extra={
                    "remaining": len(still_matching),
                    "warnings": [w.code for w in warnings],
                },
            )

            return BulkVerification(
                run_id=run_id,
                phase=BulkPhase.COMPLETE,
                remaining=len(still_matching),
                succeeded=run.succeeded_items,
                failed=run.failed_items,
                warnings=tuple(warnings),
            )

    # -------------------------------------------------------------------------
    # Cancel
    # -------------------------------------------------------------------------

    def cancel(self, run_id: UUID, actor_id: UUID) -> BulkRun:
        """Abandon a run before execution; it returns to ``idle``."""
        with LogContext.bind(bulk_run_id=run_id, actor_id=actor_id), \
                self._session_factory() as session, session.begin():
            run = self._load_run(session, run_id)
            self._require_creator(run, actor_id)
            self._require_transition(run, BulkPhase.IDLE)
            self._move_phase(
                session, run,
                (BulkPhase.PREVIEW, BulkPhase.CONFIRM_PASSWORD), BulkPhase.IDLE,
            )
            logger.info("bulk_run_cancelled")
            return run.to_dto()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_run(self, run_id: UUID) -> BulkRun:
        """
        Raises:
            BulkRunNotFoundError: If run_id does not exist.
        """
        with self._session_factory() as session:
            return self._load_run(session, run_id).to_dto()

    def get_items(self, run_id: UUID) -> tuple[BulkItemResult, ...]:
        with self._session_factory() as session:
            models = session.execute(
                select(BulkItemModel)
                .where(BulkItemModel.run_id == run_id)
                .order_by(BulkItemModel.item_index)
            ).scalars().all()
            return tuple(m.to_dto() for m in models)

    def get_candidates(self, run_id: UUID) -> tuple[BulkCandidate, ...]:
        with self._session_factory() as session:
            return self._load_run(session, run_id).candidate_dtos()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _execute_item(
        self,
        task: BulkTask,
        index: int,
        candidate: BulkCandidate,
        context: BulkContext,
    ) -> BulkItemResult:
        started_at = self._clock.now()
        session = self._session_factory()
        try:
            result = task.execute_item(candidate, session, context)
            if result.status == BulkItemStatus.SUCCEEDED:
                session.commit()
            else:
                session.rollback()
        except SaldoKernelError as exc:
            session.rollback()
            result = BulkTaskResult.failed(exc.code, str(exc))
        except Exception as exc:
            session.rollback()
            logger.exception(
                "bulk_item_unhandled_exception",
                extra={"item_index": index, "entity_id": str(candidate.entity_id)},
            )
            result = BulkTaskResult.failed(UNHANDLED_EXCEPTION, str(exc))
        finally:
            session.close()

        if result.status == BulkItemStatus.FAILED:
            logger.warning(
                "bulk_item_failed",
                extra={
                    "item_index": index,
                    "entity_id": str(candidate.entity_id),
                    "error_code": result.error_code,
                },
            )

        return BulkItemResult(
            item_index=index,
            entity_id=candidate.entity_id,
            status=result.status,
            error_code=result.error_code,
            error_message=result.error_message,
            result_data=result.result_data,
            started_at=started_at,
            completed_at=self._clock.now(),
        )

    def _record_item(self, run_id: UUID, actor_id: UUID, item: BulkItemResult) -> None:
        counter = (
            BulkRunModel.succeeded_items
            if item.status == BulkItemStatus.SUCCEEDED
            else BulkRunModel.failed_items
        )
        with self._session_factory() as session, session.begin():
            model = BulkItemModel.from_dto(item, run_id=run_id, created_by_id=actor_id)
            model.created_at = self._clock.now()
            model.updated_at = model.created_at
            session.add(model)
            session.execute(
                update(BulkRunModel)
                .where(BulkRunModel.id == run_id)
                .values({counter.key: counter + 1})
                .execution_options(synchronize_session=False)
            )

    @staticmethod
    def _load_run(session: Session, run_id: UUID) -> BulkRunModel:
        run = session.get(BulkRunModel, run_id)
        if run is None:
            raise BulkRunNotFoundError(str(run_id))
        return run

    @staticmethod
    def _require_creator(run: BulkRunModel, actor_id: UUID) -> None:
        if run.created_by_id != actor_id:
            raise AuthorizationError(
                f"Bulk run {run.id} can only be continued by its creator"
            )

    @staticmethod
    def _require_transition(run: BulkRunModel, target: BulkPhase) -> None:
        if target not in BULK_PHASE_TRANSITIONS[BulkPhase(run.phase)]:
            raise BulkPhaseError(str(run.id), run.phase, target.value)

    def _move_phase(
        self,
        session: Session,
        run: BulkRunModel,
        expected: Iterable[BulkPhase],
        target: BulkPhase,
        **values: Any,
    ) -> None:
        result = session.execute(
            update(BulkRunModel)
            .where(
                BulkRunModel.id == run.id,
                BulkRunModel.phase.in_([p.value for p in expected]),
            )
            .values(phase=target.value, updated_at=self._clock.now(), **values)
            .execution_options(synchronize_session=False)
        )
        session.refresh(run)
        if result.rowcount != 1:
            raise BulkPhaseError(str(run.id), run.phase, target.value)
