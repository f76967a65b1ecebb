"""
AssignmentService -- assign a deal to a reseller and close out its conflicts.

Responsibility:
    Apply a reseller assignment to a deal (the primary write), then run the
    secondary effects in order: append the assignment history record and
    resolve the deal's pending conflicts.

Architecture position:
    Kernel > Services.  Never commits; flushes inside the caller's
    transaction.

Invariants enforced:
    - The primary write (reseller, status, assignment date, status history)
      either fully lands or the call raises with no state change.
    - Assignments to one deal are serialized: the write is conditional on
      the reseller that was read, so the history never records a stale
      previous reseller.
    - Secondary effects are best-effort and independent: each runs in its
      own SAVEPOINT, so one effect failing never undoes the assignment or
      the other effect.  Failures are returned as ``EffectOutcome`` values,
      never raised.
    - Only ``pending`` conflicts are resolved; dismissed and already
      resolved conflicts are untouched.
    - The approval ledger is not touched.

Failure modes:
    - DealNotFoundError: deal does not exist.
    - ResellerNotFoundError: reseller does not exist.
    - StaleAssignmentError: another transaction reassigned the deal between
      read and write.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from dealreg_kernel.domain.clock import Clock, SystemClock
from dealreg_kernel.domain.deal import (
    AssignmentEffect,
    AssignmentResult,
    DealStatus,
    EffectOutcome,
    ResolutionStatus,
)
from dealreg_kernel.exceptions import (
    DealNotFoundError,
    ResellerNotFoundError,
    StaleAssignmentError,
)
from dealreg_kernel.logging_config import LogContext, get_logger
from dealreg_kernel.models.assignment import AssignmentHistoryModel
from dealreg_kernel.models.conflict import DealConflictModel
from dealreg_kernel.models.deal import DealModel, DealStatusHistoryModel
from dealreg_kernel.models.directory import ResellerModel
from dealreg_kernel.services.base import BaseService

logger = get_logger("services.assignment")

DEFAULT_ASSIGNMENT_REASON = "Manual assignment"


@dataclass
class _AssignmentContext:
    """State shared by the effects of one assignment."""

    deal_id: UUID
    previous_reseller_id: UUID | None
    previous_status: str
    substatus: str
    new_reseller_id: UUID
    actor_id: UUID
    reason: str
    now: datetime
    history_record_id: UUID | None = None
    resolved_conflict_ids: tuple[UUID, ...] = ()


class AssignmentService(BaseService[DealModel]):
    """Reseller assignment with best-effort conflict resolution."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def assign_deal(
        self,
        deal_id: UUID,
        reseller_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> AssignmentResult:
        """Assign ``deal_id`` to ``reseller_id``.

        Returns:
            AssignmentResult whose ``effects`` report each secondary write.
            ``partial_failure`` is True when any of them failed.

        Raises:
            DealNotFoundError, ResellerNotFoundError, StaleAssignmentError.
        """
        with LogContext.bind(deal_id=deal_id, actor_id=actor_id):
            ctx = self._load_context(deal_id, reseller_id, actor_id, reason)

            with self.session.begin_nested():
                self._apply_assignment(ctx)

            effects: list[tuple[AssignmentEffect, Callable[[_AssignmentContext], None]]] = [
                (AssignmentEffect.ASSIGNMENT_HISTORY, self._append_history),
                (AssignmentEffect.CONFLICT_RESOLUTION, self._resolve_conflicts),
            ]
            outcomes = tuple(self._run_effect(effect, fn, ctx) for effect, fn in effects)

            deal = self.session.get(DealModel, deal_id)
            result = AssignmentResult(
                deal=deal.to_dto(),
                previous_reseller_id=ctx.previous_reseller_id,
                effects=outcomes,
                resolved_conflict_ids=ctx.resolved_conflict_ids,
                history_record_id=ctx.history_record_id,
            )

            logger.info(
                "deal_assigned",
                extra={
                    "previous_reseller_id": ctx.previous_reseller_id,
                    "new_reseller_id": reseller_id,
                    "resolved_conflicts": len(ctx.resolved_conflict_ids),
                    "partial_failure": result.partial_failure,
                },
            )
            return result

    def _load_context(
        self,
        deal_id: UUID,
        reseller_id: UUID,
        actor_id: UUID,
        reason: str | None,
    ) -> _AssignmentContext:
        deal = self.session.get(DealModel, deal_id)
        if deal is None:
            raise DealNotFoundError(str(deal_id))
        if self.session.get(ResellerModel, reseller_id) is None:
            raise ResellerNotFoundError(str(reseller_id))

        return _AssignmentContext(
            deal_id=deal_id,
            previous_reseller_id=deal.assigned_reseller_id,
            previous_status=deal.status,
            substatus=deal.substatus,
            new_reseller_id=reseller_id,
            actor_id=actor_id,
            reason=reason or DEFAULT_ASSIGNMENT_REASON,
            now=self._clock.now(),
        )

    def _apply_assignment(self, ctx: _AssignmentContext) -> None:
        # Conditional on the reseller read in _load_context.
        result = self.session.execute(
            update(DealModel)
            .where(
                DealModel.id == ctx.deal_id,
                DealModel.assigned_reseller_id.is_not_distinct_from(
                    ctx.previous_reseller_id
                ),
            )
            .values(
                assigned_reseller_id=ctx.new_reseller_id,
                status=DealStatus.ASSIGNED.value,
                assignment_date=ctx.now,
                updated_by_id=ctx.actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "deal_assignment_stale",
                extra={"expected_reseller_id": ctx.previous_reseller_id},
            )
            raise StaleAssignmentError(
                str(ctx.deal_id),
                str(ctx.previous_reseller_id) if ctx.previous_reseller_id else None,
            )
        self._expire_cached(DealModel, ctx.deal_id)

        if ctx.previous_status != DealStatus.ASSIGNED.value:
            self.session.add(
                DealStatusHistoryModel(
                    deal_id=ctx.deal_id,
                    old_status=ctx.previous_status,
                    new_status=DealStatus.ASSIGNED.value,
                    old_substatus=ctx.substatus,
                    new_substatus=ctx.substatus,
                    changed_by=ctx.actor_id,
                    reason=ctx.reason,
                    changed_at=ctx.now,
                )
            )
        self.session.flush()

    def _run_effect(
        self,
        effect: AssignmentEffect,
        fn: Callable[[_AssignmentContext], None],
        ctx: _AssignmentContext,
    ) -> EffectOutcome:
        try:
            with self.session.begin_nested():
                fn(ctx)
                self.session.flush()
        except Exception as exc:
            logger.warning(
                "assignment_effect_failed",
                extra={
                    "effect": effect.value,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
                exc_info=True,
            )
            return EffectOutcome(
                effect=effect,
                succeeded=False,
                error_type=type(exc).__name__,
                error_message=str(exc),
            )
        return EffectOutcome(effect=effect, succeeded=True)

    def _append_history(self, ctx: _AssignmentContext) -> None:
        record = AssignmentHistoryModel(
            deal_id=ctx.deal_id,
            previous_reseller_id=ctx.previous_reseller_id,
            new_reseller_id=ctx.new_reseller_id,
            assigned_by=ctx.actor_id,
            reason=ctx.reason,
            assigned_at=ctx.now,
        )
        self.session.add(record)
        self.session.flush()
        ctx.history_record_id = record.id

    def _resolve_conflicts(self, ctx: _AssignmentContext) -> None:
        stmt = select(DealConflictModel).where(
            DealConflictModel.deal_id == ctx.deal_id,
            DealConflictModel.resolution_status == ResolutionStatus.PENDING.value,
        )
        resolved: list[UUID] = []
        for conflict in self.session.execute(stmt).scalars():
            conflict.resolution_status = ResolutionStatus.RESOLVED.value
            conflict.resolved_by = ctx.actor_id
            conflict.resolved_at = ctx.now
            conflict.resolution_notes = ctx.reason
            conflict.updated_by_id = ctx.actor_id
            resolved.append(conflict.id)
        self.session.flush()
        ctx.resolved_conflict_ids = tuple(resolved)
