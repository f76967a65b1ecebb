"""
dealreg_services.coordinator -- Transaction and notification boundary.

Responsibility:
    Gives callers (API handlers, jobs, scripts) one method per use case.
    Each call opens a session, wires the kernel services, runs the
    operation, commits, and only then informs the notification dispatcher.

Architecture position:
    Services -- orchestration over dealreg_kernel.  The only layer that
    commits.  The kernel never imports from this package.

Invariants enforced:
    - One transaction per call: commit on success, rollback and re-raise on
      any error.
    - Notifications go out strictly after commit.  A dispatcher failure is
      logged and swallowed; it never rolls back a committed transition.
    - Actor identity is an explicit argument of every method.

Failure modes:
    - Any DealRegistrationError raised by the kernel propagates unchanged
      after rollback.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy.orm import Session

from dealreg_kernel.domain.approval import (
    ApprovalAction,
    BulkResult,
    TransitionOutcome,
    TransitionResult,
)
from dealreg_kernel.domain.clock import Clock, SystemClock
from dealreg_kernel.domain.deal import AssignmentResult, DealDTO
from dealreg_kernel.domain.workflow import EngineSettings
from dealreg_kernel.logging_config import get_logger
from dealreg_kernel.services.approval_engine import ApprovalEngine
from dealreg_kernel.services.assignment_service import AssignmentService
from dealreg_services.notification_dispatcher import (
    LoggingNotificationDispatcher,
    Notification,
    NotificationDispatcher,
    NotificationKind,
)

logger = get_logger("services.coordinator")

DEFAULT_REJECTION_REASON = "No reason provided"


class DealApprovalCoordinator:
    """Use-case entry points for deal approval and assignment.

    Contract:
        Receives a session factory and owns each call's transaction.
        Kernel services are constructed per call on that call's session.

    Non-goals:
        - Does NOT retry; a StaleApprovalStepError is surfaced to the caller.
        - Does NOT deliver notifications itself.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        dispatcher: NotificationDispatcher | None = None,
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._dispatcher = dispatcher or LoggingNotificationDispatcher()
        self._settings = settings or EngineSettings()
        self._clock = clock or SystemClock()

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _engine(self, session: Session) -> ApprovalEngine:
        return ApprovalEngine(session, clock=self._clock, settings=self._settings)

    # ------------------------------------------------------------------
    # Use cases
    # ------------------------------------------------------------------

    def start_workflow(
        self,
        deal_id: UUID,
        actor_id: UUID,
        workflow_id: UUID | None = None,
    ) -> TransitionResult:
        with self._transaction() as session:
            result = self._engine(session).start_workflow(deal_id, actor_id, workflow_id)
        self._notify_transition(result, actor_id)
        return result

    def act(
        self,
        deal_id: UUID,
        approver_id: UUID,
        action: ApprovalAction,
    ) -> TransitionResult:
        """Approve, reject or escalate a deal's current step."""
        with self._transaction() as session:
            result = self._engine(session).process_approval_action(
                deal_id, approver_id, action,
            )
        self._notify_transition(result, approver_id)
        return result

    def bulk_approve(
        self,
        deal_ids: Sequence[UUID | str],
        approver_id: UUID,
        comments: str | None = None,
    ) -> BulkResult:
        """Approve many deals; successes commit even when others fail."""
        with self._transaction() as session:
            result = self._engine(session).bulk_approve(deal_ids, approver_id, comments)
        for transition in result.results:
            self._notify_transition(transition, approver_id)
        return result

    def bulk_approval_candidates(self, approver_id: UUID) -> list[DealDTO]:
        with self._transaction() as session:
            return self._engine(session).get_bulk_approval_candidates(approver_id)

    def assign(
        self,
        deal_id: UUID,
        reseller_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> AssignmentResult:
        with self._transaction() as session:
            result = AssignmentService(session, self._clock).assign_deal(
                deal_id, reseller_id, actor_id, reason,
            )
        self._dispatch(
            Notification(
                kind=NotificationKind.DEAL_ASSIGNED,
                deal_id=deal_id,
                actor_id=actor_id,
                reseller_id=reseller_id,
                reason=reason,
            )
        )
        return result

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _notify_transition(self, result: TransitionResult, actor_id: UUID) -> None:
        notification = self.notification_for(result, actor_id)
        if notification is not None:
            self._dispatch(notification)

    @staticmethod
    def notification_for(
        result: TransitionResult,
        actor_id: UUID,
    ) -> Notification | None:
        """Map a committed transition to the notification it produces."""
        if result.next_step is not None:
            return Notification(
                kind=NotificationKind.APPROVAL_REQUIRED,
                deal_id=result.deal_id,
                actor_id=actor_id,
                recipients=result.next_step.eligible_approvers,
                step_number=result.next_step.step_number,
            )
        if result.outcome in (TransitionOutcome.APPROVED, TransitionOutcome.AUTO_APPROVED):
            return Notification(
                kind=NotificationKind.DEAL_APPROVED,
                deal_id=result.deal_id,
                actor_id=actor_id,
                reason=result.comments,
            )
        if result.outcome == TransitionOutcome.REJECTED:
            return Notification(
                kind=NotificationKind.DEAL_REJECTED,
                deal_id=result.deal_id,
                actor_id=actor_id,
                reason=result.comments or DEFAULT_REJECTION_REASON,
            )
        return None

    def _dispatch(self, notification: Notification) -> None:
        try:
            self._dispatcher.dispatch(notification)
        except Exception:
            # The transition is already committed.
            logger.exception(
                "notification_dispatch_failed",
                extra={
                    "kind": notification.kind.value,
                    "notified_deal_id": str(notification.deal_id),
                },
            )
