"""
dealreg_kernel.services.approval_engine -- The deal approval state machine.

Responsibility:
    Attach workflows to deals, and advance, reject, or escalate a deal's
    current approval step.  Exposes single-deal and bulk entry points plus
    the read used to find bulk candidates.  Rule decisions (routing,
    sequencing, substatus, estimates) are delegated to the pure functions
    in ``dealreg_engines.approval``.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/
    and dealreg_engines.  Never commits: every transition runs in its own
    SAVEPOINT inside the caller's transaction.

Invariants enforced:
    - Eligibility: the acting approver's role must equal the current
      record's required_role (and match its named approver, if any).
      Checked before any write.
    - One pending record per deal; the deal's current_approval_id always
      points at it, or is NULL once the workflow is finished.
    - Per-deal compare-and-swap: the current record is closed with
      ``UPDATE ... WHERE id = :current AND action = 'pending'`` and the
      pointer is moved with ``UPDATE ... WHERE current_approval_id =
      :current``.  Either affecting zero rows raises
      StaleApprovalStepError and the savepoint is rolled back.
    - The ledger only grows; closed records are never rewritten.
    - Escalation of ``(S, k)`` opens ``(S, k + 1)``; approving any record at
      step ``S`` resumes at the next required step after ``S``.
    - Bulk approval isolates each deal: every deal, reads included, runs in
      its own SAVEPOINT, so one deal's failure never rolls back another
      deal's transition.  Ids naming the same UUID are approved once.

Failure modes:
    - DealNotFoundError, ActorNotFoundError, WorkflowNotFoundError.
    - NoActiveApprovalStepError when the deal has no current step.
    - UnauthorizedApproverError on role mismatch (no mutation).
    - InvalidEscalationTargetError for unresolvable escalation targets.
    - StaleApprovalStepError when another transaction moved the deal first.
    - EmptyBulkRequestError / ActorNotFoundError fail a whole bulk call.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dealreg_engines.approval import (
    check_auto_approval,
    escalation_position,
    estimate_step_days,
    estimate_workflow_days,
    first_required_step,
    match_workflow,
    next_required_step,
    review_substatus,
    validate_actor_authority,
)
from dealreg_kernel.domain.approval import (
    AUTO_APPROVAL_COMMENT,
    AUTO_APPROVAL_STEP_NUMBER,
    LEDGER_TRANSITIONS,
    ActorDirectory,
    ApprovalAction,
    ApprovalRecordDTO,
    Approve,
    ApproverRef,
    BulkError,
    BulkResult,
    Escalate,
    LedgerAction,
    NextStep,
    Reject,
    TransitionOutcome,
    TransitionResult,
    ledger_action_for,
)
from dealreg_kernel.domain.clock import Clock, SystemClock
from dealreg_kernel.domain.deal import DealDTO, DealStatus, DealSubstatus
from dealreg_kernel.domain.workflow import (
    DealRoutingFacts,
    EngineSettings,
    WorkflowDefinition,
)
from dealreg_kernel.exceptions import (
    ActorNotFoundError,
    DealNotFoundError,
    DealRegistrationError,
    EmptyBulkRequestError,
    InvalidEscalationTargetError,
    NoActiveApprovalStepError,
    StaleApprovalStepError,
    UnauthorizedApproverError,
    WorkflowAlreadyAttachedError,
    WorkflowNotFoundError,
)
from dealreg_kernel.logging_config import LogContext, get_logger
from dealreg_kernel.models.approval import ApprovalRecordModel
from dealreg_kernel.models.deal import DealModel, DealStatusHistoryModel
from dealreg_kernel.models.directory import ResellerModel
from dealreg_kernel.selectors.deal_selector import DealSelector
from dealreg_kernel.services.actor_directory import SqlActorDirectory
from dealreg_kernel.services.base import BaseService
from dealreg_kernel.services.workflow_registry import WorkflowRegistry

logger = get_logger("services.approval_engine")

STORAGE_ERROR_CODE = "STORAGE_ERROR"


@dataclass(frozen=True)
class _DealSnapshot:
    """What a transition was decided against.  Compared, never trusted."""

    deal_id: UUID
    status: DealStatus
    substatus: DealSubstatus
    workflow: WorkflowDefinition
    current: ApprovalRecordDTO
    next_seq: int


@dataclass(frozen=True)
class _OpenRecord:
    step_number: int
    escalation_level: int
    required_role: str
    assigned_approver_id: UUID | None = None


class ApprovalEngine(BaseService[ApprovalRecordModel]):
    """
    Stateless approval state machine over the ledger tables.

    Contract:
        Every public method either completes its transition and returns a
        result, or raises a DealRegistrationError with no state change.
        Nothing is committed; the caller owns the transaction.
    """

    def __init__(
        self,
        session: Session,
        directory: ActorDirectory | None = None,
        workflows: WorkflowRegistry | None = None,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        super().__init__(session)
        self._directory = directory or SqlActorDirectory(session)
        self._workflows = workflows or WorkflowRegistry(session)
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()
        self._selector = DealSelector(session)

    # =====================================================================
    # Workflow attachment
    # =====================================================================

    def start_workflow(
        self,
        deal_id: UUID,
        actor_id: UUID,
        workflow_id: UUID | None = None,
    ) -> TransitionResult:
        """Attach a workflow to a deal and seed its ledger.

        Without ``workflow_id`` the deal is routed by workflow conditions.
        A deal at or under an auto-approve threshold is approved at once
        with a single closed step-0 record.
        """
        with LogContext.bind(deal_id=deal_id, actor_id=actor_id):
            deal = self._load_deal(deal_id)
            if deal.workflow_id is not None:
                raise WorkflowAlreadyAttachedError(str(deal_id), str(deal.workflow_id))

            if workflow_id is not None:
                workflow = self._workflows.get(workflow_id)
            else:
                workflow = self._route(deal)

            old_status = DealStatus(deal.status)
            old_substatus = DealSubstatus(deal.substatus)
            total_value = deal.total_value
            now = self._clock.now()
            auto_step = check_auto_approval(workflow, total_value, self._settings)

            with self.session.begin_nested():
                if auto_step is not None:
                    record = self._insert_record(
                        deal_id=deal_id,
                        workflow_id=workflow.workflow_id,
                        seq=1,
                        opening=_OpenRecord(
                            step_number=AUTO_APPROVAL_STEP_NUMBER,
                            escalation_level=0,
                            required_role=auto_step.required_role,
                        ),
                        now=now,
                        action=LedgerAction.APPROVED,
                        comments=AUTO_APPROVAL_COMMENT,
                    )
                    new_status = DealStatus.APPROVED
                    new_substatus = DealSubstatus.APPROVED_CONDITIONAL
                    pointer: ApprovalRecordModel | None = None
                    outcome = TransitionOutcome.AUTO_APPROVED
                    reason = AUTO_APPROVAL_COMMENT
                else:
                    first = first_required_step(workflow)
                    record = self._insert_record(
                        deal_id=deal_id,
                        workflow_id=workflow.workflow_id,
                        seq=1,
                        opening=_OpenRecord(
                            step_number=first.step_number,
                            escalation_level=0,
                            required_role=first.required_role,
                        ),
                        now=now,
                    )
                    new_status = DealStatus.PENDING
                    new_substatus = DealSubstatus.APPROVAL_PENDING
                    pointer = record
                    outcome = TransitionOutcome.STARTED
                    reason = f"Workflow '{workflow.name}' started"

                result = self.session.execute(
                    update(DealModel)
                    .where(DealModel.id == deal_id, DealModel.workflow_id.is_(None))
                    .values(
                        workflow_id=workflow.workflow_id,
                        current_approval_id=pointer.id if pointer is not None else None,
                        current_step_number=(
                            pointer.step_number if pointer is not None else None
                        ),
                        status=new_status.value,
                        substatus=new_substatus.value,
                        updated_by_id=actor_id,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise WorkflowAlreadyAttachedError(str(deal_id), "concurrent attach")
                self._expire_cached(DealModel, deal_id)

                self._record_status_change(
                    deal_id, old_status, new_status, old_substatus, new_substatus,
                    actor_id, reason, now,
                )
                self.session.flush()

            next_step = (
                self._describe_next_step(record.to_dto()) if pointer is not None else None
            )

            logger.info(
                "approval_workflow_started",
                extra={
                    "workflow_id": str(workflow.workflow_id),
                    "workflow_name": workflow.name,
                    "outcome": outcome.value,
                    "total_value": total_value,
                },
            )

            return TransitionResult(
                deal_id=deal_id,
                outcome=outcome,
                status=new_status,
                substatus=new_substatus,
                workflow_id=workflow.workflow_id,
                closed_record_id=record.id if pointer is None else None,
                next_step=next_step,
                comments=AUTO_APPROVAL_COMMENT if pointer is None else None,
                estimated_days=estimate_workflow_days(workflow, self._settings),
            )

    def _route(self, deal: DealModel) -> WorkflowDefinition:
        reseller = self.session.get(ResellerModel, deal.submitted_by_reseller_id)
        facts = DealRoutingFacts(
            total_value=deal.total_value,
            partner_tier=reseller.partner_tier if reseller is not None else None,
            territory=reseller.territory if reseller is not None else None,
        )
        workflow = match_workflow(
            self._workflows.list_active(),
            facts,
            self._settings.default_workflow_name,
        )
        if workflow is None:
            raise WorkflowNotFoundError("no active workflow")
        logger.debug(
            "workflow_routed",
            extra={
                "workflow_name": workflow.name,
                "total_value": facts.total_value,
                "partner_tier": facts.partner_tier,
                "territory": facts.territory,
            },
        )
        return workflow

    # =====================================================================
    # Single-deal transition
    # =====================================================================

    def process_approval_action(
        self,
        deal_id: UUID,
        approver_id: UUID,
        action: ApprovalAction,
    ) -> TransitionResult:
        """Apply ``action`` to the deal's current step on behalf of ``approver_id``.

        Raises:
            DealNotFoundError: deal does not exist.
            NoActiveApprovalStepError: deal has no current step.
            ActorNotFoundError: approver unknown.
            UnauthorizedApproverError: approver may not act on this step.
            InvalidEscalationTargetError: escalation target unusable.
            StaleApprovalStepError: the step moved underneath this call.
        """
        with LogContext.bind(deal_id=deal_id, actor_id=approver_id):
            snapshot = self._load_snapshot(deal_id)
            self._authorize(snapshot, approver_id)
            return self._apply_transition(snapshot, approver_id, action)

    def _load_deal(self, deal_id: UUID) -> DealModel:
        deal = self.session.get(DealModel, deal_id)
        if deal is None:
            raise DealNotFoundError(str(deal_id))
        return deal

    def _load_snapshot(self, deal_id: UUID) -> _DealSnapshot:
        deal = self._load_deal(deal_id)
        if deal.current_approval_id is None:
            raise NoActiveApprovalStepError(str(deal_id), deal.status)

        record = self.session.get(ApprovalRecordModel, deal.current_approval_id)
        if record is None or record.action != LedgerAction.PENDING.value:
            raise NoActiveApprovalStepError(str(deal_id), deal.status)

        max_seq = self.session.execute(
            select(func.max(ApprovalRecordModel.seq))
            .where(ApprovalRecordModel.deal_id == deal_id)
        ).scalar_one()

        return _DealSnapshot(
            deal_id=deal_id,
            status=DealStatus(deal.status),
            substatus=DealSubstatus(deal.substatus),
            workflow=self._workflows.get(record.workflow_id),
            current=record.to_dto(),
            next_seq=int(max_seq or 0) + 1,
        )

    def _authorize(self, snapshot: _DealSnapshot, approver_id: UUID) -> None:
        actor = self._directory.get_actor(approver_id)
        if actor is None:
            raise ActorNotFoundError(str(approver_id))

        current = snapshot.current
        allowed = actor.is_active and validate_actor_authority(
            actor.role, current.required_role,
        )
        if allowed and current.assigned_approver_id is not None:
            allowed = current.assigned_approver_id == approver_id

        if not allowed:
            logger.warning(
                "approval_action_unauthorized",
                extra={
                    "actor_role": actor.role,
                    "required_role": current.required_role,
                    "assigned_approver_id": current.assigned_approver_id,
                },
            )
            raise UnauthorizedApproverError(
                deal_id=str(snapshot.deal_id),
                actor_id=str(approver_id),
                actor_role=actor.role,
                required_role=current.required_role,
            )

    def _resolve_escalation(
        self,
        snapshot: _DealSnapshot,
        action: Escalate,
    ) -> _OpenRecord:
        target_role = action.target_role
        target_approver_id = action.target_approver_id

        if target_approver_id is not None:
            target = self._directory.get_actor(target_approver_id)
            if target is None or not target.is_active:
                raise InvalidEscalationTargetError(
                    str(snapshot.deal_id),
                    f"approver {target_approver_id} not found or inactive",
                )
            if target_role is not None and target.role != target_role:
                raise InvalidEscalationTargetError(
                    str(snapshot.deal_id),
                    f"approver {target_approver_id} does not hold role '{target_role}'",
                )
            target_role = target.role

        step_number, escalation_level = escalation_position(
            snapshot.current.step_number, snapshot.current.escalation_level,
        )
        return _OpenRecord(
            step_number=step_number,
            escalation_level=escalation_level,
            required_role=target_role,
            assigned_approver_id=target_approver_id,
        )

    def _apply_transition(
        self,
        snapshot: _DealSnapshot,
        approver_id: UUID,
        action: ApprovalAction,
    ) -> TransitionResult:
        closing = ledger_action_for(action)
        current = snapshot.current
        if closing not in LEDGER_TRANSITIONS[current.action]:
            raise NoActiveApprovalStepError(str(snapshot.deal_id), snapshot.status.value)
        status = snapshot.status
        substatus = snapshot.substatus
        opened: _OpenRecord | None = None

        if isinstance(action, Approve):
            following = next_required_step(snapshot.workflow, current.step_number)
            if following is not None:
                opened = _OpenRecord(
                    step_number=following.step_number,
                    escalation_level=0,
                    required_role=following.required_role,
                )
                substatus = review_substatus(following.required_role)
                outcome = TransitionOutcome.ADVANCED
                reason = f"Approved at step {current.step_number}"
            else:
                status = DealStatus.APPROVED
                substatus = DealSubstatus.APPROVED_CONDITIONAL
                outcome = TransitionOutcome.APPROVED
                reason = "Final approval"
        elif isinstance(action, Reject):
            status = DealStatus.REJECTED
            substatus = DealSubstatus.REJECTED_APPROVAL
            outcome = TransitionOutcome.REJECTED
            reason = action.comments or f"Rejected at step {current.step_number}"
        else:
            opened = self._resolve_escalation(snapshot, action)
            substatus = DealSubstatus.ADMIN_REVIEW
            outcome = TransitionOutcome.ESCALATED
            reason = f"Escalated to {opened.required_role}"

        now = self._clock.now()
        with self.session.begin_nested():
            self._close_current(snapshot, approver_id, closing, action.comments, now)

            new_record = None
            if opened is not None:
                new_record = self._insert_record(
                    deal_id=snapshot.deal_id,
                    workflow_id=snapshot.workflow.workflow_id,
                    seq=snapshot.next_seq,
                    opening=opened,
                    now=now,
                )

            self._move_pointer(snapshot, new_record, status, substatus, approver_id)

            if (status, substatus) != (snapshot.status, snapshot.substatus):
                self._record_status_change(
                    snapshot.deal_id, snapshot.status, status,
                    snapshot.substatus, substatus, approver_id, reason, now,
                )
            self.session.flush()

        next_step = (
            self._describe_next_step(new_record.to_dto())
            if new_record is not None
            else None
        )

        logger.info(
            "approval_action_processed",
            extra={
                "action": closing.value,
                "outcome": outcome.value,
                "step_number": current.step_number,
                "escalation_level": current.escalation_level,
                "new_status": status.value,
                "next_step_number": next_step.step_number if next_step else None,
                "next_role": next_step.required_role if next_step else None,
            },
        )

        return TransitionResult(
            deal_id=snapshot.deal_id,
            outcome=outcome,
            status=status,
            substatus=substatus,
            workflow_id=snapshot.workflow.workflow_id,
            closed_record_id=current.id,
            next_step=next_step,
            comments=action.comments,
        )

    def _close_current(
        self,
        snapshot: _DealSnapshot,
        approver_id: UUID,
        closing: LedgerAction,
        comments: str | None,
        now: datetime,
    ) -> None:
        result = self.session.execute(
            update(ApprovalRecordModel)
            .where(
                ApprovalRecordModel.id == snapshot.current.id,
                ApprovalRecordModel.action == LedgerAction.PENDING.value,
            )
            .values(
                action=closing.value,
                approver_id=approver_id,
                approved_at=now,
                comments=comments,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleApprovalStepError(str(snapshot.deal_id), str(snapshot.current.id))
        self._expire_cached(ApprovalRecordModel, snapshot.current.id)

    def _move_pointer(
        self,
        snapshot: _DealSnapshot,
        new_record: ApprovalRecordModel | None,
        status: DealStatus,
        substatus: DealSubstatus,
        actor_id: UUID,
    ) -> None:
        result = self.session.execute(
            update(DealModel)
            .where(
                DealModel.id == snapshot.deal_id,
                DealModel.current_approval_id == snapshot.current.id,
            )
            .values(
                current_approval_id=new_record.id if new_record is not None else None,
                current_step_number=(
                    new_record.step_number if new_record is not None else None
                ),
                status=status.value,
                substatus=substatus.value,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleApprovalStepError(str(snapshot.deal_id), str(snapshot.current.id))
        self._expire_cached(DealModel, snapshot.deal_id)

    def _insert_record(
        self,
        deal_id: UUID,
        workflow_id: UUID,
        seq: int,
        opening: _OpenRecord,
        now: datetime,
        action: LedgerAction = LedgerAction.PENDING,
        comments: str | None = None,
    ) -> ApprovalRecordModel:
        record = ApprovalRecordModel(
            deal_id=deal_id,
            workflow_id=workflow_id,
            seq=seq,
            step_number=opening.step_number,
            escalation_level=opening.escalation_level,
            required_role=opening.required_role,
            assigned_approver_id=opening.assigned_approver_id,
            action=action.value,
            comments=comments,
            approved_at=now if action != LedgerAction.PENDING else None,
            created_at=now,
        )
        self.session.add(record)
        self.session.flush()
        return record

    def _record_status_change(
        self,
        deal_id: UUID,
        old_status: DealStatus,
        new_status: DealStatus,
        old_substatus: DealSubstatus,
        new_substatus: DealSubstatus,
        actor_id: UUID | None,
        reason: str,
        now: datetime,
    ) -> None:
        self.session.add(
            DealStatusHistoryModel(
                deal_id=deal_id,
                old_status=old_status.value,
                new_status=new_status.value,
                old_substatus=old_substatus.value,
                new_substatus=new_substatus.value,
                changed_by=actor_id,
                reason=reason,
                changed_at=now,
            )
        )

    def _describe_next_step(self, record: ApprovalRecordDTO) -> NextStep:
        if record.assigned_approver_id is not None:
            named = self._directory.get_actor(record.assigned_approver_id)
            approvers = (named,) if named is not None else ()
        else:
            approvers = self._directory.list_approvers(record.required_role)

        return NextStep(
            step_number=record.step_number,
            escalation_level=record.escalation_level,
            required_role=record.required_role,
            eligible_approvers=tuple(
                ApproverRef(
                    actor_id=a.actor_id,
                    name=a.name,
                    email=a.email,
                    role=a.role,
                )
                for a in approvers
            ),
            estimated_days=estimate_step_days(record.required_role, self._settings),
            approval_record_id=record.id,
        )

    # =====================================================================
    # Bulk
    # =====================================================================

    def bulk_approve(
        self,
        deal_ids: Sequence[UUID | str],
        approver_id: UUID,
        comments: str | None = None,
    ) -> BulkResult:
        """Approve each deal independently, in input order.

        Per-deal failures become ``BulkError`` entries; only an empty id list
        or an unknown approver fails the whole call.  Ids that parse to
        the same UUID are processed once.
        """
        if not deal_ids:
            raise EmptyBulkRequestError()
        if self._directory.get_actor(approver_id) is None:
            raise ActorNotFoundError(str(approver_id))

        # Keyed on the parsed UUID so spellings of one id collapse; ids that
        # do not parse stay keyed on their raw text.
        unique_ids: list[tuple[UUID | str, UUID | None]] = []
        seen: set[UUID | str] = set()
        for raw in deal_ids:
            parsed = self._parse_deal_id(raw)
            key = parsed if parsed is not None else str(raw)
            if key not in seen:
                seen.add(key)
                unique_ids.append((raw, parsed))

        results: list[TransitionResult] = []
        errors: list[BulkError] = []
        batch_id = uuid4()

        with LogContext.bind(batch_id=batch_id, actor_id=approver_id):
            logger.info(
                "bulk_approval_started",
                extra={"deal_count": len(unique_ids)},
            )
            for raw, deal_id in unique_ids:
                try:
                    if deal_id is None:
                        raise DealNotFoundError(str(raw))
                    # Reads included, so a failed statement only aborts
                    # this deal's savepoint.
                    with self.session.begin_nested():
                        result = self.process_approval_action(
                            deal_id, approver_id, Approve(comments=comments),
                        )
                    results.append(result)
                except DealRegistrationError as exc:
                    errors.append(self._bulk_error(raw, exc.code, exc))
                except SQLAlchemyError as exc:
                    errors.append(self._bulk_error(raw, STORAGE_ERROR_CODE, exc))

            bulk = BulkResult(
                processed=len(results),
                total=len(unique_ids),
                errors=tuple(errors),
                results=tuple(results),
            )
            logger.info(
                "bulk_approval_completed",
                extra={
                    "processed": bulk.processed,
                    "total": bulk.total,
                    "failed": len(bulk.errors),
                    "success_rate": bulk.success_rate,
                },
            )
            return bulk

    @staticmethod
    def _parse_deal_id(raw: UUID | str) -> UUID | None:
        if isinstance(raw, UUID):
            return raw
        try:
            return UUID(str(raw))
        except ValueError:
            return None

    @staticmethod
    def _bulk_error(raw: UUID | str, code: str, exc: Exception) -> BulkError:
        logger.warning(
            "bulk_approval_item_failed",
            extra={"failed_deal_id": str(raw), "error_code": code},
        )
        return BulkError(deal_id=str(raw), code=code, message=f"Deal {raw}: {exc}")

    def get_bulk_approval_candidates(self, approver_id: UUID) -> list[DealDTO]:
        """Deals whose current step this approver can act on, oldest first."""
        actor = self._directory.get_actor(approver_id)
        if actor is None:
            raise ActorNotFoundError(str(approver_id))
        if not actor.is_active:
            return []
        return self._selector.get_bulk_approval_candidates(
            actor.role, approver_id=actor.actor_id,
        )
