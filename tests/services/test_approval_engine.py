"""
Tests for ApprovalEngine -- the deal approval state machine.

Covers:
- start_workflow(): explicit workflow, routing, default fallback,
  auto-approval, already-attached guard, no workflows
- process_approval_action() approve: N-step walk, two-role example,
  optional steps skipped, next-step description and estimates
- reject: terminal at any step, comments as reason
- Eligibility: role mismatch, inactive actor, unknown actor, named
  escalation approver; none of them mutate anything
- escalate: role target, named target, round-trip resumes at the next
  step, repeated escalation, invalid targets
- Status history and structured logs
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from dealreg_kernel.domain.approval import (
    AUTO_APPROVAL_COMMENT,
    AUTO_APPROVAL_STEP_NUMBER,
    Approve,
    Escalate,
    LedgerAction,
    Reject,
    TransitionOutcome,
)
from dealreg_kernel.domain.deal import DealStatus, DealSubstatus
from dealreg_kernel.domain.workflow import WorkflowConditions, WorkflowStep
from dealreg_kernel.exceptions import (
    ActorNotFoundError,
    DealNotFoundError,
    InvalidEscalationTargetError,
    NoActiveApprovalStepError,
    UnauthorizedApproverError,
    WorkflowAlreadyAttachedError,
    WorkflowNotFoundError,
)


def snapshot(deal_selector, deal_id):
    """Everything a rejected action must leave untouched."""
    return (
        deal_selector.get_deal(deal_id),
        deal_selector.get_ledger(deal_id),
        deal_selector.get_status_history(deal_id),
    )


# =========================================================================
# start_workflow()
# =========================================================================


class TestStartWorkflow:

    def test_explicit_workflow_seeds_first_step(
        self, approval_engine, register_workflow, create_deal, create_staff,
        deal_selector, test_actor_id,
    ):
        manager = create_staff("manager", name="Alice")
        workflow = register_workflow(("manager", "admin"))
        deal_id = create_deal()

        result = approval_engine.start_workflow(deal_id, test_actor_id, workflow.workflow_id)

        assert result.outcome == TransitionOutcome.STARTED
        assert result.status == DealStatus.PENDING
        assert result.substatus == DealSubstatus.APPROVAL_PENDING
        assert result.workflow_id == workflow.workflow_id
        assert result.next_step.step_number == 1
        assert result.next_step.required_role == "manager"
        assert [a.actor_id for a in result.next_step.eligible_approvers] == [manager.actor_id]
        assert result.estimated_days == 4

        ledger = deal_selector.get_ledger(deal_id)
        assert len(ledger) == 1
        assert ledger[0].action == LedgerAction.PENDING
        assert ledger[0].seq == 1
        deal = deal_selector.get_deal(deal_id)
        assert deal.current_approval_id == ledger[0].id
        assert deal.workflow_id == workflow.workflow_id

    def test_first_required_step_skips_optional(
        self, approval_engine, register_workflow, create_deal, test_actor_id,
    ):
        workflow = register_workflow((
            WorkflowStep(1, "staff", required=False),
            WorkflowStep(2, "manager"),
        ))
        result = approval_engine.start_workflow(
            create_deal(), test_actor_id, workflow.workflow_id,
        )
        assert result.next_step.step_number == 2

    def test_routes_by_conditions(
        self, approval_engine, register_workflow, create_deal, create_reseller,
        test_actor_id,
    ):
        register_workflow(
            ("staff",),
            name="Small",
            conditions=WorkflowConditions(max_deal_value=Decimal("50000")),
        )
        big = register_workflow(
            ("staff", "manager", "admin"),
            name="Big",
            conditions=WorkflowConditions(min_deal_value=Decimal("50000.01")),
        )
        reseller = create_reseller("gold")
        deal_id = create_deal(Decimal("75000"), reseller_id=reseller.reseller_id)

        result = approval_engine.start_workflow(deal_id, test_actor_id)
        assert result.workflow_id == big.workflow_id

    def test_routes_by_partner_tier(
        self, approval_engine, register_workflow, create_deal, create_reseller,
        test_actor_id,
    ):
        register_workflow(
            ("manager",),
            name="Gold",
            conditions=WorkflowConditions(partner_tiers=("gold",)),
        )
        bronze = register_workflow(
            ("manager", "admin"),
            name="Bronze",
            conditions=WorkflowConditions(partner_tiers=("bronze",)),
        )
        reseller = create_reseller("bronze")
        deal_id = create_deal(reseller_id=reseller.reseller_id)

        assert approval_engine.start_workflow(deal_id, test_actor_id).workflow_id == (
            bronze.workflow_id
        )

    def test_falls_back_to_first_active_workflow(
        self, approval_engine, register_workflow, create_deal, test_actor_id,
    ):
        first = register_workflow(
            ("manager",), conditions=WorkflowConditions(territories=("emea",)),
        )
        register_workflow(
            ("manager",), conditions=WorkflowConditions(territories=("apac",)),
        )
        result = approval_engine.start_workflow(create_deal(), test_actor_id)
        assert result.workflow_id == first.workflow_id

    def test_no_active_workflow(self, approval_engine, create_deal, test_actor_id):
        with pytest.raises(WorkflowNotFoundError):
            approval_engine.start_workflow(create_deal(), test_actor_id)

    def test_already_attached(self, approval_engine, start_deal, test_actor_id):
        deal_id, workflow = start_deal()
        with pytest.raises(WorkflowAlreadyAttachedError):
            approval_engine.start_workflow(deal_id, test_actor_id, workflow.workflow_id)

    def test_missing_deal(self, approval_engine, test_actor_id):
        with pytest.raises(DealNotFoundError):
            approval_engine.start_workflow(uuid4(), test_actor_id)

    def test_auto_approval_at_threshold(
        self, approval_engine, register_workflow, create_deal, deal_selector,
        test_actor_id,
    ):
        workflow = register_workflow((
            WorkflowStep(1, "staff"),
            WorkflowStep(2, "manager", required=False, auto_approve_threshold=Decimal("25000")),
        ))
        deal_id = create_deal(Decimal("25000"))

        result = approval_engine.start_workflow(deal_id, test_actor_id, workflow.workflow_id)

        assert result.outcome == TransitionOutcome.AUTO_APPROVED
        assert result.status == DealStatus.APPROVED
        assert result.substatus == DealSubstatus.APPROVED_CONDITIONAL
        assert result.next_step is None
        assert result.comments == AUTO_APPROVAL_COMMENT

        ledger = deal_selector.get_ledger(deal_id)
        assert len(ledger) == 1
        assert ledger[0].step_number == AUTO_APPROVAL_STEP_NUMBER
        assert ledger[0].action == LedgerAction.APPROVED
        assert ledger[0].approver_id is None
        assert ledger[0].approved_at is not None
        assert deal_selector.get_deal(deal_id).current_approval_id is None

    def test_above_threshold_not_auto_approved(
        self, approval_engine, register_workflow, create_deal, test_actor_id,
    ):
        workflow = register_workflow((
            WorkflowStep(1, "staff", auto_approve_threshold=Decimal("25000")),
        ))
        result = approval_engine.start_workflow(
            create_deal(Decimal("25000.01")), test_actor_id, workflow.workflow_id,
        )
        assert result.outcome == TransitionOutcome.STARTED

    def test_auto_approved_deal_has_no_active_step(
        self, approval_engine, register_workflow, create_deal, create_staff,
        test_actor_id,
    ):
        staff = create_staff("staff")
        workflow = register_workflow((
            WorkflowStep(1, "staff", auto_approve_threshold=Decimal("100")),
        ))
        deal_id = create_deal(Decimal("50"))
        approval_engine.start_workflow(deal_id, test_actor_id, workflow.workflow_id)

        with pytest.raises(NoActiveApprovalStepError):
            approval_engine.process_approval_action(deal_id, staff.actor_id, Approve())


# =========================================================================
# Approve
# =========================================================================


class TestApprove:

    @pytest.mark.parametrize("roles", [
        ("manager",),
        ("staff", "manager"),
        ("staff", "manager", "admin"),
        ("staff", "staff", "manager", "admin"),
    ])
    def test_n_step_walk(
        self, roles, approval_engine, start_deal, create_staff, deal_selector,
    ):
        """N approvals by correctly-roled approvers finish the workflow."""
        approvers = {role: create_staff(role) for role in set(roles)}
        deal_id, _ = start_deal(roles=roles)

        for i, role in enumerate(roles, start=1):
            result = approval_engine.process_approval_action(
                deal_id, approvers[role].actor_id, Approve(),
            )
            if i < len(roles):
                assert result.outcome == TransitionOutcome.ADVANCED
                assert result.next_step.step_number == i + 1
                assert result.status == DealStatus.PENDING

        assert result.outcome == TransitionOutcome.APPROVED
        assert result.status == DealStatus.APPROVED
        assert result.next_step is None

        ledger = deal_selector.get_ledger(deal_id)
        assert len(ledger) == len(roles)
        assert all(r.action == LedgerAction.APPROVED for r in ledger)
        assert deal_selector.get_pending_records(deal_id) == []
        assert deal_selector.get_deal(deal_id).current_approval_id is None

    def test_manager_then_director(
        self, approval_engine, start_deal, create_staff, deal_selector,
    ):
        manager = create_staff("manager")
        director = create_staff("director")
        deal_id, _ = start_deal(roles=("manager", "director"))

        first = approval_engine.process_approval_action(
            deal_id, manager.actor_id, Approve("looks good"),
        )
        assert first.next_step.step_number == 2
        assert first.next_step.required_role == "director"
        assert [a.actor_id for a in first.next_step.eligible_approvers] == [director.actor_id]
        assert first.status == DealStatus.PENDING

        second = approval_engine.process_approval_action(
            deal_id, director.actor_id, Approve(),
        )
        assert second.next_step is None
        assert second.status == DealStatus.APPROVED

        ledger = deal_selector.get_ledger(deal_id)
        assert [r.action for r in ledger] == [LedgerAction.APPROVED, LedgerAction.APPROVED]
        assert ledger[0].comments == "looks good"
        assert ledger[0].approver_id == manager.actor_id

    def test_closing_records_approver_and_time(
        self, approval_engine, start_deal, create_staff, deal_selector,
        deterministic_clock,
    ):
        manager = create_staff("manager")
        deal_id, _ = start_deal(roles=("manager",))
        deterministic_clock.advance(3600)

        approval_engine.process_approval_action(deal_id, manager.actor_id, Approve())

        record = deal_selector.get_ledger(deal_id)[0]
        assert record.approver_id == manager.actor_id
        assert record.approved_at.replace(tzinfo=None) == (
            deterministic_clock.now().replace(tzinfo=None)
        )

    def test_optional_step_skipped(
        self, approval_engine, register_workflow, start_deal, create_staff,
    ):
        staff = create_staff("staff")
        workflow = register_workflow((
            WorkflowStep(1, "staff"),
            WorkflowStep(2, "manager", required=False),
            WorkflowStep(3, "admin"),
        ))
        deal_id, _ = start_deal(workflow)

        result = approval_engine.process_approval_action(deal_id, staff.actor_id, Approve())
        assert result.next_step.step_number == 3
        assert result.substatus == DealSubstatus.ADMIN_REVIEW

    def test_advance_substatus_and_estimate(
        self, approval_engine, start_deal, create_staff,
    ):
        staff = create_staff("staff")
        deal_id, _ = start_deal(roles=("staff", "manager"))

        result = approval_engine.process_approval_action(deal_id, staff.actor_id, Approve())
        assert result.substatus == DealSubstatus.MANAGER_REVIEW
        assert result.next_step.estimated_days == 2

    def test_eligible_approvers_exclude_inactive(
        self, approval_engine, start_deal, create_staff,
    ):
        staff = create_staff("staff")
        active = create_staff("manager", name="Active")
        create_staff("manager", name="Gone", is_active=False)
        deal_id, _ = start_deal(roles=("staff", "manager"))

        result = approval_engine.process_approval_action(deal_id, staff.actor_id, Approve())
        assert [a.actor_id for a in result.next_step.eligible_approvers] == [active.actor_id]

    def test_final_approval_is_terminal(
        self, approval_engine, start_deal, create_staff,
    ):
        manager = create_staff("manager")
        deal_id, _ = start_deal(roles=("manager",))
        result = approval_engine.process_approval_action(deal_id, manager.actor_id, Approve())

        assert result.is_terminal
        assert result.substatus == DealSubstatus.APPROVED_CONDITIONAL
        with pytest.raises(NoActiveApprovalStepError):
            approval_engine.process_approval_action(deal_id, manager.actor_id, Approve())


# =========================================================================
# Reject
# =========================================================================


class TestReject:

    @pytest.mark.parametrize("reject_at", [1, 2, 3])
    def test_reject_at_any_step_is_terminal(
        self, reject_at, approval_engine, start_deal, create_staff, deal_selector,
    ):
        roles = ("staff", "manager", "admin")
        approvers = {role: create_staff(role) for role in roles}
        deal_id, _ = start_deal(roles=roles)

        for role in roles[: reject_at - 1]:
            approval_engine.process_approval_action(deal_id, approvers[role].actor_id, Approve())

        result = approval_engine.process_approval_action(
            deal_id, approvers[roles[reject_at - 1]].actor_id, Reject("no budget"),
        )

        assert result.outcome == TransitionOutcome.REJECTED
        assert result.status == DealStatus.REJECTED
        assert result.substatus == DealSubstatus.REJECTED_APPROVAL
        assert result.next_step is None
        assert result.comments == "no budget"

        ledger = deal_selector.get_ledger(deal_id)
        assert len(ledger) == reject_at
        assert ledger[-1].action == LedgerAction.REJECTED
        assert deal_selector.get_pending_records(deal_id) == []
        assert deal_selector.get_deal(deal_id).status == DealStatus.REJECTED

    def test_rejected_deal_has_no_active_step(
        self, approval_engine, start_deal, create_staff,
    ):
        manager = create_staff("manager")
        deal_id, _ = start_deal(roles=("manager", "admin"))
        approval_engine.process_approval_action(deal_id, manager.actor_id, Reject())

        with pytest.raises(NoActiveApprovalStepError) as exc_info:
            approval_engine.process_approval_action(deal_id, manager.actor_id, Approve())
        assert exc_info.value.status == "rejected"


# =========================================================================
# Eligibility
# =========================================================================


class TestEligibility:

    def test_role_mismatch_mutates_nothing(
        self, approval_engine, start_deal, create_staff, deal_selector,
    ):
        staff = create_staff("staff")
        deal_id, _ = start_deal(roles=("manager",))
        before = snapshot(deal_selector, deal_id)

        with pytest.raises(UnauthorizedApproverError) as exc_info:
            approval_engine.process_approval_action(deal_id, staff.actor_id, Approve())

        assert exc_info.value.required_role == "manager"
        assert exc_info.value.actor_role == "staff"
        assert snapshot(deal_selector, deal_id) == before

    def test_higher_role_is_not_enough(
        self, approval_engine, start_deal, create_staff,
    ):
        admin = create_staff("admin")
        deal_id, _ = start_deal(roles=("manager",))
        with pytest.raises(UnauthorizedApproverError):
            approval_engine.process_approval_action(deal_id, admin.actor_id, Reject())

    def test_inactive_actor(self, approval_engine, start_deal, create_staff):
        manager = create_staff("manager", is_active=False)
        deal_id, _ = start_deal(roles=("manager",))
        with pytest.raises(UnauthorizedApproverError):
            approval_engine.process_approval_action(deal_id, manager.actor_id, Approve())

    def test_unknown_actor(self, approval_engine, start_deal):
        deal_id, _ = start_deal(roles=("manager",))
        with pytest.raises(ActorNotFoundError):
            approval_engine.process_approval_action(deal_id, uuid4(), Approve())

    def test_missing_deal(self, approval_engine, create_staff):
        manager = create_staff("manager")
        with pytest.raises(DealNotFoundError):
            approval_engine.process_approval_action(uuid4(), manager.actor_id, Approve())

    def test_deal_without_workflow(self, approval_engine, create_deal, create_staff):
        manager = create_staff("manager")
        with pytest.raises(NoActiveApprovalStepError):
            approval_engine.process_approval_action(
                create_deal(), manager.actor_id, Approve(),
            )

    def test_unauthorized_attempt_is_logged(
        self, approval_engine, start_deal, create_staff, captured_logs,
    ):
        staff = create_staff("staff")
        deal_id, _ = start_deal(roles=("manager",))
        with pytest.raises(UnauthorizedApproverError):
            approval_engine.process_approval_action(deal_id, staff.actor_id, Approve())

        logs = [r for r in captured_logs() if r["message"] == "approval_action_unauthorized"]
        assert len(logs) == 1
        assert logs[0]["deal_id"] == str(deal_id)
        assert logs[0]["required_role"] == "manager"


# =========================================================================
# Escalate
# =========================================================================


class TestEscalate:

    def test_padded_role_reaches_approvers_of_that_role(
        self, approval_engine, start_deal, create_staff,
    ):
        manager = create_staff("manager")
        admin = create_staff("admin")
        deal_id, _ = start_deal()
        approval_engine.process_approval_action(
            deal_id, manager.actor_id, Escalate(target_role="admin "),
        )

        result = approval_engine.process_approval_action(deal_id, admin.actor_id, Approve())

        assert result.status == DealStatus.APPROVED

    def test_escalate_to_role(
        self, approval_engine, start_deal, create_staff, deal_selector,
    ):
        manager = create_staff("manager")
        admin = create_staff("admin")
        deal_id, _ = start_deal(roles=("manager", "staff"))

        result = approval_engine.process_approval_action(
            deal_id, manager.actor_id, Escalate(target_role="admin", comments="over my limit"),
        )

        assert result.outcome == TransitionOutcome.ESCALATED
        assert result.status == DealStatus.PENDING
        assert result.substatus == DealSubstatus.ADMIN_REVIEW
        assert result.next_step.step_number == 1
        assert result.next_step.escalation_level == 1
        assert result.next_step.required_role == "admin"
        assert [a.actor_id for a in result.next_step.eligible_approvers] == [admin.actor_id]

        ledger = deal_selector.get_ledger(deal_id)
        assert [r.action for r in ledger] == [LedgerAction.ESCALATED, LedgerAction.PENDING]
        assert ledger[0].comments == "over my limit"

    def test_round_trip_resumes_after_escalated_step(
        self, approval_engine, start_deal, create_staff, deal_selector,
    ):
        """Escalate at S, approve the escalation, and the next step is S + 1."""
        staff = create_staff("staff")
        manager = create_staff("manager")
        admin = create_staff("admin")
        deal_id, _ = start_deal(roles=("staff", "manager", "admin"))

        approval_engine.process_approval_action(deal_id, staff.actor_id, Approve())
        approval_engine.process_approval_action(
            deal_id, manager.actor_id, Escalate(target_role="admin"),
        )
        resumed = approval_engine.process_approval_action(deal_id, admin.actor_id, Approve())

        assert resumed.outcome == TransitionOutcome.ADVANCED
        assert resumed.next_step.step_number == 3
        assert resumed.next_step.escalation_level == 0

        ledger = deal_selector.get_ledger(deal_id)
        assert [(r.step_number, r.escalation_level) for r in ledger] == [
            (1, 0), (2, 0), (2, 1), (3, 0),
        ]
        keys = [r.order_key for r in ledger]
        assert keys == sorted(keys)

    def test_escalation_on_last_step_finishes_workflow(
        self, approval_engine, start_deal, create_staff,
    ):
        manager = create_staff("manager")
        admin = create_staff("admin")
        deal_id, _ = start_deal(roles=("manager",))

        approval_engine.process_approval_action(
            deal_id, manager.actor_id, Escalate(target_role="admin"),
        )
        result = approval_engine.process_approval_action(deal_id, admin.actor_id, Approve())
        assert result.status == DealStatus.APPROVED

    def test_repeated_escalation_deepens_level(
        self, approval_engine, start_deal, create_staff, deal_selector,
    ):
        manager = create_staff("manager")
        admin = create_staff("admin")
        deal_id, _ = start_deal(roles=("manager", "staff"))

        approval_engine.process_approval_action(
            deal_id, manager.actor_id, Escalate(target_role="admin"),
        )
        second = approval_engine.process_approval_action(
            deal_id, admin.actor_id, Escalate(target_role="director"),
        )

        assert second.next_step.step_number == 1
        assert second.next_step.escalation_level == 2
        assert second.next_step.eligible_approvers == ()
        assert len(deal_selector.get_pending_records(deal_id)) == 1

    def test_rejecting_escalation_is_terminal(
        self, approval_engine, start_deal, create_staff,
    ):
        manager = create_staff("manager")
        admin = create_staff("admin")
        deal_id, _ = start_deal(roles=("manager", "staff"))
        approval_engine.process_approval_action(
            deal_id, manager.actor_id, Escalate(target_role="admin"),
        )
        result = approval_engine.process_approval_action(deal_id, admin.actor_id, Reject())
        assert result.status == DealStatus.REJECTED

    def test_escalate_to_named_approver(
        self, approval_engine, start_deal, create_staff,
    ):
        manager = create_staff("manager")
        named = create_staff("admin", name="Named")
        other = create_staff("admin", name="Other")
        deal_id, _ = start_deal(roles=("manager",))

        result = approval_engine.process_approval_action(
            deal_id, manager.actor_id, Escalate(target_approver_id=named.actor_id),
        )
        assert result.next_step.required_role == "admin"
        assert [a.actor_id for a in result.next_step.eligible_approvers] == [named.actor_id]

        with pytest.raises(UnauthorizedApproverError):
            approval_engine.process_approval_action(deal_id, other.actor_id, Approve())
        approval_engine.process_approval_action(deal_id, named.actor_id, Approve())

    def test_named_approver_must_hold_role(
        self, approval_engine, start_deal, create_staff, deal_selector,
    ):
        manager = create_staff("manager")
        staff = create_staff("staff")
        deal_id, _ = start_deal(roles=("manager",))
        before = snapshot(deal_selector, deal_id)

        with pytest.raises(InvalidEscalationTargetError):
            approval_engine.process_approval_action(
                deal_id,
                manager.actor_id,
                Escalate(target_role="admin", target_approver_id=staff.actor_id),
            )
        assert snapshot(deal_selector, deal_id) == before

    def test_unknown_named_approver(
        self, approval_engine, start_deal, create_staff, deal_selector,
    ):
        manager = create_staff("manager")
        deal_id, _ = start_deal(roles=("manager",))
        before = snapshot(deal_selector, deal_id)

        with pytest.raises(InvalidEscalationTargetError):
            approval_engine.process_approval_action(
                deal_id, manager.actor_id, Escalate(target_approver_id=uuid4()),
            )
        assert snapshot(deal_selector, deal_id) == before


# =========================================================================
# History and logging
# =========================================================================


class TestStatusHistoryAndLogs:

    def test_every_status_change_recorded(
        self, approval_engine, start_deal, create_staff, deal_selector,
        deterministic_clock,
    ):
        staff = create_staff("staff")
        manager = create_staff("manager")
        deal_id, _ = start_deal(roles=("staff", "manager"))
        deterministic_clock.advance(60)
        approval_engine.process_approval_action(deal_id, staff.actor_id, Approve())
        deterministic_clock.advance(60)
        approval_engine.process_approval_action(deal_id, manager.actor_id, Approve())

        history = deal_selector.get_status_history(deal_id)
        assert [h.new_substatus for h in history] == [
            DealSubstatus.APPROVAL_PENDING,
            DealSubstatus.MANAGER_REVIEW,
            DealSubstatus.APPROVED_CONDITIONAL,
        ]
        assert history[-1].changed_by == manager.actor_id

    def test_processed_event_logged_with_context(
        self, approval_engine, start_deal, create_staff, captured_logs,
    ):
        manager = create_staff("manager")
        deal_id, _ = start_deal(roles=("manager",))
        approval_engine.process_approval_action(deal_id, manager.actor_id, Approve())

        events = [r for r in captured_logs() if r["message"] == "approval_action_processed"]
        assert len(events) == 1
        assert events[0]["deal_id"] == str(deal_id)
        assert events[0]["actor_id"] == str(manager.actor_id)
        assert events[0]["action"] == "approved"
        assert events[0]["new_status"] == "approved"
