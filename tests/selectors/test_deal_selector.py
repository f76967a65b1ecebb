"""
Tests for DealSelector read queries.

Covers:
- get_deal / get_current_record / get_ledger / get_pending_records
- get_bulk_approval_candidates: role filter, named-approver filter,
  oldest-first ordering, finished deals excluded
- get_conflicts status filter
- get_status_history ordering
"""

from uuid import uuid4

from dealreg_kernel.domain.approval import Approve, Escalate, LedgerAction
from dealreg_kernel.domain.deal import DealStatus, ResolutionStatus


class TestDealReads:

    def test_missing_deal(self, deal_selector):
        assert deal_selector.get_deal(uuid4()) is None
        assert deal_selector.get_current_record(uuid4()) is None
        assert deal_selector.get_ledger(uuid4()) == []

    def test_current_record_follows_pointer(self, deal_selector, start_deal):
        deal_id, _ = start_deal(roles=("staff", "manager"))
        deal = deal_selector.get_deal(deal_id)
        current = deal_selector.get_current_record(deal_id)

        assert current.id == deal.current_approval_id
        assert current.step_number == 1
        assert current.required_role == "staff"
        assert deal.current_step_number == 1

    def test_ledger_in_seq_order(
        self, deal_selector, start_deal, create_staff, approval_engine, deterministic_clock,
    ):
        staff = create_staff("staff")
        deal_id, _ = start_deal(roles=("staff", "manager"))
        deterministic_clock.advance(60)
        approval_engine.process_approval_action(deal_id, staff.actor_id, Approve())

        ledger = deal_selector.get_ledger(deal_id)
        assert [r.seq for r in ledger] == [1, 2]
        assert [r.action for r in ledger] == [LedgerAction.APPROVED, LedgerAction.PENDING]
        assert [p.step_number for p in deal_selector.get_pending_records(deal_id)] == [2]


class TestBulkCandidates:

    def test_role_filter_and_oldest_first(self, deal_selector, start_deal, register_workflow):
        manager_wf = register_workflow(("manager",))
        admin_wf = register_workflow(("admin",))
        first, _ = start_deal(manager_wf)
        start_deal(admin_wf)
        third, _ = start_deal(manager_wf)

        candidates = deal_selector.get_bulk_approval_candidates("manager")
        assert [d.id for d in candidates] == [first, third]

    def test_finished_deals_excluded(
        self, deal_selector, start_deal, create_staff, approval_engine,
    ):
        manager = create_staff("manager")
        deal_id, _ = start_deal(roles=("manager",))
        approval_engine.process_approval_action(deal_id, manager.actor_id, Approve())

        assert deal_selector.get_bulk_approval_candidates("manager") == []

    def test_named_escalation_only_offered_to_that_approver(
        self, deal_selector, start_deal, create_staff, approval_engine,
    ):
        manager = create_staff("manager")
        named_admin = create_staff("admin")
        other_admin = create_staff("admin")
        deal_id, _ = start_deal(roles=("manager",))
        approval_engine.process_approval_action(
            deal_id, manager.actor_id, Escalate(target_approver_id=named_admin.actor_id),
        )

        assert [d.id for d in deal_selector.get_bulk_approval_candidates(
            "admin", approver_id=named_admin.actor_id,
        )] == [deal_id]
        assert deal_selector.get_bulk_approval_candidates(
            "admin", approver_id=other_admin.actor_id,
        ) == []


class TestConflictsAndHistory:

    def test_conflict_status_filter(self, deal_selector, create_deal, create_conflict):
        deal_id = create_deal()
        create_conflict(deal_id)
        create_conflict(deal_id, status=ResolutionStatus.DISMISSED)

        assert len(deal_selector.get_conflicts(deal_id)) == 2
        pending = deal_selector.get_conflicts(deal_id, ResolutionStatus.PENDING)
        assert len(pending) == 1
        assert pending[0].resolution_status == ResolutionStatus.PENDING

    def test_status_history_in_time_order(
        self, deal_selector, start_deal, create_staff, approval_engine, deterministic_clock,
    ):
        manager = create_staff("manager")
        deal_id, _ = start_deal(roles=("manager",))
        deterministic_clock.advance(60)
        approval_engine.process_approval_action(deal_id, manager.actor_id, Approve())

        history = deal_selector.get_status_history(deal_id)
        assert [h.new_status for h in history] == [DealStatus.PENDING, DealStatus.APPROVED]
        assert history[0].old_status == DealStatus.PENDING
