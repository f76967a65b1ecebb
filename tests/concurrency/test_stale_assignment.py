"""
Compare-and-swap tests for concurrent assignments of the same deal.

Both callers read the same current reseller; the first write wins.  The
second assignment was decided against a stale read and must fail with
StaleAssignmentError, so the assignment history never records a
previous reseller the deal no longer had.
"""

import pytest

from dealreg_kernel.exceptions import StaleAssignmentError
from dealreg_kernel.services.assignment_service import AssignmentService


@pytest.fixture
def raced_assignment(assignment_service, create_deal, create_reseller, create_staff):
    """A deal, a context read before the winning assignment, and the loser's reseller."""
    admin = create_staff("admin")
    deal_id = create_deal()
    winner = create_reseller()
    loser = create_reseller()
    stale = assignment_service._load_context(
        deal_id, loser.reseller_id, admin.actor_id, "Second claim",
    )

    assignment_service.assign_deal(
        deal_id, winner.reseller_id, admin.actor_id, "First claim",
    )
    return deal_id, stale, winner, loser, admin


class TestStaleAssignment:

    def test_loser_fails_without_writing(
        self, raced_assignment, assignment_service, deal_selector,
    ):
        deal_id, stale, winner, _, _ = raced_assignment
        history_before = deal_selector.get_assignment_history(deal_id)
        status_before = deal_selector.get_status_history(deal_id)

        with pytest.raises(StaleAssignmentError) as exc_info:
            with assignment_service.session.begin_nested():
                assignment_service._apply_assignment(stale)

        assert exc_info.value.code == "STALE_ASSIGNMENT"
        assert exc_info.value.expected_reseller_id is None
        assert deal_selector.get_deal(deal_id).assigned_reseller_id == winner.reseller_id
        assert deal_selector.get_assignment_history(deal_id) == history_before
        assert deal_selector.get_status_history(deal_id) == status_before

    def test_assign_deal_raises_and_skips_effects(
        self, raced_assignment, assignment_service, deal_selector, monkeypatch,
    ):
        deal_id, stale, winner, loser, admin = raced_assignment
        monkeypatch.setattr(
            AssignmentService, "_load_context", lambda self, *args: stale,
        )

        with pytest.raises(StaleAssignmentError):
            assignment_service.assign_deal(deal_id, loser.reseller_id, admin.actor_id)

        history = deal_selector.get_assignment_history(deal_id)
        assert len(history) == 1
        assert history[0].previous_reseller_id is None
        assert history[0].new_reseller_id == winner.reseller_id

    def test_fresh_read_after_race_succeeds(
        self, raced_assignment, assignment_service, deal_selector, deterministic_clock,
    ):
        deal_id, _, winner, loser, admin = raced_assignment

        deterministic_clock.advance(60)
        result = assignment_service.assign_deal(
            deal_id, loser.reseller_id, admin.actor_id, "Retry",
        )

        assert result.previous_reseller_id == winner.reseller_id
        history = deal_selector.get_assignment_history(deal_id)
        assert [h.previous_reseller_id for h in history] == [None, winner.reseller_id]
