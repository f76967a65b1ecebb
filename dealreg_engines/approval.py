"""
dealreg_engines.approval -- Pure approval workflow rules.

Responsibility:
    Decide which workflow a deal is routed to, whether it is auto-approved,
    which step follows a given one, where an escalation sits in the step
    order, what substatus a transition produces, how long a step is expected
    to take, and whether an actor may act on a step.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import dealreg_kernel/domain/ types and dealreg_kernel.exceptions.

Invariants enforced:
    - Deterministic routing: workflows are tried in the order given; first
      match wins; fallback is the named default, then the first workflow.
    - Step order: the next step after ``S`` is the lowest-numbered
      *required* step greater than ``S``.  Escalation records never change
      which regular step comes next.
    - Total order over regular and escalation records is lexicographic on
      ``(step_number, escalation_level)``.
    - Purity: no clock access, no I/O, no database.

Failure modes:
    - InvalidWorkflowDefinitionError from ``validate_steps`` for empty,
      non-contiguous, or role-less step lists, or a definition with no
      required step.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from dealreg_kernel.domain.deal import DealSubstatus
from dealreg_kernel.domain.workflow import (
    DealRoutingFacts,
    EngineSettings,
    WorkflowConditions,
    WorkflowDefinition,
    WorkflowStep,
)
from dealreg_kernel.exceptions import InvalidWorkflowDefinitionError

ADMIN_ROLE = "admin"


# =========================================================================
# Routing
# =========================================================================


def conditions_match(conditions: WorkflowConditions, facts: DealRoutingFacts) -> bool:
    """True when every present condition holds for the deal."""
    if conditions.min_deal_value is not None and facts.total_value < conditions.min_deal_value:
        return False
    if conditions.max_deal_value is not None and facts.total_value > conditions.max_deal_value:
        return False
    if conditions.partner_tiers and facts.partner_tier not in conditions.partner_tiers:
        return False
    if conditions.territories and facts.territory not in conditions.territories:
        return False
    return True


def match_workflow(
    workflows: Sequence[WorkflowDefinition],
    facts: DealRoutingFacts,
    default_workflow_name: str | None = None,
) -> WorkflowDefinition | None:
    """Select the workflow for a deal.

    Args:
        workflows: Active workflows in registration order.
        facts: Deal total and submitting reseller's tier/territory.
        default_workflow_name: Fallback when nothing matches.

    Returns:
        The first matching workflow, else the default, else the first
        workflow, else None when ``workflows`` is empty.
    """
    for workflow in workflows:
        if conditions_match(workflow.conditions, facts):
            return workflow

    if default_workflow_name is not None:
        for workflow in workflows:
            if workflow.name == default_workflow_name:
                return workflow

    return workflows[0] if workflows else None


def check_auto_approval(
    workflow: WorkflowDefinition,
    total_value: Decimal,
    settings: EngineSettings,
) -> WorkflowStep | None:
    """Return the step whose auto-approve threshold covers ``total_value``.

    Steps are checked in step order; the first step with a threshold at or
    above the deal total wins.  None when auto-approval does not apply.
    """
    if not settings.auto_approval_enabled:
        return None
    for step in sorted(workflow.steps, key=lambda s: s.step_number):
        if step.auto_approve_threshold is not None and total_value <= step.auto_approve_threshold:
            return step
    return None


# =========================================================================
# Sequencing
# =========================================================================


def first_required_step(workflow: WorkflowDefinition) -> WorkflowStep | None:
    """The step a freshly routed deal is seeded at."""
    return next_required_step(workflow, 0)


def next_required_step(
    workflow: WorkflowDefinition,
    after_step_number: int,
) -> WorkflowStep | None:
    """Lowest-numbered required step strictly after ``after_step_number``."""
    candidates = [
        s for s in workflow.steps
        if s.required and s.step_number > after_step_number
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda s: s.step_number)


def escalation_position(step_number: int, escalation_level: int) -> tuple[int, int]:
    """Order key of the record an escalation of ``(step_number, level)`` opens."""
    return (step_number, escalation_level + 1)


# =========================================================================
# Substatus
# =========================================================================


def review_substatus(required_role: str) -> DealSubstatus:
    """Substatus while a deal waits on ``required_role``."""
    if required_role == ADMIN_ROLE:
        return DealSubstatus.ADMIN_REVIEW
    return DealSubstatus.MANAGER_REVIEW


# =========================================================================
# Time estimates
# =========================================================================


def estimate_step_days(required_role: str, settings: EngineSettings) -> int:
    """Expected days for one step, by role."""
    return settings.role_sla_days.get(required_role, settings.default_sla_days)


def estimate_workflow_days(workflow: WorkflowDefinition, settings: EngineSettings) -> int:
    """Expected days for the whole workflow."""
    required = len(workflow.required_steps)
    return max(settings.min_total_sla_days, required * settings.default_sla_days)


# =========================================================================
# Authorization
# =========================================================================


def validate_actor_authority(actor_role: str | None, required_role: str) -> bool:
    """Check an actor's role against a step's required role.  Exact match only."""
    return actor_role is not None and actor_role == required_role


# =========================================================================
# Definition validation
# =========================================================================


def validate_steps(workflow: WorkflowDefinition) -> None:
    """Validate a workflow definition's steps.

    Raises:
        InvalidWorkflowDefinitionError: steps empty, numbers not contiguous
            from 1, a role blank, no required step, or a negative threshold.
    """
    if not workflow.name or not workflow.name.strip():
        raise InvalidWorkflowDefinitionError(workflow.name or "<unnamed>", "name is required")
    if not workflow.steps:
        raise InvalidWorkflowDefinitionError(workflow.name, "at least one step is required")

    numbers = [s.step_number for s in workflow.steps]
    expected = list(range(1, len(numbers) + 1))
    if sorted(numbers) != expected:
        raise InvalidWorkflowDefinitionError(
            workflow.name,
            f"step numbers must be unique and contiguous from 1, got {numbers}",
        )

    for step in workflow.steps:
        if not step.required_role or not step.required_role.strip():
            raise InvalidWorkflowDefinitionError(
                workflow.name, f"step {step.step_number} has no required_role",
            )
        if step.auto_approve_threshold is not None and step.auto_approve_threshold < 0:
            raise InvalidWorkflowDefinitionError(
                workflow.name,
                f"step {step.step_number} has a negative auto_approve_threshold",
            )

    if not workflow.required_steps:
        raise InvalidWorkflowDefinitionError(
            workflow.name, "at least one step must be required",
        )

    conditions = workflow.conditions
    if (
        conditions.min_deal_value is not None
        and conditions.max_deal_value is not None
        and conditions.min_deal_value > conditions.max_deal_value
    ):
        raise InvalidWorkflowDefinitionError(
            workflow.name, "min_deal_value is greater than max_deal_value",
        )
