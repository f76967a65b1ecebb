"""
Module: dealreg_engines
Responsibility:
    Package entrypoint that re-exports the pure approval rule functions.
    This is the canonical import surface for the kernel services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import dealreg_kernel/domain (and dealreg_kernel.exceptions).
    MUST NOT import dealreg_services or dealreg_config.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``.
    - Decimal-only comparisons for deal totals and thresholds.
    - Determinism: identical inputs always produce identical outputs.
"""

from dealreg_engines.approval import (
    check_auto_approval,
    conditions_match,
    escalation_position,
    estimate_step_days,
    estimate_workflow_days,
    first_required_step,
    match_workflow,
    next_required_step,
    review_substatus,
    validate_actor_authority,
    validate_steps,
)

__all__ = [
    "check_auto_approval",
    "conditions_match",
    "escalation_position",
    "estimate_step_days",
    "estimate_workflow_days",
    "first_required_step",
    "match_workflow",
    "next_required_step",
    "review_substatus",
    "validate_actor_authority",
    "validate_steps",
]
