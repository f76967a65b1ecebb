"""
Workflow definition types (``dealreg_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing approval workflows: ordered role-gated
steps, routing conditions, and the engine settings that govern
auto-approval and time estimates.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Step numbers are unique, ascending and contiguous from 1 (checked by
  ``dealreg_engines.approval.validate_steps`` before persistence).
* A definition is immutable; a changed workflow is registered as a new
  version rather than edited in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class WorkflowStep:
    """One ordered stage of a workflow.

    ``required`` steps are always entered; optional steps are skipped when
    the engine advances.  ``auto_approve_threshold`` lets a deal whose total
    is at or below the threshold skip the workflow entirely.
    """

    step_number: int
    required_role: str
    required: bool = True
    auto_approve_threshold: Decimal | None = None


@dataclass(frozen=True)
class WorkflowConditions:
    """Routing conditions.  Absent conditions always match."""

    min_deal_value: Decimal | None = None
    max_deal_value: Decimal | None = None
    partner_tiers: tuple[str, ...] = ()
    territories: tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return (
            self.min_deal_value is None
            and self.max_deal_value is None
            and not self.partner_tiers
            and not self.territories
        )

    def to_dict(self) -> dict:
        data: dict = {}
        if self.min_deal_value is not None:
            data["min_deal_value"] = str(self.min_deal_value)
        if self.max_deal_value is not None:
            data["max_deal_value"] = str(self.max_deal_value)
        if self.partner_tiers:
            data["partner_tiers"] = list(self.partner_tiers)
        if self.territories:
            data["territories"] = list(self.territories)
        return data

    @classmethod
    def from_dict(cls, data: dict | None) -> WorkflowConditions:
        data = data or {}
        min_value = data.get("min_deal_value")
        max_value = data.get("max_deal_value")
        return cls(
            min_deal_value=Decimal(str(min_value)) if min_value is not None else None,
            max_deal_value=Decimal(str(max_value)) if max_value is not None else None,
            partner_tiers=tuple(data.get("partner_tiers") or ()),
            territories=tuple(data.get("territories") or ()),
        )


@dataclass(frozen=True)
class WorkflowDefinition:
    """A named, versioned, ordered list of approval steps.

    ``workflow_id`` and ``definition_hash`` are None until the definition
    has been registered.
    """

    name: str
    steps: tuple[WorkflowStep, ...]
    description: str = ""
    conditions: WorkflowConditions = field(default_factory=WorkflowConditions)
    workflow_id: UUID | None = None
    version: int = 1
    definition_hash: str | None = None
    is_active: bool = True

    def step(self, step_number: int) -> WorkflowStep | None:
        for s in self.steps:
            if s.step_number == step_number:
                return s
        return None

    @property
    def required_steps(self) -> tuple[WorkflowStep, ...]:
        return tuple(s for s in self.steps if s.required)

    def hash_payload(self) -> dict:
        """Canonical content used for the definition hash (identity excluded)."""
        return {
            "name": self.name,
            "description": self.description,
            "conditions": {
                "min_deal_value": self.conditions.min_deal_value,
                "max_deal_value": self.conditions.max_deal_value,
                "partner_tiers": sorted(self.conditions.partner_tiers),
                "territories": sorted(self.conditions.territories),
            },
            "steps": [
                {
                    "step_number": s.step_number,
                    "required_role": s.required_role,
                    "required": s.required,
                    "auto_approve_threshold": s.auto_approve_threshold,
                }
                for s in sorted(self.steps, key=lambda s: s.step_number)
            ],
        }


DEFAULT_ROLE_SLA_DAYS: dict[str, int] = {
    "staff": 1,
    "manager": 2,
    "admin": 3,
}


@dataclass(frozen=True)
class EngineSettings:
    """Tunables for the approval engine, loaded from the workflow catalog."""

    auto_approval_enabled: bool = True
    role_sla_days: dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_ROLE_SLA_DAYS)
    )
    default_sla_days: int = 2
    min_total_sla_days: int = 1
    default_workflow_name: str | None = None


@dataclass(frozen=True)
class DealRoutingFacts:
    """The deal attributes workflow conditions are evaluated against."""

    total_value: Decimal
    partner_tier: str | None = None
    territory: str | None = None
