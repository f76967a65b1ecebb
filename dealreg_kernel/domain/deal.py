"""
Deal domain types (``dealreg_kernel.domain.deal``).

Responsibility
--------------
Status enums and frozen read models for deals, their conflicts, and the
append-only assignment and status histories.  Also the structured
result of a reseller assignment, including per-effect outcomes.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``status`` only moves together with a ledger mutation or an
  assignment; ``approved`` and ``rejected`` are terminal outcomes of the
  approval workflow.
* A conflict is set to ``resolved`` only by assignment; ``dismissed``
  conflicts are never touched.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class DealStatus(str, Enum):
    """Top-level deal status."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    DISPUTED = "disputed"
    APPROVED = "approved"
    REJECTED = "rejected"


TERMINAL_DEAL_STATUSES: frozenset[DealStatus] = frozenset({
    DealStatus.APPROVED,
    DealStatus.REJECTED,
})


class DealSubstatus(str, Enum):
    """Fine-grained position of a deal in the registration lifecycle."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    VALIDATION_PENDING = "validation_pending"
    CONFLICT_REVIEW = "conflict_review"
    APPROVAL_PENDING = "approval_pending"
    MANAGER_REVIEW = "manager_review"
    ADMIN_REVIEW = "admin_review"
    APPROVED_CONDITIONAL = "approved_conditional"
    REJECTED_VALIDATION = "rejected_validation"
    REJECTED_CONFLICT = "rejected_conflict"
    REJECTED_APPROVAL = "rejected_approval"
    APPEAL_PENDING = "appeal_pending"


class DealPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ResolutionStatus(str, Enum):
    """Conflict resolution lifecycle."""

    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class ConflictType(str, Enum):
    DUPLICATE_END_USER = "duplicate_end_user"
    TERRITORY_OVERLAP = "territory_overlap"
    TIMING_CONFLICT = "timing_conflict"


# =========================================================================
# Read models
# =========================================================================


@dataclass(frozen=True)
class DealDTO:
    """Immutable snapshot of a deal."""

    id: UUID
    deal_name: str | None
    status: DealStatus
    substatus: DealSubstatus
    submitted_by_reseller_id: UUID
    assigned_reseller_id: UUID | None
    workflow_id: UUID | None
    current_approval_id: UUID | None
    current_step_number: int | None
    total_value: Decimal
    priority: DealPriority
    assignment_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def has_current_step(self) -> bool:
        return self.current_approval_id is not None


@dataclass(frozen=True)
class DealConflictDTO:
    id: UUID
    deal_id: UUID
    competing_deal_id: UUID | None
    conflict_type: ConflictType
    resolution_status: ResolutionStatus
    resolved_by: UUID | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class AssignmentHistoryDTO:
    id: UUID
    deal_id: UUID
    previous_reseller_id: UUID | None
    new_reseller_id: UUID
    assigned_by: UUID
    reason: str
    assigned_at: datetime


@dataclass(frozen=True)
class DealStatusHistoryDTO:
    id: UUID
    deal_id: UUID
    old_status: DealStatus | None
    new_status: DealStatus
    old_substatus: DealSubstatus | None
    new_substatus: DealSubstatus
    changed_by: UUID | None
    reason: str
    changed_at: datetime


# =========================================================================
# Assignment result
# =========================================================================


class AssignmentEffect(str, Enum):
    """Secondary writes performed after the primary assignment write."""

    ASSIGNMENT_HISTORY = "assignment_history"
    CONFLICT_RESOLUTION = "conflict_resolution"


@dataclass(frozen=True)
class EffectOutcome:
    """Outcome of one best-effort effect.  ``succeeded=False`` is a partial failure."""

    effect: AssignmentEffect
    succeeded: bool
    error_type: str | None = None
    error_message: str | None = None

    @property
    def warning(self) -> str | None:
        if self.succeeded:
            return None
        return f"{self.effect.value} failed: {self.error_type}: {self.error_message}"


@dataclass(frozen=True)
class AssignmentResult:
    """Result of assigning a deal to a reseller.

    The assignment itself always stands when this is returned; failed
    secondary effects are reported in ``effects``.
    """

    deal: DealDTO
    previous_reseller_id: UUID | None
    effects: tuple[EffectOutcome, ...] = ()
    resolved_conflict_ids: tuple[UUID, ...] = ()
    history_record_id: UUID | None = None

    @property
    def partial_failure(self) -> bool:
        return any(not e.succeeded for e in self.effects)

    @property
    def warnings(self) -> tuple[str, ...]:
        return tuple(e.warning for e in self.effects if not e.succeeded)


@dataclass(frozen=True)
class StaffActor:
    """A staff user as seen by the approval engine."""

    actor_id: UUID
    name: str
    email: str
    role: str
    is_active: bool = True


@dataclass(frozen=True)
class ResellerRef:
    """Routing-relevant reseller attributes."""

    reseller_id: UUID
    name: str
    partner_tier: str | None = None
    territory: str | None = None
