"""
Approval domain types (``dealreg_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the approval engine: the ledger record lifecycle,
the closed set of approver actions, and the structured results returned
by single-deal and bulk operations.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  May import
only from ``domain/`` and ``exceptions``.

Invariants enforced
-------------------
* Ledger lifecycle -- ``LEDGER_TRANSITIONS`` defines the only valid
  record transitions.  Only ``pending`` has outgoing edges; a closed
  record is never reopened.
* Closed action set -- an action is exactly one of ``Approve``,
  ``Reject`` or ``Escalate``.  ``Escalate`` cannot be built without a
  target.
* Escalation ordering -- records are totally ordered by
  ``(step_number, escalation_level)``.  An escalation of ``(S, k)`` sits
  at ``(S, k + 1)``: after every record of step ``S`` and before step
  ``S + 1``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol, Union
from uuid import UUID

from dealreg_kernel.domain.deal import DealStatus, DealSubstatus, StaffActor
from dealreg_kernel.exceptions import InvalidEscalationTargetError


# =========================================================================
# Ledger record lifecycle
# =========================================================================


class LedgerAction(str, Enum):
    """State of a single approval ledger record."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"


LEDGER_TRANSITIONS: dict[LedgerAction, frozenset[LedgerAction]] = {
    LedgerAction.PENDING: frozenset({
        LedgerAction.APPROVED,
        LedgerAction.REJECTED,
        LedgerAction.ESCALATED,
    }),
    LedgerAction.APPROVED: frozenset(),
    LedgerAction.REJECTED: frozenset(),
    LedgerAction.ESCALATED: frozenset(),
}

CLOSED_LEDGER_ACTIONS: frozenset[LedgerAction] = frozenset({
    LedgerAction.APPROVED,
    LedgerAction.REJECTED,
    LedgerAction.ESCALATED,
})

AUTO_APPROVAL_STEP_NUMBER = 0
AUTO_APPROVAL_COMMENT = "Auto-approved based on workflow conditions"


class TransitionOutcome(str, Enum):
    """What a transition did to the deal."""

    STARTED = "started"
    AUTO_APPROVED = "auto_approved"
    ADVANCED = "advanced"
    ESCALATED = "escalated"
    APPROVED = "approved"
    REJECTED = "rejected"


# =========================================================================
# Actions (closed variant)
# =========================================================================


@dataclass(frozen=True)
class Approve:
    comments: str | None = None


@dataclass(frozen=True)
class Reject:
    comments: str | None = None


@dataclass(frozen=True)
class Escalate:
    """Route the current step to another role or to a named approver.

    At least one of ``target_role`` / ``target_approver_id`` is required.
    When both are given the approver must hold ``target_role``.
    """

    target_role: str | None = None
    target_approver_id: UUID | None = None
    comments: str | None = None

    def __post_init__(self) -> None:
        role = (self.target_role or "").strip()
        if not role and self.target_approver_id is None:
            raise InvalidEscalationTargetError(
                None, "escalation requires target_role or target_approver_id"
            )
        if self.target_role is not None:
            object.__setattr__(self, "target_role", role or None)


ApprovalAction = Union[Approve, Reject, Escalate]


def ledger_action_for(action: ApprovalAction) -> LedgerAction:
    """The terminal ledger action that closing a record with ``action`` produces."""
    if isinstance(action, Approve):
        return LedgerAction.APPROVED
    if isinstance(action, Reject):
        return LedgerAction.REJECTED
    if isinstance(action, Escalate):
        return LedgerAction.ESCALATED
    raise TypeError(f"Unsupported approval action: {type(action).__name__}")


# =========================================================================
# Ledger record
# =========================================================================


@dataclass(frozen=True)
class ApprovalRecordDTO:
    """Immutable snapshot of one approval ledger record."""

    id: UUID
    deal_id: UUID
    workflow_id: UUID
    seq: int
    step_number: int
    escalation_level: int
    required_role: str
    action: LedgerAction
    assigned_approver_id: UUID | None = None
    approver_id: UUID | None = None
    approved_at: datetime | None = None
    comments: str | None = None
    created_at: datetime | None = None

    @property
    def order_key(self) -> tuple[int, int]:
        return (self.step_number, self.escalation_level)

    @property
    def is_pending(self) -> bool:
        return self.action == LedgerAction.PENDING


# =========================================================================
# Results
# =========================================================================


@dataclass(frozen=True)
class ApproverRef:
    """An approver eligible to act on a step."""

    actor_id: UUID
    name: str
    email: str
    role: str


@dataclass(frozen=True)
class NextStep:
    """The pending step a transition opened."""

    step_number: int
    escalation_level: int
    required_role: str
    eligible_approvers: tuple[ApproverRef, ...]
    estimated_days: int
    approval_record_id: UUID


@dataclass(frozen=True)
class TransitionResult:
    """Result of a single-deal approval transition or workflow start."""

    deal_id: UUID
    outcome: TransitionOutcome
    status: DealStatus
    substatus: DealSubstatus
    workflow_id: UUID
    closed_record_id: UUID | None = None
    next_step: NextStep | None = None
    comments: str | None = None
    estimated_days: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.outcome in (
            TransitionOutcome.APPROVED,
            TransitionOutcome.AUTO_APPROVED,
            TransitionOutcome.REJECTED,
        )


@dataclass(frozen=True)
class BulkError:
    """One failed deal in a bulk call.  ``message`` always embeds the deal id."""

    deal_id: str
    code: str
    message: str


@dataclass(frozen=True)
class BulkResult:
    """Aggregate outcome of ``bulk_approve``."""

    processed: int
    total: int
    errors: tuple[BulkError, ...] = ()
    results: tuple[TransitionResult, ...] = ()

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return round(self.processed / self.total * 100, 2)

    @property
    def failed_deal_ids(self) -> tuple[str, ...]:
        return tuple(e.deal_id for e in self.errors)


# =========================================================================
# ActorDirectory Protocol
# =========================================================================


class ActorDirectory(Protocol):
    """Read-only lookup of staff actors."""

    def get_actor(self, actor_id: UUID) -> StaffActor | None:
        """Return the actor, or None when unknown."""
        ...

    def get_role(self, actor_id: UUID) -> str | None:
        """Return the actor's role, or None when unknown."""
        ...

    def list_approvers(self, role: str) -> tuple[StaffActor, ...]:
        """Return active actors holding ``role``."""
        ...
