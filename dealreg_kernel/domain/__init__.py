"""
Pure domain layer.

This module contains pure data transfer objects and value types
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable.
"""

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
)
from dealreg_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from dealreg_kernel.domain.deal import (
    TERMINAL_DEAL_STATUSES,
    AssignmentEffect,
    AssignmentHistoryDTO,
    AssignmentResult,
    ConflictType,
    DealConflictDTO,
    DealDTO,
    DealPriority,
    DealStatus,
    DealStatusHistoryDTO,
    DealSubstatus,
    EffectOutcome,
    ResellerRef,
    ResolutionStatus,
    StaffActor,
)
from dealreg_kernel.domain.workflow import (
    DealRoutingFacts,
    EngineSettings,
    WorkflowConditions,
    WorkflowDefinition,
    WorkflowStep,
)

__all__ = [
    "AUTO_APPROVAL_COMMENT",
    "AUTO_APPROVAL_STEP_NUMBER",
    "LEDGER_TRANSITIONS",
    "TERMINAL_DEAL_STATUSES",
    "ActorDirectory",
    "ApprovalAction",
    "ApprovalRecordDTO",
    "Approve",
    "ApproverRef",
    "AssignmentEffect",
    "AssignmentHistoryDTO",
    "AssignmentResult",
    "BulkError",
    "BulkResult",
    "Clock",
    "ConflictType",
    "DealConflictDTO",
    "DealDTO",
    "DealPriority",
    "DealRoutingFacts",
    "DealStatus",
    "DealStatusHistoryDTO",
    "DealSubstatus",
    "DeterministicClock",
    "EffectOutcome",
    "EngineSettings",
    "Escalate",
    "LedgerAction",
    "NextStep",
    "Reject",
    "ResellerRef",
    "ResolutionStatus",
    "StaffActor",
    "SystemClock",
    "TransitionOutcome",
    "TransitionResult",
    "WorkflowConditions",
    "WorkflowDefinition",
    "WorkflowStep",
]
