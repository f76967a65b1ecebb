"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The approval ledger and the assignment/status histories are the audit trail
of who decided what about a deal.  They grow, they never shrink, and a
closed decision is never rewritten.  Workflow definitions referenced by
in-flight deals must not change shape underneath them.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

The engine closes pending ledger records with a conditional Core UPDATE
(``WHERE action = 'pending'``).  Those statements bypass mapper events; the
WHERE clause itself is what prevents a closed record from being rewritten.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity               | When Immutable                      | Delete
---------------------|-------------------------------------|---------
ApprovalRecord       | Once action != pending              | Never
AssignmentHistory    | ALWAYS (from creation)              | Never
DealStatusHistory    | ALWAYS (from creation)              | Never
WorkflowDefinition   | Structural fields always            | Never
WorkflowStep         | ALWAYS (from creation)              | Never

updated_at / updated_by_id are audit metadata and may always change.
WorkflowDefinition.is_active may change (deactivation on re-registration).

===============================================================================
USAGE
===============================================================================

    from dealreg_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    from dealreg_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from dealreg_kernel.domain.approval import (
    CLOSED_LEDGER_ACTIONS,
    LEDGER_TRANSITIONS,
    LedgerAction,
)
from dealreg_kernel.exceptions import ImmutabilityViolationError
from dealreg_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})
_WORKFLOW_MUTABLE_FIELDS = _AUDIT_FIELDS | {"is_active", "steps"}


def _block(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    extra = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "operation": operation,
    }
    if field is not None:
        extra["field"] = field
    logger.error("immutability_violation_blocked", extra=extra)
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _first_changed_field(target, allowed: frozenset[str]) -> str | None:
    for attr in inspect(target).attrs:
        if attr.key in allowed:
            continue
        if attr.history.has_changes():
            return attr.key
    return None


def _check_approval_record_immutability(mapper, connection, target):
    """
    Prevent updates to closed ApprovalRecord rows.

    The record is judged by its action *before* this flush: a closed record
    may not change at all, and a pending record may only move along
    ``LEDGER_TRANSITIONS``.
    """
    action_history = get_history(target, "action")
    before = LedgerAction(
        action_history.deleted[0] if action_history.deleted else target.action
    )

    if before in CLOSED_LEDGER_ACTIONS:
        field = _first_changed_field(target, _AUDIT_FIELDS)
        if field is not None:
            _block(
                "ApprovalRecord",
                target.id,
                "UPDATE",
                f"Cannot modify field '{field}' on closed approval record",
                field=field,
            )
        return

    if action_history.added and action_history.added[0] not in LEDGER_TRANSITIONS[before]:
        _block(
            "ApprovalRecord",
            target.id,
            "UPDATE",
            f"Invalid ledger transition {before.value} -> {action_history.added[0]}",
            field="action",
        )


def _check_approval_record_delete(mapper, connection, target):
    """The ledger never shrinks."""
    _block(
        "ApprovalRecord",
        target.id,
        "DELETE",
        "Approval records cannot be deleted",
    )


def _check_assignment_history_immutability(mapper, connection, target):
    _block(
        "AssignmentHistory",
        target.id,
        "UPDATE",
        "Assignment history is append-only",
    )


def _check_assignment_history_delete(mapper, connection, target):
    _block(
        "AssignmentHistory",
        target.id,
        "DELETE",
        "Assignment history cannot be deleted",
    )


def _check_status_history_immutability(mapper, connection, target):
    _block(
        "DealStatusHistory",
        target.id,
        "UPDATE",
        "Deal status history is append-only",
    )


def _check_status_history_delete(mapper, connection, target):
    _block(
        "DealStatusHistory",
        target.id,
        "DELETE",
        "Deal status history cannot be deleted",
    )


def _check_workflow_definition_immutability(mapper, connection, target):
    """Only is_active and audit fields may change on a workflow definition."""
    field = _first_changed_field(target, _WORKFLOW_MUTABLE_FIELDS)
    if field is not None:
        _block(
            "WorkflowDefinition",
            target.id,
            "UPDATE",
            f"Cannot modify field '{field}' on a workflow definition; "
            "register a new version instead",
            field=field,
        )


def _check_workflow_definition_delete(mapper, connection, target):
    _block(
        "WorkflowDefinition",
        target.id,
        "DELETE",
        "Workflow definitions cannot be deleted; deactivate instead",
    )


def _check_workflow_step_immutability(mapper, connection, target):
    _block(
        "WorkflowStep",
        target.id,
        "UPDATE",
        "Workflow steps are immutable",
    )


def _check_workflow_step_delete(mapper, connection, target):
    _block(
        "WorkflowStep",
        target.id,
        "DELETE",
        "Workflow steps cannot be deleted",
    )


def _listeners():
    from dealreg_kernel.models.approval import ApprovalRecordModel
    from dealreg_kernel.models.assignment import AssignmentHistoryModel
    from dealreg_kernel.models.deal import DealStatusHistoryModel
    from dealreg_kernel.models.workflow import (
        WorkflowDefinitionModel,
        WorkflowStepModel,
    )

    return (
        (ApprovalRecordModel, "before_update", _check_approval_record_immutability),
        (ApprovalRecordModel, "before_delete", _check_approval_record_delete),
        (AssignmentHistoryModel, "before_update", _check_assignment_history_immutability),
        (AssignmentHistoryModel, "before_delete", _check_assignment_history_delete),
        (DealStatusHistoryModel, "before_update", _check_status_history_immutability),
        (DealStatusHistoryModel, "before_delete", _check_status_history_delete),
        (WorkflowDefinitionModel, "before_update", _check_workflow_definition_immutability),
        (WorkflowDefinitionModel, "before_delete", _check_workflow_definition_delete),
        (WorkflowStepModel, "before_update", _check_workflow_step_immutability),
        (WorkflowStepModel, "before_delete", _check_workflow_step_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent.  Call after models are importable and before any database
    operations begin.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
