"""
Typed Exception Hierarchy for the Deal Registration Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the approval core (API handlers, bulk jobs, the coordinator in
``dealreg_services``) must react differently to "deal does not exist",
"wrong approver", and "deal already finished".  Parsing message strings for
that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        engine.process_approval_action(deal_id, approver_id, Approve())
    except UnauthorizedApproverError as e:
        api_response(403, code=e.code, required_role=e.required_role)
    except NoActiveApprovalStepError as e:
        api_response(409, code=e.code, deal_id=e.deal_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    DealRegistrationError (base)
    |
    +-- NotFoundError
    |   +-- DealNotFoundError
    |   +-- WorkflowNotFoundError
    |   +-- ActorNotFoundError
    |   +-- ResellerNotFoundError
    |
    +-- PermissionDeniedError
    |   +-- UnauthorizedApproverError
    |
    +-- InvalidStateError
    |   +-- NoActiveApprovalStepError
    |   +-- StaleApprovalStepError
    |   +-- StaleAssignmentError
    |   +-- WorkflowAlreadyAttachedError
    |
    +-- InvalidInputError
    |   +-- InvalidEscalationTargetError
    |   +-- EmptyBulkRequestError
    |   +-- InvalidWorkflowDefinitionError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Not found       | DEAL_NOT_FOUND              | Deal ID doesn't exist
                | WORKFLOW_NOT_FOUND          | Workflow ID/name doesn't exist
                | ACTOR_NOT_FOUND             | Staff user ID doesn't exist
                | RESELLER_NOT_FOUND          | Reseller ID doesn't exist
----------------|-----------------------------|-----------------------------------------
Permission      | UNAUTHORIZED_APPROVER       | Actor role != current step role
----------------|-----------------------------|-----------------------------------------
State           | NO_ACTIVE_APPROVAL_STEP     | Deal has no workflow or is terminal
                | STALE_APPROVAL_STEP         | Current step changed underneath us
                | STALE_ASSIGNMENT            | Reseller changed underneath us
                | WORKFLOW_ALREADY_ATTACHED   | start_workflow on a routed deal
----------------|-----------------------------|-----------------------------------------
Input           | INVALID_ESCALATION_TARGET   | Escalation without a usable target
                | EMPTY_BULK_REQUEST          | bulk_approve with no deal ids
                | INVALID_WORKFLOW_DEFINITION | Steps not contiguous / bad roles
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying a closed/append-only record

===============================================================================
PROPAGATION
===============================================================================

Single-deal operations raise these with no state change.  Bulk operations
convert per-deal failures into ``BulkError`` entries carrying ``code``.
Secondary-write failures during assignment are NOT exceptions: they are
returned as ``EffectOutcome`` values on the ``AssignmentResult``.
===============================================================================
"""


class DealRegistrationError(Exception):
    """
    Base exception for all deal registration kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "DEAL_REGISTRATION_ERROR"


# Not-found exceptions


class NotFoundError(DealRegistrationError):
    """Base exception for missing deals, workflows, and actors."""

    code: str = "NOT_FOUND"


class DealNotFoundError(NotFoundError):
    """Deal with given ID was not found."""

    code: str = "DEAL_NOT_FOUND"

    def __init__(self, deal_id: str):
        self.deal_id = deal_id
        super().__init__(f"Deal not found: {deal_id}")


class WorkflowNotFoundError(NotFoundError):
    """Workflow definition was not found (by ID, by name, or none active)."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_ref: str):
        self.workflow_ref = workflow_ref
        super().__init__(f"Workflow not found: {workflow_ref}")


class ActorNotFoundError(NotFoundError):
    """Staff user with given ID was not found in the actor directory."""

    code: str = "ACTOR_NOT_FOUND"

    def __init__(self, actor_id: str):
        self.actor_id = actor_id
        super().__init__(f"Actor not found: {actor_id}")


class ResellerNotFoundError(NotFoundError):
    """Reseller with given ID was not found."""

    code: str = "RESELLER_NOT_FOUND"

    def __init__(self, reseller_id: str):
        self.reseller_id = reseller_id
        super().__init__(f"Reseller not found: {reseller_id}")


# Permission exceptions


class PermissionDeniedError(DealRegistrationError):
    """Base exception for authorization failures."""

    code: str = "PERMISSION_DENIED"


class UnauthorizedApproverError(PermissionDeniedError):
    """Actor's role does not match the current step's required role."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(
        self,
        deal_id: str,
        actor_id: str,
        actor_role: str,
        required_role: str,
    ):
        self.deal_id = deal_id
        self.actor_id = actor_id
        self.actor_role = actor_role
        self.required_role = required_role
        super().__init__(
            f"Actor {actor_id} with role '{actor_role}' cannot act on deal "
            f"{deal_id}: current step requires role '{required_role}'"
        )


# State exceptions


class InvalidStateError(DealRegistrationError):
    """Base exception for operations invalid in the deal's current state."""

    code: str = "INVALID_STATE"


class NoActiveApprovalStepError(InvalidStateError):
    """Deal has no pending approval step (never routed, or already terminal)."""

    code: str = "NO_ACTIVE_APPROVAL_STEP"

    def __init__(self, deal_id: str, status: str | None = None):
        self.deal_id = deal_id
        self.status = status
        detail = f" (status: {status})" if status else ""
        super().__init__(f"No active approval step for deal {deal_id}{detail}")


class StaleApprovalStepError(InvalidStateError):
    """
    The deal's current step changed between read and conditional update.

    Raised to the loser of a race on the same deal.  The winner's transition
    stands; nothing from the losing attempt is persisted.
    """

    code: str = "STALE_APPROVAL_STEP"

    def __init__(self, deal_id: str, expected_record_id: str):
        self.deal_id = deal_id
        self.expected_record_id = expected_record_id
        super().__init__(
            f"Approval step {expected_record_id} on deal {deal_id} is no longer "
            "current: it was acted on by another transaction"
        )


class StaleAssignmentError(InvalidStateError):
    """The deal's reseller changed between read and conditional update."""

    code: str = "STALE_ASSIGNMENT"

    def __init__(self, deal_id: str, expected_reseller_id: str | None):
        self.deal_id = deal_id
        self.expected_reseller_id = expected_reseller_id
        super().__init__(
            f"Deal {deal_id} is no longer assigned to {expected_reseller_id}: "
            "it was reassigned by another transaction"
        )


class WorkflowAlreadyAttachedError(InvalidStateError):
    """start_workflow called on a deal that already has a workflow."""

    code: str = "WORKFLOW_ALREADY_ATTACHED"

    def __init__(self, deal_id: str, workflow_id: str):
        self.deal_id = deal_id
        self.workflow_id = workflow_id
        super().__init__(
            f"Deal {deal_id} already has workflow {workflow_id} attached"
        )


# Input exceptions


class InvalidInputError(DealRegistrationError):
    """Base exception for malformed requests."""

    code: str = "INVALID_INPUT"


class InvalidEscalationTargetError(InvalidInputError):
    """Escalation without a target, or with a target that cannot be resolved."""

    code: str = "INVALID_ESCALATION_TARGET"

    def __init__(self, deal_id: str | None, reason: str):
        self.deal_id = deal_id
        self.reason = reason
        where = f" for deal {deal_id}" if deal_id else ""
        super().__init__(f"Invalid escalation target{where}: {reason}")


class EmptyBulkRequestError(InvalidInputError):
    """bulk_approve called with no deal ids."""

    code: str = "EMPTY_BULK_REQUEST"

    def __init__(self):
        super().__init__("deal_ids must not be empty")


class InvalidWorkflowDefinitionError(InvalidInputError):
    """Workflow steps violate ordering or role rules."""

    code: str = "INVALID_WORKFLOW_DEFINITION"

    def __init__(self, workflow_name: str, reason: str):
        self.workflow_name = workflow_name
        self.reason = reason
        super().__init__(f"Invalid workflow '{workflow_name}': {reason}")


# Immutability exceptions


class ImmutabilityError(DealRegistrationError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Closed approval records, assignment history, status history, and
    workflow steps are immutable after creation.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
