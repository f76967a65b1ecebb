"""Services for the deal registration kernel (write side)."""

from dealreg_kernel.services.actor_directory import SqlActorDirectory
from dealreg_kernel.services.approval_engine import ApprovalEngine
from dealreg_kernel.services.assignment_service import (
    DEFAULT_ASSIGNMENT_REASON,
    AssignmentService,
)
from dealreg_kernel.services.base import BaseService
from dealreg_kernel.services.workflow_registry import WorkflowRegistry

__all__ = [
    "ApprovalEngine",
    "AssignmentService",
    "BaseService",
    "DEFAULT_ASSIGNMENT_REASON",
    "SqlActorDirectory",
    "WorkflowRegistry",
]
