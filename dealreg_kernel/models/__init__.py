"""ORM models for the deal registration kernel."""

from dealreg_kernel.models.approval import ApprovalRecordModel
from dealreg_kernel.models.assignment import AssignmentHistoryModel
from dealreg_kernel.models.conflict import DealConflictModel
from dealreg_kernel.models.deal import DealModel, DealStatusHistoryModel
from dealreg_kernel.models.directory import ResellerModel, StaffUserModel
from dealreg_kernel.models.workflow import WorkflowDefinitionModel, WorkflowStepModel

__all__ = [
    "ApprovalRecordModel",
    "AssignmentHistoryModel",
    "DealConflictModel",
    "DealModel",
    "DealStatusHistoryModel",
    "ResellerModel",
    "StaffUserModel",
    "WorkflowDefinitionModel",
    "WorkflowStepModel",
]
