"""
Module: dealreg_kernel.selectors.deal_selector
Responsibility: Read-only query access to deals, their approval ledgers,
    conflicts, and histories.  Converts ORM models to frozen DTOs.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.

Invariants enforced:
    - Read-only: No mutations performed on any queried data.
    - Current step: a deal's current step is the record its
      ``current_approval_id`` points at, provided that record is still
      pending.  Bulk candidates use exactly this definition, so a deal is
      only ever offered to an approver who can act on it.
    - Ledger order is ``seq``; pending records are ordered by
      ``(step_number, escalation_level)``.

Failure modes:
    - Returns None or an empty list when no matching rows exist (never
      raises on absence of data).
"""

from uuid import UUID

from sqlalchemy import and_, or_, select

from dealreg_kernel.domain.approval import ApprovalRecordDTO, LedgerAction
from dealreg_kernel.domain.deal import (
    AssignmentHistoryDTO,
    DealConflictDTO,
    DealDTO,
    DealStatusHistoryDTO,
    ResolutionStatus,
)
from dealreg_kernel.models.approval import ApprovalRecordModel
from dealreg_kernel.models.assignment import AssignmentHistoryModel
from dealreg_kernel.models.conflict import DealConflictModel
from dealreg_kernel.models.deal import DealModel, DealStatusHistoryModel
from dealreg_kernel.selectors.base import BaseSelector


class DealSelector(BaseSelector[DealModel]):
    """Selector for deals and everything hanging off them."""

    def get_deal(self, deal_id: UUID) -> DealDTO | None:
        deal = self.session.get(DealModel, deal_id)
        return deal.to_dto() if deal is not None else None

    def get_current_record(self, deal_id: UUID) -> ApprovalRecordDTO | None:
        """The pending record the deal's current-step pointer references."""
        stmt = (
            select(ApprovalRecordModel)
            .join(DealModel, DealModel.current_approval_id == ApprovalRecordModel.id)
            .where(
                DealModel.id == deal_id,
                ApprovalRecordModel.action == LedgerAction.PENDING.value,
            )
        )
        record = self.session.execute(stmt).scalar_one_or_none()
        return record.to_dto() if record is not None else None

    def get_ledger(self, deal_id: UUID) -> list[ApprovalRecordDTO]:
        """Every record the deal ever entered, in ledger order."""
        stmt = (
            select(ApprovalRecordModel)
            .where(ApprovalRecordModel.deal_id == deal_id)
            .order_by(ApprovalRecordModel.seq)
        )
        return [r.to_dto() for r in self.session.execute(stmt).scalars()]

    def get_pending_records(self, deal_id: UUID) -> list[ApprovalRecordDTO]:
        stmt = (
            select(ApprovalRecordModel)
            .where(
                ApprovalRecordModel.deal_id == deal_id,
                ApprovalRecordModel.action == LedgerAction.PENDING.value,
            )
            .order_by(
                ApprovalRecordModel.step_number,
                ApprovalRecordModel.escalation_level,
            )
        )
        return [r.to_dto() for r in self.session.execute(stmt).scalars()]

    def get_bulk_approval_candidates(
        self,
        role: str,
        approver_id: UUID | None = None,
    ) -> list[DealDTO]:
        """Deals whose current step requires ``role``, oldest first.

        When ``approver_id`` is given, steps escalated to a *different* named
        approver are excluded.
        """
        conditions = [
            ApprovalRecordModel.action == LedgerAction.PENDING.value,
            ApprovalRecordModel.required_role == role,
        ]
        if approver_id is not None:
            conditions.append(
                or_(
                    ApprovalRecordModel.assigned_approver_id.is_(None),
                    ApprovalRecordModel.assigned_approver_id == approver_id,
                )
            )

        stmt = (
            select(DealModel)
            .join(
                ApprovalRecordModel,
                ApprovalRecordModel.id == DealModel.current_approval_id,
            )
            .where(and_(*conditions))
            .order_by(DealModel.created_at, DealModel.id)
        )
        return [d.to_dto() for d in self.session.execute(stmt).scalars()]

    def get_conflicts(
        self,
        deal_id: UUID,
        status: ResolutionStatus | None = None,
    ) -> list[DealConflictDTO]:
        stmt = select(DealConflictModel).where(DealConflictModel.deal_id == deal_id)
        if status is not None:
            stmt = stmt.where(DealConflictModel.resolution_status == status.value)
        stmt = stmt.order_by(DealConflictModel.created_at, DealConflictModel.id)
        return [c.to_dto() for c in self.session.execute(stmt).scalars()]

    def get_assignment_history(self, deal_id: UUID) -> list[AssignmentHistoryDTO]:
        stmt = (
            select(AssignmentHistoryModel)
            .where(AssignmentHistoryModel.deal_id == deal_id)
            .order_by(AssignmentHistoryModel.assigned_at, AssignmentHistoryModel.id)
        )
        return [h.to_dto() for h in self.session.execute(stmt).scalars()]

    def get_status_history(self, deal_id: UUID) -> list[DealStatusHistoryDTO]:
        stmt = (
            select(DealStatusHistoryModel)
            .where(DealStatusHistoryModel.deal_id == deal_id)
            .order_by(DealStatusHistoryModel.changed_at, DealStatusHistoryModel.id)
        )
        return [h.to_dto() for h in self.session.execute(stmt).scalars()]
