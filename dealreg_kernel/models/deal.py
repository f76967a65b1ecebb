"""
Module: dealreg_kernel.models.deal
Responsibility: ORM persistence for deals and their status history.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - status and substatus are limited to their enum values by CHECK
      constraints.
    - current_approval_id / current_step_number are the explicit
      current-step pointer.  They are written only by the approval engine,
      in the same flush as the ledger change, through a conditional update
      keyed on the previous pointer value.
    - Status history rows are append-only (db/immutability.py).

Failure modes:
    - IntegrityError on an unknown reseller or workflow reference.
    - ImmutabilityViolationError on status history UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from dealreg_kernel.db.base import Base, TrackedBase, UUIDString

if TYPE_CHECKING:
    from dealreg_kernel.domain.deal import DealDTO, DealStatusHistoryDTO


class DealModel(TrackedBase):
    """Persistent deal registration.

    Contract:
        ``status`` only moves together with a ledger mutation or an
        assignment.  A deal has a current approval step iff
        ``current_approval_id`` is set.
    """

    __tablename__ = "deals"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'assigned', 'disputed', 'approved', 'rejected')",
            name="ck_deals_valid_status",
        ),
        CheckConstraint(
            "substatus IN ('draft', 'submitted', 'under_review', "
            "'validation_pending', 'conflict_review', 'approval_pending', "
            "'manager_review', 'admin_review', 'approved_conditional', "
            "'rejected_validation', 'rejected_conflict', 'rejected_approval', "
            "'appeal_pending')",
            name="ck_deals_valid_substatus",
        ),
        CheckConstraint(
            "priority IN ('low', 'medium', 'high', 'urgent')",
            name="ck_deals_valid_priority",
        ),
        Index("ix_deals_status", "status"),
        Index("ix_deals_assigned_reseller", "assigned_reseller_id"),
        Index("ix_deals_current_approval", "current_approval_id"),
    )

    deal_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending",
    )
    substatus: Mapped[str] = mapped_column(
        String(40), nullable=False, default="submitted",
    )
    submitted_by_reseller_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("resellers.id"), nullable=False,
    )
    assigned_reseller_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("resellers.id"), nullable=True,
    )
    workflow_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id"), nullable=True,
    )
    # Current-step pointer.  No FK: deal_approvals already references deals.
    current_approval_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )
    current_step_number: Mapped[int | None] = mapped_column(
        Integer, nullable=True,
    )
    total_value: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0"),
    )
    priority: Mapped[str] = mapped_column(
        String(10), nullable=False, default="medium",
    )
    assignment_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Deal {self.id} status={self.status} "
            f"step={self.current_step_number}>"
        )

    def to_dto(self) -> DealDTO:
        """Convert ORM model to frozen domain DTO."""
        from dealreg_kernel.domain.deal import (
            DealDTO,
            DealPriority,
            DealStatus,
            DealSubstatus,
        )

        return DealDTO(
            id=self.id,
            deal_name=self.deal_name,
            status=DealStatus(self.status),
            substatus=DealSubstatus(self.substatus),
            submitted_by_reseller_id=self.submitted_by_reseller_id,
            assigned_reseller_id=self.assigned_reseller_id,
            workflow_id=self.workflow_id,
            current_approval_id=self.current_approval_id,
            current_step_number=self.current_step_number,
            total_value=self.total_value,
            priority=DealPriority(self.priority),
            assignment_date=self.assignment_date,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class DealStatusHistoryModel(Base):
    """Append-only log of deal status/substatus changes."""

    __tablename__ = "deal_status_history"

    __table_args__ = (
        Index("ix_deal_status_history_deal", "deal_id", "changed_at"),
    )

    deal_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("deals.id"), nullable=False,
    )
    old_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    old_substatus: Mapped[str | None] = mapped_column(String(40), nullable=True)
    new_substatus: Mapped[str] = mapped_column(String(40), nullable=False)
    changed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<DealStatusHistory deal={self.deal_id} "
            f"{self.old_status}->{self.new_status}>"
        )

    def to_dto(self) -> DealStatusHistoryDTO:
        from dealreg_kernel.domain.deal import (
            DealStatus,
            DealStatusHistoryDTO,
            DealSubstatus,
        )

        return DealStatusHistoryDTO(
            id=self.id,
            deal_id=self.deal_id,
            old_status=DealStatus(self.old_status) if self.old_status else None,
            new_status=DealStatus(self.new_status),
            old_substatus=(
                DealSubstatus(self.old_substatus) if self.old_substatus else None
            ),
            new_substatus=DealSubstatus(self.new_substatus),
            changed_by=self.changed_by,
            reason=self.reason,
            changed_at=self.changed_at,
        )
