"""
Module: dealreg_kernel.models.approval
Responsibility: ORM persistence for the per-deal approval ledger.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - action is limited to pending/approved/rejected/escalated by CHECK.
    - At most one pending record per deal: partial unique index on
      deal_id WHERE action = 'pending' (PostgreSQL and SQLite).  This is
      stronger than one pending record per (deal, step_number).
    - (deal_id, seq) is unique; seq is the ledger order.
    - A closed record is immutable and no record is ever deleted
      (db/immutability.py).  Closing a pending record happens through a
      conditional UPDATE ... WHERE action = 'pending' issued by the engine.

Failure modes:
    - IntegrityError on a second pending record for the same deal.
    - ImmutabilityViolationError on UPDATE of a closed record or any DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from dealreg_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from dealreg_kernel.domain.approval import ApprovalRecordDTO


class ApprovalRecordModel(Base):
    """One ledger entry: a step a deal entered, and what happened to it.

    Contract:
        Records are ordered for sequencing by ``(step_number,
        escalation_level)`` and for history by ``seq``.  A record is closed
        exactly once (pending -> approved | rejected | escalated).
    """

    __tablename__ = "deal_approvals"

    __table_args__ = (
        CheckConstraint(
            "action IN ('pending', 'approved', 'rejected', 'escalated')",
            name="ck_deal_approvals_valid_action",
        ),
        CheckConstraint("step_number >= 0", name="ck_deal_approvals_step_number"),
        CheckConstraint(
            "escalation_level >= 0", name="ck_deal_approvals_escalation_level",
        ),
        UniqueConstraint("deal_id", "seq", name="uq_deal_approvals_seq"),
        Index(
            "ix_deal_approvals_one_pending",
            "deal_id",
            unique=True,
            postgresql_where=text("action = 'pending'"),
            sqlite_where=text("action = 'pending'"),
        ),
        # Covering index for bulk-approval candidate lookup
        Index("ix_deal_approvals_role_action", "required_role", "action"),
    )

    deal_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("deals.id"), nullable=False,
    )
    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id"), nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    escalation_level: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
    )
    required_role: Mapped[str] = mapped_column(String(50), nullable=False)
    assigned_approver_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("staff_users.id"), nullable=True,
    )
    approver_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("staff_users.id"), nullable=True,
    )
    action: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending",
    )
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRecord deal={self.deal_id} "
            f"step={self.step_number}.{self.escalation_level} "
            f"action={self.action}>"
        )

    def to_dto(self) -> ApprovalRecordDTO:
        """Convert ORM model to frozen domain DTO."""
        from dealreg_kernel.domain.approval import ApprovalRecordDTO, LedgerAction

        return ApprovalRecordDTO(
            id=self.id,
            deal_id=self.deal_id,
            workflow_id=self.workflow_id,
            seq=self.seq,
            step_number=self.step_number,
            escalation_level=self.escalation_level,
            required_role=self.required_role,
            action=LedgerAction(self.action),
            assigned_approver_id=self.assigned_approver_id,
            approver_id=self.approver_id,
            approved_at=self.approved_at,
            comments=self.comments,
            created_at=self.created_at,
        )
