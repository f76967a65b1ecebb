"""
Module: dealreg_kernel.models.assignment
Responsibility: ORM persistence for the reseller assignment audit trail.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: no UPDATE, no DELETE (db/immutability.py).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from dealreg_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from dealreg_kernel.domain.deal import AssignmentHistoryDTO


class AssignmentHistoryModel(Base):
    """One reseller (re)assignment of a deal."""

    __tablename__ = "deal_assignment_history"

    __table_args__ = (
        Index("ix_deal_assignment_history_deal", "deal_id", "assigned_at"),
    )

    deal_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("deals.id"), nullable=False,
    )
    previous_reseller_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("resellers.id"), nullable=True,
    )
    new_reseller_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("resellers.id"), nullable=False,
    )
    assigned_by: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("staff_users.id"), nullable=False,
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<AssignmentHistory deal={self.deal_id} "
            f"{self.previous_reseller_id}->{self.new_reseller_id}>"
        )

    def to_dto(self) -> AssignmentHistoryDTO:
        from dealreg_kernel.domain.deal import AssignmentHistoryDTO

        return AssignmentHistoryDTO(
            id=self.id,
            deal_id=self.deal_id,
            previous_reseller_id=self.previous_reseller_id,
            new_reseller_id=self.new_reseller_id,
            assigned_by=self.assigned_by,
            reason=self.reason,
            assigned_at=self.assigned_at,
        )
