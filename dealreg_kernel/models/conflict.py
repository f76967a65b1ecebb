"""
Module: dealreg_kernel.models.conflict
Responsibility: ORM persistence for deal conflicts flagged by external
    conflict detection.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - conflict_type and resolution_status are limited by CHECK constraints.
    - Only the assignment service moves a conflict to 'resolved'.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dealreg_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from dealreg_kernel.domain.deal import DealConflictDTO


class DealConflictModel(TrackedBase):
    """A flagged competing claim on a deal."""

    __tablename__ = "deal_conflicts"

    __table_args__ = (
        CheckConstraint(
            "conflict_type IN ('duplicate_end_user', 'territory_overlap', "
            "'timing_conflict')",
            name="ck_deal_conflicts_valid_type",
        ),
        CheckConstraint(
            "resolution_status IN ('pending', 'resolved', 'dismissed')",
            name="ck_deal_conflicts_valid_resolution",
        ),
        Index("ix_deal_conflicts_deal_status", "deal_id", "resolution_status"),
    )

    deal_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("deals.id"), nullable=False,
    )
    competing_deal_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("deals.id"), nullable=True,
    )
    conflict_type: Mapped[str] = mapped_column(String(30), nullable=False)
    resolution_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending",
    )
    resolved_by: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("staff_users.id"), nullable=True,
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<DealConflict {self.id} deal={self.deal_id} "
            f"{self.conflict_type} {self.resolution_status}>"
        )

    def to_dto(self) -> DealConflictDTO:
        from dealreg_kernel.domain.deal import (
            ConflictType,
            DealConflictDTO,
            ResolutionStatus,
        )

        return DealConflictDTO(
            id=self.id,
            deal_id=self.deal_id,
            competing_deal_id=self.competing_deal_id,
            conflict_type=ConflictType(self.conflict_type),
            resolution_status=ResolutionStatus(self.resolution_status),
            resolved_by=self.resolved_by,
            resolved_at=self.resolved_at,
            resolution_notes=self.resolution_notes,
            created_at=self.created_at,
        )
