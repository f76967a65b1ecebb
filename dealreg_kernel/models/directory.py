"""
Module: dealreg_kernel.models.directory
Responsibility: ORM persistence for reference data the approval core reads
    but does not manage: staff users (approvers) and resellers.

Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from dealreg_kernel.db.base import Base

if TYPE_CHECKING:
    from dealreg_kernel.domain.deal import ResellerRef, StaffActor


class StaffUserModel(Base):
    """A staff user.  ``role`` gates which approval steps they can act on."""

    __tablename__ = "staff_users"

    __table_args__ = (
        Index("ix_staff_users_role_active", "role", "is_active"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    def __repr__(self) -> str:
        return f"<StaffUser {self.email} role={self.role}>"

    def to_dto(self) -> StaffActor:
        from dealreg_kernel.domain.deal import StaffActor

        return StaffActor(
            actor_id=self.id,
            name=self.name,
            email=self.email,
            role=self.role,
            is_active=self.is_active,
        )


class ResellerModel(Base):
    """A reseller partner.  Tier and territory feed workflow routing."""

    __tablename__ = "resellers"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    partner_tier: Mapped[str | None] = mapped_column(String(20), nullable=True)
    territory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Reseller {self.name} tier={self.partner_tier}>"

    def to_dto(self) -> ResellerRef:
        from dealreg_kernel.domain.deal import ResellerRef

        return ResellerRef(
            reseller_id=self.id,
            name=self.name,
            partner_tier=self.partner_tier,
            territory=self.territory,
        )
