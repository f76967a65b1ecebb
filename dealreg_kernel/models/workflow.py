"""
Module: dealreg_kernel.models.workflow
Responsibility: ORM persistence for approval workflow definitions and
    their ordered steps.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (name, version) is unique; a changed definition is a new version.
    - (workflow_id, step_number) is unique and step_number >= 1.
    - Steps are immutable and definition structure is immutable once
      written; only is_active may change (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate (name, version) or duplicate step number.
    - ImmutabilityViolationError on structural UPDATE or any DELETE.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dealreg_kernel.db.base import Base, TrackedBase, UUIDString

if TYPE_CHECKING:
    from dealreg_kernel.domain.workflow import WorkflowDefinition, WorkflowStep


class WorkflowDefinitionModel(TrackedBase):
    """Persistent, versioned workflow definition."""

    __tablename__ = "approval_workflows"

    __table_args__ = (
        UniqueConstraint("name", "version", name="uq_approval_workflows_name_version"),
        CheckConstraint("version >= 1", name="ck_approval_workflows_version"),
        Index("ix_approval_workflows_active", "is_active", "name"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    conditions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    definition_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    # Position in routing order; carried over to new versions of the same name
    routing_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    steps: Mapped[list["WorkflowStepModel"]] = relationship(
        "WorkflowStepModel",
        back_populates="workflow",
        order_by="WorkflowStepModel.step_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Workflow {self.name} v{self.version} active={self.is_active}>"

    def to_dto(self) -> WorkflowDefinition:
        """Convert ORM model to frozen domain DTO."""
        from dealreg_kernel.domain.workflow import (
            WorkflowConditions,
            WorkflowDefinition,
        )

        return WorkflowDefinition(
            name=self.name,
            steps=tuple(s.to_dto() for s in self.steps),
            description=self.description,
            conditions=WorkflowConditions.from_dict(self.conditions),
            workflow_id=self.id,
            version=self.version,
            definition_hash=self.definition_hash,
            is_active=self.is_active,
        )


class WorkflowStepModel(Base):
    """One ordered, role-gated step of a workflow.  Immutable."""

    __tablename__ = "approval_workflow_steps"

    __table_args__ = (
        UniqueConstraint(
            "workflow_id", "step_number",
            name="uq_approval_workflow_steps_number",
        ),
        CheckConstraint("step_number >= 1", name="ck_approval_workflow_steps_number"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id"), nullable=False,
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    required_role: Mapped[str] = mapped_column(String(50), nullable=False)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_approve_threshold: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9), nullable=True,
    )

    workflow: Mapped["WorkflowDefinitionModel"] = relationship(
        "WorkflowDefinitionModel",
        back_populates="steps",
    )

    def __repr__(self) -> str:
        return f"<WorkflowStep {self.step_number} role={self.required_role}>"

    def to_dto(self) -> WorkflowStep:
        from dealreg_kernel.domain.workflow import WorkflowStep

        return WorkflowStep(
            step_number=self.step_number,
            required_role=self.required_role,
            required=self.required,
            auto_approve_threshold=self.auto_approve_threshold,
        )

    @classmethod
    def from_dto(cls, dto: WorkflowStep) -> WorkflowStepModel:
        """Build a step row; workflow_id is set through the parent relationship."""
        return cls(
            step_number=dto.step_number,
            required_role=dto.required_role,
            required=dto.required,
            auto_approve_threshold=dto.auto_approve_threshold,
        )
