"""
SqlActorDirectory -- staff lookup backed by the ``staff_users`` table.

Architecture position:
    Kernel > Services.  Implements the ``ActorDirectory`` protocol from
    ``domain/approval.py``.  Read-only.
"""

from uuid import UUID

from sqlalchemy import select

from dealreg_kernel.domain.deal import StaffActor
from dealreg_kernel.models.directory import StaffUserModel
from dealreg_kernel.services.base import BaseService


class SqlActorDirectory(BaseService[StaffUserModel]):
    """Actor directory over staff_users."""

    def get_actor(self, actor_id: UUID) -> StaffActor | None:
        model = self.session.get(StaffUserModel, actor_id)
        return model.to_dto() if model is not None else None

    def get_role(self, actor_id: UUID) -> str | None:
        actor = self.get_actor(actor_id)
        if actor is None or not actor.is_active:
            return None
        return actor.role

    def list_approvers(self, role: str) -> tuple[StaffActor, ...]:
        """Active staff holding ``role``, ordered by name."""
        stmt = (
            select(StaffUserModel)
            .where(
                StaffUserModel.role == role,
                StaffUserModel.is_active.is_(True),
            )
            .order_by(StaffUserModel.name, StaffUserModel.id)
        )
        return tuple(m.to_dto() for m in self.session.execute(stmt).scalars())
