"""
WorkflowRegistry -- versioned storage of approval workflow definitions.

Responsibility:
    Persist validated workflow definitions, version them by name, and give
    the approval engine read-only access to them by id, by name, or as the
    ordered list of active workflows used for routing.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/, utils/ and
    the pure rules in dealreg_engines.

Invariants enforced:
    - Only definitions that pass ``validate_steps`` are stored.
    - Definitions are never edited.  Registering a changed definition under
      an existing name creates version N+1 and deactivates earlier versions;
      deals already routed keep pointing at the version they started on.
    - Registering a definition identical (by content hash) to the latest
      version returns that version unchanged.
    - Routing order is registration order of the name; new versions keep it.

Failure modes:
    - InvalidWorkflowDefinitionError on invalid steps or conditions.
    - WorkflowNotFoundError from get/get_by_name/deactivate.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, select

from dealreg_engines.approval import validate_steps
from dealreg_kernel.domain.workflow import WorkflowDefinition
from dealreg_kernel.exceptions import WorkflowNotFoundError
from dealreg_kernel.logging_config import get_logger
from dealreg_kernel.models.deal import DealModel
from dealreg_kernel.models.workflow import WorkflowDefinitionModel, WorkflowStepModel
from dealreg_kernel.services.base import BaseService
from dealreg_kernel.utils.hashing import hash_payload

logger = get_logger("services.workflow_registry")


class WorkflowRegistry(BaseService[WorkflowDefinitionModel]):
    """Read/write access to workflow definitions."""

    def register(
        self,
        definition: WorkflowDefinition,
        actor_id: UUID,
    ) -> WorkflowDefinition:
        """Validate and persist ``definition``; return the stored version."""
        validate_steps(definition)
        digest = hash_payload(definition.hash_payload())

        latest = self._latest_version(definition.name)
        if latest is not None and latest.definition_hash == digest:
            logger.debug(
                "workflow_registration_unchanged",
                extra={
                    "workflow_name": definition.name,
                    "version": latest.version,
                },
            )
            return latest.to_dto()

        if latest is not None:
            version = latest.version + 1
            routing_order = latest.routing_order
            for previous in self._active_versions(definition.name):
                previous.is_active = False
                previous.updated_by_id = actor_id
        else:
            version = 1
            routing_order = self._next_routing_order()

        model = WorkflowDefinitionModel(
            name=definition.name,
            version=version,
            description=definition.description,
            conditions=definition.conditions.to_dict(),
            definition_hash=digest,
            routing_order=routing_order,
            is_active=True,
            created_by_id=actor_id,
        )
        model.steps = [
            WorkflowStepModel.from_dto(step)
            for step in sorted(definition.steps, key=lambda s: s.step_number)
        ]
        self.session.add(model)
        self.session.flush()

        logger.info(
            "workflow_registered",
            extra={
                "workflow_id": str(model.id),
                "workflow_name": model.name,
                "version": version,
                "step_count": len(model.steps),
                "definition_hash": digest,
            },
        )
        return model.to_dto()

    def register_catalog(
        self,
        workflows: Iterable[WorkflowDefinition],
        actor_id: UUID,
    ) -> tuple[WorkflowDefinition, ...]:
        """Register every workflow of a catalog, preserving catalog order."""
        return tuple(self.register(w, actor_id) for w in workflows)

    def get(self, workflow_id: UUID) -> WorkflowDefinition:
        model = self.session.get(WorkflowDefinitionModel, workflow_id)
        if model is None:
            raise WorkflowNotFoundError(str(workflow_id))
        return model.to_dto()

    def get_by_name(self, name: str) -> WorkflowDefinition:
        """The active version of ``name``."""
        stmt = (
            select(WorkflowDefinitionModel)
            .where(
                WorkflowDefinitionModel.name == name,
                WorkflowDefinitionModel.is_active.is_(True),
            )
            .order_by(WorkflowDefinitionModel.version.desc())
            .limit(1)
        )
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise WorkflowNotFoundError(name)
        return model.to_dto()

    def list_active(self) -> list[WorkflowDefinition]:
        """Active workflows in routing order."""
        stmt = (
            select(WorkflowDefinitionModel)
            .where(WorkflowDefinitionModel.is_active.is_(True))
            .order_by(
                WorkflowDefinitionModel.routing_order,
                WorkflowDefinitionModel.name,
            )
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def deactivate(self, workflow_id: UUID, actor_id: UUID) -> WorkflowDefinition:
        """Stop routing new deals to this workflow.  In-flight deals continue."""
        model = self.session.get(WorkflowDefinitionModel, workflow_id)
        if model is None:
            raise WorkflowNotFoundError(str(workflow_id))
        model.is_active = False
        model.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "workflow_deactivated",
            extra={
                "workflow_id": str(workflow_id),
                "workflow_name": model.name,
                "in_flight_deals": self.in_flight_deal_count(workflow_id),
            },
        )
        return model.to_dto()

    def in_flight_deal_count(self, workflow_id: UUID) -> int:
        """Deals on this workflow that still have a current step."""
        stmt = select(func.count(DealModel.id)).where(
            DealModel.workflow_id == workflow_id,
            DealModel.current_approval_id.is_not(None),
        )
        return int(self.session.execute(stmt).scalar_one())

    def _latest_version(self, name: str) -> WorkflowDefinitionModel | None:
        stmt = (
            select(WorkflowDefinitionModel)
            .where(WorkflowDefinitionModel.name == name)
            .order_by(WorkflowDefinitionModel.version.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def _active_versions(self, name: str) -> list[WorkflowDefinitionModel]:
        stmt = select(WorkflowDefinitionModel).where(
            WorkflowDefinitionModel.name == name,
            WorkflowDefinitionModel.is_active.is_(True),
        )
        return list(self.session.execute(stmt).scalars())

    def _next_routing_order(self) -> int:
        stmt = select(func.max(WorkflowDefinitionModel.routing_order))
        current = self.session.execute(stmt).scalar_one_or_none()
        return 0 if current is None else int(current) + 1
