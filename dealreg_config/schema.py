"""
WorkflowCatalog schema.

The catalog is the human-authored source of approval workflows and engine
settings.  YAML is parsed into these types by the loader; the catalog is
then handed to ``WorkflowRegistry.register_catalog`` and the engine.
"""

from __future__ import annotations

from dataclasses import dataclass

from dealreg_kernel.domain.workflow import EngineSettings, WorkflowDefinition


@dataclass(frozen=True)
class WorkflowCatalog:
    """A named, checksummed set of workflows plus engine settings."""

    set_name: str
    workflows: tuple[WorkflowDefinition, ...]
    settings: EngineSettings
    checksum: str
    version: int = 1

    @property
    def default_workflow_name(self) -> str | None:
        return self.settings.default_workflow_name

    @property
    def workflow_names(self) -> tuple[str, ...]:
        return tuple(w.name for w in self.workflows)

    def get(self, name: str) -> WorkflowDefinition | None:
        for workflow in self.workflows:
            if workflow.name == name:
                return workflow
        return None
