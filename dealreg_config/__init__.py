"""
dealreg_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the way to obtain the approval workflow catalog at runtime
    through ``get_workflow_catalog()``.  Returns a frozen ``WorkflowCatalog``
    whose workflows have all passed step validation.

Architecture position:
    Configuration -- YAML-driven, validated at load time.  Sits above
    ``dealreg_kernel`` and below ``dealreg_services``.  The kernel never
    imports from ``dealreg_config``; callers pass the catalog's workflows to
    ``WorkflowRegistry`` and its settings to ``ApprovalEngine``.

Invariants enforced:
    - Every workflow passes ``validate_steps`` before a catalog is returned.
    - Workflow names are unique within a catalog.
    - ``default_workflow_name``, when set, names a workflow in the catalog.
    - Deterministic checksum: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- no such configuration set.
    - ``ValueError`` -- duplicate names, unknown default workflow, or bad
      numbers.
    - ``InvalidWorkflowDefinitionError`` -- a workflow's steps are invalid.

Audit relevance:
    Every successful call emits a ``WORKFLOW_CONFIG_TRACE`` log entry with
    the set name, version, checksum and workflow names, tying routed deals
    back to the catalog that defined their workflows.
"""

from __future__ import annotations

import logging
from pathlib import Path

from dealreg_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_settings,
    parse_workflow,
)
from dealreg_config.schema import WorkflowCatalog
from dealreg_engines.approval import validate_steps

_logger = logging.getLogger("dealreg_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

CATALOG_FILENAME = "workflows.yaml"

__all__ = ["WorkflowCatalog", "get_workflow_catalog"]


def get_workflow_catalog(
    set_name: str = "default",
    config_dir: Path | None = None,
) -> WorkflowCatalog:
    """Load, validate and return a workflow catalog.

    Args:
        set_name: Subdirectory of the configuration sets directory.
        config_dir: Override path to the sets directory.  Defaults to
            dealreg_config/sets/.

    Raises:
        FileNotFoundError: If ``<config_dir>/<set_name>/workflows.yaml``
            does not exist.
        ValueError: If the catalog is structurally invalid.
        InvalidWorkflowDefinitionError: If a workflow's steps are invalid.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    path = sets_dir / set_name / CATALOG_FILENAME
    if not path.is_file():
        raise FileNotFoundError(f"Workflow catalog not found: {path}")

    raw = load_yaml_file(path)
    workflows = tuple(parse_workflow(w) for w in raw.get("workflows") or ())
    settings = parse_settings(raw.get("settings"))

    seen: set[str] = set()
    for workflow in workflows:
        if workflow.name in seen:
            raise ValueError(f"Duplicate workflow name in catalog: {workflow.name!r}")
        seen.add(workflow.name)
        validate_steps(workflow)

    if settings.default_workflow_name is not None and settings.default_workflow_name not in seen:
        raise ValueError(
            f"default_workflow_name {settings.default_workflow_name!r} "
            "does not name a workflow in the catalog"
        )

    catalog = WorkflowCatalog(
        set_name=set_name,
        workflows=workflows,
        settings=settings,
        checksum=compute_checksum(raw),
        version=int(raw.get("version", 1)),
    )

    _logger.info(
        "WORKFLOW_CONFIG_TRACE",
        extra={
            "trace_type": "WORKFLOW_CONFIG_TRACE",
            "config_set": catalog.set_name,
            "config_version": catalog.version,
            "checksum": catalog.checksum,
            "workflow_count": len(catalog.workflows),
            "workflow_names": list(catalog.workflow_names),
            "default_workflow_name": catalog.default_workflow_name,
        },
    )
    return catalog
