"""
Workflow catalog loader (``dealreg_config.loader``).

Responsibility
--------------
Loads a catalog YAML file and parses it into kernel workflow types.  This
is build/test tooling: runtime callers go through
``dealreg_config.get_workflow_catalog()``.

Invariants enforced
-------------------
* No silent defaults for required fields: a workflow without ``name`` or
  ``steps`` and a step without ``step_number`` or ``required_role`` raise
  ``KeyError``.
* Money values are parsed as ``Decimal`` from their string form, never
  through ``float``.
* ``compute_checksum`` is deterministic over the raw YAML document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Non-numeric money values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from dealreg_kernel.domain.workflow import (
    DEFAULT_ROLE_SLA_DAYS,
    EngineSettings,
    WorkflowConditions,
    WorkflowDefinition,
    WorkflowStep,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field_name: str) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{field_name} is not a number: {value!r}") from None


def parse_step(data: dict[str, Any]) -> WorkflowStep:
    return WorkflowStep(
        step_number=int(data["step_number"]),
        required_role=data["required_role"],
        required=bool(data.get("required", True)),
        auto_approve_threshold=parse_decimal(
            data.get("auto_approve_threshold"), "auto_approve_threshold",
        ),
    )


def parse_conditions(data: dict[str, Any] | None) -> WorkflowConditions:
    data = data or {}
    return WorkflowConditions(
        min_deal_value=parse_decimal(data.get("min_deal_value"), "min_deal_value"),
        max_deal_value=parse_decimal(data.get("max_deal_value"), "max_deal_value"),
        partner_tiers=tuple(data.get("partner_tiers") or ()),
        territories=tuple(data.get("territories") or ()),
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowDefinition:
    """Parse one workflow entry; steps are sorted by step number."""
    steps = tuple(
        sorted((parse_step(s) for s in data["steps"]), key=lambda s: s.step_number)
    )
    return WorkflowDefinition(
        name=data["name"],
        description=data.get("description", ""),
        steps=steps,
        conditions=parse_conditions(data.get("conditions")),
    )


def parse_settings(data: dict[str, Any] | None) -> EngineSettings:
    data = data or {}
    role_sla = dict(DEFAULT_ROLE_SLA_DAYS)
    role_sla.update({str(k): int(v) for k, v in (data.get("role_sla_days") or {}).items()})
    return EngineSettings(
        auto_approval_enabled=bool(data.get("auto_approval_enabled", True)),
        role_sla_days=role_sla,
        default_sla_days=int(data.get("default_sla_days", 2)),
        min_total_sla_days=int(data.get("min_total_sla_days", 1)),
        default_workflow_name=data.get("default_workflow_name"),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
