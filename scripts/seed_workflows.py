#!/usr/bin/env python3
"""
Register a workflow catalog into a database.

Loads ``dealreg_config/sets/<set>/workflows.yaml``, validates it, creates
the tables if needed, and registers every workflow through the
WorkflowRegistry (unchanged workflows are left as they are; changed ones
get a new version).

Usage:
    python3 scripts/seed_workflows.py --database-url sqlite:///dealreg.db
    python3 scripts/seed_workflows.py --set default --actor-id <uuid>
"""

import argparse
import sys
from pathlib import Path
from uuid import UUID

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DEFAULT_DB_URL = "sqlite:///dealreg.db"
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed approval workflows")
    parser.add_argument("--database-url", default=DEFAULT_DB_URL)
    parser.add_argument("--set", dest="set_name", default="default")
    parser.add_argument("--actor-id", type=UUID, default=SYSTEM_ACTOR_ID)
    args = parser.parse_args()

    from dealreg_config import get_workflow_catalog
    from dealreg_kernel.db.engine import (
        create_tables,
        init_engine_from_url,
        session_scope,
    )
    from dealreg_kernel.db.immutability import register_immutability_listeners
    from dealreg_kernel.services.workflow_registry import WorkflowRegistry

    catalog = get_workflow_catalog(args.set_name)
    print(f"Catalog '{catalog.set_name}' v{catalog.version}")
    print(f"  checksum: {catalog.checksum[:16]}...")

    init_engine_from_url(args.database_url)
    create_tables()
    register_immutability_listeners()

    with session_scope() as session:
        stored = WorkflowRegistry(session).register_catalog(
            catalog.workflows, args.actor_id,
        )
        for workflow in stored:
            print(
                f"  {workflow.name:<30} v{workflow.version}  "
                f"{len(workflow.steps)} steps  id={workflow.workflow_id}"
            )

    print(f"Registered {len(stored)} workflows into {args.database_url}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
