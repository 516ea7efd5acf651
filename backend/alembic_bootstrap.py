#!/usr/bin/env python3
"""Prepare the database for ``alembic upgrade head``.

Databases created by ``seed_data.py``/``create_all`` already hold the
workflow tables but no ``alembic_version`` row; those are stamped at the
baseline revision so the upgrade does not try to recreate them. A partial
schema (some workflow tables missing) is refused.
"""

from __future__ import annotations

import logging
import os
import subprocess

from sqlalchemy import inspect

from app.database import engine

logger = logging.getLogger("alembic_bootstrap")

BASELINE_REVISION = os.getenv("ALEMBIC_BASELINE_REVISION", "001_quality_workflow_schema")
WORKFLOW_TABLES = (
    "projects",
    "lots",
    "itp_templates",
    "itp_instances",
    "itp_completions",
    "hold_points",
    "hold_point_release_tokens",
)


def main(run_upgrade: bool = True) -> int:
    inspector = inspect(engine)
    has_alembic_version = inspector.has_table("alembic_version")
    present = [table for table in WORKFLOW_TABLES if inspector.has_table(table)]

    if not has_alembic_version and present:
        missing = sorted(set(WORKFLOW_TABLES) - set(present))
        if missing:
            logger.error("Partial workflow schema without alembic_version; missing tables: %s", ", ".join(missing))
            return 1
        logger.info("Unversioned workflow schema detected, stamping baseline %s", BASELINE_REVISION)
        subprocess.run(["alembic", "stamp", BASELINE_REVISION], check=True)
    else:
        logger.info("No baseline stamp required")

    if run_upgrade:
        subprocess.run(["alembic", "upgrade", "head"], check=True)
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    raise SystemExit(main(run_upgrade=os.getenv("ALEMBIC_BOOTSTRAP_SKIP_UPGRADE") != "1"))
