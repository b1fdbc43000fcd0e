#!/usr/bin/env python3
"""Alembic bootstrap for create_all-era databases.

If business tables already exist (created by the API on startup) but
alembic_version is missing, stamp the baseline revision before normal
upgrades.
"""

from __future__ import annotations

import os
import subprocess

from sqlalchemy import inspect

from fleetwatch.database import build_database


BASELINE_REVISION = os.getenv("ALEMBIC_BASELINE_REVISION", "001")
BUSINESS_TABLES = ("clients", "geofences", "geofence_events")


def main() -> int:
    database = build_database()
    try:
        inspector = inspect(database.engine)
        has_alembic_version = inspector.has_table("alembic_version")
        has_business_schema = any(inspector.has_table(table) for table in BUSINESS_TABLES)
    finally:
        database.dispose()

    if not has_alembic_version and has_business_schema:
        print(
            "Existing schema detected without alembic_version. "
            f"Stamping baseline: {BASELINE_REVISION}"
        )
        subprocess.run(["alembic", "stamp", BASELINE_REVISION], check=True)
    else:
        print("Alembic bootstrap check: no baseline stamp required")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
