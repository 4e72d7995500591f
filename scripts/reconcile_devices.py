#!/usr/bin/env python3
"""
Re-derive every device status from the report ledger, acting as a staff account.

Usage:
    python scripts/reconcile_devices.py staff@example.edu
"""
import sys
from pathlib import Path

# Add parent directory to the system path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import func

from database.connection import Database
from database.models import Profile
from services.identity_service import principal_from_profile
from services.lifecycle import LifecycleCoordinator
import config


def reconcile(staff_email: str):
    config.db = Database(
        database_url=config.DATABASE_URL,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW
    )

    with config.db.get_session() as db:
        profile = db.query(Profile).filter(func.lower(Profile.email) == staff_email.strip().lower()).first()
        if profile is None:
            print(f"✗ No account with email {staff_email}")
            sys.exit(1)

        result = LifecycleCoordinator(db).reconcile(principal_from_profile(profile))
        if not result.ok:
            print(f"✗ [{result.kind}] {result.error.message}")
            sys.exit(1)

        if result.value:
            print(f"✓ Repaired {len(result.value)} device(s): {', '.join(map(str, result.value))}")
        else:
            print("✓ All device statuses agree with the report ledger")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(1)
    reconcile(sys.argv[1])
