#!/usr/bin/env python3
"""
Script to create a staff account. Public sign-up only creates students.
"""
import sys
from getpass import getpass
from pathlib import Path

# Add parent directory to the system path
sys.path.insert(0, str(Path(__file__).parent.parent))

from database.connection import Database
from core.errors import LifecycleError
from services.identity_service import IdentityService
import config


def create_staff():
    """Create a staff account."""
    config.db = Database(
        database_url=config.DATABASE_URL,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW
    )
    config.db.create_tables()

    print("Creating staff account...")
    print("=" * 50)

    full_name = input("Full name: ").strip()
    email = input("Email: ").strip()
    password = getpass("Password: ")
    staff_id = input("Staff ID (optional): ").strip() or None
    department = input("Department (optional): ").strip() or None

    if not full_name or not email or not password:
        print("Error: Full name, email, and password are required")
        sys.exit(1)

    try:
        with config.db.get_session() as db:
            profile = IdentityService.create_staff(
                db=db,
                email=email,
                password=password,
                full_name=full_name,
                staff_id=staff_id,
                department=department
            )
            print("\n✓ Staff account created successfully!")
            print(f"  ID: {profile.id}")
            print(f"  Email: {profile.email}")
            print(f"  Role: {profile.role.value}")
    except LifecycleError as e:
        print(f"\n✗ Error: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    create_staff()
