"""Test configuration and fixtures."""

import os
import sys
from datetime import datetime

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Set test settings BEFORE config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_FILE"] = ""
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_PER_MINUTE"] = "100000"
os.environ["RATE_LIMIT_PER_HOUR"] = "100000"
os.environ["USE_S3"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"

import config  # noqa: E402
from database.connection import Database  # noqa: E402
from services.identity_service import IdentityService, principal_from_profile  # noqa: E402
from services.lifecycle import LifecycleCoordinator  # noqa: E402

PASSWORD = "Secret123!"


@pytest.fixture
def database():
    """Fresh in-memory database per test."""
    database = Database(config.DATABASE_URL)
    database.create_tables()
    yield database
    database.drop_tables()
    database.engine.dispose()


@pytest.fixture
def db(database):
    """Database session fixture."""
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


def _complete_student(db, email, full_name, matric_number):
    profile = IdentityService.sign_up(db, email, PASSWORD, full_name, matric_number=matric_number)
    profile.department = "Computer Science"
    profile.study_level = "300"
    profile.hall_of_residence = "Queens Hall"
    db.commit()
    return profile


@pytest.fixture
def student(db):
    return _complete_student(db, "ada@campus.edu", "Ada Obi", "CSC/2021/001")


@pytest.fixture
def other_student(db):
    return _complete_student(db, "tunde@campus.edu", "Tunde Bello", "CSC/2021/002")


@pytest.fixture
def staff(db):
    return IdentityService.create_staff(
        db, "security@campus.edu", PASSWORD, "Grace Eze", staff_id="STF-01", department="Security"
    )


@pytest.fixture
def second_staff(db):
    return IdentityService.create_staff(
        db, "desk@campus.edu", PASSWORD, "Musa Lawal", staff_id="STF-02", department="Security"
    )


@pytest.fixture
def student_principal(student):
    return principal_from_profile(student)


@pytest.fixture
def other_student_principal(other_student):
    return principal_from_profile(other_student)


@pytest.fixture
def staff_principal(staff):
    return principal_from_profile(staff)


@pytest.fixture
def second_staff_principal(second_staff):
    return principal_from_profile(second_staff)


@pytest.fixture
def coordinator(db):
    return LifecycleCoordinator(db)


@pytest.fixture
def device_attrs():
    def make(**overrides):
        attrs = {
            "name": "Work Laptop",
            "serial_number": "SN-0001",
            "brand": "Lenovo",
            "model": "ThinkPad X1",
            "type": "laptop",
        }
        attrs.update(overrides)
        return attrs
    return make


@pytest.fixture
def report_attrs():
    def make(**overrides):
        attrs = {
            "incident_type": "lost",
            "incident_date": datetime(2024, 3, 14, 9, 30),
            "location": "Campus shuttle",
            "description": "left on bus, 12 characters min",
        }
        attrs.update(overrides)
        return attrs
    return make


@pytest.fixture
def registered_device(coordinator, student_principal, device_attrs):
    return coordinator.register(student_principal, device_attrs()).unwrap()


@pytest.fixture
def verified_device(coordinator, registered_device, staff_principal):
    return coordinator.verify(staff_principal, registered_device.id).unwrap()
