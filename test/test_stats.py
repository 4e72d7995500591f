"""Dashboard aggregates and the student directory."""

from datetime import datetime, timedelta

import pytest

from core.errors import InvalidInput
from database.models import Device, ProfileStatus
from services.stats_service import (
    MONTH_LABELS, WEEKDAY_LABELS, StatsService, range_start, verification_rate,
)


@pytest.fixture
def populated(db, coordinator, student_principal, other_student_principal, staff_principal, device_attrs, report_attrs):
    """Three devices: one pending, one verified, one reported."""
    laptop = coordinator.register(student_principal, device_attrs(serial_number="L-1")).unwrap()
    phone = coordinator.register(student_principal, device_attrs(name="Pixel 8", serial_number="P-1", type="smartphone")).unwrap()
    tablet = coordinator.register(other_student_principal, device_attrs(name="iPad", serial_number="T-1", type="tablet")).unwrap()

    coordinator.verify(staff_principal, phone.id).unwrap()
    coordinator.verify(staff_principal, tablet.id).unwrap()
    coordinator.report(other_student_principal, tablet.id, report_attrs(incident_type="stolen")).unwrap()
    return {"laptop": laptop, "phone": phone, "tablet": tablet}


def test_verification_rate():
    assert verification_rate(0, 0) == 0
    assert verification_rate(1, 3) == 33
    assert verification_rate(2, 3) == 67


def test_range_start():
    now = datetime(2024, 6, 15)
    assert range_start("all", now) is None
    assert range_start(None, now) is None
    assert range_start("week", now) == datetime(2024, 6, 8)
    with pytest.raises(InvalidInput):
        range_start("decade", now)


def test_staff_overview(db, populated):
    overview = StatsService.staff_overview(db)

    assert overview["totalDevices"] == 3
    assert overview["pendingDevices"] == 1
    assert overview["verifiedDevices"] == 1
    assert overview["reportedDevices"] == 1
    assert overview["activeDevices"] == 2
    assert overview["verificationRate"] == 33
    assert overview["totalStudents"] == 2
    assert overview["reports"]["active"] == 1
    assert overview["reports"]["byIncidentType"] == {"lost": 0, "stolen": 1}


def test_recent_activity_labels(db, populated):
    activity = {a["deviceId"]: a for a in StatsService.recent_activity(db)}

    assert activity[populated["phone"].id]["title"] == "Device Verification"
    assert activity[populated["laptop"].id]["title"] == "Device Registration"
    assert activity[populated["tablet"].id]["title"] == "Device Registration"


def test_recent_activity_limit(db, populated):
    assert len(StatsService.recent_activity(db, limit=2)) == 2


def test_monthly_and_weekday_buckets(db, populated):
    db.query(Device).filter(Device.id == populated["laptop"].id).update({"created_at": datetime(2024, 1, 1)})  # Monday
    db.query(Device).filter(Device.id == populated["phone"].id).update({"created_at": datetime(2024, 1, 7)})  # Sunday
    db.query(Device).filter(Device.id == populated["tablet"].id).update({"created_at": datetime(2024, 12, 31)})  # Tuesday
    db.commit()

    monthly = StatsService.monthly_registrations(db)
    assert [m["month"] for m in monthly] == MONTH_LABELS
    assert monthly[0]["count"] == 2
    assert monthly[11]["count"] == 1
    assert sum(m["count"] for m in monthly) == 3

    weekday = StatsService.weekday_registrations(db)
    assert [d["day"] for d in weekday] == WEEKDAY_LABELS
    assert [d["count"] for d in weekday] == [1, 1, 0, 0, 0, 0, 1]


def test_time_range_excludes_old_devices(db, populated):
    old = datetime.utcnow() - timedelta(days=60)
    db.query(Device).filter(Device.id == populated["laptop"].id).update({"created_at": old})
    db.commit()

    assert StatsService.analytics(db, "month")["statusCounts"]["total"] == 2
    assert StatsService.analytics(db, "year")["statusCounts"]["total"] == 3


def test_type_distribution(db, populated):
    assert StatsService.type_distribution(db) == {"smartphone": 1, "laptop": 1, "tablet": 1, "other": 0}


def test_student_dashboard(db, populated, student, other_student):
    mine = StatsService.student_dashboard(db, student.id)
    assert mine["totalDevices"] == 2
    assert mine["activeReportCount"] == 0

    theirs = StatsService.student_dashboard(db, other_student.id)
    assert theirs["reportedDevices"] == 1
    assert theirs["activeReportCount"] == 1


def test_student_directory(db, populated, student, other_student):
    directory = StatsService.student_directory(db)
    counts = {s["email"]: s["deviceCount"] for s in directory}
    assert counts == {"ada@campus.edu": 2, "tunde@campus.edu": 1}

    assert [s["fullName"] for s in StatsService.student_directory(db, search="002")] == ["Tunde Bello"]

    other_student.status = ProfileStatus.GRADUATED
    db.commit()
    graduated = StatsService.student_directory(db, status_filter=ProfileStatus.GRADUATED)
    assert [s["id"] for s in graduated] == [other_student.id]
