"""HTTP surface: routing, auth, camelCase payloads and error mapping."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

import config
from app import app
from database.models import Device, DeviceStatus
from services.identity_service import IdentityService
from services.stats_service import StatsService
from storage.s3_client import LocalStorage


@pytest.fixture
def client(database, tmp_path, monkeypatch):
    monkeypatch.setattr(config, "db", database)
    monkeypatch.setattr(config, "storage", LocalStorage(tmp_path, "/uploads"))
    # Lifespan is skipped; the fixtures above stand in for startup
    return TestClient(app)


def auth(profile):
    return {"Authorization": f"Bearer {IdentityService.issue_token(profile)}"}


DEVICE = {
    "name": "Work Laptop",
    "serialNumber": "SN-API-1",
    "brand": "Dell",
    "model": "XPS 13",
    "type": "laptop",
}

REPORT = {
    "incidentType": "lost",
    "incidentDate": "2024-03-14T09:30:00Z",
    "location": "Main library",
    "description": "left on bus, 12 characters min",
}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["database"]["status"] == "ok"
    assert response.headers["X-Request-ID"]


def test_signup_login_and_me(client):
    response = client.post("/api/auth/signup", json={
        "fullName": "Chi Nwosu", "email": "chi@campus.edu", "password": "Secret123!", "matricNumber": "BIO/22/7",
    })
    assert response.status_code == 201
    body = response.json()
    assert body["user"]["role"] == "student"
    assert body["user"]["profileComplete"] is False

    login = client.post("/api/auth/login", json={"email": "chi@campus.edu", "password": "Secret123!"})
    assert login.status_code == 200
    token = login.json()["accessToken"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["matricNumber"] == "BIO/22/7"


def test_signup_errors(client, student):
    duplicate = client.post("/api/auth/signup", json={
        "fullName": "Ada Again", "email": "ada@campus.edu", "password": "Secret123!",
    })
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["kind"] == "constraint_violation"

    weak = client.post("/api/auth/signup", json={
        "fullName": "Weak", "email": "weak@campus.edu", "password": "password",
    })
    assert weak.status_code == 422
    assert weak.json()["error"]["kind"] == "invalid_input"


def test_login_failure(client, student):
    response = client.post("/api/auth/login", json={"email": "ada@campus.edu", "password": "Wrong123!"})
    assert response.status_code == 401
    assert response.json()["error"]["kind"] == "unauthenticated"


def test_missing_token_is_unauthenticated(client):
    response = client.get("/api/devices/mine")
    assert response.status_code == 401
    body = response.json()
    assert body["ok"] is False
    assert body["error"]["kind"] == "unauthenticated"
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_device_and_report_lifecycle(client, student, other_student, staff):
    created = client.post("/api/devices", json=DEVICE, headers=auth(student))
    assert created.status_code == 201
    device = created.json()["device"]
    assert device["status"] == "pending"
    assert created.json()["flags"] == []

    by_student = client.post(f"/api/devices/{device['id']}/verify", headers=auth(student))
    assert by_student.status_code == 403
    assert by_student.json()["error"]["kind"] == "unauthorized"

    verified = client.post(f"/api/devices/{device['id']}/verify", json={"notes": "Checked"}, headers=auth(staff))
    assert verified.status_code == 200
    assert verified.json()["device"]["verifiedBy"] == staff.id

    reported = client.post("/api/reports", json={"deviceId": device["id"], **REPORT}, headers=auth(student))
    assert reported.status_code == 201
    report = reported.json()["report"]
    assert reported.json()["device"]["status"] == "reported"
    assert report["incidentDate"] == "2024-03-14T09:30:00"

    duplicate = client.post("/api/reports", json={"deviceId": device["id"], **REPORT}, headers=auth(student))
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["kind"] == "duplicate_active_report"

    stranger = client.post("/api/reports", json={"deviceId": device["id"], **REPORT}, headers=auth(other_student))
    assert stranger.status_code == 403

    active = client.get("/api/reports/active", headers=auth(staff))
    assert active.status_code == 200
    assert active.json()["total"] == 1
    assert active.json()["reports"][0]["owner"]["matricNumber"] == "CSC/2021/001"

    resolved = client.post(f"/api/reports/{report['id']}/resolve", json={"resolutionType": "found"}, headers=auth(staff))
    assert resolved.status_code == 200
    assert resolved.json()["report"]["status"] == "resolved"
    assert resolved.json()["device"]["status"] == "verified"

    again = client.post(f"/api/reports/{report['id']}/resolve", json={"resolutionType": "found"}, headers=auth(staff))
    assert again.status_code == 409
    assert again.json()["error"]["kind"] == "already_resolved"

    mine = client.get("/api/reports/mine", headers=auth(student))
    assert mine.json()["total"] == 1


def test_register_validation_lists_fields(client, student):
    response = client.post("/api/devices", json={"name": "X"}, headers=auth(student))
    assert response.status_code == 422
    fields = response.json()["error"]["details"]["fields"]
    assert {"name", "serial_number", "brand", "model", "type"} <= set(fields)


def test_device_visibility(client, student, other_student, staff):
    device = client.post("/api/devices", json=DEVICE, headers=auth(student)).json()["device"]

    assert client.get(f"/api/devices/{device['id']}", headers=auth(student)).status_code == 200
    assert client.get(f"/api/devices/{device['id']}", headers=auth(other_student)).status_code == 403
    assert client.get("/api/devices/9999", headers=auth(staff)).status_code == 404

    staff_view = client.get(f"/api/devices/{device['id']}", headers=auth(staff)).json()
    assert staff_view["owner"]["fullName"] == "Ada Obi"

    assert client.get("/api/devices", headers=auth(student)).status_code == 403
    listing = client.get("/api/devices", params={"status": "pending", "search": "work"}, headers=auth(staff))
    assert listing.json()["total"] == 1
    by_model = client.get("/api/devices", params={"search": "xps"}, headers=auth(staff))
    assert by_model.json()["total"] == 0
    assert client.get("/api/devices", params={"status": "lost"}, headers=auth(staff)).status_code == 422


def test_reconcile_endpoint(client, staff, student):
    assert client.post("/api/devices/reconcile", headers=auth(student)).status_code == 403
    response = client.post("/api/devices/reconcile", headers=auth(staff))
    assert response.status_code == 200
    assert response.json() == {"repaired": [], "count": 0}


def test_image_upload(client, student, tmp_path):
    response = client.post(
        "/api/devices/images",
        files={"file": ("my phone.jpg", b"\xff\xd8\xff\xe0fake-jpeg", "image/jpeg")},
        headers=auth(student),
    )
    assert response.status_code == 201
    url = response.json()["url"]
    assert url.startswith(f"/uploads/device-images/user_id={student.id}/")
    assert url.endswith("my_phone.jpg")
    assert list(tmp_path.rglob("*my_phone.jpg"))


def test_image_upload_rejects_bad_type(client, student):
    response = client.post(
        "/api/devices/images",
        files={"file": ("script.sh", b"#!/bin/sh", "text/plain")},
        headers=auth(student),
    )
    assert response.status_code == 422


def test_profile_update(client, student):
    response = client.patch("/api/profile", json={"biography": "Final year", "studyLevel": "400"}, headers=auth(student))
    assert response.status_code == 200
    assert response.json()["studyLevel"] == "400"
    assert response.json()["profileComplete"] is True


def test_dashboards(client, student, staff):
    client.post("/api/devices", json=DEVICE, headers=auth(student))

    student_view = client.get("/api/dashboard/student", headers=auth(student))
    assert student_view.status_code == 200
    assert student_view.json()["pendingDevices"] == 1

    assert client.get("/api/dashboard/staff", headers=auth(student)).status_code == 403

    overview = client.get("/api/dashboard/staff", params={"range": "week"}, headers=auth(staff))
    assert overview.status_code == 200
    assert overview.json()["totalDevices"] == 1
    assert overview.json()["recentActivity"][0]["title"] == "Device Registration"

    analytics = client.get("/api/dashboard/analytics", headers=auth(staff))
    assert len(analytics.json()["monthlyRegistrations"]) == 12

    bad_range = client.get("/api/dashboard/analytics", params={"range": "decade"}, headers=auth(staff))
    assert bad_range.status_code == 422


def test_student_directory_and_status(client, student, staff):
    listing = client.get("/api/students", params={"search": "ada"}, headers=auth(staff))
    assert listing.status_code == 200
    assert listing.json()["students"][0]["id"] == student.id

    updated = client.patch(f"/api/students/{student.id}/status", json={"status": "suspended"}, headers=auth(staff))
    assert updated.status_code == 200
    assert updated.json()["status"] == "suspended"

    assert client.patch(f"/api/students/{staff.id}/status", json={"status": "active"}, headers=auth(staff)).status_code == 404
    assert client.get("/api/students", headers=auth(student)).status_code == 403


def test_database_failure_outside_coordinator_is_backend_unavailable(client, staff, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(StatsService, "staff_overview", broken)
    response = client.get("/api/dashboard/staff", headers=auth(staff))
    assert response.status_code == 503
    assert response.json()["error"]["kind"] == "backend_unavailable"
    assert response.headers["X-Request-ID"]


def test_principal_lookup_failure_is_backend_unavailable(client, student, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(IdentityService, "resolve", broken)
    response = client.get("/api/auth/me", headers=auth(student))
    assert response.status_code == 503
    assert response.json()["error"]["kind"] == "backend_unavailable"


def _force_status(db, device_id, status):
    db.query(Device).filter(Device.id == device_id).update({"status": status})
    db.commit()


def test_dashboards_repair_status_drift_before_counting(client, db, student, staff):
    device = client.post("/api/devices", json=DEVICE, headers=auth(student)).json()["device"]
    client.post(f"/api/devices/{device['id']}/verify", headers=auth(staff))
    client.post("/api/reports", json={"deviceId": device["id"], **REPORT}, headers=auth(student))

    _force_status(db, device["id"], DeviceStatus.VERIFIED)
    student_view = client.get("/api/dashboard/student", headers=auth(student)).json()
    assert student_view["reportedDevices"] == 1
    assert student_view["verifiedDevices"] == 0
    assert student_view["activeReportCount"] == 1
    assert [d["status"] for d in student_view["recentDevices"]] == ["reported"]

    _force_status(db, device["id"], DeviceStatus.VERIFIED)
    overview = client.get("/api/dashboard/staff", headers=auth(staff)).json()
    assert overview["reportedDevices"] == 1
    assert overview["verifiedDevices"] == 0

    _force_status(db, device["id"], DeviceStatus.PENDING)
    analytics = client.get("/api/dashboard/analytics", headers=auth(staff)).json()
    assert analytics["statusCounts"]["reported"] == 1
