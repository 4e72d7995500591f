"""
JSON shapes (camelCase) for profiles, devices and reports returned by the API.
"""
from datetime import datetime
from typing import Optional

from database.models import Device, DeviceReport, Profile
from services.identity_service import is_profile_complete


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _enum(value) -> Optional[str]:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)


def serialize_profile(profile: Profile) -> dict:
    return {
        "id": profile.id,
        "email": profile.email,
        "fullName": profile.full_name,
        "role": _enum(profile.role),
        "status": _enum(profile.status),
        "matricNumber": profile.matric_number,
        "staffId": profile.staff_id,
        "phoneNumber": profile.phone_number,
        "department": profile.department,
        "studyLevel": profile.study_level,
        "hallOfResidence": profile.hall_of_residence,
        "homeAddress": profile.home_address,
        "biography": profile.biography,
        "profileComplete": is_profile_complete(profile),
        "lastLoginAt": _iso(profile.last_login_at),
        "createdAt": _iso(profile.created_at),
    }


def serialize_owner(profile: Optional[Profile]) -> Optional[dict]:
    """Owner summary embedded in staff device/report listings."""
    if profile is None:
        return None
    return {
        "id": profile.id,
        "fullName": profile.full_name,
        "email": profile.email,
        "matricNumber": profile.matric_number,
        "department": profile.department,
    }


def serialize_device(device: Device, include_owner: bool = False) -> dict:
    data = {
        "id": device.id,
        "userId": device.user_id,
        "name": device.name,
        "serialNumber": device.serial_number,
        "brand": device.brand,
        "model": device.model,
        "type": _enum(device.type),
        "status": _enum(device.status),
        "additionalDetails": device.additional_details,
        "imageUrl": device.image_url,
        "verifiedBy": device.verified_by,
        "verificationDate": _iso(device.verification_date),
        "verificationNotes": device.verification_notes,
        "createdAt": _iso(device.created_at),
        "updatedAt": _iso(device.updated_at),
    }
    if include_owner:
        data["owner"] = serialize_owner(device.owner)
    return data


def serialize_report(report: DeviceReport, include_device: bool = False, include_owner: bool = False) -> dict:
    data = {
        "id": report.id,
        "deviceId": report.device_id,
        "userId": report.user_id,
        "incidentType": _enum(report.incident_type),
        "incidentDate": _iso(report.incident_date),
        "location": report.location,
        "description": report.description,
        "policeReport": report.police_report,
        "status": _enum(report.status),
        "resolutionType": _enum(report.resolution_type),
        "resolvedBy": report.resolved_by,
        "resolutionDate": _iso(report.resolution_date),
        "resolutionNotes": report.resolution_notes,
        "createdAt": _iso(report.created_at),
    }
    if include_device:
        data["device"] = serialize_device(report.device) if report.device else None
    if include_owner:
        data["owner"] = serialize_owner(report.owner)
    return data
