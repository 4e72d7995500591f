"""
Input validation utilities for the Campus Device Registry.
"""
import os
from datetime import datetime, date
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import config
from core.errors import InvalidInput
from database.models import DeviceType, IncidentType, ResolutionType, DeviceStatus


DEVICE_REQUIRED_FIELDS = ("name", "serial_number", "brand", "model", "type")
REPORT_REQUIRED_FIELDS = ("incident_type", "incident_date", "location", "description")


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_enum(enum_class, value: Any, field: str):
    """Parse a user-supplied value into ``enum_class`` or raise InvalidInput."""
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(e.value for e in enum_class)
        raise InvalidInput(f"Invalid {field}: {value}. Use: {allowed}.", field=field)


def parse_datetime(value: Any, field: str) -> datetime:
    """Accept a datetime, a date, or an ISO 8601 string (trailing Z allowed)."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not value:
        raise InvalidInput(f"{field} is required", field=field)
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace('Z', '+00:00'))
    except ValueError:
        raise InvalidInput(f"Invalid {field}. Use ISO 8601 format.", field=field)
    # Stored naive, in UTC
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed


def validate_device_attrs(attrs: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate and normalize device registration attributes.

    Requires non-empty name, serial number, brand and model, and a type in
    {smartphone, laptop, tablet, other}.

    Returns:
        Cleaned attribute dict ready for the Device model

    Raises:
        InvalidInput: listing every failing field
    """
    errors = {}
    cleaned: Dict[str, Any] = {}
    for field in ("name", "serial_number", "brand", "model"):
        value = _clean_str(attrs.get(field))
        if not value:
            errors[field] = f"{field.replace('_', ' ').capitalize()} is required"
        cleaned[field] = value

    if cleaned.get("name") and len(cleaned["name"]) < config.DEVICE_NAME_MIN_LENGTH:
        errors["name"] = f"Device name must be at least {config.DEVICE_NAME_MIN_LENGTH} characters"

    raw_type = attrs.get("type")
    if raw_type is None or str(raw_type).strip() == "":
        errors["type"] = "Type is required"
    else:
        try:
            cleaned["type"] = parse_enum(DeviceType, raw_type, "type")
        except InvalidInput as e:
            errors["type"] = e.message

    if errors:
        raise InvalidInput("Invalid device attributes", fields=errors)

    cleaned["additional_details"] = _clean_str(attrs.get("additional_details"))
    cleaned["image_url"] = _clean_str(attrs.get("image_url"))
    return cleaned


def validate_report_attrs(attrs: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate and normalize loss/theft report attributes.

    The description must carry at least ``config.DESCRIPTION_MIN_LENGTH``
    characters. A police report reference is optional for every incident type.
    """
    errors = {}
    cleaned: Dict[str, Any] = {}

    raw_type = attrs.get("incident_type")
    try:
        cleaned["incident_type"] = parse_enum(IncidentType, raw_type, "incident_type")
    except InvalidInput as e:
        errors["incident_type"] = e.message

    try:
        cleaned["incident_date"] = parse_datetime(attrs.get("incident_date"), "incident_date")
    except InvalidInput as e:
        errors["incident_date"] = e.message

    location = _clean_str(attrs.get("location"))
    if not location:
        errors["location"] = "Location is required"
    cleaned["location"] = location

    description = _clean_str(attrs.get("description")) or ""
    if len(description) < config.DESCRIPTION_MIN_LENGTH:
        errors["description"] = (
            f"Description must be at least {config.DESCRIPTION_MIN_LENGTH} characters"
        )
    cleaned["description"] = description

    if errors:
        raise InvalidInput("Invalid report attributes", fields=errors)

    cleaned["police_report"] = _clean_str(attrs.get("police_report"))
    return cleaned


def parse_resolution_type(value: Any) -> ResolutionType:
    if value is None or str(value).strip() == "":
        raise InvalidInput("resolution_type is required", field="resolution_type")
    return parse_enum(ResolutionType, value, "resolution_type")


def parse_status_filter(value: Optional[str]) -> Optional[DeviceStatus]:
    """``None``, empty or ``"all"`` mean no filter."""
    if value is None or str(value).strip().lower() in ("", "all"):
        return None
    return parse_enum(DeviceStatus, value, "status")


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename to prevent path traversal attacks.

    Args:
        filename: Original filename

    Returns:
        Sanitized filename safe for use
    """
    if not filename:
        raise ValueError("Filename cannot be empty")

    filename = os.path.basename(filename)
    sanitized = "".join(c if (c.isalnum() or c in "._-") else "_" for c in filename)

    if len(sanitized) > 255:
        sanitized = sanitized[:255]

    if not sanitized.strip("._"):
        raise ValueError("Filename became empty after sanitization")

    return sanitized


def validate_image_extension(filename: str, allowed_extensions: set) -> bool:
    """
    Validate file extension.

    Args:
        filename: Filename to check
        allowed_extensions: Set of allowed extensions (e.g., {".jpg", ".png"})
    """
    if not filename:
        return False
    return Path(filename).suffix.lower() in allowed_extensions


def validate_file_size(file_size: int, max_size_bytes: int) -> Tuple[bool, Optional[str]]:
    """
    Validate file size.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if file_size <= 0:
        return False, "File size must be greater than 0"

    if file_size > max_size_bytes:
        max_size_mb = max_size_bytes / (1024 * 1024)
        actual_size_mb = file_size / (1024 * 1024)
        return False, f"File too large: {actual_size_mb:.2f}MB (max: {max_size_mb:.2f}MB)"

    return True, None
