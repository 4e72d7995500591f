"""Input validation helpers."""

from datetime import date, datetime

import pytest

from core.errors import InvalidInput
from core.validators import (
    parse_datetime, parse_enum, parse_resolution_type, parse_status_filter,
    sanitize_filename, validate_file_size, validate_image_extension,
)
from database.models import DeviceStatus, DeviceType, ResolutionType


def test_parse_enum_is_case_insensitive():
    assert parse_enum(DeviceType, " Laptop ", "type") == DeviceType.LAPTOP
    with pytest.raises(InvalidInput) as exc:
        parse_enum(DeviceType, "fridge", "type")
    assert exc.value.details == {"field": "type"}


@pytest.mark.parametrize("value,expected", [
    ("2024-03-14T09:30:00", datetime(2024, 3, 14, 9, 30)),
    ("2024-03-14T09:30:00Z", datetime(2024, 3, 14, 9, 30)),
    ("2024-03-14T10:30:00+01:00", datetime(2024, 3, 14, 9, 30)),
    (date(2024, 3, 14), datetime(2024, 3, 14)),
])
def test_parse_datetime_normalizes_to_naive_utc(value, expected):
    assert parse_datetime(value, "incident_date") == expected


@pytest.mark.parametrize("value", [None, "", "14/03/2024"])
def test_parse_datetime_rejects(value):
    with pytest.raises(InvalidInput):
        parse_datetime(value, "incident_date")


def test_parse_resolution_type():
    assert parse_resolution_type("FOUND") == ResolutionType.FOUND
    with pytest.raises(InvalidInput):
        parse_resolution_type(None)


@pytest.mark.parametrize("value,expected", [
    (None, None), ("", None), ("all", None), ("ALL", None), ("verified", DeviceStatus.VERIFIED),
])
def test_parse_status_filter(value, expected):
    assert parse_status_filter(value) == expected


def test_sanitize_filename_strips_paths():
    assert sanitize_filename("../../etc/my photo.jpg") == "my_photo.jpg"
    with pytest.raises(ValueError):
        sanitize_filename("")


def test_image_checks():
    assert validate_image_extension("phone.PNG", {".png", ".jpg"})
    assert not validate_image_extension("phone.exe", {".png", ".jpg"})
    assert validate_file_size(10, 100) == (True, None)
    assert not validate_file_size(0, 100)[0]
    assert not validate_file_size(200, 100)[0]
