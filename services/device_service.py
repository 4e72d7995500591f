"""
Device registry: device records and their status field.

Methods flush but never commit; the lifecycle coordinator owns the
transaction boundary.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

import config
from core.errors import ConstraintViolation, NotFound, StaleState, Unauthorized
from core.logger import logger
from core.validators import validate_device_attrs
from database.models import (
    Device, DeviceReport, DeviceStatus, Profile, ReportStatus, UserRole,
)


class DeviceService:
    """Service for device registry operations."""

    @staticmethod
    def register(db: Session, owner_id: int, attrs: Dict[str, Any]) -> Device:
        """
        Register a device for a student. The new device starts ``pending``.

        Raises:
            NotFound: owner profile does not exist
            Unauthorized: owner is not a student
            InvalidInput: attribute validation failed
            ConstraintViolation: serial number already registered (when enforced)
        """
        owner = db.query(Profile).filter(Profile.id == owner_id).first()
        if owner is None:
            raise NotFound("Owner profile not found")
        if owner.role != UserRole.STUDENT:
            raise Unauthorized("Only students can own registered devices")

        cleaned = validate_device_attrs(attrs)

        if config.ENFORCE_UNIQUE_SERIAL:
            existing = DeviceService.find_by_serial(db, cleaned["serial_number"])
            if existing is not None:
                raise ConstraintViolation(
                    "A device with this serial number is already registered",
                    serial_number=cleaned["serial_number"],
                )

        device = Device(user_id=owner_id, status=DeviceStatus.PENDING, **cleaned)
        db.add(device)
        db.flush()
        return device

    @staticmethod
    def get(db: Session, device_id: int) -> Device:
        device = db.query(Device).filter(Device.id == device_id).first()
        if device is None:
            raise NotFound("Device not found", device_id=device_id)
        return device

    @staticmethod
    def find_by_serial(db: Session, serial_number: str) -> Optional[Device]:
        """Case-insensitive lookup by serial number."""
        serial = (serial_number or "").strip().lower()
        if not serial:
            return None
        return db.query(Device).filter(func.lower(Device.serial_number) == serial).first()

    @staticmethod
    def list_by_owner(db: Session, owner_id: int) -> List[Device]:
        return (
            db.query(Device)
            .filter(Device.user_id == owner_id)
            .order_by(Device.created_at.desc(), Device.id.desc())
            .all()
        )

    @staticmethod
    def list_all(
        db: Session,
        status_filter: Optional[DeviceStatus] = None,
        search: Optional[str] = None,
    ) -> List[Device]:
        """
        All devices with their owners, newest first.

        Args:
            status_filter: Only devices in this status (None = all)
            search: Case-insensitive match on device name, serial number,
                owner name or matric number
        """
        query = db.query(Device).join(Profile, Device.user_id == Profile.id).options(joinedload(Device.owner))
        if status_filter is not None:
            query = query.filter(Device.status == status_filter)
        if search and search.strip():
            term = f"%{search.strip().lower()}%"
            query = query.filter(or_(
                func.lower(Device.name).like(term),
                func.lower(Device.serial_number).like(term),
                func.lower(Profile.full_name).like(term),
                func.lower(func.coalesce(Profile.matric_number, "")).like(term),
            ))
        return query.order_by(Device.created_at.desc(), Device.id.desc()).all()

    @staticmethod
    def set_status(
        db: Session,
        device_id: int,
        new_status: DeviceStatus,
        expected_status: DeviceStatus,
        verification: Optional[Dict[str, Any]] = None,
        clear_verification: bool = False,
    ) -> Device:
        """
        Compare-and-set status write. Only the lifecycle coordinator calls this.

        Args:
            device_id: Device to update
            new_status: Status to write
            expected_status: Status the caller validated against; the write
                only applies if the stored status still equals it
            verification: ``verified_by``/``verification_date``/``verification_notes`` to set
            clear_verification: Clear the verification provenance

        Raises:
            NotFound: device does not exist
            StaleState: stored status changed since the caller read it
            ConstraintViolation: the write would break a device invariant
        """
        current = DeviceService.get(db, device_id)
        if current.status != expected_status:
            raise StaleState(
                "Device status changed; re-fetch and retry",
                device_id=device_id,
                expected=expected_status.value,
                actual=_value(current.status),
            )

        values: Dict[str, Any] = {"status": new_status, "updated_at": datetime.utcnow()}
        verified_by = current.verified_by
        if clear_verification:
            values.update(verified_by=None, verification_date=None, verification_notes=None)
            verified_by = None
        if verification:
            values.update(verification)
            verified_by = verification.get("verified_by")

        DeviceService._check_invariants(db, device_id, new_status, verified_by)

        updated = (
            db.query(Device)
            .filter(Device.id == device_id, Device.status == expected_status)
            .update(values, synchronize_session=False)
        )
        if updated == 0:
            raise StaleState(
                "Device status changed; re-fetch and retry",
                device_id=device_id,
                expected=expected_status.value,
            )
        db.flush()
        db.refresh(current)
        logger.debug(f"Device {device_id}: {expected_status.value} -> {new_status.value}")
        return current

    @staticmethod
    def _check_invariants(db: Session, device_id: int, new_status: DeviceStatus, verified_by: Optional[int]):
        has_active = db.query(DeviceReport.id).filter(
            DeviceReport.device_id == device_id,
            DeviceReport.status == ReportStatus.ACTIVE,
        ).first() is not None

        if new_status == DeviceStatus.REPORTED and not has_active:
            raise ConstraintViolation("A device can only be reported while it has an active report")
        if new_status != DeviceStatus.REPORTED and has_active:
            raise ConstraintViolation(
                f"A device with an active report cannot be {new_status.value}",
                device_id=device_id,
            )
        if new_status == DeviceStatus.VERIFIED:
            verifier = db.query(Profile).filter(Profile.id == verified_by).first() if verified_by else None
            if verifier is None or verifier.role != UserRole.STAFF:
                raise ConstraintViolation("A verified device must carry a staff verifier")


def _value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)
