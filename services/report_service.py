"""
Report ledger: loss/theft reports and their resolution.

Methods flush but never commit; the lifecycle coordinator owns the
transaction boundary.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from core.errors import (
    AlreadyResolved, DuplicateActiveReport, NotFound, Unauthorized,
)
from core.logger import logger
from core.validators import validate_report_attrs, parse_resolution_type
from database.models import (
    Device, DeviceReport, IncidentType, Profile, ReportStatus, UserRole,
)


class ReportService:
    """Service for report ledger operations."""

    @staticmethod
    def create(db: Session, owner_id: int, device: Device, attrs: Dict[str, Any]) -> DeviceReport:
        """
        File a report against a device.

        Raises:
            Unauthorized: ``owner_id`` is not the device owner
            DuplicateActiveReport: the device already has an active report
            InvalidInput: attribute validation failed
        """
        if device.user_id != owner_id:
            raise Unauthorized("Only the device owner can report it")
        if ReportService.has_active_report(db, device.id):
            raise DuplicateActiveReport(
                "This device already has an active report", device_id=device.id
            )

        cleaned = validate_report_attrs(attrs)
        report = DeviceReport(
            device_id=device.id,
            user_id=owner_id,
            status=ReportStatus.ACTIVE,
            **cleaned,
        )
        db.add(report)
        db.flush()
        return report

    @staticmethod
    def resolve(
        db: Session,
        report_id: int,
        actor: Profile,
        resolution_type: Any,
        notes: Optional[str] = None,
    ) -> DeviceReport:
        """
        Close an active report as found/recovered.

        Raises:
            Unauthorized: actor is not staff
            NotFound: report does not exist
            AlreadyResolved: report is not active
            InvalidInput: bad resolution type
        """
        if actor is None or actor.role != UserRole.STAFF:
            raise Unauthorized("Only staff can resolve reports")
        report = ReportService.get(db, report_id)
        if report.status != ReportStatus.ACTIVE:
            raise AlreadyResolved(
                f"Report is already {report.status.value}", report_id=report_id
            )
        resolution = parse_resolution_type(resolution_type)

        now = datetime.utcnow()
        updated = (
            db.query(DeviceReport)
            .filter(DeviceReport.id == report_id, DeviceReport.status == ReportStatus.ACTIVE)
            .update(
                {
                    "status": ReportStatus.RESOLVED,
                    "resolution_type": resolution,
                    "resolved_by": actor.id,
                    "resolution_date": now,
                    "resolution_notes": (notes or "").strip() or None,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        if updated == 0:
            # Another request resolved it between our read and write
            raise AlreadyResolved("Report was resolved concurrently", report_id=report_id)
        db.flush()
        db.refresh(report)
        return report

    @staticmethod
    def get(db: Session, report_id: int) -> DeviceReport:
        report = db.query(DeviceReport).filter(DeviceReport.id == report_id).first()
        if report is None:
            raise NotFound("Report not found", report_id=report_id)
        return report

    @staticmethod
    def has_active_report(db: Session, device_id: int) -> bool:
        return ReportService.get_active_report(db, device_id) is not None

    @staticmethod
    def get_active_report(db: Session, device_id: int) -> Optional[DeviceReport]:
        return (
            db.query(DeviceReport)
            .filter(DeviceReport.device_id == device_id, DeviceReport.status == ReportStatus.ACTIVE)
            .first()
        )

    @staticmethod
    def list_active(db: Session) -> List[DeviceReport]:
        """Active reports joined with device and owner, newest first."""
        return (
            db.query(DeviceReport)
            .options(joinedload(DeviceReport.device), joinedload(DeviceReport.owner))
            .filter(DeviceReport.status == ReportStatus.ACTIVE)
            .order_by(DeviceReport.created_at.desc(), DeviceReport.id.desc())
            .all()
        )

    @staticmethod
    def list_by_owner(db: Session, owner_id: int) -> List[DeviceReport]:
        return (
            db.query(DeviceReport)
            .options(joinedload(DeviceReport.device))
            .filter(DeviceReport.user_id == owner_id)
            .order_by(DeviceReport.created_at.desc(), DeviceReport.id.desc())
            .all()
        )

    @staticmethod
    def list_all(
        db: Session,
        status_filter: Optional[ReportStatus] = None,
        type_filter: Optional[IncidentType] = None,
        search: Optional[str] = None,
    ) -> List[DeviceReport]:
        """Staff listing with optional status / incident type filters and text search."""
        query = (
            db.query(DeviceReport)
            .join(Device, DeviceReport.device_id == Device.id)
            .join(Profile, DeviceReport.user_id == Profile.id)
            .options(joinedload(DeviceReport.device), joinedload(DeviceReport.owner))
        )
        if status_filter is not None:
            query = query.filter(DeviceReport.status == status_filter)
        if type_filter is not None:
            query = query.filter(DeviceReport.incident_type == type_filter)
        if search and search.strip():
            term = f"%{search.strip().lower()}%"
            query = query.filter(or_(
                func.lower(Device.name).like(term),
                func.lower(Device.serial_number).like(term),
                func.lower(Profile.full_name).like(term),
                func.lower(func.coalesce(Profile.matric_number, "")).like(term),
            ))
        reports = query.order_by(DeviceReport.created_at.desc(), DeviceReport.id.desc()).all()
        logger.debug(f"Listed {len(reports)} reports (status={status_filter}, type={type_filter})")
        return reports
