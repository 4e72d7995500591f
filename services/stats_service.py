"""
Directory / reporting view: read-only aggregates over devices and reports.
"""
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

import config
from core.errors import InvalidInput
from database.models import (
    Device, DeviceReport, DeviceStatus, DeviceType, IncidentType, Profile,
    ProfileStatus, ReportStatus, UserRole,
)


MONTH_LABELS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
WEEKDAY_LABELS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]

TIME_RANGES = {
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
    "all": None,
}


def range_start(time_range: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Lower bound on ``created_at`` for a named time range (None = unbounded)."""
    key = (time_range or "all").strip().lower()
    if key not in TIME_RANGES:
        raise InvalidInput(
            f"Invalid time range '{time_range}'. Allowed: {', '.join(TIME_RANGES)}",
            field="time_range",
        )
    delta = TIME_RANGES[key]
    if delta is None:
        return None
    return (now or datetime.utcnow()) - delta


def verification_rate(verified: int, total: int) -> int:
    """Percentage of devices verified, rounded to a whole number."""
    if total <= 0:
        return 0
    return round(verified / total * 100)


class StatsService:
    """Aggregate queries for dashboards and the student directory."""

    @staticmethod
    def device_counts(db: Session, since: Optional[datetime] = None, owner_id: Optional[int] = None) -> Dict[str, int]:
        query = db.query(Device.status, func.count(Device.id))
        if since is not None:
            query = query.filter(Device.created_at >= since)
        if owner_id is not None:
            query = query.filter(Device.user_id == owner_id)
        rows = dict(query.group_by(Device.status).all())

        counts = {s.value: int(rows.get(s, 0)) for s in DeviceStatus}
        counts["total"] = sum(counts[s.value] for s in DeviceStatus)
        return counts

    @staticmethod
    def monthly_registrations(db: Session, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Registrations per calendar month; all twelve buckets are present."""
        buckets = [0] * 12
        for created_at in StatsService._created_dates(db, since):
            buckets[created_at.month - 1] += 1
        return [{"month": label, "count": buckets[i]} for i, label in enumerate(MONTH_LABELS)]

    @staticmethod
    def weekday_registrations(db: Session, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Registrations per weekday, Monday first."""
        buckets = [0] * 7
        for created_at in StatsService._created_dates(db, since):
            buckets[created_at.weekday()] += 1
        return [{"day": label, "count": buckets[i]} for i, label in enumerate(WEEKDAY_LABELS)]

    @staticmethod
    def type_distribution(db: Session, since: Optional[datetime] = None) -> Dict[str, int]:
        query = db.query(Device.type, func.count(Device.id))
        if since is not None:
            query = query.filter(Device.created_at >= since)
        rows = dict(query.group_by(Device.type).all())
        return {t.value: int(rows.get(t, 0)) for t in DeviceType}

    @staticmethod
    def report_counts(db: Session, since: Optional[datetime] = None) -> Dict[str, Any]:
        def count(*criteria) -> int:
            query = db.query(func.count(DeviceReport.id)).filter(*criteria)
            if since is not None:
                query = query.filter(DeviceReport.created_at >= since)
            return query.scalar() or 0

        return {
            "active": count(DeviceReport.status == ReportStatus.ACTIVE),
            "resolved": count(DeviceReport.status == ReportStatus.RESOLVED),
            "byIncidentType": {
                t.value: count(DeviceReport.incident_type == t) for t in IncidentType
            },
        }

    @staticmethod
    def recent_activity(db: Session, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Latest devices, labelled by whether they have been verified."""
        devices = (
            db.query(Device)
            .order_by(Device.created_at.desc(), Device.id.desc())
            .limit(limit or config.RECENT_ACTIVITY_LIMIT)
            .all()
        )
        activity = []
        for device in devices:
            verified = device.status == DeviceStatus.VERIFIED
            activity.append({
                "deviceId": device.id,
                "title": "Device Verification" if verified else "Device Registration",
                "deviceName": device.name,
                "ownerName": device.owner.full_name if device.owner else None,
                "status": device.status.value,
                "timestamp": (device.verification_date if verified and device.verification_date else device.created_at).isoformat(),
            })
        return activity

    @staticmethod
    def staff_overview(db: Session, time_range: Optional[str] = "all") -> Dict[str, Any]:
        since = range_start(time_range)
        counts = StatsService.device_counts(db, since)
        return {
            "timeRange": (time_range or "all").lower(),
            "totalDevices": counts["total"],
            "pendingDevices": counts[DeviceStatus.PENDING.value],
            "verifiedDevices": counts[DeviceStatus.VERIFIED.value],
            "reportedDevices": counts[DeviceStatus.REPORTED.value],
            "activeDevices": counts[DeviceStatus.PENDING.value] + counts[DeviceStatus.VERIFIED.value],
            "verificationRate": verification_rate(counts[DeviceStatus.VERIFIED.value], counts["total"]),
            "totalStudents": db.query(func.count(Profile.id)).filter(Profile.role == UserRole.STUDENT).scalar() or 0,
            "reports": StatsService.report_counts(db, since),
            "recentActivity": StatsService.recent_activity(db),
        }

    @staticmethod
    def analytics(db: Session, time_range: Optional[str] = "all") -> Dict[str, Any]:
        since = range_start(time_range)
        counts = StatsService.device_counts(db, since)
        return {
            "timeRange": (time_range or "all").lower(),
            "statusCounts": counts,
            "verificationRate": verification_rate(counts[DeviceStatus.VERIFIED.value], counts["total"]),
            "monthlyRegistrations": StatsService.monthly_registrations(db, since),
            "weekdayRegistrations": StatsService.weekday_registrations(db, since),
            "typeDistribution": StatsService.type_distribution(db, since),
            "reports": StatsService.report_counts(db, since),
        }

    @staticmethod
    def student_dashboard(db: Session, student_id: int) -> Dict[str, Any]:
        counts = StatsService.device_counts(db, owner_id=student_id)
        active_reports = (
            db.query(func.count(DeviceReport.id))
            .filter(DeviceReport.user_id == student_id, DeviceReport.status == ReportStatus.ACTIVE)
            .scalar() or 0
        )
        return {
            "totalDevices": counts["total"],
            "pendingDevices": counts[DeviceStatus.PENDING.value],
            "verifiedDevices": counts[DeviceStatus.VERIFIED.value],
            "reportedDevices": counts[DeviceStatus.REPORTED.value],
            "activeReportCount": active_reports,
        }

    @staticmethod
    def student_directory(
        db: Session,
        search: Optional[str] = None,
        status_filter: Optional[ProfileStatus] = None,
    ) -> List[Dict[str, Any]]:
        """Students with their device counts, for the staff directory."""
        device_count = func.count(Device.id)
        query = (
            db.query(Profile, device_count)
            .outerjoin(Device, Device.user_id == Profile.id)
            .filter(Profile.role == UserRole.STUDENT)
        )
        if status_filter is not None:
            query = query.filter(Profile.status == status_filter)
        if search and search.strip():
            term = f"%{search.strip().lower()}%"
            query = query.filter(or_(
                func.lower(Profile.full_name).like(term),
                func.lower(Profile.email).like(term),
                func.lower(func.coalesce(Profile.matric_number, "")).like(term),
            ))
        rows = query.group_by(Profile.id).order_by(Profile.full_name.asc()).all()
        return [
            {
                "id": profile.id,
                "fullName": profile.full_name,
                "email": profile.email,
                "matricNumber": profile.matric_number,
                "department": profile.department,
                "studyLevel": profile.study_level,
                "status": profile.status.value,
                "deviceCount": int(count),
                "createdAt": profile.created_at.isoformat(),
            }
            for profile, count in rows
        ]

    @staticmethod
    def _created_dates(db: Session, since: Optional[datetime]) -> List[datetime]:
        query = db.query(Device.created_at)
        if since is not None:
            query = query.filter(Device.created_at >= since)
        return [row[0] for row in query.all() if row[0] is not None]
