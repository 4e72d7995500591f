"""
Dashboard APIs for students and staff.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from auth.dependencies import get_db_session, get_coordinator, require_role
from core.errors import LifecycleError, raise_for_result, to_http_exception
from core.serializers import serialize_device, serialize_report
from database.models import ReportStatus, UserRole
from services.identity_service import Principal
from services.lifecycle import LifecycleCoordinator
from services.report_service import ReportService
from services.stats_service import StatsService


router = APIRouter(prefix="/api/dashboard", tags=["dashboards"])


@router.get("/student")
async def student_dashboard(
    principal: Principal = Depends(require_role(UserRole.STUDENT)),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    db: Session = Depends(get_db_session)
):
    """
    Student dashboard: own device counts, recent devices and active reports.
    Student only.
    """
    # Repairs drifted statuses before they are counted
    devices = raise_for_result(coordinator.list_my_devices(principal))
    stats = StatsService.student_dashboard(db, principal.user_id)
    reports = ReportService.list_by_owner(db, principal.user_id)
    return {
        **stats,
        "profileComplete": principal.profile_complete,
        "recentDevices": [serialize_device(d) for d in devices[:5]],
        "activeReports": [
            serialize_report(r, include_device=True) for r in reports if r.status == ReportStatus.ACTIVE
        ],
    }


@router.get("/staff")
async def staff_dashboard(
    time_range: Optional[str] = Query("all", alias="range", description="week, month, year or all"),
    principal: Principal = Depends(require_role(UserRole.STAFF)),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    db: Session = Depends(get_db_session)
):
    """
    Staff overview: device counts, verification rate, report counts and recent activity.
    Staff only.
    """
    raise_for_result(coordinator.reconcile(principal))
    try:
        return StatsService.staff_overview(db, time_range)
    except LifecycleError as e:
        raise to_http_exception(e)


@router.get("/analytics")
async def analytics(
    time_range: Optional[str] = Query("all", alias="range", description="week, month, year or all"),
    principal: Principal = Depends(require_role(UserRole.STAFF)),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    db: Session = Depends(get_db_session)
):
    """Registration trends and distributions for charts. Staff only."""
    raise_for_result(coordinator.reconcile(principal))
    try:
        return StatsService.analytics(db, time_range)
    except LifecycleError as e:
        raise to_http_exception(e)
