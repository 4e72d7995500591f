"""
Loss/theft report APIs: filing, listing and resolution.
"""
from typing import Optional

from fastapi import APIRouter, Depends, status, Query
from pydantic import BaseModel

from auth.dependencies import get_current_principal, get_coordinator, require_role
from core.errors import raise_for_result
from core.serializers import serialize_device, serialize_report
from database.models import UserRole
from services.identity_service import Principal
from services.lifecycle import LifecycleCoordinator


router = APIRouter(prefix="/api/reports", tags=["reports"])


class ReportCreate(BaseModel):
    """Report a registered device lost or stolen."""
    deviceId: int
    incidentType: Optional[str] = None
    incidentDate: Optional[str] = None  # ISO 8601
    location: Optional[str] = None
    description: Optional[str] = None
    policeReport: Optional[str] = None

    def to_attrs(self) -> dict:
        return {
            "incident_type": self.incidentType,
            "incident_date": self.incidentDate,
            "location": self.location,
            "description": self.description,
            "police_report": self.policeReport,
        }


class ResolveRequest(BaseModel):
    resolutionType: Optional[str] = None  # found or recovered
    notes: Optional[str] = None


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_report(
    payload: ReportCreate,
    principal: Principal = Depends(get_current_principal),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    """
    File a report for one of the caller's devices.
    The device moves to ``reported`` in the same transaction.
    """
    result = coordinator.report(principal, payload.deviceId, payload.to_attrs())
    report = raise_for_result(result)
    return {
        "report": serialize_report(report),
        "device": serialize_device(report.device),
        "flags": result.flags,
    }


@router.get("/mine", response_model=dict)
async def list_my_reports(
    principal: Principal = Depends(get_current_principal),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    reports = raise_for_result(coordinator.list_my_reports(principal))
    return {
        "reports": [serialize_report(r, include_device=True) for r in reports],
        "total": len(reports),
    }


@router.get("/active", response_model=dict)
async def list_active_reports(
    principal: Principal = Depends(require_role(UserRole.STAFF)),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    """Active reports with device and owner. Staff only."""
    reports = raise_for_result(coordinator.list_active_reports(principal))
    return {
        "reports": [serialize_report(r, include_device=True, include_owner=True) for r in reports],
        "total": len(reports),
    }


@router.get("", response_model=dict)
async def list_reports(
    status_filter: Optional[str] = Query(None, alias="status", description="active, resolved or all"),
    incident_type: Optional[str] = Query(None, alias="type", description="lost, stolen or all"),
    search: Optional[str] = Query(None),
    principal: Principal = Depends(require_role(UserRole.STAFF)),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    """All reports, filterable. Staff only."""
    reports = raise_for_result(coordinator.list_reports(principal, status_filter, incident_type, search))
    return {
        "reports": [serialize_report(r, include_device=True, include_owner=True) for r in reports],
        "total": len(reports),
    }


@router.post("/{report_id}/resolve", response_model=dict)
async def resolve_report(
    report_id: int,
    payload: ResolveRequest,
    principal: Principal = Depends(get_current_principal),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    """Close an active report as found or recovered. Staff only."""
    result = coordinator.resolve(principal, report_id, payload.resolutionType, payload.notes)
    report = raise_for_result(result)
    return {
        "report": serialize_report(report),
        "device": serialize_device(report.device),
        "flags": result.flags,
    }
