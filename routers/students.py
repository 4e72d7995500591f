"""
Student directory APIs (staff only).
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from pydantic import BaseModel

from auth.dependencies import get_db_session, require_role
from core.errors import LifecycleError, NotFound, to_http_exception
from core.logger import logger
from core.serializers import serialize_profile
from core.validators import parse_enum
from database.models import Profile, ProfileStatus, UserRole
from services.audit_service import AuditService
from services.identity_service import Principal
from services.stats_service import StatsService


router = APIRouter(prefix="/api/students", tags=["students"])


class StudentStatusUpdate(BaseModel):
    """Account status change. Recorded only; device transitions do not consult it."""
    status: str


@router.get("", response_model=dict)
async def list_students(
    search: Optional[str] = Query(None, description="Search by name, email or matric number"),
    status_filter: Optional[str] = Query(None, alias="status", description="active, suspended, graduated or all"),
    principal: Principal = Depends(require_role(UserRole.STAFF)),
    db: Session = Depends(get_db_session)
):
    """Students with their device counts."""
    try:
        profile_status = None
        if status_filter and status_filter.lower() != "all":
            profile_status = parse_enum(ProfileStatus, status_filter, "status")
    except LifecycleError as e:
        raise to_http_exception(e)

    students = StatsService.student_directory(db, search=search, status_filter=profile_status)
    return {"students": students, "total": len(students)}


@router.patch("/{student_id}/status", response_model=dict)
async def update_student_status(
    student_id: int,
    payload: StudentStatusUpdate,
    request: Request,
    principal: Principal = Depends(require_role(UserRole.STAFF)),
    db: Session = Depends(get_db_session)
):
    try:
        new_status = parse_enum(ProfileStatus, payload.status, "status")
        student = db.query(Profile).filter(
            Profile.id == student_id,
            Profile.role == UserRole.STUDENT
        ).first()
        if student is None:
            raise NotFound("Student not found", student_id=student_id)
    except LifecycleError as e:
        raise to_http_exception(e)

    previous = student.status
    student.status = new_status
    db.commit()
    db.refresh(student)

    AuditService.log_from_request(
        db=db,
        request=request,
        action="student_status_update",
        user_id=principal.user_id,
        resource_type="profile",
        resource_id=str(student_id),
        details={"from": previous.value, "to": new_status.value}
    )
    logger.info(f"Student {student_id} status {previous.value} -> {new_status.value} by {principal.user_id}")
    return serialize_profile(student)
