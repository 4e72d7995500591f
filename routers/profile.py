"""
Profile APIs (all authenticated principals).
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from pydantic import BaseModel

from auth.dependencies import get_db_session, get_current_principal
from core.errors import LifecycleError, to_http_exception
from core.serializers import serialize_profile
from services.audit_service import AuditService
from services.identity_service import IdentityService, Principal


router = APIRouter(prefix="/api/profile", tags=["profile"])

# camelCase request field -> profile column
PROFILE_FIELD_MAP = {
    "fullName": "full_name",
    "phoneNumber": "phone_number",
    "department": "department",
    "studyLevel": "study_level",
    "hallOfResidence": "hall_of_residence",
    "homeAddress": "home_address",
    "biography": "biography",
    "matricNumber": "matric_number",
    "staffId": "staff_id",
}


class ProfileUpdate(BaseModel):
    """Update profile request. Role, email and status are not editable."""
    fullName: Optional[str] = None
    phoneNumber: Optional[str] = None
    department: Optional[str] = None
    studyLevel: Optional[str] = None
    hallOfResidence: Optional[str] = None
    homeAddress: Optional[str] = None
    biography: Optional[str] = None
    matricNumber: Optional[str] = None
    staffId: Optional[str] = None


@router.get("", response_model=dict)
async def get_profile(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db_session)
):
    try:
        return serialize_profile(IdentityService.get_profile(db, principal.user_id))
    except LifecycleError as e:
        raise to_http_exception(e)


@router.patch("", response_model=dict)
async def update_profile(
    payload: ProfileUpdate,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db_session)
):
    """Update the caller's own profile; only fields present in the body change."""
    changes = {
        PROFILE_FIELD_MAP[key]: value
        for key, value in payload.model_dump(exclude_unset=True).items()
    }
    try:
        profile = IdentityService.update_profile(db, principal, changes)
    except LifecycleError as e:
        raise to_http_exception(e)

    AuditService.log_from_request(
        db=db,
        request=request,
        action="profile_update",
        user_id=principal.user_id,
        resource_type="profile",
        resource_id=str(principal.user_id),
        details={"fields": sorted(changes)}
    )
    return serialize_profile(profile)
