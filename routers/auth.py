"""
Authentication endpoints: student sign-up, login and the current principal.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
from pydantic import BaseModel, EmailStr

from auth.dependencies import get_db_session, get_current_principal
from core.errors import LifecycleError, to_http_exception
from core.logger import logger
from core.serializers import serialize_profile
from services.audit_service import AuditService
from services.identity_service import IdentityService, Principal
import config


router = APIRouter(prefix="/api/auth", tags=["authentication"])


# Request Models
class StudentSignUp(BaseModel):
    """Student sign-up request. Staff accounts are created by an operator."""
    fullName: str
    email: EmailStr
    password: str
    matricNumber: Optional[str] = None
    phoneNumber: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """Token response."""
    accessToken: str
    tokenType: str = "bearer"
    expiresIn: int
    user: dict


def _token_response(profile) -> TokenResponse:
    return TokenResponse(
        accessToken=IdentityService.issue_token(profile),
        expiresIn=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=serialize_profile(profile),
    )


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    payload: StudentSignUp,
    request: Request,
    db: Session = Depends(get_db_session)
):
    """Create a student account and sign it in."""
    try:
        profile = IdentityService.sign_up(
            db,
            email=payload.email,
            password=payload.password,
            full_name=payload.fullName,
            matric_number=payload.matricNumber,
            phone_number=payload.phoneNumber,
        )
    except LifecycleError as e:
        logger.warning(f"Sign-up rejected for {payload.email}: [{e.kind}] {e.message}")
        raise to_http_exception(e)

    AuditService.log_from_request(
        db=db,
        request=request,
        action="student_signup",
        user_id=profile.id,
        resource_type="profile",
        resource_id=str(profile.id)
    )
    return _token_response(profile)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: LoginRequest,
    request: Request,
    db: Session = Depends(get_db_session)
):
    """Email and password login for students and staff."""
    profile = IdentityService.authenticate(db, credentials.email, credentials.password)

    if not profile:
        AuditService.log_from_request(
            db=db,
            request=request,
            action="login_failed",
            resource_type="profile",
            details={"email": credentials.email}
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"kind": "unauthenticated", "message": "Invalid email or password"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    AuditService.log_from_request(
        db=db,
        request=request,
        action="login",
        user_id=profile.id,
        resource_type="profile",
        resource_id=str(profile.id)
    )
    logger.info(f"Profile {profile.id} logged in ({profile.role.value})")
    return _token_response(profile)


@router.get("/me", response_model=dict)
async def get_me(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db_session)
):
    """Current principal with its stored profile."""
    try:
        profile = IdentityService.get_profile(db, principal.user_id)
    except LifecycleError as e:
        raise to_http_exception(e)
    return serialize_profile(profile)
