"""
Identity and role resolution.

Turns a bearer token into a ``Principal`` and owns profile creation and
authentication. The stored profile is the only source of role truth.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from auth.security import (
    create_access_token, decode_access_token, get_password_hash,
    validate_password, verify_password,
)
from core.errors import ConstraintViolation, InvalidInput, NotFound, Unauthenticated
from core.logger import logger
from database.models import Profile, ProfileStatus, UserRole


STUDENT_ONBOARDING_FIELDS = ("department", "study_level", "hall_of_residence")
STAFF_ONBOARDING_FIELDS = ("department",)

# Fields a principal may change on their own profile
EDITABLE_PROFILE_FIELDS = (
    "full_name", "phone_number", "department", "study_level",
    "hall_of_residence", "home_address", "biography", "matric_number", "staff_id",
)


@dataclass(frozen=True)
class Principal:
    """Resolved caller identity, threaded explicitly into every operation."""
    user_id: int
    role: UserRole
    profile_complete: bool = True
    full_name: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.role == UserRole.STAFF

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.STUDENT


def is_profile_complete(profile: Profile) -> bool:
    """Onboarding is complete once every required field for the role is filled."""
    required = STAFF_ONBOARDING_FIELDS if profile.role == UserRole.STAFF else STUDENT_ONBOARDING_FIELDS
    return all((getattr(profile, f) or "").strip() for f in required)


def principal_from_profile(profile: Profile) -> Principal:
    return Principal(
        user_id=profile.id,
        role=profile.role,
        profile_complete=is_profile_complete(profile),
        full_name=profile.full_name,
    )


class IdentityService:
    """Service for principal resolution and account operations."""

    @staticmethod
    def resolve(db: Session, token: Optional[str]) -> Principal:
        """
        Resolve a bearer token to a Principal.

        Raises:
            Unauthenticated: missing, invalid or expired token, or unknown profile
        """
        if not token:
            raise Unauthenticated("Authentication required")

        payload = decode_access_token(token)
        if payload is None or payload.get("sub") is None:
            raise Unauthenticated("Invalid authentication credentials")

        try:
            profile_id = int(payload["sub"])
        except (TypeError, ValueError):
            raise Unauthenticated("Invalid authentication credentials")

        profile = db.query(Profile).filter(Profile.id == profile_id).first()
        if profile is None:
            raise Unauthenticated("Profile not found")

        principal = principal_from_profile(profile)
        if not principal.profile_complete:
            logger.debug(f"Principal {profile.id} resolved with incomplete profile")
        return principal

    @staticmethod
    def issue_token(profile: Profile) -> str:
        """Issue a JWT access token; the role is not embedded and is re-read on every request."""
        return create_access_token({"sub": str(profile.id)})

    @staticmethod
    def sign_up(
        db: Session,
        email: str,
        password: str,
        full_name: str,
        matric_number: Optional[str] = None,
        phone_number: Optional[str] = None,
    ) -> Profile:
        """
        Create a student profile. Public sign-up never creates staff.

        Raises:
            InvalidInput: weak password or missing name/email
            ConstraintViolation: email already registered
        """
        return IdentityService._create_profile(
            db, email=email, password=password, full_name=full_name, role=UserRole.STUDENT,
            matric_number=matric_number, phone_number=phone_number,
        )

    @staticmethod
    def create_staff(
        db: Session,
        email: str,
        password: str,
        full_name: str,
        staff_id: Optional[str] = None,
        department: Optional[str] = None,
    ) -> Profile:
        """Create a staff profile (operator scripts only)."""
        return IdentityService._create_profile(
            db, email=email, password=password, full_name=full_name, role=UserRole.STAFF,
            staff_id=staff_id, department=department,
        )

    @staticmethod
    def _create_profile(db: Session, email: str, password: str, full_name: str, role: UserRole, **extra) -> Profile:
        email = (email or "").strip().lower()
        full_name = (full_name or "").strip()
        if not email or "@" not in email:
            raise InvalidInput("A valid email is required", field="email")
        if not full_name:
            raise InvalidInput("Full name is required", field="full_name")

        is_valid, error_message = validate_password(password)
        if not is_valid:
            raise InvalidInput(error_message, field="password")

        existing = db.query(Profile).filter(func.lower(Profile.email) == email).first()
        if existing:
            raise ConstraintViolation("An account with this email already exists")

        profile = Profile(
            email=email,
            hashed_password=get_password_hash(password),
            full_name=full_name,
            role=role,
            status=ProfileStatus.ACTIVE,
            **{k: v for k, v in extra.items() if v is not None},
        )
        db.add(profile)
        db.commit()
        db.refresh(profile)
        logger.info(f"Created {role.value} profile {profile.id} ({email})")
        return profile

    @staticmethod
    def authenticate(db: Session, email: str, password: str) -> Optional[Profile]:
        """Return the profile for valid credentials, otherwise None (never reveals which part failed)."""
        email = (email or "").strip().lower()
        profile = db.query(Profile).filter(func.lower(Profile.email) == email).first()
        if profile is None or not verify_password(password or "", profile.hashed_password):
            return None
        profile.last_login_at = datetime.utcnow()
        db.commit()
        db.refresh(profile)
        return profile

    @staticmethod
    def get_profile(db: Session, profile_id: int) -> Profile:
        profile = db.query(Profile).filter(Profile.id == profile_id).first()
        if profile is None:
            raise NotFound("Profile not found")
        return profile

    @staticmethod
    def update_profile(db: Session, principal: Principal, changes: Dict[str, Any]) -> Profile:
        """
        Update the caller's own profile. Role, email and status are never writable here.
        """
        forbidden = set(changes) - set(EDITABLE_PROFILE_FIELDS)
        if forbidden:
            raise InvalidInput(
                f"Fields cannot be updated: {', '.join(sorted(forbidden))}",
                fields=sorted(forbidden),
            )
        profile = IdentityService.get_profile(db, principal.user_id)
        for key, value in changes.items():
            if isinstance(value, str):
                value = value.strip() or None
            if key == "full_name" and not value:
                raise InvalidInput("Full name is required", field="full_name")
            setattr(profile, key, value)
        db.commit()
        db.refresh(profile)
        logger.info(f"Profile {profile.id} updated: {sorted(changes)}")
        return profile
