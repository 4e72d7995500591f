"""Identity and role resolution."""

from datetime import timedelta

import pytest

from auth.security import create_access_token, validate_password
from core.errors import ConstraintViolation, InvalidInput, Unauthenticated
from database.models import UserRole
from services.identity_service import IdentityService, is_profile_complete


def test_sign_up_creates_student_only(db):
    profile = IdentityService.sign_up(db, "  New@Campus.edu ", "Secret123!", "New Student", matric_number="MAT-9")

    assert profile.role == UserRole.STUDENT
    assert profile.email == "new@campus.edu"
    assert profile.hashed_password != "Secret123!"
    assert not is_profile_complete(profile)


def test_sign_up_rejects_duplicate_email(db, student):
    with pytest.raises(ConstraintViolation):
        IdentityService.sign_up(db, "ADA@campus.edu", "Secret123!", "Someone Else")


@pytest.mark.parametrize("password", ["short1!", "nodigits!!", "nospecial123", "x" * 70 + "1!é"])
def test_sign_up_rejects_weak_passwords(db, password):
    with pytest.raises(InvalidInput):
        IdentityService.sign_up(db, "weak@campus.edu", password, "Weak Password")


def test_validate_password_accepts_strong_password():
    assert validate_password("Secret123!") == (True, None)


def test_authenticate(db, student):
    assert IdentityService.authenticate(db, "ada@campus.edu", "wrong-pass1!") is None
    assert IdentityService.authenticate(db, "nobody@campus.edu", "Secret123!") is None

    profile = IdentityService.authenticate(db, "ADA@campus.edu", "Secret123!")
    assert profile.id == student.id
    assert profile.last_login_at is not None


def test_resolve_round_trip(db, staff):
    principal = IdentityService.resolve(db, IdentityService.issue_token(staff))

    assert principal.user_id == staff.id
    assert principal.role == UserRole.STAFF
    assert principal.is_staff and not principal.is_student
    assert principal.profile_complete


@pytest.mark.parametrize("token", [None, "", "not-a-jwt"])
def test_resolve_rejects_bad_tokens(db, token):
    with pytest.raises(Unauthenticated):
        IdentityService.resolve(db, token)


def test_resolve_rejects_expired_token(db, student):
    token = create_access_token({"sub": str(student.id)}, expires_delta=timedelta(minutes=-1))
    with pytest.raises(Unauthenticated):
        IdentityService.resolve(db, token)


def test_resolve_rejects_unknown_profile(db):
    with pytest.raises(Unauthenticated):
        IdentityService.resolve(db, create_access_token({"sub": "999"}))


def test_role_comes_from_stored_profile(db, student):
    token = create_access_token({"sub": str(student.id), "role": "staff"})
    assert IdentityService.resolve(db, token).role == UserRole.STUDENT


def test_update_profile_completes_onboarding(db):
    profile = IdentityService.sign_up(db, "fresh@campus.edu", "Secret123!", "Fresh Student")
    principal = IdentityService.resolve(db, IdentityService.issue_token(profile))
    assert not principal.profile_complete

    IdentityService.update_profile(db, principal, {
        "department": "Physics", "study_level": "100", "hall_of_residence": "Kings Hall",
    })

    assert IdentityService.resolve(db, IdentityService.issue_token(profile)).profile_complete


@pytest.mark.parametrize("changes", [{"role": "staff"}, {"email": "x@campus.edu"}, {"status": "suspended"}])
def test_update_profile_rejects_protected_fields(db, student_principal, changes):
    with pytest.raises(InvalidInput):
        IdentityService.update_profile(db, student_principal, changes)


def test_update_profile_requires_name(db, student_principal):
    with pytest.raises(InvalidInput):
        IdentityService.update_profile(db, student_principal, {"full_name": "   "})
