"""
Authentication dependencies for FastAPI.
"""
from typing import Optional

from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth.security import bearer_scheme
from core.errors import BackendUnavailable, LifecycleError, Unauthorized, to_http_exception
from core.logger import logger
from services.audit_service import request_context
from services.identity_service import IdentityService, Principal
from services.lifecycle import LifecycleCoordinator
import config


def get_db_session():
    """Get database session."""
    if not config.db:
        raise to_http_exception(BackendUnavailable("Database not initialized"))
    with config.db.get_session() as session:
        yield session


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_db_session)
) -> Principal:
    """
    Resolve the bearer token into a Principal.

    Raises:
        HTTPException: 401 if the token is missing, invalid or names no profile
        HTTPException: 503 if the profile lookup fails
    """
    token = credentials.credentials if credentials else None
    try:
        return IdentityService.resolve(db, token)
    except LifecycleError as e:
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        logger.error(f"Principal lookup failed: {e}", exc_info=True)
        raise to_http_exception(BackendUnavailable("Identity lookup is temporarily unavailable"))


def require_role(*roles):
    """
    Dependency factory for role-based access control.

    Args:
        roles: Allowed ``UserRole`` values
    """
    async def role_checker(
        principal: Principal = Depends(get_current_principal)
    ) -> Principal:
        if principal.role not in roles:
            allowed = ", ".join(r.value for r in roles)
            raise to_http_exception(Unauthorized(f"Access denied. Required roles: {allowed}"))
        return principal

    return role_checker


def get_coordinator(
    request: Request,
    db: Session = Depends(get_db_session)
) -> LifecycleCoordinator:
    """Per-request lifecycle coordinator bound to the request's session."""
    return LifecycleCoordinator(db, audit_context=request_context(request))
