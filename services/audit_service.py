"""
Audit logging service for lifecycle transitions and account events.
"""
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session
from fastapi import Request

from database.models import AuditLog


def request_context(request: Optional[Request]) -> Dict[str, Optional[str]]:
    """Extract the client address and user agent recorded with each audit entry."""
    if request is None:
        return {"ip_address": None, "user_agent": None}
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


class AuditService:
    """Service for audit logging."""

    @staticmethod
    def log_action(
        db: Session,
        action: str,
        user_id: Optional[int] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> AuditLog:
        """
        Log an action to audit log.

        Args:
            db: Database session
            action: Action name (e.g., "device_verify", "user_login")
            user_id: Optional acting principal ID
            resource_type: Type of resource (e.g., "device", "report")
            resource_id: ID of resource
            ip_address: IP address
            user_agent: User agent string
            details: Additional details

        Returns:
            Created AuditLog
        """
        audit_log = AuditLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            ip_address=ip_address,
            user_agent=user_agent,
            details=details
        )
        db.add(audit_log)
        db.commit()
        db.refresh(audit_log)
        return audit_log

    @staticmethod
    def log_from_request(
        db: Session,
        request: Request,
        action: str,
        user_id: Optional[int] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> AuditLog:
        """Log an action from a FastAPI request."""
        return AuditService.log_action(
            db=db,
            action=action,
            user_id=user_id,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details,
            **request_context(request),
        )
