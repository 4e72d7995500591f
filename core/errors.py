"""
Error taxonomy for device lifecycle operations.

Every failure the lifecycle core can produce is a ``LifecycleError`` subclass
with a stable ``kind`` string. The coordinator converts them into a
``TransitionResult`` so nothing unstructured escapes its boundary; routers turn
a failed result into an ``HTTPException``.
"""
import uuid
from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, TypeVar

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from core.logger import logger


class LifecycleError(Exception):
    """Base class for all named lifecycle failures."""
    kind = "lifecycle_error"
    status_code = status.HTTP_400_BAD_REQUEST
    retryable = False

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.details = details

    def to_dict(self) -> dict:
        body = {"kind": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class Unauthenticated(LifecycleError):
    """No valid principal could be resolved."""
    kind = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED


class Unauthorized(LifecycleError):
    """Principal lacks the role or ownership for the transition."""
    kind = "unauthorized"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(LifecycleError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidInput(LifecycleError):
    """Attribute validation failure; the caller can correct the input."""
    kind = "invalid_input"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ConstraintViolation(LifecycleError):
    """A domain invariant would be broken by the requested write."""
    kind = "constraint_violation"
    status_code = status.HTTP_409_CONFLICT


class DuplicateActiveReport(ConstraintViolation):
    kind = "duplicate_active_report"


class AlreadyResolved(ConstraintViolation):
    kind = "already_resolved"


class StaleState(LifecycleError):
    """Stored state changed between the precondition read and the write."""
    kind = "stale_state"
    status_code = status.HTTP_409_CONFLICT
    retryable = True


class BackendUnavailable(LifecycleError):
    """Persistence, storage or identity dependency failed."""
    kind = "backend_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


T = TypeVar("T")


@dataclass
class TransitionResult(Generic[T]):
    """Outcome of a coordinator operation: a value or exactly one named error."""
    value: Optional[T] = None
    error: Optional[LifecycleError] = None
    flags: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[str]:
        return self.error.kind if self.error else None

    @classmethod
    def success(cls, value: T, flags: Optional[List[str]] = None) -> "TransitionResult[T]":
        return cls(value=value, flags=list(flags or []))

    @classmethod
    def failure(cls, error: LifecycleError) -> "TransitionResult[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value


def to_http_exception(error: LifecycleError) -> HTTPException:
    """Map a lifecycle error to the HTTP error the API returns."""
    headers = None
    if isinstance(error, Unauthenticated):
        headers = {"WWW-Authenticate": "Bearer"}
    return HTTPException(status_code=error.status_code, detail=error.to_dict(), headers=headers)


def raise_for_result(result: TransitionResult) -> Any:
    """Router helper: return the result value or raise the mapped HTTPException."""
    if not result.ok:
        raise to_http_exception(result.error)
    return result.value


# ============================================================================
# Exception handlers
# ============================================================================

def _request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None) or request.headers.get("x-request-id")
    return rid or uuid.uuid4().hex


def _payload(kind: str, message: str, status_code: int, request_id: str, details: Any = None) -> dict:
    body = {
        "ok": False,
        "error": {
            "kind": kind,
            "message": message,
            "status": status_code,
            "requestId": request_id,
        },
    }
    if details is not None:
        body["error"]["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """Register consistent JSON error bodies for HTTP, validation and lifecycle errors."""

    @app.exception_handler(HTTPException)
    async def http_exc_handler(request: Request, exc: HTTPException):
        request_id = _request_id(request)
        if isinstance(exc.detail, dict):
            kind = exc.detail.get("kind", "http_error")
            message = exc.detail.get("message", "HTTP error")
            details = exc.detail.get("details")
        else:
            kind, message, details = "http_error", str(exc.detail), None
        headers = dict(exc.headers or {})
        headers["X-Request-ID"] = request_id
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} -> {exc.status_code} [{kind}] {message}")
        else:
            logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} [{kind}] {message}")
        return JSONResponse(
            status_code=exc.status_code,
            headers=headers,
            content=_payload(kind, message, exc.status_code, request_id, details),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):
        request_id = _request_id(request)
        errors = exc.errors()
        logger.warning(f"{request.method} {request.url.path} -> 422 validation errors: {errors}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            headers={"X-Request-ID": request_id},
            content=_payload(InvalidInput.kind, "Validation failed.", 422, request_id, jsonable_errors(errors)),
        )

    @app.exception_handler(LifecycleError)
    async def lifecycle_exc_handler(request: Request, exc: LifecycleError):
        request_id = _request_id(request)
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} [{exc.kind}] {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            headers={"X-Request-ID": request_id},
            content=_payload(exc.kind, exc.message, exc.status_code, request_id, exc.details or None),
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exc_handler(request: Request, exc: SQLAlchemyError):
        request_id = _request_id(request)
        logger.error(f"{request.method} {request.url.path} -> 503 database error: {exc}", exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            headers={"X-Request-ID": request_id},
            content=_payload(
                BackendUnavailable.kind, "Database is temporarily unavailable.", 503, request_id
            ),
        )


def jsonable_errors(errors: list) -> list:
    """Strip non-serializable context (e.g. exception instances) from pydantic errors."""
    cleaned = []
    for err in errors:
        item = {k: v for k, v in err.items() if k != "ctx"}
        if "ctx" in err:
            item["ctx"] = {k: str(v) for k, v in err["ctx"].items()}
        cleaned.append(item)
    return cleaned
