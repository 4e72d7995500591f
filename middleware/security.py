"""
Security middleware for rate limiting, CORS, request logging and security headers.
"""
import time
import uuid
from collections import defaultdict
from typing import Dict

from fastapi import Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.logger import logger


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limiting middleware."""

    def __init__(self, app, requests_per_minute: int = 60, requests_per_hour: int = 1000):
        """
        Initialize rate limiting middleware.

        Args:
            app: FastAPI application
            requests_per_minute: Max requests per minute per IP
            requests_per_hour: Max requests per hour per IP
        """
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.requests_per_hour = requests_per_hour
        self.minute_requests: Dict[str, list] = defaultdict(list)
        self.hour_requests: Dict[str, list] = defaultdict(list)
        self.cleanup_interval = 300  # Clean up old entries every 5 minutes
        self.last_cleanup = time.time()

    async def dispatch(self, request: Request, call_next):
        client_ip = request.client.host if request.client else "unknown"

        current_time = time.time()
        if current_time - self.last_cleanup > self.cleanup_interval:
            self._cleanup_old_entries(current_time)
            self.last_cleanup = current_time

        if not self._check_rate_limit(client_ip, current_time):
            logger.warning(f"Rate limit exceeded for IP: {client_ip}")
            # Exceptions raised in middleware bypass the app's exception handlers
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                headers={"Retry-After": "60"},
                content={
                    "ok": False,
                    "error": {
                        "kind": "rate_limited",
                        "message": "Rate limit exceeded. Please try again later.",
                        "status": status.HTTP_429_TOO_MANY_REQUESTS,
                    },
                },
            )

        return await call_next(request)

    def _check_rate_limit(self, client_ip: str, current_time: float) -> bool:
        """Check if request is within rate limits."""
        self.minute_requests[client_ip] = [
            t for t in self.minute_requests[client_ip]
            if current_time - t < 60
        ]
        self.hour_requests[client_ip] = [
            t for t in self.hour_requests[client_ip]
            if current_time - t < 3600
        ]

        if len(self.minute_requests[client_ip]) >= self.requests_per_minute:
            return False
        if len(self.hour_requests[client_ip]) >= self.requests_per_hour:
            return False

        self.minute_requests[client_ip].append(current_time)
        self.hour_requests[client_ip].append(current_time)
        return True

    def _cleanup_old_entries(self, current_time: float):
        for bucket, window in ((self.minute_requests, 60), (self.hour_requests, 3600)):
            for ip in list(bucket.keys()):
                bucket[ip] = [t for t in bucket[ip] if current_time - t < window]
                if not bucket[ip]:
                    del bucket[ip]


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Assign a request id and log method, path, status and duration."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = request_id
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({duration_ms:.1f}ms) [request_id={request_id}]"
        )
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


def setup_cors(app, allowed_origins: list, allowed_methods: list = None):
    """
    Setup CORS middleware.

    Args:
        app: FastAPI application
        allowed_origins: List of allowed origins
        allowed_methods: List of allowed HTTP methods
    """
    if allowed_methods is None:
        allowed_methods = ["GET", "POST", "PATCH", "OPTIONS", "HEAD"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=allowed_methods,
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )


def setup_trusted_hosts(app, allowed_hosts: list):
    """Restrict the Host header to ``allowed_hosts`` (production only)."""
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=allowed_hosts
    )
