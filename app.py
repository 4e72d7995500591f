"""
Campus Device Registry API: device registration, verification and loss/theft reports.
"""
import shutil
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

import config
from database.connection import Database
from core.errors import register_exception_handlers
from core.logger import logger
from middleware.security import (
    RateLimitMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware,
    setup_cors, setup_trusted_hosts
)
from storage.s3_client import LocalStorage, create_storage
from routers.auth import router as auth_router
from routers.profile import router as profile_router
from routers.devices import router as devices_router
from routers.reports import router as reports_router
from routers.dashboards import router as dashboards_router
from routers.students import router as students_router


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan events for FastAPI app.
    Initialize database and object storage on startup.
    """
    logger.info("=" * 60)
    logger.info(f"Starting {config.APP_NAME}...")
    logger.info("=" * 60)

    try:
        config.db = Database(
            database_url=config.DATABASE_URL,
            pool_size=config.DB_POOL_SIZE,
            max_overflow=config.DB_MAX_OVERFLOW
        )
        # Create tables if they don't exist (Alembic manages changes after that)
        config.db.create_tables()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}", exc_info=True)
        raise

    try:
        config.storage = create_storage()
    except Exception as e:
        logger.error(f"Failed to initialize S3 storage: {e}", exc_info=True)
        logger.warning("Continuing without S3 - files will be stored locally")
        config.storage = LocalStorage(config.UPLOADS_DIR, config.LOCAL_MEDIA_BASE_URL)

    logger.info(f"Server ready! Environment: {config.ENVIRONMENT}")
    logger.info("API Docs: http://localhost:8000/docs")

    yield

    logger.info("Shutting down...")
    if config.db:
        config.db.engine.dispose()
        logger.info("Database connections closed")


# Initialize FastAPI app
app = FastAPI(
    title=config.APP_NAME,
    description="Campus electronics registration: devices, staff verification and loss/theft reports",
    version=config.APP_VERSION,
    lifespan=lifespan
)

register_exception_handlers(app)

# Setup security middleware
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    RateLimitMiddleware,
    requests_per_minute=config.RATE_LIMIT_PER_MINUTE,
    requests_per_hour=config.RATE_LIMIT_PER_HOUR
)
app.add_middleware(RequestLoggingMiddleware)
setup_cors(app, config.CORS_ORIGINS)
if config.ENVIRONMENT == "production":
    setup_trusted_hosts(app, config.TRUSTED_HOSTS)

# Include routers
app.include_router(auth_router)
app.include_router(profile_router)
app.include_router(devices_router)
app.include_router(reports_router)
app.include_router(dashboards_router)
app.include_router(students_router)

if not config.USE_S3:
    app.mount(
        config.LOCAL_MEDIA_BASE_URL,
        StaticFiles(directory=str(config.UPLOADS_DIR), check_dir=False),
        name="uploads",
    )


@app.get("/")
async def root():
    """Root endpoint with API information. Public endpoint."""
    return {
        "message": config.APP_NAME,
        "version": config.APP_VERSION,
        "environment": config.ENVIRONMENT,
        "docs": "/docs",
        "s3_enabled": config.USE_S3,
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring. Public endpoint."""
    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "checks": {}
    }

    try:
        if config.db is None:
            health_status["checks"]["database"] = {"status": "error", "error": "not initialized"}
            health_status["status"] = "degraded"
        else:
            with config.db.get_session() as db:
                db.execute(text("SELECT 1"))
            health_status["checks"]["database"] = {"status": "ok"}
    except Exception as e:
        health_status["checks"]["database"] = {"status": "error", "error": str(e)}
        health_status["status"] = "degraded"

    if config.storage is None:
        health_status["checks"]["storage"] = {"status": "error", "error": "not initialized"}
        health_status["status"] = "degraded"
    else:
        health_status["checks"]["storage"] = {
            "status": "ok",
            "backend": "s3" if config.USE_S3 and not isinstance(config.storage, LocalStorage) else "local",
        }

    if not config.USE_S3:
        try:
            disk_usage = shutil.disk_usage(config.UPLOADS_DIR)
            free_gb = disk_usage.free / (1024 ** 3)
            health_status["checks"]["disk"] = {
                "free_gb": round(free_gb, 2),
                "percent_free": round((disk_usage.free / disk_usage.total) * 100, 2)
            }
            if free_gb < 1:
                health_status["status"] = "degraded"
        except OSError as e:
            health_status["checks"]["disk"] = {"error": str(e)}

    return health_status


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
