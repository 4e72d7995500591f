"""
Device APIs: registration, listing, verification and image upload.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Request, File, UploadFile
from sqlalchemy.orm import Session
from pydantic import BaseModel

from auth.dependencies import get_db_session, get_current_principal, get_coordinator, require_role
from core.errors import BackendUnavailable, LifecycleError, raise_for_result, to_http_exception
from core.logger import logger
from core.serializers import serialize_device
from core.validators import parse_status_filter, validate_file_size, validate_image_extension
from database.models import UserRole
from services.audit_service import AuditService
from services.identity_service import Principal
from services.lifecycle import LifecycleCoordinator
from storage.s3_paths import device_image_path
import config


router = APIRouter(prefix="/api/devices", tags=["devices"])


class DeviceCreate(BaseModel):
    """Device registration request. Missing fields are reported together by the validator."""
    name: Optional[str] = None
    serialNumber: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    type: Optional[str] = None
    additionalDetails: Optional[str] = None
    imageUrl: Optional[str] = None

    def to_attrs(self) -> dict:
        return {
            "name": self.name,
            "serial_number": self.serialNumber,
            "brand": self.brand,
            "model": self.model,
            "type": self.type,
            "additional_details": self.additionalDetails,
            "image_url": self.imageUrl,
        }


class VerifyRequest(BaseModel):
    notes: Optional[str] = None


class ImageUploadResponse(BaseModel):
    url: str


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def register_device(
    payload: DeviceCreate,
    principal: Principal = Depends(get_current_principal),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    """Register a device for the calling student. It starts pending verification."""
    result = coordinator.register(principal, payload.to_attrs())
    device = raise_for_result(result)
    return {"device": serialize_device(device), "flags": result.flags}


@router.get("/mine", response_model=dict)
async def list_my_devices(
    principal: Principal = Depends(get_current_principal),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    devices = raise_for_result(coordinator.list_my_devices(principal))
    return {"devices": [serialize_device(d) for d in devices], "total": len(devices)}


@router.get("", response_model=dict)
async def list_devices(
    status_filter: Optional[str] = Query(None, alias="status", description="pending, verified, reported or all"),
    search: Optional[str] = Query(None, description="Device name, serial number, owner name or matric number"),
    principal: Principal = Depends(require_role(UserRole.STAFF)),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    """All devices with their owners. Staff only."""
    try:
        device_status = parse_status_filter(status_filter)
    except LifecycleError as e:
        raise to_http_exception(e)
    devices = raise_for_result(coordinator.list_devices(principal, device_status, search))
    return {
        "devices": [serialize_device(d, include_owner=True) for d in devices],
        "total": len(devices),
    }


@router.post("/images", response_model=ImageUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_device_image(
    request: Request,
    file: UploadFile = File(...),
    principal: Principal = Depends(require_role(UserRole.STUDENT)),
    db: Session = Depends(get_db_session)
):
    """
    Upload a device photo and return its public URL for use as ``imageUrl``.
    Students only.
    """
    if not validate_image_extension(file.filename, config.ALLOWED_IMAGE_EXTENSIONS):
        allowed = ", ".join(sorted(config.ALLOWED_IMAGE_EXTENSIONS))
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"kind": "invalid_input", "message": f"Invalid file type. Allowed: {allowed}"}
        )

    content = await file.read()
    is_valid, error = validate_file_size(len(content), config.MAX_IMAGE_SIZE_MB * 1024 * 1024)
    if not is_valid:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"kind": "invalid_input", "message": error}
        )

    if not config.storage:
        raise to_http_exception(BackendUnavailable("Storage not initialized"))

    path = device_image_path(principal.user_id, file.filename)
    try:
        url = config.storage.upload(path, content, file.content_type)
    except Exception as e:
        logger.error(f"Device image upload failed for principal {principal.user_id}: {e}", exc_info=True)
        raise to_http_exception(BackendUnavailable("Image storage is temporarily unavailable"))

    AuditService.log_from_request(
        db=db,
        request=request,
        action="device_image_upload",
        user_id=principal.user_id,
        resource_type="device_image",
        resource_id=path
    )
    return ImageUploadResponse(url=url)


@router.post("/reconcile", response_model=dict)
async def reconcile_devices(
    principal: Principal = Depends(require_role(UserRole.STAFF)),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    """Re-derive every device status from the report ledger. Staff only."""
    repaired = raise_for_result(coordinator.reconcile(principal))
    return {"repaired": repaired, "count": len(repaired)}


@router.get("/{device_id}", response_model=dict)
async def get_device(
    device_id: int,
    principal: Principal = Depends(get_current_principal),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    """A single device. Its owner or staff."""
    device = raise_for_result(coordinator.get_device(principal, device_id))
    return serialize_device(device, include_owner=principal.is_staff)


@router.post("/{device_id}/verify", response_model=dict)
async def verify_device(
    device_id: int,
    payload: Optional[VerifyRequest] = None,
    principal: Principal = Depends(get_current_principal),
    coordinator: LifecycleCoordinator = Depends(get_coordinator)
):
    """Mark a pending device as verified. Staff only."""
    notes = payload.notes if payload else None
    result = coordinator.verify(principal, device_id, notes)
    device = raise_for_result(result)
    return {"device": serialize_device(device), "flags": result.flags}
