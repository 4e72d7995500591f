"""
Object key generation for stored files.
"""
import uuid
from datetime import datetime

import config
from core.validators import sanitize_filename


def device_image_path(user_id: int, filename: str, now: datetime = None) -> str:
    """device-images/user_id=42/2024/05/3f2a...-laptop.jpg"""
    now = now or datetime.utcnow()
    safe_name = sanitize_filename(filename)
    return (
        f"{config.S3_DEVICE_IMAGES_PREFIX}/user_id={user_id}/"
        f"{now:%Y}/{now:%m}/{uuid.uuid4().hex}-{safe_name}"
    )
