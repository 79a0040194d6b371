"""
Image uploads to Cloudinary.
"""
import logging
from typing import Dict

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
from fastapi import HTTPException, UploadFile

import config

logger = logging.getLogger(__name__)

cloudinary.config(
    cloud_name=config.CLOUDINARY_CLOUD_NAME,
    api_key=config.CLOUDINARY_API_KEY,
    api_secret=config.CLOUDINARY_API_SECRET,
    secure=True,
)


def read_image(file: UploadFile) -> bytes:
    """Validate an uploaded image (image/*, <= 10 MB) and return its bytes."""
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if not (file.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image files are allowed")
    data = file.file.read(config.MAX_UPLOAD_BYTES + 1)
    if not data:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="File too large. Maximum size is 10MB")
    return data


def upload_image(file: UploadFile, folder: str) -> Dict[str, str]:
    data = read_image(file)
    if not config.CLOUDINARY_CLOUD_NAME:
        raise HTTPException(status_code=500, detail="Image uploads are not configured")
    try:
        result = cloudinary.uploader.upload(
            data,
            folder=f"bagpackstories/{folder}",
            resource_type="image",
            transformation=[{"width": 1920, "height": 1080, "crop": "limit", "quality": 85}],
        )
    except cloudinary.exceptions.Error as e:
        logger.error("Cloudinary upload failed: %s", e)
        raise HTTPException(status_code=502, detail="Image upload failed")
    return {
        "url": result.get("secure_url") or result.get("url"),
        "publicId": result.get("public_id"),
        "width": result.get("width"),
        "height": result.get("height"),
    }
