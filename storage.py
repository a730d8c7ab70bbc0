"""
Image storage on Cloudinary.
"""
import logging
import os
import time
from typing import Sequence

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError
from dotenv import load_dotenv

from errors import ExternalServiceError, ValidationError

load_dotenv()

logger = logging.getLogger(__name__)

cloudinary.config(
    cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
    api_key=os.getenv("CLOUDINARY_API_KEY"),
    api_secret=os.getenv("CLOUDINARY_API_SECRET"),
)

UPLOAD_FOLDER = os.getenv("CLOUDINARY_FOLDER", "ReGive_Donations")
MAX_IMAGE_BYTES = 5 * 1024 * 1024
ALLOWED_FORMATS = ("jpg", "jpeg", "png", "webp")


class CloudinaryImageStorage:
    def __init__(self, folder: str = UPLOAD_FOLDER, max_bytes: int = MAX_IMAGE_BYTES,
                 allowed_formats: Sequence[str] = ALLOWED_FORMATS):
        self.folder = folder
        self.max_bytes = max_bytes
        self.allowed_formats = tuple(allowed_formats)

    def check(self, filename: str, content_type: str, size: int):
        """Reject non-images, unsupported formats and oversized files before upload."""
        if not (content_type or "").startswith("image/"):
            raise ValidationError("Only image files are allowed!", error_code="invalid_image",
                                  details={"filename": filename})
        extension = os.path.splitext(filename or "")[1].lstrip(".").lower()
        if extension not in self.allowed_formats:
            raise ValidationError("Unsupported image format", error_code="invalid_image",
                                  details={"filename": filename, "allowed": list(self.allowed_formats)})
        if size > self.max_bytes:
            raise ValidationError("Image is too large", error_code="image_too_large",
                                  details={"filename": filename, "max_bytes": self.max_bytes})

    def store(self, data: bytes, filename: str, content_type: str) -> str:
        self.check(filename, content_type, len(data))
        stem = os.path.splitext(os.path.basename(filename))[0]
        public_id = f"{int(time.time() * 1000)}-{stem}"
        url = self._upload(data, public_id)
        logger.info("Stored image %s", url)
        return url

    def _upload(self, data: bytes, public_id: str) -> str:
        try:
            result = cloudinary.uploader.upload(
                data,
                folder=self.folder,
                public_id=public_id,
                allowed_formats=list(self.allowed_formats),
            )
        except CloudinaryError as e:
            logger.error("Cloudinary upload failed: %s", e)
            raise ExternalServiceError("Image upload failed", details={"reason": str(e)[:200]})
        return result["secure_url"]


_storage = CloudinaryImageStorage()


def get_image_storage() -> CloudinaryImageStorage:
    return _storage
