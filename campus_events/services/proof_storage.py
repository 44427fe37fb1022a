"""
Payment proof storage for Campus Events Service.
Local-disk adapter for uploaded payment proof images.
"""

import io
import os
import uuid
import logging
from typing import Optional

from PIL import Image, UnidentifiedImageError

from campus_events.core.config import config
from campus_events.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

# Pillow format name -> stored file extension
IMAGE_EXTENSIONS = {"JPEG": "jpg", "PNG": "png"}


class PaymentProofStorage:
    """
    Validates, stores and discards payment proof images.
    """

    def __init__(self, upload_dir: Optional[str] = None):
        self.upload_dir = upload_dir
        self.upload_config = None

    async def _get_configs(self):
        if not self.upload_config:
            self.upload_config = await config.get_upload_config()
        if not self.upload_dir:
            self.upload_dir = self.upload_config["upload_dir"]

    def validate(self, image_bytes: bytes, content_type: Optional[str]) -> str:
        """
        Validate an uploaded image.

        Returns:
            File extension for the detected format

        Raises:
            ValidationError: missing, too large, wrong type or not a readable image
        """
        if not image_bytes:
            raise ValidationError("Payment proof image is required")

        max_mb = self.upload_config["max_upload_size_mb"]
        size_mb = len(image_bytes) / (1024 * 1024)
        if size_mb > max_mb:
            raise ValidationError(f"Image too large: {size_mb:.2f}MB (max {max_mb}MB)")

        if content_type and content_type not in self.upload_config["allowed_image_types"]:
            raise ValidationError("Only image files (jpeg, jpg, png) are allowed", {"content_type": content_type})

        try:
            image = Image.open(io.BytesIO(image_bytes))
            image.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            logger.error(f"Image validation error: {e}")
            raise ValidationError("Uploaded file is not a valid image")

        if image.format not in IMAGE_EXTENSIONS:
            raise ValidationError(f"Unsupported format: {image.format}")

        return IMAGE_EXTENSIONS[image.format]

    async def save(self, event_id: int, user_id: int, image_bytes: bytes, content_type: Optional[str]) -> str:
        """
        Validate and store an image.

        Returns:
            Public path of the stored image
        """
        await self._get_configs()
        extension = self.validate(image_bytes, content_type)

        os.makedirs(self.upload_dir, exist_ok=True)
        filename = f"payment-{event_id}-{user_id}-{uuid.uuid4().hex}.{extension}"
        with open(os.path.join(self.upload_dir, filename), "wb") as f:
            f.write(image_bytes)

        logger.info(f"Stored payment proof {filename}")
        return f"/{self.upload_dir.strip('/')}/{filename}"

    async def discard(self, image_path: Optional[str]) -> bool:
        """Delete a stored image. Failures are logged, never raised."""
        if not image_path:
            return False

        await self._get_configs()
        try:
            path = os.path.join(self.upload_dir, os.path.basename(image_path))
            if os.path.exists(path):
                os.remove(path)
                logger.info(f"Discarded payment proof {path}")
                return True
            return False
        except OSError as e:
            logger.error(f"Failed to discard payment proof {image_path}: {e}")
            return False


# Global storage instance
proof_storage = PaymentProofStorage()
