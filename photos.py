"""
Product photo storage backed by Cloudinary.
"""

from typing import Optional

import cloudinary
import cloudinary.uploader

from settings import (
    CLOUDINARY_API_KEY,
    CLOUDINARY_API_SECRET,
    CLOUDINARY_CLOUD_NAME,
    CLOUDINARY_FOLDER,
    get_logger,
)

logger = get_logger("photos")


class PhotoStore:
    """Uploads base64 images and deletes them by public id."""

    def __init__(self, cloud_name: str, api_key: str, api_secret: str, folder: str = CLOUDINARY_FOLDER):
        self.folder = folder
        cloudinary.config(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret, secure=True)

    def upload(self, base64_payload: str) -> dict:
        result = cloudinary.uploader.upload(base64_payload, resource_type="image", folder=self.folder)
        logger.info("Uploaded photo %s", result["public_id"])
        return {"url": result["secure_url"], "id": result["public_id"]}

    def delete(self, photo_id: str) -> None:
        cloudinary.uploader.destroy(photo_id)
        logger.info("Deleted photo %s", photo_id)


def photo_store_from_env() -> Optional[PhotoStore]:
    if not (CLOUDINARY_CLOUD_NAME and CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET):
        return None
    return PhotoStore(CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET)
