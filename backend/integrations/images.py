"""Driver photo storage: Cloudinary signed uploads, or a placeholder URL."""

import hashlib
import logging
import time
from typing import Optional

from django.conf import settings

from .exceptions import ExternalServiceError
from .http import request_json, warn_degraded

logger = logging.getLogger(__name__)

PLACEHOLDER_PHOTO_URL = "https://via.placeholder.com/400x400?text=Driver+Photo"
CLOUDINARY_UPLOAD_URL = "https://api.cloudinary.com/v1_1/{cloud}/image/upload"


class ImageStore:
    def upload(self, image, folder: str, public_id: Optional[str] = None) -> str:
        """Store ``image`` (a file-like object) and return its public URL."""
        raise NotImplementedError


class CloudinaryImageStore(ImageStore):
    service = "cloudinary"

    def __init__(self, cloud_name: str, api_key: str, api_secret: str):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret

    def sign(self, params: dict) -> str:
        """Cloudinary signature: sha1 of the sorted params followed by the secret."""
        to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params))
        return hashlib.sha1((to_sign + self.api_secret).encode("utf-8")).hexdigest()

    def upload(self, image, folder: str, public_id: Optional[str] = None) -> str:
        params = {"folder": folder, "timestamp": int(time.time())}
        if public_id:
            params["public_id"] = public_id
        data = dict(params, api_key=self.api_key, signature=self.sign(params))
        name = getattr(image, "name", None) or "photo.jpg"
        result = request_json(
            self.service, "POST", CLOUDINARY_UPLOAD_URL.format(cloud=self.cloud_name),
            data=data, files={"file": (name, image)},
        )
        url = result.get("secure_url")
        if not url:
            raise ExternalServiceError("Cloudinary did not return an image URL", service=self.service)
        logger.info("uploaded image folder=%s public_id=%s", folder, result.get("public_id"))
        return url


class PlaceholderImageStore(ImageStore):
    def upload(self, image, folder: str, public_id: Optional[str] = None) -> str:
        return PLACEHOLDER_PHOTO_URL


def get_image_store() -> ImageStore:
    cloudinary = getattr(settings, "CLOUDINARY", {}) or {}
    if cloudinary.get("CLOUD_NAME") and cloudinary.get("API_KEY") and cloudinary.get("API_SECRET"):
        return CloudinaryImageStore(cloudinary["CLOUD_NAME"], cloudinary["API_KEY"], cloudinary["API_SECRET"])
    warn_degraded("image_store", "placeholder url")
    return PlaceholderImageStore()
