"""
Blob Store Adapter
Uploads audio to Cloudinary and returns durable URLs.

The Cloudinary SDK is synchronous, so every call runs in a worker thread to
keep the orchestrators non-blocking.
"""

import asyncio
import base64
import logging
import time
from typing import Any, Dict, Union
from urllib.parse import urlparse

import cloudinary.exceptions
import cloudinary.uploader
import cloudinary.utils

from config import BlobStoreConfig
from errors import UploadFailed

logger = logging.getLogger(__name__)

# Cloudinary files audio under the "video" resource type
RESOURCE_TYPE = "video"

INGEST_FOLDER = "audio_files"
DETECT_FOLDER = "detect_audio_files"


def public_id_from_url(url: str, folder: str = INGEST_FOLDER) -> str:
    """Derive the Cloudinary public_id (folder/name without extension) from a secure URL."""
    filename = urlparse(url).path.rstrip("/").split("/")[-1]
    stem = filename.rsplit(".", 1)[0] if "." in filename else filename
    return f"{folder}/{stem}"


class CloudinaryBlobStore:
    """Stores raw and watermarked audio in Cloudinary."""

    def __init__(self, config: BlobStoreConfig):
        self.config = config

    def _credentials(self) -> Dict[str, Any]:
        return {
            "cloud_name": self.config.cloud_name,
            "api_key": self.config.api_key,
            "api_secret": self.config.api_secret,
            "secure": True,
        }

    def _upload_sync(self, file: str, folder: str) -> Dict[str, Any]:
        return cloudinary.uploader.upload(
            file,
            resource_type=RESOURCE_TYPE,
            folder=folder,
            quality="100",
            timeout=self.config.upload_timeout,
            **self._credentials(),
        )

    def _destroy_sync(self, public_id: str) -> Dict[str, Any]:
        return cloudinary.uploader.destroy(
            public_id,
            resource_type=RESOURCE_TYPE,
            timeout=self.config.upload_timeout,
            **self._credentials(),
        )

    async def upload(
        self,
        data: Union[bytes, str],
        folder: str = INGEST_FOLDER,
        format_hint: str = "wav",
    ) -> str:
        """
        Upload audio and return its secure URL.

        Args:
            data: Raw audio bytes, a data URI, or a remote URL to fetch from
            folder: Destination folder
            format_hint: Container format used to label inline bytes

        Raises:
            UploadFailed: configuration missing, SDK failure or no URL returned
        """
        if not self.config.configured:
            raise UploadFailed("Blob storage is not configured")
        if not data:
            raise UploadFailed("No audio data provided!")

        if isinstance(data, bytes):
            file = f"data:audio/{format_hint};base64,{base64.b64encode(data).decode('ascii')}"
        else:
            file = data

        try:
            result = await asyncio.to_thread(self._upload_sync, file, folder)
        except cloudinary.exceptions.Error as e:
            logger.error(f"Blob upload to {folder} failed: {e}")
            raise UploadFailed() from e

        secure_url = result.get("secure_url") if isinstance(result, dict) else None
        if not secure_url:
            logger.error(f"Blob upload response missing secure_url (keys={list(result or {})})")
            raise UploadFailed()

        logger.info(f"Uploaded audio to {folder} ({result.get('bytes', '?')} bytes)")
        return str(secure_url)

    async def delete(self, public_id: str) -> bool:
        """Delete a stored blob by public_id. Returns True when Cloudinary confirmed it."""
        if not self.config.configured:
            raise UploadFailed("Blob storage is not configured")

        try:
            result = await asyncio.to_thread(self._destroy_sync, public_id)
        except cloudinary.exceptions.Error as e:
            raise UploadFailed(f"Failed to delete audio blob: {e}") from e

        return isinstance(result, dict) and result.get("result") == "ok"

    def signed_download_url(self, location: str, ttl_seconds: int = 3600) -> str:
        """Append an expiring signature to a stored location."""
        expires = int(time.time()) + ttl_seconds
        signature = cloudinary.utils.api_sign_request(
            {"timestamp": expires, "resource_type": "auto"},
            self.config.api_secret or "",
        )
        separator = "&" if "?" in location else "?"
        return f"{location}{separator}timestamp={expires}&signature={signature}"
