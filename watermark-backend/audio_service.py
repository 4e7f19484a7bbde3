"""
Audio asset management: listing, viewing, renaming, deleting, downloading.

Processing state is never changed here; only the orchestrators move assets
through the state machine.
"""

import logging
import math
from typing import Any, Dict, Optional

from access import AccessLevel, can_access, require_access
from asset_store import AudioAssetStore
from blob_store import INGEST_FOLDER, CloudinaryBlobStore, public_id_from_url
from download_log import DownloadLogStore
from dto import asset_dto, asset_user_dto
from errors import Conflict, InvalidInput, NotFound, WatermarkServiceError
from models import AudioAsset, ProcessingState, UserRecord

logger = logging.getLogger(__name__)

USER_VISIBLE_STATES = (ProcessingState.COMPLETED, ProcessingState.PROCESSING)


def _view(asset: AudioAsset, level: AccessLevel) -> Dict[str, Any]:
    # The carrier token is only ever shown to the asset owner
    return asset_dto(asset, include_identifier=level == AccessLevel.OWNER)


class AudioAssetService:
    def __init__(
        self,
        assets: AudioAssetStore,
        blob_store: CloudinaryBlobStore,
        download_logs: DownloadLogStore,
        download_ttl_seconds: int = 3600,
    ):
        self.assets = assets
        self.blob_store = blob_store
        self.download_logs = download_logs
        self.download_ttl_seconds = download_ttl_seconds

    async def _load(self, asset_id: str) -> AudioAsset:
        if not asset_id:
            raise InvalidInput("Audio file ID is required!")
        asset = await self.assets.get_asset(asset_id)
        if asset is None:
            raise NotFound("Audio file not found!")
        return asset

    async def list_assets(
        self,
        page: int = 1,
        limit: int = 10,
        all: bool = False,
        include_failed: bool = False,
        viewer: Optional[UserRecord] = None,
    ) -> Dict[str, Any]:
        """Admin listing, newest first. ``all`` disables pagination."""
        if page < 1 or limit < 1:
            raise InvalidInput("Page and limit must be positive integers")

        total = await self.assets.count_assets(include_failed=include_failed)
        if all:
            assets = await self.assets.list_assets(include_failed=include_failed)
            total_pages, current_page = 1, 1
        else:
            assets = await self.assets.list_assets(
                limit=limit,
                offset=(page - 1) * limit,
                include_failed=include_failed,
            )
            total_pages, current_page = math.ceil(total / limit), page

        return {
            "audioFiles": [_view(a, can_access(a, viewer)) for a in assets],
            "totalPages": total_pages,
            "currentPage": current_page,
            "totalAudioFiles": total,
        }

    async def list_user_assets(self, user_id: str) -> Dict[str, Any]:
        if not user_id:
            raise InvalidInput("User ID is required!")
        assets = await self.assets.list_by_owner(user_id, USER_VISIBLE_STATES)
        result: Dict[str, Any] = {
            "audioFiles": [asset_user_dto(a) for a in assets],
            "total": len(assets),
        }
        if not assets:
            result["message"] = "No audio files found for this user"
        return result

    async def get_asset(self, asset_id: str, user: UserRecord) -> Dict[str, Any]:
        asset = await self._load(asset_id)
        level = require_access(asset, user, "access")
        return _view(asset, level)

    async def edit_asset(self, asset_id: str, file_name: Optional[str], user: UserRecord) -> Dict[str, Any]:
        """Rename an asset. Watermark fields and processing state are not editable."""
        asset = await self._load(asset_id)
        level = require_access(asset, user, "edit")

        if file_name is None:
            raise InvalidInput("No updatable fields provided!")
        file_name = file_name.strip()
        if not file_name:
            raise InvalidInput("File name cannot be empty")
        if len(file_name) > 255:
            raise InvalidInput("File name cannot exceed 255 characters")

        if file_name != asset.file_name and await self.assets.name_taken(asset.owner_id, file_name, asset.id):
            raise Conflict("A file with this name already exists")

        updated = await self.assets.rename(asset.id, file_name)
        logger.info(f"Renamed audio asset {asset.id[:8]}...")
        return _view(updated, level)

    async def delete_asset(self, asset_id: str, user: UserRecord) -> Dict[str, Any]:
        """Delete the stored blob (best-effort) and the asset row."""
        asset = await self._load(asset_id)
        require_access(asset, user, "delete")

        try:
            await self.blob_store.delete(public_id_from_url(asset.location, INGEST_FOLDER))
        except WatermarkServiceError as e:
            logger.warning(f"Failed to delete blob for {asset.id[:8]}..., continuing: {e.message}")

        if not await self.assets.delete_asset(asset.id):
            raise NotFound("Audio file not found!")
        return {"id": asset.id, "fileName": asset.file_name}

    async def generate_download_url(
        self,
        asset_id: str,
        user: UserRecord,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        asset = await self._load(asset_id)
        require_access(asset, user, "download")

        if asset.processing_state != ProcessingState.COMPLETED:
            raise InvalidInput("Audio file is not ready for download")

        download_url = self.blob_store.signed_download_url(asset.location, self.download_ttl_seconds)

        try:
            await self.assets.record_download(asset.id)
        except Exception as e:
            logger.warning(f"Failed to update download stats for {asset.id[:8]}...: {e}")
        await self.download_logs.log_download(
            asset.id,
            user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        return {
            "downloadUrl": download_url,
            "fileName": asset.file_name,
            "fileSize": asset.size_bytes,
            "format": asset.format.value,
            "expiresIn": self.download_ttl_seconds,
        }
