"""
Detection Orchestrator
Answers "does this audio carry one of our watermarks, and whose is it?"

Only the owner of a watermark sees the message that was embedded for them.
Everyone else learns that a watermark exists and who owns it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from access import require_access
from asset_store import AudioAssetStore
from blob_store import DETECT_FOLDER, CloudinaryBlobStore
from engine_client import WatermarkEngineClient
from errors import (
    EngineError,
    EngineTimeout,
    EngineUnavailable,
    InvalidInput,
    InvalidStateTransition,
    NotFound,
)
from ingestion import validate_format
from ledger import OwnershipLedger
from models import AssetFinalization, AudioAsset, ProcessingState, UserRecord
from user_store import UserStore

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_MESSAGE = "Detection failed due to low confidence!"
FOREIGN_WATERMARK_NOTICE = "This audio file contains a watermark."


@dataclass
class DetectionRequest:
    """A stored asset is associated only through ``audio_file_id``."""

    audio: Union[bytes, str]
    audio_format: str
    requester_id: Optional[str] = None
    audio_file_id: Optional[str] = None


class DetectionOrchestrator:
    def __init__(
        self,
        assets: AudioAssetStore,
        ledger: OwnershipLedger,
        users: UserStore,
        engine: WatermarkEngineClient,
        blob_store: CloudinaryBlobStore,
        detection_threshold: float = 0.5,
    ):
        self.assets = assets
        self.ledger = ledger
        self.users = users
        self.engine = engine
        self.blob_store = blob_store
        self.detection_threshold = detection_threshold

    async def detect(self, request: DetectionRequest) -> Dict[str, Any]:
        """
        Run detection for one submitted audio.

        Raises:
            InvalidInput, NotFound, PermissionDenied: before any upload
            UploadFailed: the audio could not be stored for analysis
            EngineUnavailable, EngineTimeout, EngineError: the engine could not
                answer; an associated asset is marked ``detection_failed``
        """
        if not request.audio:
            raise InvalidInput("Audio file data is required!")
        audio_format = validate_format(request.audio_format)

        requester: Optional[UserRecord] = None
        if request.requester_id:
            requester = await self.users.get_user(request.requester_id)
            if requester is None:
                raise NotFound("User not found!")

        asset: Optional[AudioAsset] = None
        if request.audio_file_id:
            asset = await self.assets.get_asset(request.audio_file_id)
            if asset is None:
                raise NotFound("Audio file not found!")
            require_access(asset, requester, "run detection on")

        audio_url = await self.blob_store.upload(request.audio, DETECT_FOLDER, audio_format.value)

        try:
            detection = await self.engine.detect(audio_url)
        except (EngineUnavailable, EngineTimeout, EngineError) as e:
            logger.error(f"Detection failed ({e.error_type}): {e.message}")
            if asset is not None:
                await self._mark_detection_failed(asset, e.message)
            raise

        if asset is not None:
            await self._count_attempt(asset, detection.confidence, detection.decoded_identifier)

        if detection.confidence < self.detection_threshold:
            return {
                "detected": False,
                "message": LOW_CONFIDENCE_MESSAGE,
                "confidence": detection.confidence,
            }

        if not detection.detected:
            return {"detected": False, "message": None, "confidence": detection.confidence}

        identifier = detection.decoded_identifier
        record = await self.ledger.get_record(identifier) if identifier else None
        if record is None:
            # Nothing registered under this identifier: hand back what the engine decoded
            return {
                "detected": True,
                "message": identifier,
                "confidence": detection.confidence,
                "isOwner": False,
                "audioUrl": audio_url,
            }

        is_owner = requester is not None and requester.id == record.owner_id
        updated = await self.ledger.record_detection(
            record.identifier,
            requester.id if requester else None,
            is_owner,
        )
        if updated is not None:
            record = updated

        owner_name = record.owner_display_name
        if is_owner:
            logger.info(f"Owner {record.owner_id[:8]}... detected their own watermark")
            return {
                "detected": True,
                "confidence": detection.confidence,
                "isOwner": True,
                "message": {
                    "content": record.encoded_message,
                    "createdAt": record.created_at.isoformat() if record.created_at else None,
                    "detectionCount": record.detection_count,
                },
                "owner": {"id": record.owner_id, "name": owner_name},
                "audioUrl": audio_url,
            }

        logger.info(
            f"Watermark of {record.owner_id[:8]}... detected by "
            f"{requester.id[:8] + '...' if requester else 'anonymous'}"
        )
        return {
            "detected": True,
            "confidence": detection.confidence,
            "isOwner": False,
            "message": {"content": FOREIGN_WATERMARK_NOTICE},
            "owner": {"name": owner_name},
            "note": f"This watermarked audio belongs to {owner_name}",
            "audioUrl": audio_url,
        }

    async def _count_attempt(self, asset: AudioAsset, confidence: float, decoded: Optional[str]) -> None:
        try:
            await self.assets.record_detection_attempt(asset.id, confidence, decoded)
        except Exception as e:
            logger.warning(f"Failed to record detection attempt on {asset.id[:8]}...: {e}")

    async def _mark_detection_failed(self, asset: AudioAsset, cause: str) -> None:
        # error_message belongs to ingestion failures; the cause is only logged
        try:
            await self.assets.transition(
                asset.id,
                ProcessingState.DETECTION_FAILED,
                AssetFinalization(detection_timestamp=datetime.now(timezone.utc)),
            )
            logger.warning(f"Marked {asset.id[:8]}... detection_failed: {cause}")
        except InvalidStateTransition:
            logger.debug(
                f"Audio asset {asset.id[:8]}... is {asset.processing_state.value}, "
                "not marking detection_failed"
            )
        except Exception as e:
            logger.error(f"Failed to mark {asset.id[:8]}... as detection_failed: {e}")
