"""
Ingestion Orchestrator
Turns uploaded audio into a finalized AudioAsset, watermarking it when asked.

Flow:
1. Validate input and upload the original to the blob store
2. Create the asset in ``pending`` and move it to ``processing``
3. Pre-check the audio for an existing watermark (fail-open)
4. Reuse the owner's own watermark, reject someone else's, or
5. Mint a carrier token, embed it, upload the result and register it in the ledger

Whatever goes wrong after step 2, the asset is finalized as ``failed`` with
the cause recorded before the error reaches the caller.
"""

import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from asset_store import AudioAssetStore
from blob_store import INGEST_FOLDER, CloudinaryBlobStore, public_id_from_url
from db import Database
from engine_client import WatermarkEngineClient
from errors import (
    AlreadyWatermarked,
    DuplicateCarrierToken,
    EngineError,
    EngineRejected,
    EngineTimeout,
    EngineUnavailable,
    ForeignWatermarkConflict,
    InvalidInput,
    InvalidStateTransition,
    NotFound,
    UnregisteredWatermarkConflict,
    WatermarkingFailed,
    WatermarkServiceError,
)
from ledger import OwnershipLedger
from models import (
    ALLOWED_FORMATS,
    MAX_FILE_SIZE_BYTES,
    AssetFinalization,
    AudioAsset,
    AudioFormat,
    DetectionResult,
    MessageSource,
    ProcessingState,
    UserRecord,
    WatermarkRecord,
)
from user_store import UserStore

logger = logging.getLogger(__name__)

CARRIER_BITS = 16


def mint_carrier_token(bits: int = CARRIER_BITS) -> str:
    """Fresh fixed-width random identifier, encoded as a bit-string."""
    return format(secrets.randbits(bits), f"0{bits}b")


def validate_format(audio_format: Optional[str]) -> AudioFormat:
    if not audio_format:
        raise InvalidInput("File format is required!")
    try:
        return AudioFormat(audio_format.strip().lower())
    except ValueError:
        raise InvalidInput(
            f"Unsupported format. Allowed formats: {', '.join(ALLOWED_FORMATS)}"
        )


def default_owner_message(user: UserRecord) -> str:
    return f"Owner: {user.name or 'Unknown'} ({user.id})"


@dataclass
class WatermarkPlan:
    should_watermark: bool
    message: Optional[str]
    source: Optional[MessageSource]


def plan_watermark(message: Optional[str], user: UserRecord, min_length: int = 2) -> WatermarkPlan:
    """
    Decide what, if anything, gets embedded.

    Empty or omitted -> owner attribution message.
    Shorter than ``min_length`` -> no watermark.
    Anything else -> the caller's text as-is.
    """
    if message is None or message.strip() == "":
        return WatermarkPlan(True, default_owner_message(user), MessageSource.OWNER_DEFAULT)
    if len(message) < min_length:
        return WatermarkPlan(False, None, None)
    return WatermarkPlan(True, message, MessageSource.USER_PROVIDED)


@dataclass
class IngestionRequest:
    file_name: str
    audio: Union[bytes, str]
    audio_format: str
    size_bytes: int
    owner_id: str
    watermark_message: Optional[str] = None


class IngestionOrchestrator:
    """Stateful upload -> pre-check -> embed -> register workflow."""

    def __init__(
        self,
        db: Database,
        assets: AudioAssetStore,
        ledger: OwnershipLedger,
        users: UserStore,
        engine: WatermarkEngineClient,
        blob_store: CloudinaryBlobStore,
        min_message_length: int = 2,
        max_message_length: int = 500,
        detection_threshold: float = 0.5,
        mint_attempts: int = 5,
    ):
        self.db = db
        self.assets = assets
        self.ledger = ledger
        self.users = users
        self.engine = engine
        self.blob_store = blob_store
        self.min_message_length = min_message_length
        self.max_message_length = max_message_length
        self.detection_threshold = detection_threshold
        self.mint_attempts = mint_attempts

    def _validate(self, request: IngestionRequest) -> AudioFormat:
        if request.watermark_message and len(request.watermark_message) > self.max_message_length:
            raise InvalidInput(
                f"Watermark message cannot exceed {self.max_message_length} characters"
            )
        if not request.file_name or not request.file_name.strip():
            raise InvalidInput("File name is required!")
        if len(request.file_name) > 255:
            raise InvalidInput("File name cannot exceed 255 characters")
        if not isinstance(request.size_bytes, int) or isinstance(request.size_bytes, bool):
            raise InvalidInput("Valid file size is required!")
        if request.size_bytes <= 0:
            raise InvalidInput("File size is required!")
        if request.size_bytes > MAX_FILE_SIZE_BYTES:
            raise InvalidInput("File size cannot exceed 1GB")
        if not request.owner_id:
            raise InvalidInput("User ID is required!")
        if not request.audio:
            raise InvalidInput("Audio file data is required!")
        return validate_format(request.audio_format)

    async def ingest(self, request: IngestionRequest) -> AudioAsset:
        """
        Run the whole ingestion for one upload.

        Raises:
            InvalidInput, NotFound: before anything is stored
            UploadFailed: original upload failed, no asset was created
            ForeignWatermarkConflict, UnregisteredWatermarkConflict,
            AlreadyWatermarked, WatermarkingFailed, UploadFailed: asset is ``failed``
        """
        audio_format = self._validate(request)

        user = await self.users.get_user(request.owner_id)
        if user is None:
            raise NotFound("User not found!")

        original_url = await self.blob_store.upload(request.audio, INGEST_FOLDER, audio_format.value)

        asset = await self.assets.create_asset(
            file_name=request.file_name.strip(),
            location=original_url,
            size_bytes=request.size_bytes,
            audio_format=audio_format,
            owner_id=user.id,
        )
        plan = plan_watermark(request.watermark_message, user, self.min_message_length)

        try:
            return await self._process(asset, user, plan, request.size_bytes)
        except WatermarkServiceError as e:
            await self._fail(asset.id, e.message)
            raise
        except asyncio.CancelledError:
            await asyncio.shield(self._fail(asset.id, "Request cancelled before processing finished"))
            raise
        except Exception as e:
            logger.error(f"[{asset.id[:8]}] Ingestion failed unexpectedly: {e}", exc_info=True)
            await self._fail(asset.id, "Internal error during watermarking")
            raise WatermarkingFailed("internal error") from e

    async def _process(
        self,
        asset: AudioAsset,
        user: UserRecord,
        plan: WatermarkPlan,
        size_bytes: int,
    ) -> AudioAsset:
        asset = await self.assets.transition(asset.id, ProcessingState.PROCESSING)

        existing = await self._precheck(asset)
        if existing is not None and existing.is_conclusive(self.detection_threshold):
            return await self._reconcile_existing(asset, user, existing)

        if not plan.should_watermark:
            logger.info(f"[{asset.id[:8]}] Message too short, skipping watermarking")
            return await self.assets.transition(
                asset.id,
                ProcessingState.COMPLETED,
                AssetFinalization(is_watermarked=False),
            )

        return await self._embed_and_register(asset, user, plan, size_bytes)

    async def _precheck(self, asset: AudioAsset) -> Optional[DetectionResult]:
        """Detect an existing watermark. Engine failures are logged and ignored."""
        try:
            return await self.engine.detect(asset.location)
        except (EngineUnavailable, EngineTimeout, EngineError) as e:
            logger.warning(
                f"[{asset.id[:8]}] Pre-check detection failed ({e.error_type}), "
                f"proceeding with watermarking anyway: {e.message}"
            )
            return None

    async def _reconcile_existing(
        self,
        asset: AudioAsset,
        user: UserRecord,
        detection: DetectionResult,
    ) -> AudioAsset:
        identifier = detection.decoded_identifier
        record = await self.ledger.get_record(identifier) if identifier else None

        if record is None:
            logger.warning(f"[{asset.id[:8]}] Audio carries an unregistered watermark")
            raise UnregisteredWatermarkConflict()

        if record.owner_id != user.id:
            logger.warning(f"[{asset.id[:8]}] Audio carries a watermark owned by another user")
            raise ForeignWatermarkConflict(record.owner_display_name)

        logger.info(f"[{asset.id[:8]}] Audio already carries the owner's watermark, reusing it")
        return await self.assets.transition(
            asset.id,
            ProcessingState.COMPLETED,
            AssetFinalization(
                watermark_identifier=record.identifier,
                is_watermarked=True,
                confidence=detection.confidence,
                detected_message=record.identifier,
                detection_timestamp=datetime.now(timezone.utc),
            ),
        )

    async def _embed_and_register(
        self,
        asset: AudioAsset,
        user: UserRecord,
        plan: WatermarkPlan,
        size_bytes: int,
    ) -> AudioAsset:
        for attempt in range(1, self.mint_attempts + 1):
            carrier_token = mint_carrier_token()
            if await self.ledger.exists(carrier_token):
                logger.debug(f"[{asset.id[:8]}] Minted identifier already taken, re-minting")
                continue

            try:
                embedded = await self.engine.embed(asset.location, carrier_token)
            except EngineRejected as e:
                logger.warning(f"[{asset.id[:8]}] Engine refused to embed: {e.message}")
                raise AlreadyWatermarked(
                    "Audio file already contains watermark - use unwatermarked audio"
                ) from e
            except (EngineUnavailable, EngineTimeout, EngineError) as e:
                logger.error(f"[{asset.id[:8]}] Embedding failed: {e.message}")
                raise WatermarkingFailed(e.message) from e

            watermarked_url = await self.blob_store.upload(
                embedded.audio_bytes, INGEST_FOLDER, asset.format.value
            )

            info = embedded.audio_info
            record = WatermarkRecord(
                identifier=carrier_token,
                encoded_message=plan.message,
                owner_id=user.id,
                audio_asset_id=asset.id,
                message_source=plan.source,
            )
            finalization = AssetFinalization(
                location=watermarked_url,
                watermark_identifier=carrier_token,
                is_watermarked=True,
                confidence=info.watermark_confidence if info else None,
                detected_message=embedded.decoded_identifier,
                detection_timestamp=datetime.now(timezone.utc),
                audio_info=info,
            )

            try:
                async with self.db.transaction() as conn:
                    await self.ledger.create_record(record, conn=conn)
                    finalized = await self.assets.transition(
                        asset.id, ProcessingState.COMPLETED, finalization, conn=conn
                    )
                    await self.users.add_used_storage(user.id, size_bytes, conn=conn)
            except DuplicateCarrierToken:
                logger.warning(
                    f"[{asset.id[:8]}] Identifier collision on attempt {attempt}, re-minting"
                )
                await self._discard_blob(watermarked_url)
                continue

            logger.info(
                f"[{asset.id[:8]}] Watermarked ({plan.source.value}), "
                f"engine decoded match={embedded.decoded_identifier == carrier_token}"
            )
            return finalized

        raise WatermarkingFailed("could not mint a unique watermark identifier")

    async def _discard_blob(self, url: str) -> None:
        try:
            await self.blob_store.delete(public_id_from_url(url, INGEST_FOLDER))
        except WatermarkServiceError as e:
            logger.warning(f"Failed to delete orphaned watermarked upload: {e.message}")

    async def _fail(self, asset_id: str, message: str) -> None:
        """Finalize as failed; a no-op when the asset already reached a terminal state."""
        try:
            await self.assets.transition(
                asset_id,
                ProcessingState.FAILED,
                AssetFinalization(error_message=message),
            )
        except InvalidStateTransition:
            logger.debug(f"[{asset_id[:8]}] Already finalized, not marking failed")
        except Exception as e:
            logger.error(f"Failed to mark audio asset {asset_id[:8]}... as failed: {e}", exc_info=True)
