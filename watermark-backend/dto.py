"""
Response shapes for audio assets.

Each view exposes only what its audience may see. The watermark identifier
is included only when the asset owner is the one looking.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from models import AudioAsset, ProcessingState


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def format_file_size(size_bytes: int) -> str:
    """Human readable size: 0 Bytes, 512 Bytes, 1.5 KB, 2 MB, ..."""
    if not size_bytes or size_bytes <= 0:
        return "0 Bytes"
    sizes = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(size_bytes)
    i = 0
    while value >= 1024 and i < len(sizes) - 1:
        value /= 1024
        i += 1
    # 2.0 -> "2", 1.5 -> "1.5"
    return f"{round(value, 2):g} {sizes[i]}"


def audio_info_dto(asset: AudioAsset) -> Optional[Dict[str, Any]]:
    info = asset.audio_info
    if info is None:
        return None
    return {
        "originalSampleRate": info.original_sample_rate,
        "processedSampleRate": info.processed_sample_rate,
        "watermarkConfidence": info.watermark_confidence,
        "channels": info.channels,
        "samples": info.samples,
        "durationSeconds": info.duration_seconds,
    }


def asset_dto(asset: Optional[AudioAsset], include_identifier: bool = True) -> Optional[Dict[str, Any]]:
    """Full view for the owner, or for an admin with ``include_identifier=False``."""
    if asset is None:
        return None
    dto = {
        "id": asset.id,
        "fileName": asset.file_name,
        "location": asset.location,
        "fileSize": asset.size_bytes,
        "format": asset.format.value,
        "isWatermarked": asset.is_watermarked,
        "processingState": asset.processing_state.value,
        "confidence": asset.confidence,
        "errorMessage": asset.error_message,
        "audioInfo": audio_info_dto(asset),
        "downloadCount": asset.download_count,
        "processedAt": _iso(asset.processed_at),
        "owner": {
            "id": asset.owner_id,
            "name": asset.owner_name,
            "email": asset.owner_email,
        },
        "createdAt": _iso(asset.created_at),
        "updatedAt": _iso(asset.updated_at),
    }
    if include_identifier:
        dto["watermarkIdentifier"] = asset.watermark_identifier
    return dto


def asset_user_dto(asset: Optional[AudioAsset]) -> Optional[Dict[str, Any]]:
    """List view for the owner's own files."""
    if asset is None:
        return None
    return {
        "id": asset.id,
        "fileName": asset.file_name,
        "location": asset.location,
        "fileSize": asset.size_bytes,
        "fileSizeFormatted": format_file_size(asset.size_bytes),
        "format": asset.format.value,
        "isWatermarked": asset.is_watermarked,
        "processingState": asset.processing_state.value,
        "isProcessing": asset.processing_state == ProcessingState.PROCESSING,
        "isReady": asset.processing_state == ProcessingState.COMPLETED,
        "processedAt": _iso(asset.processed_at),
        "owner": {"id": asset.owner_id, "name": asset.owner_name},
        "createdAt": _iso(asset.created_at),
    }

