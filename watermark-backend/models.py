"""
Domain models for audio assets, ledger records and engine results.

Centralized dataclass definitions shared by the stores, the engine client
and the orchestrators. Rows coming back from asyncpg and payloads coming back
from the engine are normalized here so the rest of the code sees typed values.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class ProcessingState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DETECTION_FAILED = "detection_failed"


# States that stamp processed_at on entry
PROCESSED_STATES = frozenset({ProcessingState.COMPLETED, ProcessingState.FAILED})

ALLOWED_TRANSITIONS: Dict[ProcessingState, frozenset] = {
    ProcessingState.PENDING: frozenset({
        ProcessingState.PROCESSING,
        ProcessingState.COMPLETED,
        ProcessingState.FAILED,
    }),
    ProcessingState.PROCESSING: frozenset({
        ProcessingState.COMPLETED,
        ProcessingState.FAILED,
    }),
    # Only the detection path may touch a finished asset
    ProcessingState.COMPLETED: frozenset({ProcessingState.DETECTION_FAILED}),
    ProcessingState.FAILED: frozenset(),
    ProcessingState.DETECTION_FAILED: frozenset(),
}


def can_transition(current: ProcessingState, target: ProcessingState) -> bool:
    """Check whether the state machine allows current -> target."""
    return target in ALLOWED_TRANSITIONS.get(ProcessingState(current), frozenset())


class AudioFormat(str, Enum):
    MP3 = "mp3"
    WAV = "wav"
    FLAC = "flac"
    MP4 = "mp4"
    M4A = "m4a"


ALLOWED_FORMATS = [f.value for f in AudioFormat]

MAX_FILE_SIZE_BYTES = 1073741824  # 1GB


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class MessageSource(str, Enum):
    OWNER_DEFAULT = "owner_default"
    USER_PROVIDED = "user_provided"


def coerce_int(value: Any) -> Optional[int]:
    """Convert value to int, None when not convertible."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, (float, str)):
        try:
            return int(float(value))
        except (ValueError, TypeError):
            return None
    return None


def coerce_float(value: Any) -> Optional[float]:
    """Convert value to float, None when not convertible."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except (ValueError, TypeError):
            return None
    return None


@dataclass
class UserRecord:
    id: str
    name: Optional[str]
    email: Optional[str] = None
    role: Role = Role.USER
    used_storage: int = 0

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "UserRecord":
        return cls(
            id=str(row["id"]),
            name=row.get("name"),
            email=row.get("email"),
            role=Role(row.get("role") or Role.USER.value),
            used_storage=int(row.get("used_storage") or 0),
        )


@dataclass
class AudioInfo:
    """Signal metadata reported by the engine after embedding."""

    original_sample_rate: Optional[int] = None
    processed_sample_rate: Optional[int] = None
    watermark_confidence: Optional[float] = None
    channels: Optional[int] = None
    samples: Optional[int] = None
    duration_seconds: Optional[float] = None

    @classmethod
    def from_payload(cls, data: Optional[Mapping[str, Any]]) -> Optional["AudioInfo"]:
        if not isinstance(data, Mapping):
            return None
        confidence = coerce_float(data.get("watermark_confidence"))
        if confidence is not None:
            confidence = min(max(confidence, 0.0), 1.0)
        return cls(
            original_sample_rate=coerce_int(data.get("original_sample_rate")),
            processed_sample_rate=coerce_int(data.get("processed_sample_rate")),
            watermark_confidence=confidence,
            channels=coerce_int(data.get("channels")),
            samples=coerce_int(data.get("samples")),
            duration_seconds=coerce_float(data.get("duration_seconds")),
        )


@dataclass
class DetectionResult:
    detected: bool
    decoded_identifier: Optional[str]
    confidence: float

    def is_conclusive(self, threshold: float = 0.5) -> bool:
        """Conclusive means detected AND confidence at or above the cutoff."""
        return self.detected and self.confidence >= threshold


@dataclass
class EmbedResult:
    audio_bytes: bytes
    decoded_identifier: Optional[str]
    audio_info: Optional[AudioInfo] = None


@dataclass
class WatermarkRecord:
    identifier: str
    encoded_message: str
    owner_id: str
    audio_asset_id: Optional[str] = None
    message_source: MessageSource = MessageSource.USER_PROVIDED
    approved: bool = True
    approved_at: Optional[datetime] = None
    detection_count: int = 0
    last_detected_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    owner_name: Optional[str] = None

    @property
    def owner_display_name(self) -> str:
        return self.owner_name or "Unknown User"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "WatermarkRecord":
        return cls(
            identifier=row["identifier"],
            encoded_message=row["encoded_message"],
            owner_id=str(row["owner_id"]),
            audio_asset_id=str(row["audio_asset_id"]) if row.get("audio_asset_id") else None,
            message_source=MessageSource(row.get("message_source") or MessageSource.USER_PROVIDED.value),
            approved=bool(row.get("approved", True)),
            approved_at=row.get("approved_at"),
            detection_count=int(row.get("detection_count") or 0),
            last_detected_at=row.get("last_detected_at"),
            created_at=row.get("created_at"),
            owner_name=row.get("owner_name"),
        )


@dataclass
class AudioAsset:
    id: str
    file_name: str
    location: str
    size_bytes: int
    format: AudioFormat
    owner_id: str
    processing_state: ProcessingState = ProcessingState.PENDING
    watermark_identifier: Optional[str] = None
    is_watermarked: bool = False
    confidence: Optional[float] = None
    error_message: Optional[str] = None
    detected_message: Optional[str] = None
    detection_timestamp: Optional[datetime] = None
    detection_attempts: int = 0
    audio_info: Optional[AudioInfo] = None
    download_count: int = 0
    last_accessed_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    owner_name: Optional[str] = None
    owner_email: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AudioAsset":
        audio_info = None
        if any(row.get(k) is not None for k in ("sample_rate", "original_sample_rate", "channels", "samples", "duration_seconds")):
            audio_info = AudioInfo(
                original_sample_rate=row.get("original_sample_rate"),
                processed_sample_rate=row.get("sample_rate"),
                watermark_confidence=row.get("confidence"),
                channels=row.get("channels"),
                samples=row.get("samples"),
                duration_seconds=row.get("duration_seconds"),
            )
        confidence = row.get("confidence")
        return cls(
            id=str(row["id"]),
            file_name=row["file_name"],
            location=row["location"],
            size_bytes=int(row["size_bytes"]),
            format=AudioFormat(row["format"]),
            owner_id=str(row["owner_id"]),
            processing_state=ProcessingState(row["processing_state"]),
            watermark_identifier=row.get("watermark_identifier"),
            is_watermarked=bool(row.get("is_watermarked")),
            confidence=float(confidence) if confidence is not None else None,
            error_message=row.get("error_message"),
            detected_message=row.get("detected_message"),
            detection_timestamp=row.get("detection_timestamp"),
            detection_attempts=int(row.get("detection_attempts") or 0),
            audio_info=audio_info,
            download_count=int(row.get("download_count") or 0),
            last_accessed_at=row.get("last_accessed_at"),
            processed_at=row.get("processed_at"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            owner_name=row.get("owner_name"),
            owner_email=row.get("owner_email"),
        )


@dataclass
class AssetFinalization:
    """Field updates applied together with a terminal state transition."""

    location: Optional[str] = None
    watermark_identifier: Optional[str] = None
    is_watermarked: Optional[bool] = None
    confidence: Optional[float] = None
    error_message: Optional[str] = None
    detected_message: Optional[str] = None
    detection_timestamp: Optional[datetime] = None
    audio_info: Optional[AudioInfo] = None
