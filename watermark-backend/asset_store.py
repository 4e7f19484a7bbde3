"""
PostgreSQL store for audio asset records.

Owns the processing-state machine: every state change goes through
``transition`` which only moves an asset along an allowed edge and stamps
``processed_at`` once, on the first entry into completed/failed.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import asyncpg

from db import Database, is_valid_id, new_id
from errors import InvalidStateTransition, NotFound
from models import (
    ALLOWED_TRANSITIONS,
    PROCESSED_STATES,
    AssetFinalization,
    AudioAsset,
    AudioFormat,
    ProcessingState,
)

logger = logging.getLogger(__name__)

_OWNER_JOIN = """
    SELECT a.*, u.name AS owner_name, u.email AS owner_email
    FROM {source} a
    LEFT JOIN users u ON u.id = a.owner_id
"""

SELECT_ASSETS = _OWNER_JOIN.format(source="audio_assets")


def _sources_for(target: ProcessingState) -> List[str]:
    """States from which ``target`` may be entered."""
    return [
        state.value
        for state, targets in ALLOWED_TRANSITIONS.items()
        if target in targets
    ]


def _finalization_columns(finalization: AssetFinalization) -> Dict[str, Any]:
    columns: Dict[str, Any] = {}
    if finalization.location is not None:
        columns["location"] = finalization.location
    if finalization.watermark_identifier is not None:
        columns["watermark_identifier"] = finalization.watermark_identifier
    if finalization.is_watermarked is not None:
        columns["is_watermarked"] = finalization.is_watermarked
    if finalization.confidence is not None:
        columns["confidence"] = finalization.confidence
    if finalization.error_message is not None:
        columns["error_message"] = finalization.error_message
    if finalization.detected_message is not None:
        columns["detected_message"] = finalization.detected_message[:1000]
    if finalization.detection_timestamp is not None:
        columns["detection_timestamp"] = finalization.detection_timestamp
    info = finalization.audio_info
    if info is not None:
        for column, value in (
            ("sample_rate", info.processed_sample_rate),
            ("original_sample_rate", info.original_sample_rate),
            ("channels", info.channels),
            ("samples", info.samples),
            ("duration_seconds", info.duration_seconds),
        ):
            if value is not None:
                columns[column] = value
    return columns


class AudioAssetStore:
    """Durable AudioAsset records."""

    def __init__(self, db: Database):
        self.db = db

    async def create_asset(
        self,
        file_name: str,
        location: str,
        size_bytes: int,
        audio_format: AudioFormat,
        owner_id: str,
    ) -> AudioAsset:
        """Insert a new asset in ``pending``."""
        asset_id = new_id()
        now = datetime.now(timezone.utc)
        query = (
            "WITH inserted AS ("
            " INSERT INTO audio_assets"
            " (id, file_name, location, size_bytes, format, owner_id,"
            "  processing_state, created_at, updated_at)"
            " VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $8)"
            " RETURNING *)"
            + _OWNER_JOIN.format(source="inserted")
        )
        async with self.db.connection() as conn:
            row = await conn.fetchrow(
                query,
                asset_id,
                file_name,
                location,
                size_bytes,
                AudioFormat(audio_format).value,
                owner_id,
                ProcessingState.PENDING.value,
                now,
            )
        logger.info(f"Created audio asset {asset_id[:8]}... in pending")
        return AudioAsset.from_row(row)

    async def get_asset(self, asset_id: str) -> Optional[AudioAsset]:
        if not is_valid_id(asset_id):
            return None
        async with self.db.connection() as conn:
            row = await conn.fetchrow(SELECT_ASSETS + " WHERE a.id = $1", asset_id)
        return AudioAsset.from_row(row) if row else None

    async def transition(
        self,
        asset_id: str,
        target: ProcessingState,
        finalization: Optional[AssetFinalization] = None,
        conn: Optional[asyncpg.Connection] = None,
    ) -> AudioAsset:
        """
        Move an asset to ``target`` and apply ``finalization`` in the same UPDATE.

        Raises:
            NotFound: no such asset
            InvalidStateTransition: current state does not allow ``target``
        """
        target = ProcessingState(target)
        columns = _finalization_columns(finalization or AssetFinalization())
        columns["processing_state"] = target.value

        assignments = []
        values: List[Any] = [asset_id, _sources_for(target)]
        for column, value in columns.items():
            values.append(value)
            assignments.append(f"{column} = ${len(values)}")
        values.append(datetime.now(timezone.utc))
        now_param = f"${len(values)}"
        assignments.append(f"updated_at = {now_param}")
        if target in PROCESSED_STATES:
            assignments.append(f"processed_at = COALESCE(processed_at, {now_param})")

        query = (
            "WITH updated AS ("
            f" UPDATE audio_assets SET {', '.join(assignments)}"
            " WHERE id = $1 AND processing_state = ANY($2::text[])"
            " RETURNING *)"
            + _OWNER_JOIN.format(source="updated")
        )

        async with self.db.connection(conn) as c:
            row = await c.fetchrow(query, *values)
            if row is None:
                current = await c.fetchval(
                    "SELECT processing_state FROM audio_assets WHERE id = $1", asset_id
                )
                if current is None:
                    raise NotFound("Audio file not found!")
                raise InvalidStateTransition(current, target.value)

        logger.info(f"Audio asset {asset_id[:8]}... -> {target.value}")
        return AudioAsset.from_row(row)

    async def record_detection_attempt(
        self,
        asset_id: str,
        confidence: Optional[float] = None,
        detected_message: Optional[str] = None,
    ) -> bool:
        """Count a detection run against a stored asset without changing its state."""
        async with self.db.connection() as conn:
            result = await conn.execute(
                """
                UPDATE audio_assets
                SET detection_attempts = detection_attempts + 1,
                    detection_timestamp = $2,
                    confidence = COALESCE($3, confidence),
                    detected_message = COALESCE($4, detected_message),
                    updated_at = $2
                WHERE id = $1
                """,
                asset_id,
                datetime.now(timezone.utc),
                confidence,
                detected_message,
            )
        return result != "UPDATE 0"

    async def count_assets(self, include_failed: bool = False) -> int:
        query = "SELECT COUNT(*) FROM audio_assets"
        if not include_failed:
            query += " WHERE processing_state <> 'failed'"
        async with self.db.connection() as conn:
            return int(await conn.fetchval(query))

    async def list_assets(
        self,
        limit: Optional[int] = None,
        offset: int = 0,
        include_failed: bool = False,
    ) -> List[AudioAsset]:
        """All assets, newest first."""
        query = SELECT_ASSETS
        if not include_failed:
            query += " WHERE a.processing_state <> 'failed'"
        query += " ORDER BY a.created_at DESC"
        values: List[Any] = []
        if limit is not None:
            values.extend([limit, offset])
            query += " LIMIT $1 OFFSET $2"
        async with self.db.connection() as conn:
            rows = await conn.fetch(query, *values)
        return [AudioAsset.from_row(row) for row in rows]

    async def list_by_owner(
        self,
        owner_id: str,
        states: Iterable[ProcessingState],
    ) -> List[AudioAsset]:
        async with self.db.connection() as conn:
            rows = await conn.fetch(
                SELECT_ASSETS
                + " WHERE a.owner_id = $1 AND a.processing_state = ANY($2::text[])"
                + " ORDER BY a.created_at DESC",
                owner_id,
                [ProcessingState(s).value for s in states],
            )
        return [AudioAsset.from_row(row) for row in rows]

    async def name_taken(self, owner_id: str, file_name: str, exclude_id: str) -> bool:
        async with self.db.connection() as conn:
            found = await conn.fetchval(
                "SELECT 1 FROM audio_assets WHERE owner_id = $1 AND file_name = $2 AND id <> $3",
                owner_id,
                file_name,
                exclude_id,
            )
        return found is not None

    async def rename(self, asset_id: str, file_name: str) -> AudioAsset:
        query = (
            "WITH updated AS ("
            " UPDATE audio_assets SET file_name = $2, updated_at = $3"
            " WHERE id = $1 RETURNING *)"
            + _OWNER_JOIN.format(source="updated")
        )
        async with self.db.connection() as conn:
            row = await conn.fetchrow(query, asset_id, file_name, datetime.now(timezone.utc))
        if row is None:
            raise NotFound("Audio file not found!")
        return AudioAsset.from_row(row)

    async def record_download(self, asset_id: str) -> None:
        async with self.db.connection() as conn:
            await conn.execute(
                """
                UPDATE audio_assets
                SET download_count = download_count + 1, last_accessed_at = $2
                WHERE id = $1
                """,
                asset_id,
                datetime.now(timezone.utc),
            )

    async def delete_asset(self, asset_id: str) -> bool:
        async with self.db.connection() as conn:
            result = await conn.execute("DELETE FROM audio_assets WHERE id = $1", asset_id)
        deleted = result != "DELETE 0"
        if deleted:
            logger.info(f"Deleted audio asset {asset_id[:8]}...")
        return deleted
