"""
Ownership Ledger.

Maps a carrier token (the identifier the engine embeds and later decodes)
to the message its owner wanted to embed. The token is the primary key, so
a second insert of the same token fails instead of overwriting.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import asyncpg

from db import Database, is_valid_id, new_id
from errors import DuplicateCarrierToken
from models import WatermarkRecord

logger = logging.getLogger(__name__)

SELECT_RECORD = """
    SELECT w.*, u.name AS owner_name
    FROM watermark_records w
    LEFT JOIN users u ON u.id = w.owner_id
    WHERE w.identifier = $1
"""


class OwnershipLedger:
    """WatermarkRecord storage."""

    def __init__(self, db: Database):
        self.db = db

    async def create_record(
        self,
        record: WatermarkRecord,
        conn: Optional[asyncpg.Connection] = None,
    ) -> WatermarkRecord:
        """
        Insert a record; never overwrites.

        Raises:
            DuplicateCarrierToken: the identifier is already registered
        """
        now = datetime.now(timezone.utc)
        async with self.db.connection(conn) as c:
            try:
                row = await c.fetchrow(
                    """
                    INSERT INTO watermark_records
                    (identifier, encoded_message, owner_id, audio_asset_id, message_source,
                     approved, approved_at, detection_count, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, 0, $8)
                    RETURNING *
                    """,
                    record.identifier,
                    record.encoded_message,
                    record.owner_id,
                    record.audio_asset_id,
                    record.message_source.value,
                    record.approved,
                    now if record.approved else None,
                    now,
                )
            except asyncpg.UniqueViolationError as e:
                raise DuplicateCarrierToken(record.identifier) from e

        logger.info(f"Registered watermark record for owner {record.owner_id[:8]}...")
        return WatermarkRecord.from_row(row)

    async def exists(self, identifier: str) -> bool:
        async with self.db.connection() as conn:
            found = await conn.fetchval(
                "SELECT 1 FROM watermark_records WHERE identifier = $1", identifier
            )
        return found is not None

    async def get_record(self, identifier: str) -> Optional[WatermarkRecord]:
        async with self.db.connection() as conn:
            row = await conn.fetchrow(SELECT_RECORD, identifier)
        return WatermarkRecord.from_row(row) if row else None

    async def record_detection(
        self,
        identifier: str,
        requester_id: Optional[str],
        is_owner: bool,
    ) -> Optional[WatermarkRecord]:
        """
        Count one detection event and log who asked.

        The increment happens in SQL so concurrent detections never lose counts.
        Anonymous requesters are logged with a NULL requester.

        Returns:
            The updated record, or None if the identifier is unknown
        """
        now = datetime.now(timezone.utc)
        requester = requester_id if is_valid_id(requester_id) else None
        async with self.db.transaction() as conn:
            updated = await conn.fetchval(
                """
                UPDATE watermark_records
                SET detection_count = detection_count + 1, last_detected_at = $2
                WHERE identifier = $1
                RETURNING identifier
                """,
                identifier,
                now,
            )
            if updated is None:
                return None
            await conn.execute(
                """
                INSERT INTO watermark_detections (id, identifier, requester_id, is_owner, detected_at)
                VALUES ($1, $2, $3, $4, $5)
                """,
                new_id(),
                identifier,
                requester,
                is_owner,
                now,
            )
            row = await conn.fetchrow(SELECT_RECORD, identifier)

        return WatermarkRecord.from_row(row) if row else None
