"""
Best-effort download activity logging.

A failure to log must never fail the download itself, so ``log_download``
swallows its own errors after logging them.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from db import Database, new_id

logger = logging.getLogger(__name__)


class DownloadLogStore:
    def __init__(self, db: Database):
        self.db = db

    async def log_download(
        self,
        asset_id: str,
        user_id: str,
        download_type: str = "single",
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        try:
            async with self.db.connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO download_logs
                    (id, audio_asset_id, user_id, download_type, ip_address, user_agent, downloaded_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    new_id(),
                    asset_id,
                    user_id,
                    download_type,
                    ip_address,
                    user_agent,
                    datetime.now(timezone.utc),
                )
            return True
        except Exception as e:
            logger.warning(f"Failed to log download of {asset_id[:8]}...: {e}")
            return False
