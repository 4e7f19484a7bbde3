"""
Read access to user accounts for attribution and storage accounting.

Accounts are created and managed by the auth service; this store only looks
them up and keeps the cumulative storage counter current.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import asyncpg

from db import Database, is_valid_id
from models import UserRecord

logger = logging.getLogger(__name__)


class UserStore:
    """Users table access."""

    def __init__(self, db: Database):
        self.db = db

    async def get_user(self, user_id: Optional[str]) -> Optional[UserRecord]:
        if not is_valid_id(user_id):
            return None
        async with self.db.connection() as conn:
            row = await conn.fetchrow(
                "SELECT id, name, email, role, used_storage FROM users WHERE id = $1",
                user_id,
            )
        return UserRecord.from_row(row) if row else None

    async def add_used_storage(
        self,
        user_id: str,
        size_bytes: int,
        conn: Optional[asyncpg.Connection] = None,
    ) -> None:
        async with self.db.connection(conn) as c:
            await c.execute(
                """
                UPDATE users
                SET used_storage = used_storage + $2, updated_at = $3
                WHERE id = $1
                """,
                user_id,
                size_bytes,
                datetime.now(timezone.utc),
            )
        logger.debug(f"Added {size_bytes} bytes to storage of user {user_id[:8]}...")
