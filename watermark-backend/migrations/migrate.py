#!/usr/bin/env python3
"""
Database migration runner for the watermark backend.
Applies SQL migrations in order to update database schema.
"""

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import asyncpg

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent


async def apply_migrations(database_url: str, migrations_dir: Optional[Path] = None) -> int:
    """
    Apply every *.sql file in name order. Files must be idempotent.

    Returns:
        Number of migration files applied
    """
    migrations_dir = migrations_dir or MIGRATIONS_DIR
    migration_files = sorted(migrations_dir.glob("*.sql"))

    if not migration_files:
        logger.info("No migrations to run")
        return 0

    logger.info(f"Found {len(migration_files)} migration files")

    pool = await asyncpg.create_pool(
        database_url,
        min_size=1,
        max_size=5,
        command_timeout=60
    )

    try:
        async with pool.acquire() as conn:
            for migration_file in migration_files:
                logger.info(f"Running migration: {migration_file.name}")
                migration_sql = migration_file.read_text()
                try:
                    await conn.execute(migration_sql)
                    logger.info(f"Completed: {migration_file.name}")
                except Exception as e:
                    logger.error(f"Failed: {migration_file.name}: {e}")
                    raise

        logger.info("All migrations completed successfully!")
        return len(migration_files)

    finally:
        await pool.close()


async def run_migrations():
    """Run all pending migrations."""
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        logger.error("DATABASE_URL environment variable not set")
        sys.exit(1)
    await apply_migrations(database_url)


def main():
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_migrations())


if __name__ == "__main__":
    main()
