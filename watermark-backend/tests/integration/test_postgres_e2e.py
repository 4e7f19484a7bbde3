"""
End-to-end store tests against a real PostgreSQL.

Skipped unless TEST_DATABASE_URL points at a disposable database.
"""

import asyncio
import os
import uuid

import pytest

from asset_store import AudioAssetStore
from db import Database
from errors import DuplicateCarrierToken, InvalidStateTransition
from ledger import OwnershipLedger
from migrations.migrate import apply_migrations
from models import AssetFinalization, AudioFormat, MessageSource, ProcessingState, WatermarkRecord
from user_store import UserStore

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

pytestmark = [
    pytest.mark.e2e,
    pytest.mark.skipif(not TEST_DATABASE_URL, reason="TEST_DATABASE_URL not set"),
]


@pytest.fixture
async def db():
    await apply_migrations(TEST_DATABASE_URL)
    database = Database(TEST_DATABASE_URL)
    yield database
    await database.close()


@pytest.fixture
async def user_id(db):
    uid = str(uuid.uuid4())
    async with db.connection() as conn:
        await conn.execute(
            "INSERT INTO users (id, name, email) VALUES ($1, $2, $3)",
            uid,
            "E2E User",
            f"{uid}@example.com",
        )
    return uid


@pytest.mark.asyncio
async def test_full_watermark_lifecycle(db, user_id):
    assets = AudioAssetStore(db)
    ledger = OwnershipLedger(db)
    users = UserStore(db)
    identifier = format(uuid.uuid4().int & 0xFFFF, "016b") + uuid.uuid4().hex[:8]

    asset = await assets.create_asset(
        "e2e.wav", "https://res.cloudinary.com/demo/a.wav", 4096, AudioFormat.WAV, user_id
    )
    await assets.transition(asset.id, ProcessingState.PROCESSING)

    async with db.transaction() as conn:
        await ledger.create_record(
            WatermarkRecord(
                identifier=identifier,
                encoded_message="e2e message",
                owner_id=user_id,
                audio_asset_id=asset.id,
                message_source=MessageSource.USER_PROVIDED,
            ),
            conn=conn,
        )
        done = await assets.transition(
            asset.id,
            ProcessingState.COMPLETED,
            AssetFinalization(watermark_identifier=identifier, is_watermarked=True),
            conn=conn,
        )
        await users.add_used_storage(user_id, 4096, conn=conn)

    assert done.processing_state == ProcessingState.COMPLETED
    assert done.processed_at is not None
    assert (await users.get_user(user_id)).used_storage == 4096

    with pytest.raises(InvalidStateTransition):
        await assets.transition(asset.id, ProcessingState.FAILED)

    with pytest.raises(DuplicateCarrierToken):
        await ledger.create_record(
            WatermarkRecord(identifier=identifier, encoded_message="other", owner_id=user_id)
        )

    await asyncio.gather(*(ledger.record_detection(identifier, None, False) for _ in range(10)))
    record = await ledger.get_record(identifier)
    assert record.detection_count == 10
    assert record.encoded_message == "e2e message"
