import uuid
from datetime import datetime, timezone

import pytest

from fakes import (
    FakeAssetStore,
    FakeBlobStore,
    FakeDatabase,
    FakeDownloadLog,
    FakeEngine,
    FakeLedger,
    FakeUserStore,
)
from audio_service import AudioAssetService
from detection import DetectionOrchestrator
from ingestion import IngestionOrchestrator
from models import AudioAsset, AudioFormat, ProcessingState, Role, UserRecord

WAV_BYTES = b"RIFF\x24\x08\x00\x00WAVEfmt " + b"\x00" * 64


@pytest.fixture
def wav_bytes() -> bytes:
    """Minimal RIFF/WAVE header followed by padding."""
    return WAV_BYTES


@pytest.fixture
def owner() -> UserRecord:
    return UserRecord(id=str(uuid.uuid4()), name="Alice", email="alice@example.com")


@pytest.fixture
def other_user() -> UserRecord:
    return UserRecord(id=str(uuid.uuid4()), name="Bob", email="bob@example.com")


@pytest.fixture
def admin() -> UserRecord:
    return UserRecord(id=str(uuid.uuid4()), name="Root", email="root@example.com", role=Role.ADMIN)


@pytest.fixture
def users(owner, other_user, admin) -> FakeUserStore:
    return FakeUserStore([owner, other_user, admin])


@pytest.fixture
def assets(users) -> FakeAssetStore:
    return FakeAssetStore(users)


@pytest.fixture
def ledger(users) -> FakeLedger:
    return FakeLedger(users)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def download_log() -> FakeDownloadLog:
    return FakeDownloadLog()


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def ingestion(fake_db, assets, ledger, users, engine, blob_store) -> IngestionOrchestrator:
    return IngestionOrchestrator(
        db=fake_db,
        assets=assets,
        ledger=ledger,
        users=users,
        engine=engine,
        blob_store=blob_store,
    )


@pytest.fixture
def detection(assets, ledger, users, engine, blob_store) -> DetectionOrchestrator:
    return DetectionOrchestrator(
        assets=assets,
        ledger=ledger,
        users=users,
        engine=engine,
        blob_store=blob_store,
    )


@pytest.fixture
def audio_service(assets, blob_store, download_log) -> AudioAssetService:
    return AudioAssetService(assets=assets, blob_store=blob_store, download_logs=download_log)


@pytest.fixture
def make_asset(assets):
    """Store an asset directly, bypassing ingestion."""

    def _make(owner_id: str, state: ProcessingState = ProcessingState.COMPLETED, **overrides) -> AudioAsset:
        now = datetime.now(timezone.utc)
        fields = dict(
            id=str(uuid.uuid4()),
            file_name="song.wav",
            location=f"https://res.cloudinary.com/demo/video/upload/v1/audio_files/{uuid.uuid4().hex}.wav",
            size_bytes=2048,
            format=AudioFormat.WAV,
            owner_id=owner_id,
            processing_state=state,
            created_at=now,
            updated_at=now,
        )
        fields.update(overrides)
        return assets.add(AudioAsset(**fields))

    return _make
