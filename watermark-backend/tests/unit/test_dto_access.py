"""Unit tests for dto.py and access.py"""

import uuid
from datetime import datetime, timezone

import pytest

from access import AccessLevel, can_access, require_access
from dto import asset_dto, asset_user_dto, format_file_size
from errors import PermissionDenied
from models import AudioAsset, AudioFormat, ProcessingState, Role, UserRecord


@pytest.fixture
def asset():
    return AudioAsset(
        id=str(uuid.uuid4()),
        file_name="song.mp3",
        location="https://res.cloudinary.com/demo/video/upload/audio_files/song.mp3",
        size_bytes=1536,
        format=AudioFormat.MP3,
        owner_id="owner-1",
        processing_state=ProcessingState.COMPLETED,
        watermark_identifier="0101010101010101",
        is_watermarked=True,
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        owner_name="Alice",
        owner_email="alice@example.com",
    )


@pytest.mark.parametrize(
    "size,expected",
    [
        (0, "0 Bytes"),
        (512, "512 Bytes"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (5 * 1024**2, "5 MB"),
        (1024**3, "1 GB"),
    ],
)
def test_format_file_size(size, expected):
    assert format_file_size(size) == expected


def test_full_view_includes_identifier(asset):
    dto = asset_dto(asset)

    assert dto["watermarkIdentifier"] == "0101010101010101"
    assert dto["owner"] == {"id": "owner-1", "name": "Alice", "email": "alice@example.com"}
    assert dto["processingState"] == "completed"
    assert dto["createdAt"] == "2024-05-01T00:00:00+00:00"


@pytest.mark.parametrize(
    "view",
    [asset_user_dto, lambda a: asset_dto(a, include_identifier=False)],
    ids=["user", "full-without-identifier"],
)
def test_restricted_views_hide_identifier(asset, view):
    dto = view(asset)

    assert "watermarkIdentifier" not in dto
    assert "0101010101010101" not in str(dto)


def test_user_view_flags(asset):
    dto = asset_user_dto(asset)

    assert dto["isReady"] is True
    assert dto["isProcessing"] is False
    assert dto["fileSizeFormatted"] == "1.5 KB"


def test_none_passthrough():
    assert asset_dto(None) is None
    assert asset_user_dto(None) is None


class TestAccess:
    def test_owner(self, asset):
        assert can_access(asset, UserRecord(id="owner-1", name="A")) == AccessLevel.OWNER

    def test_admin(self, asset):
        assert can_access(asset, UserRecord(id="x", name="R", role=Role.ADMIN)) == AccessLevel.ADMIN

    def test_owner_who_is_admin_is_owner(self, asset):
        assert can_access(asset, UserRecord(id="owner-1", name="A", role=Role.ADMIN)) == AccessLevel.OWNER

    def test_stranger(self, asset):
        assert can_access(asset, UserRecord(id="x", name="B")) == AccessLevel.DENIED

    def test_anonymous(self, asset):
        assert can_access(asset, None) == AccessLevel.DENIED

    def test_require_access_names_action(self, asset):
        with pytest.raises(PermissionDenied, match="permission to delete this audio file"):
            require_access(asset, UserRecord(id="x", name="B"), "delete")
