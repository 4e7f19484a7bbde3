"""Unit tests for blob_store.py (Cloudinary SDK calls replaced via monkeypatch)."""

import hashlib
from urllib.parse import parse_qs, urlparse

import cloudinary.exceptions
import cloudinary.uploader
import pytest

from blob_store import CloudinaryBlobStore, public_id_from_url
from config import BlobStoreConfig
from errors import UploadFailed

CONFIG = BlobStoreConfig(cloud_name="demo", api_key="key123", api_secret="shh")


@pytest.fixture
def sdk_calls(monkeypatch):
    """Record SDK calls; tests set ``response`` or ``error`` to script the outcome."""
    calls = {"upload": [], "destroy": [], "response": None, "error": None}

    def _answer():
        if calls["error"] is not None:
            raise calls["error"]
        return calls["response"]

    def fake_upload(file, **options):
        calls["upload"].append((file, options))
        return _answer()

    def fake_destroy(public_id, **options):
        calls["destroy"].append((public_id, options))
        return _answer()

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)
    monkeypatch.setattr(cloudinary.uploader, "destroy", fake_destroy)
    return calls


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://res.cloudinary.com/demo/video/upload/v17/audio_files/abc123.wav", "audio_files/abc123"),
        ("https://res.cloudinary.com/demo/video/upload/audio_files/noext", "audio_files/noext"),
    ],
)
def test_public_id_from_url(url, expected):
    assert public_id_from_url(url) == expected


class TestUpload:
    @pytest.mark.asyncio
    async def test_bytes_are_sent_as_data_uri(self, sdk_calls):
        sdk_calls["response"] = {"secure_url": "https://res.cloudinary.com/x.wav", "bytes": 4}

        url = await CloudinaryBlobStore(CONFIG).upload(b"RIFF", "audio_files", "wav")

        assert url == "https://res.cloudinary.com/x.wav"
        file, options = sdk_calls["upload"][0]
        assert file == "data:audio/wav;base64,UklGRg=="
        assert options["folder"] == "audio_files"
        assert options["resource_type"] == "video"
        assert options["cloud_name"] == "demo"
        assert options["api_key"] == "key123"
        assert options["api_secret"] == "shh"

    @pytest.mark.asyncio
    async def test_remote_url_passed_through(self, sdk_calls):
        sdk_calls["response"] = {"secure_url": "https://res.cloudinary.com/y.mp3"}

        await CloudinaryBlobStore(CONFIG).upload("https://cdn.test/in.mp3", "detect_audio_files", "mp3")

        file, options = sdk_calls["upload"][0]
        assert file == "https://cdn.test/in.mp3"
        assert options["folder"] == "detect_audio_files"

    @pytest.mark.asyncio
    async def test_missing_secure_url(self, sdk_calls):
        sdk_calls["response"] = {"public_id": "x"}

        with pytest.raises(UploadFailed):
            await CloudinaryBlobStore(CONFIG).upload(b"RIFF")

    @pytest.mark.asyncio
    async def test_sdk_error(self, sdk_calls):
        sdk_calls["error"] = cloudinary.exceptions.GeneralError("Socket Error: down")

        with pytest.raises(UploadFailed, match="Failed to upload audio file"):
            await CloudinaryBlobStore(CONFIG).upload(b"RIFF")

    @pytest.mark.asyncio
    async def test_unconfigured_store(self, sdk_calls):
        store = CloudinaryBlobStore(BlobStoreConfig(None, None, None))

        with pytest.raises(UploadFailed, match="not configured"):
            await store.upload(b"RIFF")
        assert sdk_calls["upload"] == []


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_ok(self, sdk_calls):
        sdk_calls["response"] = {"result": "ok"}

        assert await CloudinaryBlobStore(CONFIG).delete("audio_files/abc") is True
        public_id, options = sdk_calls["destroy"][0]
        assert public_id == "audio_files/abc"
        assert options["resource_type"] == "video"

    @pytest.mark.asyncio
    async def test_delete_not_found(self, sdk_calls):
        sdk_calls["response"] = {"result": "not found"}

        assert await CloudinaryBlobStore(CONFIG).delete("audio_files/abc") is False

    @pytest.mark.asyncio
    async def test_delete_error(self, sdk_calls):
        sdk_calls["error"] = cloudinary.exceptions.NotFound("Resource not found")

        with pytest.raises(UploadFailed, match="Failed to delete audio blob"):
            await CloudinaryBlobStore(CONFIG).delete("audio_files/abc")


def test_signed_download_url_appends_signature():
    store = CloudinaryBlobStore(CONFIG)

    url = store.signed_download_url("https://res.cloudinary.com/demo/a.wav", ttl_seconds=60)

    assert url.startswith("https://res.cloudinary.com/demo/a.wav?timestamp=")
    query = parse_qs(urlparse(url).query)
    timestamp = query["timestamp"][0]
    expected = hashlib.sha1(f"resource_type=auto&timestamp={timestamp}shh".encode()).hexdigest()
    assert query["signature"][0] == expected
