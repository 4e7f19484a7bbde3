"""Unit tests for config.py"""

from config import BlobStoreConfig, Config, EngineConfig, missing_required_settings


class FullConfig(Config):
    DATABASE_URL = "postgresql://localhost/db"
    ACCESS_TOKEN_SECRET = "secret"
    CLOUDINARY_CLOUD_NAME = "demo"
    CLOUDINARY_API_KEY = "key"
    CLOUDINARY_API_SECRET = "shh"
    ENGINE_BASE_URL = "http://engine:8080/"


def test_complete_config_has_nothing_missing():
    assert missing_required_settings(FullConfig) == []


def test_missing_settings_are_named():
    class Partial(FullConfig):
        DATABASE_URL = None
        CLOUDINARY_API_SECRET = None

    missing = missing_required_settings(Partial)

    assert len(missing) == 2
    assert missing[0].startswith("DATABASE_URL")
    assert "CLOUDINARY" in missing[1]


def test_engine_config_from_config():
    engine = EngineConfig.from_config(FullConfig)

    assert engine.base_url == "http://engine:8080"
    assert engine.embed_timeout == Config.ENGINE_EMBED_TIMEOUT
    assert engine.detection_threshold == Config.DETECTION_THRESHOLD


def test_blob_store_configured_flag():
    assert BlobStoreConfig.from_config(FullConfig).configured
    assert not BlobStoreConfig("demo", "key", None).configured


def test_defaults():
    assert EngineConfig(base_url="http://e").embed_timeout == 120.0
    assert EngineConfig(base_url="http://e").detect_timeout == 60.0
