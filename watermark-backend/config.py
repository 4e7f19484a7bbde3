"""
Process-wide configuration for the watermark backend.

Everything is read from the environment exactly once, at import time.
Components receive the values they need through their constructors
(see EngineConfig) instead of re-reading the environment per call.
"""

import os
from dataclasses import dataclass
from typing import List, Optional


def get_port() -> int:
    """Get port from environment."""
    return int(os.getenv("PORT", "5000"))


def get_host() -> str:
    """Get host binding address."""
    return os.getenv("HOST", "0.0.0.0")


def get_cors_origins() -> List[str]:
    """Comma-separated CORS origins."""
    raw = os.getenv("CORS_ORIGIN", "http://localhost:3000")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def _float_env(name: str, default: str) -> float:
    return float(os.getenv(name, default))


class Config:
    """Global configuration."""

    VERSION = "1.0.0"
    PORT = get_port()
    HOST = get_host()
    CORS_ORIGINS = get_cors_origins()

    # PostgreSQL (assets, ledger, users, download logs)
    DATABASE_URL = os.getenv("DATABASE_URL")

    # Watermark engine
    ENGINE_BASE_URL = os.getenv("ENGINE_BASE_URL", "http://127.0.0.1:8080")
    ENGINE_EMBED_TIMEOUT = _float_env("ENGINE_EMBED_TIMEOUT", "120")  # 2 minutes
    ENGINE_DETECT_TIMEOUT = _float_env("ENGINE_DETECT_TIMEOUT", "60")
    ENGINE_CONNECT_TIMEOUT = _float_env("ENGINE_CONNECT_TIMEOUT", "10")

    # Blob store (Cloudinary)
    CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
    CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
    CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")
    BLOB_UPLOAD_TIMEOUT = _float_env("BLOB_UPLOAD_TIMEOUT", "120")

    # Access tokens are issued by the auth service; we only verify them
    ACCESS_TOKEN_SECRET = os.getenv("ACCESS_TOKEN_SECRET")
    ACCESS_TOKEN_ALGORITHM = os.getenv("ACCESS_TOKEN_ALGORITHM", "HS256")

    # Upload limits
    MAX_FILE_SIZE_MB = int(os.getenv("MAX_FILE_SIZE_MB", "1024"))
    MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024**2

    # Watermark rules
    MIN_MESSAGE_LENGTH = int(os.getenv("MIN_MESSAGE_LENGTH", "2"))
    MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", "500"))
    DETECTION_THRESHOLD = _float_env("DETECTION_THRESHOLD", "0.5")
    CARRIER_MINT_ATTEMPTS = int(os.getenv("CARRIER_MINT_ATTEMPTS", "5"))

    DOWNLOAD_URL_TTL_SECONDS = int(os.getenv("DOWNLOAD_URL_TTL_SECONDS", "3600"))

    DEBUG = os.getenv("DEBUG", "false").lower() == "true"


@dataclass(frozen=True)
class EngineConfig:
    """Connection settings for the remote watermark engine."""

    base_url: str
    embed_timeout: float = 120.0
    detect_timeout: float = 60.0
    connect_timeout: float = 10.0
    detection_threshold: float = 0.5

    @classmethod
    def from_config(cls, config: type = Config) -> "EngineConfig":
        return cls(
            base_url=config.ENGINE_BASE_URL.rstrip("/"),
            embed_timeout=config.ENGINE_EMBED_TIMEOUT,
            detect_timeout=config.ENGINE_DETECT_TIMEOUT,
            connect_timeout=config.ENGINE_CONNECT_TIMEOUT,
            detection_threshold=config.DETECTION_THRESHOLD,
        )


@dataclass(frozen=True)
class BlobStoreConfig:
    """Credentials for the Cloudinary upload API."""

    cloud_name: Optional[str]
    api_key: Optional[str]
    api_secret: Optional[str]
    upload_timeout: float = 120.0

    @property
    def configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    @classmethod
    def from_config(cls, config: type = Config) -> "BlobStoreConfig":
        return cls(
            cloud_name=config.CLOUDINARY_CLOUD_NAME,
            api_key=config.CLOUDINARY_API_KEY,
            api_secret=config.CLOUDINARY_API_SECRET,
            upload_timeout=config.BLOB_UPLOAD_TIMEOUT,
        )


def missing_required_settings(config: type = Config) -> List[str]:
    """Return human-readable descriptions of required settings that are unset."""
    missing = []
    if not config.DATABASE_URL:
        missing.append("DATABASE_URL (required for asset and ledger storage)")
    if not config.ACCESS_TOKEN_SECRET:
        missing.append("ACCESS_TOKEN_SECRET (required to verify access tokens)")
    if not BlobStoreConfig.from_config(config).configured:
        missing.append(
            "CLOUDINARY_CLOUD_NAME / CLOUDINARY_API_KEY / CLOUDINARY_API_SECRET "
            "(required for audio uploads)"
        )
    return missing
