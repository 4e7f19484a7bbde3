"""
Audio Watermark Backend
FastAPI server for watermark ingestion, ownership detection and asset management
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from asset_store import AudioAssetStore
from audio_format import get_hex_preview, resolve_format
from audio_service import AudioAssetService
from auth import get_optional_user, require_staff, require_user
from blob_store import CloudinaryBlobStore
from config import BlobStoreConfig, Config, EngineConfig, missing_required_settings
from db import Database
from detection import DetectionOrchestrator, DetectionRequest
from download_log import DownloadLogStore
from dto import asset_dto
from engine_client import WatermarkEngineClient
from errors import InvalidInput, WatermarkServiceError
from ingestion import IngestionOrchestrator, IngestionRequest
from ledger import OwnershipLedger
from migrations.migrate import apply_migrations
from models import UserRecord
from user_store import UserStore

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if Config.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Audio Watermark Backend",
    description="Watermark embedding, ownership detection and audio asset management",
    version=Config.VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)

router = APIRouter(prefix="/api/audio", tags=["audio"])

UPLOAD_PATHS = ("/api/audio/upload", "/api/audio/detect-watermark")


@app.on_event("startup")
async def validate_environment():
    """
    Validate required settings and bring the schema up to date.

    Runs at startup rather than import time so the module can be imported
    (and tested) without a configured environment.
    """
    missing = missing_required_settings()
    if missing:
        error_msg = "Missing required environment variables:\n  - " + "\n  - ".join(missing)
        logger.error(error_msg)
        raise RuntimeError(error_msg)

    await run_database_migrations()
    logger.info(f"Watermark engine at {Config.ENGINE_BASE_URL}")
    logger.info("Environment validation passed: all required variables configured")


async def run_database_migrations():
    logger.info("Running database migrations...")
    try:
        await apply_migrations(Config.DATABASE_URL)
    except Exception as e:
        logger.error(f"Migration failed: {e}", exc_info=True)
        # Tables might already exist from an earlier deploy
        logger.warning("Continuing startup despite migration issues...")


@app.on_event("shutdown")
async def close_database():
    if _database is not None:
        await _database.close()


# Lazily created so importing this module never needs a database
_database: Optional[Database] = None
_engine_client: Optional[WatermarkEngineClient] = None
_blob_store: Optional[CloudinaryBlobStore] = None
_ingestion_orchestrator: Optional[IngestionOrchestrator] = None
_detection_orchestrator: Optional[DetectionOrchestrator] = None
_audio_service: Optional[AudioAssetService] = None


def get_database() -> Database:
    global _database
    if _database is None:
        _database = Database()
        logger.info("Initialized PostgreSQL database")
    return _database


def get_engine_client() -> WatermarkEngineClient:
    global _engine_client
    if _engine_client is None:
        _engine_client = WatermarkEngineClient(EngineConfig.from_config())
    return _engine_client


def get_blob_store() -> CloudinaryBlobStore:
    global _blob_store
    if _blob_store is None:
        _blob_store = CloudinaryBlobStore(BlobStoreConfig.from_config())
    return _blob_store


def get_ingestion_orchestrator() -> IngestionOrchestrator:
    """Get or create the ingestion orchestrator."""
    global _ingestion_orchestrator
    if _ingestion_orchestrator is None:
        db = get_database()
        _ingestion_orchestrator = IngestionOrchestrator(
            db=db,
            assets=AudioAssetStore(db),
            ledger=OwnershipLedger(db),
            users=UserStore(db),
            engine=get_engine_client(),
            blob_store=get_blob_store(),
            min_message_length=Config.MIN_MESSAGE_LENGTH,
            max_message_length=Config.MAX_MESSAGE_LENGTH,
            detection_threshold=Config.DETECTION_THRESHOLD,
            mint_attempts=Config.CARRIER_MINT_ATTEMPTS,
        )
        logger.info("Initialized ingestion orchestrator")
    return _ingestion_orchestrator


def get_detection_orchestrator() -> DetectionOrchestrator:
    """Get or create the detection orchestrator."""
    global _detection_orchestrator
    if _detection_orchestrator is None:
        db = get_database()
        _detection_orchestrator = DetectionOrchestrator(
            assets=AudioAssetStore(db),
            ledger=OwnershipLedger(db),
            users=UserStore(db),
            engine=get_engine_client(),
            blob_store=get_blob_store(),
            detection_threshold=Config.DETECTION_THRESHOLD,
        )
        logger.info("Initialized detection orchestrator")
    return _detection_orchestrator


def get_audio_service() -> AudioAssetService:
    global _audio_service
    if _audio_service is None:
        db = get_database()
        _audio_service = AudioAssetService(
            assets=AudioAssetStore(db),
            blob_store=get_blob_store(),
            download_logs=DownloadLogStore(db),
            download_ttl_seconds=Config.DOWNLOAD_URL_TTL_SECONDS,
        )
    return _audio_service


# Size limit middleware - runs BEFORE multipart parsing
@app.middleware("http")
async def limit_upload_size(request: Request, call_next):
    if request.method == "POST" and request.url.path in UPLOAD_PATHS:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit():
            if int(content_length) > Config.MAX_FILE_SIZE_BYTES:
                logger.warning(
                    f"Upload too large: {content_length} bytes (max {Config.MAX_FILE_SIZE_BYTES})"
                )
                return JSONResponse(
                    status_code=413,
                    content={
                        "error": f"File exceeds {Config.MAX_FILE_SIZE_MB}MB limit",
                        "type": "payload_too_large",
                    },
                )
    return await call_next(request)


@app.exception_handler(WatermarkServiceError)
async def handle_service_error(request: Request, exc: WatermarkServiceError):
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed ({exc.error_type}): {exc.message}")
    return JSONResponse(
        status_code=exc.http_status,
        content={"error": exc.message, "type": exc.error_type},
    )


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": f"{field}: {message}" if field else message, "type": "invalid_input"},
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal Server Error!"})


class EditAssetRequest(BaseModel):
    """Only the file name is editable; watermark fields never change after ingestion."""

    fileName: Optional[str] = Field(None, max_length=255, description="New file name")


async def _read_upload(file: UploadFile) -> bytes:
    data = await file.read()
    if not data:
        raise InvalidInput("Empty file uploaded")
    return data


@app.get("/")
async def root():
    return {
        "service": "Audio Watermark Backend",
        "version": Config.VERSION,
        "status": "healthy",
    }


@app.get("/health")
async def health():
    """Liveness check. Does not touch external dependencies."""
    return {
        "status": "healthy",
        "config": {
            "database": bool(Config.DATABASE_URL),
            "engine": bool(Config.ENGINE_BASE_URL),
            "blobStore": BlobStoreConfig.from_config().configured,
            "auth": bool(Config.ACCESS_TOKEN_SECRET),
        },
    }


@app.get("/ready")
async def ready():
    """Readiness check: database connectivity."""
    db_connected = False
    if Config.DATABASE_URL:
        try:
            db_connected = await get_database().ping()
        except Exception as e:
            logger.warning(f"Database connection test failed: {e}")

    return JSONResponse(
        status_code=200 if db_connected else 503,
        content={
            "status": "ready" if db_connected else "not_ready",
            "config": {
                "database_configured": bool(Config.DATABASE_URL),
                "database_connected": db_connected,
                "blob_store_configured": BlobStoreConfig.from_config().configured,
            },
        },
    )


@router.post("/upload", status_code=201)
async def upload_audio(
    file: UploadFile = File(...),
    fileName: Optional[str] = Form(None),
    format: Optional[str] = Form(None),
    watermarkMessage: Optional[str] = Form(None),
    user: UserRecord = Depends(require_user),
):
    """Upload audio and watermark it for the caller."""
    data = await _read_upload(file)
    try:
        audio_format = resolve_format(format, data, file.filename)
    except InvalidInput:
        logger.warning(f"Rejected upload with header {get_hex_preview(data)}")
        raise

    asset = await get_ingestion_orchestrator().ingest(
        IngestionRequest(
            file_name=fileName or file.filename or f"audio.{audio_format.value}",
            audio=data,
            audio_format=audio_format.value,
            size_bytes=len(data),
            owner_id=user.id,
            watermark_message=watermarkMessage,
        )
    )
    return JSONResponse(
        status_code=201,
        content={"message": "Audio file uploaded successfully!", "audioFile": asset_dto(asset)},
    )


@router.post("/detect-watermark")
async def detect_watermark(
    file: UploadFile = File(...),
    format: Optional[str] = Form(None),
    audioFileId: Optional[str] = Form(None),
    user: Optional[UserRecord] = Depends(get_optional_user),
):
    """Detect a watermark and attribute it. Anonymous callers are allowed."""
    data = await _read_upload(file)
    audio_format = resolve_format(format, data, file.filename)
    return await get_detection_orchestrator().detect(
        DetectionRequest(
            audio=data,
            audio_format=audio_format.value,
            requester_id=user.id if user else None,
            audio_file_id=audioFileId,
        )
    )


@router.get("/my-files")
async def my_files(user: UserRecord = Depends(require_user)):
    return await get_audio_service().list_user_assets(user.id)


@router.get("/audio-admin")
async def list_all_audio(
    page: int = 1,
    limit: int = 10,
    all: bool = False,
    includeFailed: bool = False,
    user: UserRecord = Depends(require_staff),
):
    return await get_audio_service().list_assets(
        page=page, limit=limit, all=all, include_failed=includeFailed, viewer=user
    )


@router.get("/download/{asset_id}")
async def download_audio(
    asset_id: str,
    request: Request,
    user: UserRecord = Depends(require_user),
):
    return await get_audio_service().generate_download_url(
        asset_id,
        user,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


@router.get("/{asset_id}")
async def get_audio(asset_id: str, user: UserRecord = Depends(require_user)):
    return await get_audio_service().get_asset(asset_id, user)


@router.put("/edit/{asset_id}")
async def edit_audio(
    asset_id: str,
    body: EditAssetRequest,
    user: UserRecord = Depends(require_user),
):
    updated = await get_audio_service().edit_asset(asset_id, body.fileName, user)
    return {"message": "Audio file updated successfully!", "audioFile": updated}


@router.delete("/delete/{asset_id}")
async def delete_audio(asset_id: str, user: UserRecord = Depends(require_user)):
    deleted = await get_audio_service().delete_asset(asset_id, user)
    return {"message": "Audio file deleted successfully!", "audioFile": deleted}


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=Config.HOST, port=Config.PORT)
