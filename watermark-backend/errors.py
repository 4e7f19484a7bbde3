"""
Error taxonomy for the watermark backend.

Every error carries a machine-readable ``error_type`` and the HTTP status the
API layer should answer with. Messages are safe to show to callers; engine
payloads and tracebacks never go into them.
"""

from typing import Optional


class WatermarkServiceError(Exception):
    """Base exception for all caller-visible failures."""

    def __init__(self, message: str, error_type: str = "unknown", http_status: int = 500):
        """
        Args:
            message: Human-readable error message
            error_type: Machine-readable error classification
            http_status: Suggested HTTP status code (4xx for client errors, 5xx for server)
        """
        self.message = message
        self.error_type = error_type
        self.http_status = http_status
        super().__init__(message)


class InvalidInput(WatermarkServiceError):
    """Malformed or unsupported request data."""

    def __init__(self, message: str):
        super().__init__(message, error_type="invalid_input", http_status=400)


class NotFound(WatermarkServiceError):
    def __init__(self, message: str):
        super().__init__(message, error_type="not_found", http_status=404)


class PermissionDenied(WatermarkServiceError):
    """Requester is neither the owner nor an admin."""

    def __init__(self, message: str):
        super().__init__(message, error_type="permission_denied", http_status=403)


class Conflict(WatermarkServiceError):
    def __init__(self, message: str):
        super().__init__(message, error_type="conflict", http_status=409)


class ForeignWatermarkConflict(WatermarkServiceError):
    """The audio already carries a watermark registered to another user."""

    def __init__(self, owner_name: str):
        self.owner_name = owner_name
        super().__init__(
            f"Audio file already contains watermark owned by {owner_name}. "
            "Cannot proceed with watermarking.",
            error_type="foreign_watermark",
            http_status=400,
        )


class UnregisteredWatermarkConflict(WatermarkServiceError):
    """The audio carries a watermark the ledger cannot attribute."""

    def __init__(self):
        super().__init__(
            "Audio file already contains an unregistered watermark. "
            "Cannot proceed with watermarking.",
            error_type="unregistered_watermark",
            http_status=400,
        )


class AlreadyWatermarked(WatermarkServiceError):
    def __init__(self, message: str = (
        "Audio file already contains watermark. "
        "Please use original unwatermarked audio file."
    )):
        super().__init__(message, error_type="already_watermarked", http_status=400)


class EngineUnavailable(WatermarkServiceError):
    """Connection to the watermark engine was refused."""

    def __init__(self, message: str = "Watermark engine is not running"):
        super().__init__(message, error_type="engine_unavailable", http_status=503)


class EngineTimeout(WatermarkServiceError):
    def __init__(self, message: str = "Watermark engine request timed out"):
        super().__init__(message, error_type="engine_timeout", http_status=408)


class EngineError(WatermarkServiceError):
    """Non-2xx answer or malformed payload from the engine."""

    def __init__(self, message: str = "Watermark engine error", upstream_status: Optional[int] = None):
        self.upstream_status = upstream_status
        super().__init__(message, error_type="engine_error", http_status=500)


class EngineRejected(EngineError):
    """
    The engine refused to embed because the source already carries a watermark.

    Raised by the engine client only; the ingestion orchestrator turns it
    into AlreadyWatermarked for callers.
    """

    def __init__(self, message: str = "Audio already watermarked"):
        super().__init__(message)
        self.error_type = "engine_rejected"


class WatermarkingFailed(WatermarkServiceError):
    def __init__(self, message: str):
        super().__init__(f"Watermarking failed: {message}", error_type="watermarking_failed", http_status=500)


class UploadFailed(WatermarkServiceError):
    """Blob store rejected or lost an upload."""

    def __init__(self, message: str = "Failed to upload audio file!"):
        super().__init__(message, error_type="upload_failed", http_status=500)


class DuplicateCarrierToken(WatermarkServiceError):
    """A ledger insert collided with an existing identifier."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(
            "Watermark identifier already registered",
            error_type="duplicate_identifier",
            http_status=500,
        )


class InvalidStateTransition(WatermarkServiceError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move audio file from {current} to {target}",
            error_type="invalid_state_transition",
            http_status=500,
        )
