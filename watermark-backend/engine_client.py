"""
Watermark Engine Client
Request/response wrapper around the remote embed/detect service.

Every call is a single bounded HTTP request. Transport failures are
classified into EngineUnavailable / EngineTimeout / EngineError so callers
can decide which ones to swallow.
"""

import asyncio
import base64
import binascii
import logging
from typing import Any, Dict, Optional

import httpx

from config import EngineConfig
from errors import EngineError, EngineRejected, EngineTimeout, EngineUnavailable
from models import AudioInfo, DetectionResult, EmbedResult, coerce_float

logger = logging.getLogger(__name__)

DETECT_PATH = "/detect-watermark"
EMBED_PATH = "/add-watermark-url"

# Engine error strings that mean "source already carries a watermark"
ALREADY_WATERMARKED_MARKERS = ("already watermarked", "already contains watermark")


class WatermarkEngineClient:
    """Talks to the watermark engine over JSON/HTTP."""

    def __init__(self, config: EngineConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            config: Engine settings resolved once at process start
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.config = config
        self._transport = transport

    def _client(self, read_timeout: float) -> httpx.AsyncClient:
        timeout = httpx.Timeout(read_timeout, connect=self.config.connect_timeout)
        return httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=timeout,
            transport=self._transport,
            headers={"Content-Type": "application/json"},
        )

    async def _post(self, path: str, payload: Dict[str, Any], read_timeout: float) -> Dict[str, Any]:
        # httpx bounds each read; wait_for bounds the whole call
        try:
            async with self._client(read_timeout) as client:
                response = await asyncio.wait_for(client.post(path, json=payload), timeout=read_timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            logger.warning(f"Engine {path} timed out after {read_timeout}s: {e}")
            raise EngineTimeout("Detection request timed out" if path == DETECT_PATH
                                else "Processing timeout - file may be too large or server overloaded") from e
        except httpx.ConnectError as e:
            logger.warning(f"Engine {path} connection refused: {e}")
            raise EngineUnavailable() from e
        except httpx.HTTPError as e:
            logger.warning(f"Engine {path} transport error: {e}")
            raise EngineError(f"Watermark engine request failed: {type(e).__name__}") from e

        if response.status_code == 404:
            raise EngineError("Audio file not accessible or not found", upstream_status=404)
        if response.status_code >= 400:
            detail = _error_detail(response)
            # The engine answers 400 when the source already carries a mark
            if path == EMBED_PATH and _is_already_watermarked(detail):
                raise EngineRejected(detail or "Audio already watermarked")
            logger.warning(f"Engine {path} returned HTTP {response.status_code}: {detail}")
            raise EngineError(
                "Watermark engine server error" if response.status_code >= 500
                else (detail or "Bad request to watermark engine"),
                upstream_status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise EngineError("Watermark engine returned malformed JSON") from e
        if not isinstance(data, dict):
            raise EngineError("Watermark engine returned an unexpected payload")
        return data

    async def detect(self, audio_url: str) -> DetectionResult:
        """
        Ask the engine whether the audio at ``audio_url`` carries a watermark.

        The raw ``detected`` flag is returned as-is; callers apply the
        confidence threshold through DetectionResult.is_conclusive().

        Raises:
            EngineUnavailable, EngineTimeout, EngineError
        """
        data = await self._post(DETECT_PATH, {"audioUrl": audio_url}, self.config.detect_timeout)

        if data.get("status") != "done" or "watermark_detected" not in data:
            raise EngineError("Watermark detection failed on engine")

        confidence = coerce_float(data.get("confidence"))
        if confidence is None:
            confidence = 0.0
        decoded = data.get("decoded_message")
        result = DetectionResult(
            detected=bool(data.get("watermark_detected")),
            decoded_identifier=str(decoded) if decoded not in (None, "") else None,
            confidence=min(max(confidence, 0.0), 1.0),
        )
        logger.info(f"Engine detect: detected={result.detected} confidence={result.confidence:.3f}")
        return result

    async def embed(self, audio_url: str, carrier_token: str) -> EmbedResult:
        """
        Embed ``carrier_token`` into the audio at ``audio_url``.

        Raises:
            EngineRejected: the engine found an existing watermark
            EngineUnavailable, EngineTimeout, EngineError
        """
        data = await self._post(
            EMBED_PATH,
            {"audioUrl": audio_url, "watermarkMessage": carrier_token},
            self.config.embed_timeout,
        )

        if data.get("status") != "success":
            error_msg = str(data.get("error") or "Watermarking failed on engine")
            if _is_already_watermarked(error_msg):
                raise EngineRejected(error_msg)
            raise EngineError(error_msg)

        encoded = data.get("base64_audio")
        if not encoded:
            raise EngineError("Watermark engine returned no audio")
        try:
            audio_bytes = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise EngineError("Watermark engine returned invalid base64 audio") from e

        decoded = data.get("decoded_message")
        return EmbedResult(
            audio_bytes=audio_bytes,
            decoded_identifier=str(decoded) if decoded not in (None, "") else None,
            audio_info=AudioInfo.from_payload(data.get("audio_info")),
        )


def _is_already_watermarked(message: Optional[str]) -> bool:
    if not message:
        return False
    lowered = message.lower()
    return any(marker in lowered for marker in ALREADY_WATERMARKED_MARKERS)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return ""
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or "")
    return ""
