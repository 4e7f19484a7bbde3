"""
Magic-byte sniffing for uploaded audio.

Uploads declare a format (form field or file extension); the first bytes of
the file are checked against it so a mislabeled file is rejected before it is
stored or sent to the engine.
"""

import os
from typing import Optional

from errors import InvalidInput
from models import ALLOWED_FORMATS, AudioFormat

# mp4 and m4a share the ISO base media container
_CONTAINER_ALIASES = {
    AudioFormat.MP4: {AudioFormat.MP4, AudioFormat.M4A},
    AudioFormat.M4A: {AudioFormat.MP4, AudioFormat.M4A},
}


def get_hex_preview(data: bytes, length: int = 16) -> str:
    """Hex of the first bytes, for logging rejected uploads."""
    return data[:length].hex()


def _check_riff_header(data: bytes) -> bool:
    if len(data) < 12:
        return False
    return data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def _looks_like_mp3(data: bytes) -> bool:
    """ID3v2 tag or MPEG frame sync."""
    if len(data) < 2:
        return False
    if data[:3] == b"ID3":
        return True
    return data[0] == 0xFF and (data[1] & 0xE0) == 0xE0


def _check_flac_header(data: bytes) -> bool:
    return len(data) >= 4 and data[:4] == b"fLaC"


def _ftyp_brand(data: bytes) -> Optional[bytes]:
    # ftyp box: 4-byte size, b"ftyp", 4-byte major brand
    if len(data) < 12 or data[4:8] != b"ftyp":
        return None
    return data[8:12]


def detect_audio_format(data: bytes) -> Optional[AudioFormat]:
    """Detect format from magic bytes. None when unrecognized."""
    if _check_riff_header(data):
        return AudioFormat.WAV
    if _check_flac_header(data):
        return AudioFormat.FLAC
    brand = _ftyp_brand(data)
    if brand is not None:
        if brand.startswith(b"M4A") or brand.startswith(b"M4B"):
            return AudioFormat.M4A
        return AudioFormat.MP4
    if _looks_like_mp3(data):
        return AudioFormat.MP3
    return None


def format_from_filename(file_name: Optional[str]) -> Optional[str]:
    if not file_name:
        return None
    ext = os.path.splitext(file_name)[1].lstrip(".").lower()
    return ext or None


def resolve_format(
    declared: Optional[str],
    data: Optional[bytes] = None,
    file_name: Optional[str] = None,
) -> AudioFormat:
    """
    Settle the format of an upload.

    The declared format (or the file extension) wins when the content cannot
    be sniffed; content that clearly belongs to another format is rejected.

    Raises:
        InvalidInput: no usable format, or content contradicts the declared one
    """
    candidate = (declared or format_from_filename(file_name) or "").strip().lower()
    sniffed = detect_audio_format(data) if data else None

    if not candidate:
        if sniffed is None:
            raise InvalidInput(
                f"Unsupported format. Allowed formats: {', '.join(ALLOWED_FORMATS)}"
            )
        return sniffed

    try:
        audio_format = AudioFormat(candidate)
    except ValueError:
        raise InvalidInput(
            f"Unsupported format. Allowed formats: {', '.join(ALLOWED_FORMATS)}"
        )

    if sniffed is not None and sniffed not in _CONTAINER_ALIASES.get(audio_format, {audio_format}):
        raise InvalidInput(
            f"File content looks like {sniffed.value}, not {audio_format.value}"
        )
    return audio_format
