"""Upload validation helpers: MIME classification, sniffing and key generation."""

import mimetypes
import os
import secrets
import time
from typing import Optional

from diary_media.db.models import MediaKind

# Leading-byte signatures for the formats we accept.
# Each entry: (offset, signature, mime_type)
_MAGIC_SIGNATURES: list[tuple[int, bytes, str]] = [
    (0, b"\x89PNG\r\n\x1a\n", "image/png"),
    (0, b"\xff\xd8\xff", "image/jpeg"),
    (0, b"GIF87a", "image/gif"),
    (0, b"GIF89a", "image/gif"),
    (0, b"OggS", "audio/ogg"),
    (0, b"fLaC", "audio/flac"),
    (0, b"ID3", "audio/mpeg"),
    (0, b"\xff\xfb", "audio/mpeg"),
    (0, b"\xff\xf3", "audio/mpeg"),
    (0, b"\xff\xf2", "audio/mpeg"),
]

# EBML header shared by WebM and Matroska
_EBML_MAGIC = b"\x1a\x45\xdf\xa3"

SNIFF_BYTES = 64

_EXTENSION_FALLBACKS = {
    "audio/webm": ".webm",
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
    "audio/x-m4a": ".m4a",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/flac": ".flac",
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/heic": ".heic",
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
}


def normalize_mime_type(mime_type: Optional[str]) -> Optional[str]:
    """Lower-case a MIME type and strip parameters (``audio/webm;codecs=opus``)."""
    if not mime_type:
        return None
    return mime_type.split(";", 1)[0].strip().lower() or None


def classify_mime_type(mime_type: Optional[str]) -> MediaKind:
    """Map a MIME type to the coarse media kind that drives pipeline branching."""
    mime_type = normalize_mime_type(mime_type)
    if not mime_type:
        return MediaKind.OTHER
    if mime_type.startswith("image/"):
        return MediaKind.IMAGE
    if mime_type.startswith("audio/"):
        return MediaKind.AUDIO
    if mime_type.startswith("video/"):
        return MediaKind.VIDEO
    return MediaKind.OTHER


def sniff_mime_type(head: bytes) -> Optional[str]:
    """
    Guess a MIME type from the first bytes of a file.

    Returns None when no known signature matches.
    """
    for offset, signature, mime_type in _MAGIC_SIGNATURES:
        if head[offset:offset + len(signature)] == signature:
            return mime_type

    if head[:4] == b"RIFF":
        if head[8:12] == b"WAVE":
            return "audio/wav"
        if head[8:12] == b"WEBP":
            return "image/webp"

    if head[:4] == _EBML_MAGIC:
        # Browsers record voice notes as WebM; assume audio unless declared otherwise
        return "audio/webm"

    if head[4:8] == b"ftyp":
        brand = head[8:12]
        if brand in (b"M4A ", b"M4B "):
            return "audio/mp4"
        if brand == b"qt  ":
            return "video/quicktime"
        if brand in (b"heic", b"heix", b"mif1"):
            return "image/heic"
        return "video/mp4"

    return None


def resolve_mime_type(
    declared_mime_type: Optional[str],
    head: bytes,
    original_filename: Optional[str],
    supported: set[str],
) -> Optional[str]:
    """
    Pick the effective MIME type for an upload.

    The declared type wins when it is supported; otherwise the sniffed type,
    then the type guessed from the filename extension. Returns None when
    nothing supported can be determined.
    """
    declared = normalize_mime_type(declared_mime_type)
    if declared in supported:
        return declared

    sniffed = sniff_mime_type(head)
    if sniffed in supported:
        return sniffed

    if original_filename:
        guessed, _ = mimetypes.guess_type(original_filename)
        guessed = normalize_mime_type(guessed)
        if guessed in supported:
            return guessed

    return None


def extension_for(original_filename: Optional[str], mime_type: Optional[str]) -> str:
    """Keep the client's extension when present; otherwise derive one from the MIME type."""
    if original_filename:
        _, ext = os.path.splitext(os.path.basename(original_filename))
        if ext and len(ext) <= 10 and ext[1:].isalnum():
            return ext.lower()
    return _EXTENSION_FALLBACKS.get(normalize_mime_type(mime_type) or "", "")


def generate_storage_key(original_filename: Optional[str], mime_type: Optional[str] = None) -> str:
    """
    Generate a collision-resistant blob key.

    Format: ``{epoch-millis}-{random-hex}{ext}``, e.g. ``1718000000000-9f3ab2c41d7e.webm``.
    """
    token = f"{int(time.time() * 1000)}-{secrets.token_hex(6)}"
    return f"{token}{extension_for(original_filename, mime_type)}"
