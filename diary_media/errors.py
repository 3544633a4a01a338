"""Typed errors raised by the media pipeline."""

from fastapi import status


class PipelineError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "pipeline_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


# ============== Ingestion (rejected before any write) ==============


class PayloadTooLarge(PipelineError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    code = "payload_too_large"


class UnsupportedMediaType(PipelineError):
    status_code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
    code = "unsupported_media_type"


class EntryNotFound(PipelineError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "entry_not_found"


class MediaNotFound(PipelineError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "media_not_found"


# ============== Infrastructure ==============


class BlobWriteFailed(PipelineError):
    code = "blob_write_failed"


class RegistryWriteFailed(PipelineError):
    code = "registry_write_failed"


class BlobNotFound(Exception):
    """Raised by a blob store when the requested key does not exist."""


# ============== Transcription engine ==============


class TranscriptionError(Exception):
    """Base class for transcription engine failures."""

    retryable: bool = False


class TranscriptionTransient(TranscriptionError):
    """Network, timeout or 5xx failure. Safe to retry."""

    retryable = True


class TranscriptionPermanent(TranscriptionError):
    """Unsupported format, empty audio, quota exhausted. Never retried."""

    retryable = False
