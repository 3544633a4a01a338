"""Speech-to-text client for an OpenAI-compatible transcription endpoint."""

import asyncio
import io
import logging
import math
import os
from dataclasses import dataclass
from typing import BinaryIO, Optional, Union

import openai
from openai import AsyncOpenAI

from diary_media.config import get_settings
from diary_media.errors import TranscriptionPermanent, TranscriptionTransient
from diary_media.schemas.schemas import normalize_language

logger = logging.getLogger(__name__)

settings = get_settings()

AudioInput = Union[bytes, BinaryIO, str, os.PathLike]

# Status codes worth another attempt later
_TRANSIENT_STATUS_CODES = {408, 409, 429}


@dataclass
class TranscriptResult:
    """Result from the transcription engine."""

    text: str
    duration_seconds: Optional[float]
    language: Optional[str]
    confidence: Optional[int] = None


def _confidence_from_segments(segments) -> Optional[int]:
    """Average per-segment token probability, scaled to 0-100."""
    logprobs = [
        seg.avg_logprob if hasattr(seg, "avg_logprob") else seg.get("avg_logprob")
        for seg in segments or []
    ]
    logprobs = [lp for lp in logprobs if lp is not None]
    if not logprobs:
        return None
    probability = sum(math.exp(lp) for lp in logprobs) / len(logprobs)
    return max(0, min(100, round(probability * 100)))


def _stream_size(handle: BinaryIO) -> int:
    position = handle.tell()
    handle.seek(0, io.SEEK_END)
    size = handle.tell()
    handle.seek(position)
    return size


def classify_engine_error(exc: Exception) -> Exception:
    """Translate an SDK/transport error into TranscriptionTransient or TranscriptionPermanent."""
    if isinstance(exc, (TranscriptionTransient, TranscriptionPermanent)):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, openai.APITimeoutError)):
        return TranscriptionTransient(f"Transcription timed out: {exc}")
    if isinstance(exc, openai.APIConnectionError):
        return TranscriptionTransient(f"Transcription engine unreachable: {exc}")
    if isinstance(exc, openai.RateLimitError):
        if getattr(exc, "code", None) == "insufficient_quota":
            return TranscriptionPermanent(f"Transcription quota exhausted: {exc}")
        return TranscriptionTransient(f"Transcription rate limited: {exc}")
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code >= 500 or exc.status_code in _TRANSIENT_STATUS_CODES:
            return TranscriptionTransient(
                f"Transcription engine error {exc.status_code}: {exc}"
            )
        return TranscriptionPermanent(
            f"Transcription rejected ({exc.status_code}): {exc}"
        )
    return TranscriptionPermanent(f"Unexpected transcription failure: {exc}")


class TranscriptionEngineClient:
    """
    Thin adapter around a single speech-to-text call.

    Imposes a hard timeout and classifies failures, but never retries:
    the enrichment worker owns the retry policy.
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        default_language: Optional[str] = None,
    ):
        self.timeout_seconds = timeout_seconds or settings.transcription_timeout_seconds
        self.model = model or settings.transcription_model
        self.default_language = default_language or settings.default_language
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy initialization of the SDK client."""
        if self._client is None:
            if not settings.openai_api_key:
                raise TranscriptionPermanent("OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                timeout=self.timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def transcribe(
        self,
        audio: AudioInput,
        filename: str = "audio.webm",
    ) -> TranscriptResult:
        """
        Transcribe one audio file.

        Args:
            audio: Raw bytes, a seekable binary handle, or a filesystem path
            filename: Name sent to the engine; its extension hints the container format

        Returns:
            TranscriptResult

        Raises:
            TranscriptionTransient: timeout, connection failure, 5xx, rate limit
            TranscriptionPermanent: empty audio, unsupported format, auth or quota failure
        """
        if isinstance(audio, (str, os.PathLike)):
            with open(audio, "rb") as handle:
                return await self.transcribe(handle, filename or os.path.basename(audio))

        handle = io.BytesIO(audio) if isinstance(audio, bytes) else audio
        if _stream_size(handle) == 0:
            raise TranscriptionPermanent("Audio is empty")

        try:
            response = await asyncio.wait_for(
                self.client.audio.transcriptions.create(
                    model=self.model,
                    file=(filename, handle),
                    response_format="verbose_json",
                ),
                timeout=self.timeout_seconds,
            )
        except (TranscriptionTransient, TranscriptionPermanent):
            raise
        except Exception as e:
            classified = classify_engine_error(e)
            logger.warning(f"Transcription call failed ({type(classified).__name__}): {e}")
            raise classified from e

        duration = getattr(response, "duration", None)
        language = normalize_language(getattr(response, "language", None)) or self.default_language

        return TranscriptResult(
            text=(getattr(response, "text", None) or "").strip(),
            duration_seconds=float(duration) if duration is not None else None,
            language=language,
            confidence=_confidence_from_segments(getattr(response, "segments", None)),
        )

