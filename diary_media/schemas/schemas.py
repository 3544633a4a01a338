"""Pydantic schemas for request/response validation."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ============== Language Normalization ==============

# Language names reported by Whisper-style engines, mapped to ISO 639-1
LANGUAGE_ALIASES = {
    "eng": "en",
    "english": "en",
    "chinese": "zh",
    "mandarin": "zh",
    "cantonese": "zh",
    "german": "de",
    "spanish": "es",
    "castilian": "es",
    "russian": "ru",
    "korean": "ko",
    "french": "fr",
    "japanese": "ja",
    "portuguese": "pt",
    "turkish": "tr",
    "polish": "pl",
    "catalan": "ca",
    "valencian": "ca",
    "dutch": "nl",
    "flemish": "nl",
    "arabic": "ar",
    "swedish": "sv",
    "italian": "it",
    "indonesian": "id",
    "hindi": "hi",
    "finnish": "fi",
    "vietnamese": "vi",
    "hebrew": "he",
    "ukrainian": "uk",
    "greek": "el",
    "malay": "ms",
    "czech": "cs",
    "romanian": "ro",
    "moldavian": "ro",
    "moldovan": "ro",
    "danish": "da",
    "hungarian": "hu",
    "tamil": "ta",
    "norwegian": "no",
    "nynorsk": "nn",
    "thai": "th",
    "urdu": "ur",
    "croatian": "hr",
    "bulgarian": "bg",
    "lithuanian": "lt",
    "latin": "la",
    "maori": "mi",
    "malayalam": "ml",
    "welsh": "cy",
    "slovak": "sk",
    "telugu": "te",
    "persian": "fa",
    "latvian": "lv",
    "bengali": "bn",
    "serbian": "sr",
    "azerbaijani": "az",
    "slovenian": "sl",
    "kannada": "kn",
    "estonian": "et",
    "macedonian": "mk",
    "breton": "br",
    "basque": "eu",
    "icelandic": "is",
    "armenian": "hy",
    "nepali": "ne",
    "mongolian": "mn",
    "bosnian": "bs",
    "kazakh": "kk",
    "albanian": "sq",
    "swahili": "sw",
    "galician": "gl",
    "marathi": "mr",
    "punjabi": "pa",
    "panjabi": "pa",
    "sinhala": "si",
    "sinhalese": "si",
    "khmer": "km",
    "shona": "sn",
    "yoruba": "yo",
    "somali": "so",
    "afrikaans": "af",
    "occitan": "oc",
    "georgian": "ka",
    "belarusian": "be",
    "tajik": "tg",
    "sindhi": "sd",
    "gujarati": "gu",
    "amharic": "am",
    "yiddish": "yi",
    "lao": "lo",
    "uzbek": "uz",
    "faroese": "fo",
    "haitian creole": "ht",
    "haitian": "ht",
    "pashto": "ps",
    "pushto": "ps",
    "turkmen": "tk",
    "maltese": "mt",
    "sanskrit": "sa",
    "luxembourgish": "lb",
    "letzeburgesch": "lb",
    "myanmar": "my",
    "burmese": "my",
    "tibetan": "bo",
    "tagalog": "tl",
    "malagasy": "mg",
    "assamese": "as",
    "tatar": "tt",
    "lingala": "ln",
    "hausa": "ha",
    "bashkir": "ba",
    "javanese": "jv",
    "sundanese": "su",
}


def normalize_language(lang: str | None) -> str | None:
    """
    Normalize an engine-reported language to an ISO 639-1 code.

    Accepts two-letter codes (``"sv"``, ``"pt-BR"``) and known language
    names. Anything else returns None so the caller can apply its default.
    """
    if lang is None:
        return None
    lang = lang.lower().strip()
    if lang in LANGUAGE_ALIASES:
        return LANGUAGE_ALIASES[lang]
    code = lang.replace("_", "-").split("-")[0]
    if len(code) == 2 and code.isascii() and code.isalpha():
        return code
    return None


# ============== Media Schemas ==============


class TranscriptionResponse(BaseModel):
    """Transcript of an audio media file."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    media_file_id: str
    text: str
    confidence: Optional[int] = None
    language: str
    created_at: datetime


class MediaFileResponse(BaseModel):
    """Media file with its enrichment status."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    entry_id: str
    storage_key: str
    url: str
    original_name: str
    mime_type: str
    media_kind: str
    size_bytes: int
    duration_seconds: Optional[float] = None
    caption: Optional[str] = None
    enrichment_state: str
    enrichment_error: Optional[str] = None
    created_at: datetime
    enriched_at: Optional[datetime] = None
    transcription: Optional[TranscriptionResponse] = None


class MediaListResponse(BaseModel):
    """Media files attached to an entry."""

    entry_id: str
    media: list[MediaFileResponse]
    total: int


class EnrichRequestResponse(BaseModel):
    """Response after re-scheduling enrichment."""

    media_file_id: str
    enrichment_state: str
    enqueued: bool


# ============== API Key Schemas ==============


class ApiKeyCreate(BaseModel):
    """Request to create a new API key."""

    name: str = Field(..., min_length=1, max_length=100)
    username: str = Field(..., min_length=1, max_length=100)
    scopes: list[str] = Field(default=["media:read", "media:write"])
    rate_limit_per_minute: int = Field(60, ge=1, le=10000)
    rate_limit_per_hour: int = Field(500, ge=1, le=100000)
    expires_in_days: Optional[int] = Field(None, ge=1, le=365)


class ApiKeyResponse(BaseModel):
    """Response after creating an API key (only time full key is shown)."""

    id: str
    api_key: str  # Full key, shown only once
    key_prefix: str
    name: str
    user_id: str
    scopes: list[str]
    rate_limit_per_minute: int
    rate_limit_per_hour: int
    created_at: datetime
    expires_at: Optional[datetime] = None


# ============== Health & Misc Schemas ==============


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    redis: str
    storage: str

