"""Database models for the diary media pipeline."""

import enum
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from diary_media.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MediaKind(str, enum.Enum):
    """Coarse classification of an uploaded file."""

    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    OTHER = "other"


class EnrichmentState(str, enum.Enum):
    """Lifecycle of the post-upload enrichment step."""

    NOT_APPLICABLE = "not_applicable"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class User(Base):
    """Diary owner."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    username: Mapped[str] = mapped_column(String(100), unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    # Relationships
    api_keys: Mapped[list["ApiKey"]] = relationship(
        "ApiKey", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )


class ApiKey(Base):
    """API keys for authentication. Each key acts on behalf of one user."""

    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    key_hash: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    key_prefix: Mapped[str] = mapped_column(String(12), index=True)  # First 12 chars for lookup
    name: Mapped[str] = mapped_column(String(100))
    scopes: Mapped[list] = mapped_column(JSON, default=list)  # ["media:read", "media:write"]
    rate_limit_per_minute: Mapped[int] = mapped_column(Integer, default=60)
    rate_limit_per_hour: Mapped[int] = mapped_column(Integer, default=500)
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="api_keys")


class Entry(Base):
    """A diary entry. Only the columns the media pipeline needs live here."""

    __tablename__ = "entries"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    # Relationships
    media_files: Mapped[list["MediaFile"]] = relationship(
        "MediaFile", back_populates="entry", cascade="all, delete-orphan", passive_deletes=True
    )


class MediaFile(Base):
    """One uploaded asset attached to a diary entry."""

    __tablename__ = "media_files"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    entry_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("entries.id", ondelete="CASCADE"), index=True
    )

    # Blob location (immutable)
    storage_key: Mapped[str] = mapped_column(String(255), unique=True)
    url: Mapped[str] = mapped_column(Text)
    original_name: Mapped[str] = mapped_column(String(255))

    # Classification
    mime_type: Mapped[str] = mapped_column(String(100))
    media_kind: Mapped[MediaKind] = mapped_column(Enum(MediaKind))
    size_bytes: Mapped[int] = mapped_column(BigInteger)
    duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    caption: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Enrichment
    enrichment_state: Mapped[EnrichmentState] = mapped_column(
        Enum(EnrichmentState), default=EnrichmentState.NOT_APPLICABLE, index=True
    )
    enrichment_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    enrichment_attempts: Mapped[int] = mapped_column(Integer, default=0)
    # Set whenever the file (re)enters pending; the stale sweep measures from here
    pending_since: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), index=True
    )
    enriched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    entry: Mapped["Entry"] = relationship("Entry", back_populates="media_files")
    transcription: Mapped[Optional["Transcription"]] = relationship(
        "Transcription",
        back_populates="media_file",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Transcription(Base):
    """Recognized text for an audio media file. At most one per file."""

    __tablename__ = "transcriptions"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    media_file_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("media_files.id", ondelete="CASCADE"),
        unique=True,
        index=True,
    )
    text: Mapped[str] = mapped_column(Text)
    confidence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 0-100
    language: Mapped[str] = mapped_column(String(10), default="en")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    # Relationships
    media_file: Mapped["MediaFile"] = relationship("MediaFile", back_populates="transcription")
