"""Media registry: the authoritative store of media files and transcripts."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from diary_media.config import get_settings
from diary_media.db.models import (
    EnrichmentState,
    Entry,
    MediaFile,
    MediaKind,
    Transcription,
)
from diary_media.schemas.schemas import MediaFileResponse, TranscriptionResponse

logger = logging.getLogger(__name__)

settings = get_settings()


@dataclass
class EnrichmentResult:
    """Outcome of an enrichment attempt, applied by ``MediaService.mark_enriched``."""

    state: EnrichmentState
    text: Optional[str] = None
    duration_seconds: Optional[float] = None
    language: Optional[str] = None
    confidence: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def succeeded(
        cls,
        text: str,
        duration_seconds: Optional[float] = None,
        language: Optional[str] = None,
        confidence: Optional[int] = None,
    ) -> "EnrichmentResult":
        return cls(
            state=EnrichmentState.SUCCEEDED,
            text=text,
            duration_seconds=duration_seconds,
            language=language,
            confidence=confidence,
        )

    @classmethod
    def failed(cls, error: str) -> "EnrichmentResult":
        return cls(state=EnrichmentState.FAILED, error=error)


class MediaService:
    """Service for media file and transcription records."""

    async def create_media_file(
        self,
        db: AsyncSession,
        entry_id: str,
        storage_key: str,
        url: str,
        original_name: str,
        mime_type: str,
        media_kind: MediaKind,
        size_bytes: int,
        caption: Optional[str] = None,
        duration_seconds: Optional[float] = None,
        media_file_id: Optional[str] = None,
    ) -> MediaFile:
        """
        Create a media record.

        Audio starts ``pending``; every other kind is ``not_applicable``.
        The caller owns the transaction.
        """
        is_audio = media_kind == MediaKind.AUDIO
        media = MediaFile(
            id=media_file_id or str(uuid4()),
            entry_id=entry_id,
            storage_key=storage_key,
            url=url,
            original_name=original_name,
            mime_type=mime_type,
            media_kind=media_kind,
            size_bytes=size_bytes,
            caption=caption,
            duration_seconds=duration_seconds,
            enrichment_state=(
                EnrichmentState.PENDING if is_audio else EnrichmentState.NOT_APPLICABLE
            ),
            enrichment_attempts=0,
            pending_since=datetime.now(timezone.utc) if is_audio else None,
        )
        db.add(media)

        await db.flush()
        await db.refresh(media)

        return media

    async def get_media_file(
        self,
        db: AsyncSession,
        media_file_id: str,
        user_id: Optional[str] = None,
        include_transcription: bool = False,
    ) -> Optional[MediaFile]:
        """
        Get a media file by ID.

        Args:
            db: Database session
            media_file_id: Media file ID
            user_id: Restrict to media whose entry belongs to this user
            include_transcription: Whether to eagerly load the transcript

        Returns:
            MediaFile or None
        """
        query = (
            select(MediaFile)
            .where(MediaFile.id == media_file_id)
            .execution_options(populate_existing=True)
        )

        if user_id:
            query = query.join(Entry, Entry.id == MediaFile.entry_id).where(
                Entry.user_id == user_id
            )

        if include_transcription:
            query = query.options(selectinload(MediaFile.transcription))

        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def list_for_entry(
        self,
        db: AsyncSession,
        entry_id: str,
        user_id: Optional[str] = None,
    ) -> list[MediaFile]:
        """List media for an entry, oldest first, with transcripts loaded."""
        query = (
            select(MediaFile)
            .where(MediaFile.entry_id == entry_id)
            .options(selectinload(MediaFile.transcription))
            .order_by(MediaFile.created_at)
            .execution_options(populate_existing=True)
        )

        if user_id:
            query = query.join(Entry, Entry.id == MediaFile.entry_id).where(
                Entry.user_id == user_id
            )

        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_transcription(
        self,
        db: AsyncSession,
        media_file_id: str,
    ) -> Optional[Transcription]:
        """Get the transcript for a media file, if enrichment succeeded."""
        result = await db.execute(
            select(Transcription)
            .where(Transcription.media_file_id == media_file_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_stale_pending(
        self,
        db: AsyncSession,
        older_than: datetime,
        limit: int = 100,
    ) -> list[MediaFile]:
        """Audio media that entered ``pending`` before ``older_than``."""
        result = await db.execute(
            select(MediaFile)
            .where(
                MediaFile.media_kind == MediaKind.AUDIO,
                MediaFile.enrichment_state == EnrichmentState.PENDING,
                MediaFile.pending_since < older_than,
            )
            .order_by(MediaFile.pending_since)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_media_file(self, db: AsyncSession, media: MediaFile) -> str:
        """
        Delete a media record (its transcript cascades).

        Returns the storage key so the caller can remove the blob after commit.
        """
        storage_key = media.storage_key
        await db.delete(media)
        await db.flush()
        return storage_key

    async def record_attempt(self, db: AsyncSession, media_file_id: str):
        """Count one engine invocation against the media file."""
        await db.execute(
            update(MediaFile)
            .where(MediaFile.id == media_file_id)
            .values(enrichment_attempts=MediaFile.enrichment_attempts + 1)
        )

    async def reset_for_retry(self, db: AsyncSession, media_file_id: str) -> bool:
        """
        Move a ``failed`` audio file back to ``pending``.

        Compare-and-set: returns False if the file is not currently ``failed``.
        """
        result = await db.execute(
            update(MediaFile)
            .where(
                MediaFile.id == media_file_id,
                MediaFile.media_kind == MediaKind.AUDIO,
                MediaFile.enrichment_state == EnrichmentState.FAILED,
            )
            .values(
                enrichment_state=EnrichmentState.PENDING,
                enrichment_error=None,
                enrichment_attempts=0,
                enriched_at=None,
                pending_since=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    async def rearm_pending(self, db: AsyncSession, media_file_ids: list[str]):
        """Restart the stale clock for files that were just re-enqueued."""
        if not media_file_ids:
            return
        await db.execute(
            update(MediaFile)
            .where(
                MediaFile.id.in_(media_file_ids),
                MediaFile.enrichment_state == EnrichmentState.PENDING,
            )
            .values(pending_since=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )

    async def mark_enriched(
        self,
        db: AsyncSession,
        media_file_id: str,
        result: EnrichmentResult,
    ) -> Optional[MediaFile]:
        """
        Apply an enrichment outcome and commit.

        The media row is locked for the duration of the transaction so the
        state and the transcript row change together. Safe to call repeatedly:
        a later success replaces the transcript; a failure never demotes a
        record that already succeeded.

        Returns:
            The updated MediaFile, or None if the file no longer exists
            (deleted while enrichment was in flight) or is not audio.
        """
        if result.state not in (EnrichmentState.SUCCEEDED, EnrichmentState.FAILED):
            raise ValueError(f"Not a terminal enrichment state: {result.state}")

        row = await db.execute(
            select(MediaFile)
            .where(MediaFile.id == media_file_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        media = row.scalar_one_or_none()

        if media is None:
            logger.info(f"Media file {media_file_id} is gone; dropping enrichment result")
            await db.rollback()
            return None

        if media.media_kind != MediaKind.AUDIO:
            logger.warning(
                f"Ignoring enrichment result for non-audio media file {media_file_id}"
            )
            await db.rollback()
            return None

        if (
            result.state == EnrichmentState.FAILED
            and media.enrichment_state == EnrichmentState.SUCCEEDED
        ):
            logger.info(
                f"Media file {media_file_id} already succeeded; ignoring late failure"
            )
            # Nothing changed; end the transaction to release the row lock
            await db.commit()
            return media

        await db.execute(
            delete(Transcription).where(Transcription.media_file_id == media_file_id)
        )

        media.enrichment_state = result.state
        media.enriched_at = datetime.now(timezone.utc)

        if result.state == EnrichmentState.SUCCEEDED:
            db.add(
                Transcription(
                    id=str(uuid4()),
                    media_file_id=media_file_id,
                    text=result.text or "",
                    confidence=result.confidence,
                    language=result.language or settings.default_language,
                )
            )
            media.enrichment_error = None
            if result.duration_seconds is not None:
                media.duration_seconds = result.duration_seconds
        else:
            media.enrichment_error = result.error

        await db.commit()
        await db.refresh(media)

        logger.info(f"Media file {media_file_id} enrichment -> {result.state.value}")
        return media

    def content_url(self, media_file_id: str) -> str:
        """URL the stored bytes are served from, persisted on the record."""
        return f"{settings.public_base_url.rstrip('/')}/{media_file_id}/content"

    def media_to_response(
        self,
        media: MediaFile,
        transcription: Optional[Transcription] = None,
    ) -> MediaFileResponse:
        """Convert MediaFile model to response schema."""
        transcript = None
        if transcription is not None and media.enrichment_state == EnrichmentState.SUCCEEDED:
            transcript = TranscriptionResponse(
                id=transcription.id,
                media_file_id=transcription.media_file_id,
                text=transcription.text,
                confidence=transcription.confidence,
                language=transcription.language,
                created_at=transcription.created_at,
            )

        return MediaFileResponse(
            id=media.id,
            entry_id=media.entry_id,
            storage_key=media.storage_key,
            url=media.url,
            original_name=media.original_name,
            mime_type=media.mime_type,
            media_kind=media.media_kind.value,
            size_bytes=media.size_bytes,
            duration_seconds=media.duration_seconds,
            caption=media.caption,
            enrichment_state=media.enrichment_state.value,
            enrichment_error=media.enrichment_error,
            created_at=media.created_at,
            enriched_at=media.enriched_at,
            transcription=transcript,
        )


# Singleton instance
media_service = MediaService()
