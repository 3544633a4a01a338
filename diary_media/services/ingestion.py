"""Ingestion coordinator: the entry point for media uploads."""

import asyncio
import io
import logging
import os
from typing import BinaryIO, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from diary_media.config import get_settings
from diary_media.db.models import MediaFile, MediaKind
from diary_media.errors import (
    BlobWriteFailed,
    PayloadTooLarge,
    RegistryWriteFailed,
    UnsupportedMediaType,
)
from diary_media.services.enrichment import EnrichmentJob, EnrichmentScheduler
from diary_media.services.entry_service import Principal, entry_service
from diary_media.services.media_service import media_service
from diary_media.services.validation import (
    SNIFF_BYTES,
    classify_mime_type,
    generate_storage_key,
    resolve_mime_type,
)

logger = logging.getLogger(__name__)

settings = get_settings()


class _PrefixedStream(io.RawIOBase):
    """Replays already-read leading bytes in front of a non-seekable stream."""

    def __init__(self, head: bytes, rest: BinaryIO):
        self._head = head
        self._rest = rest

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        if self._head:
            if size is None or size < 0:
                data, self._head = self._head + self._rest.read(), b""
                return data
            data, self._head = self._head[:size], self._head[size:]
            return data
        return self._rest.read(size)


def _peek(stream: BinaryIO) -> tuple[bytes, BinaryIO]:
    """Read the leading bytes used for sniffing without losing them."""
    if hasattr(stream, "seekable") and stream.seekable():
        position = stream.tell()
        head = stream.read(SNIFF_BYTES)
        stream.seek(position)
        return head, stream
    head = stream.read(SNIFF_BYTES)
    return head, _PrefixedStream(head, stream)


class IngestionCoordinator:
    """
    Validate an upload, persist the bytes, register the media and schedule
    enrichment for audio.

    ``ingest`` returns once the media record is committed; transcription
    happens later on the enrichment worker.
    """

    def __init__(
        self,
        blob_store,
        scheduler: EnrichmentScheduler,
        max_upload_bytes: Optional[int] = None,
        supported_mime_types: Optional[set[str]] = None,
    ):
        self.blob_store = blob_store
        self.scheduler = scheduler
        self.max_upload_bytes = max_upload_bytes or settings.max_upload_bytes
        self.supported_mime_types = supported_mime_types or settings.supported_mime_types

    async def ingest(
        self,
        db: AsyncSession,
        principal: Principal,
        entry_id: str,
        stream: BinaryIO,
        declared_mime_type: Optional[str],
        original_filename: Optional[str],
        size_bytes: int,
        caption: Optional[str] = None,
    ) -> MediaFile:
        """
        Ingest one uploaded file.

        Raises:
            PayloadTooLarge: declared or actual size exceeds the limit
            UnsupportedMediaType: neither declared nor sniffed type is accepted
            EntryNotFound: entry missing or not owned by the principal
            BlobWriteFailed: storage rejected the bytes; nothing was registered
            RegistryWriteFailed: the record could not be saved; the blob was discarded
        """
        # Cheap validation first, nothing written yet
        if size_bytes > self.max_upload_bytes:
            raise PayloadTooLarge(
                f"File is {size_bytes} bytes; the limit is {self.max_upload_bytes}"
            )

        head, stream = _peek(stream)
        mime_type = resolve_mime_type(
            declared_mime_type, head, original_filename, self.supported_mime_types
        )
        if mime_type is None:
            raise UnsupportedMediaType(
                f"Unsupported media type: {declared_mime_type or 'unknown'}"
            )

        await entry_service.require_owned_entry(db, entry_id, principal.user_id)

        media_kind = classify_mime_type(mime_type)
        storage_key = generate_storage_key(original_filename, mime_type)

        # Blob first, so a registered media file always has its bytes
        try:
            written = await asyncio.to_thread(
                self.blob_store.write,
                storage_key,
                stream,
                mime_type,
                self.max_upload_bytes,
            )
        except PayloadTooLarge:
            logger.warning(f"Upload for entry {entry_id} exceeded the limit while streaming")
            await self._discard_blob(storage_key)
            raise
        except Exception as e:
            logger.error(f"Blob write failed for {storage_key}: {e}")
            raise BlobWriteFailed("Could not store the uploaded file") from e

        if written != size_bytes:
            logger.warning(
                f"Declared size {size_bytes} differs from stored size {written} for {storage_key}"
            )

        media_file_id = str(uuid4())
        try:
            media = await media_service.create_media_file(
                db,
                media_file_id=media_file_id,
                entry_id=entry_id,
                storage_key=storage_key,
                url=media_service.content_url(media_file_id),
                original_name=os.path.basename(original_filename or storage_key),
                mime_type=mime_type,
                media_kind=media_kind,
                size_bytes=written,
                caption=caption,
            )
            await db.commit()
        except Exception as e:
            logger.error(f"Registry write failed for {storage_key}: {e}")
            try:
                await db.rollback()
            except Exception as rollback_error:
                logger.error(f"Rollback failed after registry error: {rollback_error}")
            await self._discard_blob(storage_key)
            raise RegistryWriteFailed("Could not record the uploaded file") from e

        logger.info(
            f"Ingested {media_kind.value} media {media.id} ({written} bytes) for entry {entry_id}"
        )

        if media_kind == MediaKind.AUDIO:
            self._schedule(EnrichmentJob(media_file_id=media.id, storage_key=storage_key))

        return media

    def _schedule(self, job: EnrichmentJob):
        # The record stays pending and the stale-pending sweep picks it up if this fails
        try:
            self.scheduler(job)
        except Exception as e:
            logger.error(f"Failed to enqueue enrichment for {job.media_file_id}: {e}")

    async def _discard_blob(self, storage_key: str):
        """Compensating delete. Failures are logged, never raised."""
        try:
            await asyncio.to_thread(self.blob_store.delete, storage_key)
        except Exception as e:
            logger.error(f"Failed to delete orphaned blob {storage_key}: {e}")
