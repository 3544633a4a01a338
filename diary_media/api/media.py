"""Media upload and retrieval API routes."""

import asyncio
import io
import logging
from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Request,
    UploadFile,
    status,
)
from fastapi.responses import FileResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from diary_media.auth.security import require_read, require_write
from diary_media.config import get_settings
from diary_media.db.models import EnrichmentState, MediaKind
from diary_media.db.session import get_db
from diary_media.errors import BlobNotFound, MediaNotFound
from diary_media.middleware.rate_limit import rate_limit_uploads
from diary_media.schemas.schemas import (
    EnrichRequestResponse,
    MediaFileResponse,
    MediaListResponse,
    TranscriptionResponse,
)
from diary_media.services.enrichment import EnrichmentJob, EnrichmentScheduler
from diary_media.services.entry_service import Principal, entry_service
from diary_media.services.ingestion import IngestionCoordinator
from diary_media.services.media_service import media_service
from diary_media.services.storage import LocalStorageService, get_blob_store
from diary_media.worker import enqueue_enrichment

logger = logging.getLogger(__name__)

settings = get_settings()

router = APIRouter(prefix="/v1", tags=["Media"])


def get_enrichment_scheduler() -> EnrichmentScheduler:
    """Scheduler used to hand audio to the enrichment worker."""
    return enqueue_enrichment


def get_ingestion_coordinator(
    scheduler: EnrichmentScheduler = Depends(get_enrichment_scheduler),
    blob_store=Depends(get_blob_store),
) -> IngestionCoordinator:
    return IngestionCoordinator(blob_store=blob_store, scheduler=scheduler)


def _upload_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    handle = upload.file
    position = handle.tell()
    handle.seek(0, io.SEEK_END)
    size = handle.tell()
    handle.seek(position)
    return size


@router.post(
    "/media",
    response_model=MediaFileResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a media file",
    description="Attach an image, audio or video file to a diary entry. "
    "Audio is transcribed in the background.",
)
@rate_limit_uploads()
async def upload_media(
    request: Request,
    file: UploadFile = File(..., description="The media file"),
    entry_id: str = Form(..., description="Diary entry to attach the file to"),
    caption: Optional[str] = Form(None, description="Optional caption"),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_write),
    coordinator: IngestionCoordinator = Depends(get_ingestion_coordinator),
):
    """
    Upload a media file.

    Returns as soon as the file is stored and registered. For audio the
    response carries ``enrichment_state = "pending"``; poll
    ``GET /v1/media/{id}`` for the transcript.
    """
    media = await coordinator.ingest(
        db,
        principal,
        entry_id=entry_id,
        stream=file.file,
        declared_mime_type=file.content_type,
        original_filename=file.filename,
        size_bytes=_upload_size(file),
        caption=caption,
    )
    return media_service.media_to_response(media)


@router.get(
    "/media/{media_file_id}",
    response_model=MediaFileResponse,
    summary="Get a media file",
    description="Get a media file with its enrichment state and transcript.",
)
async def get_media(
    media_file_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_read),
):
    """Get media details including the transcript once enrichment succeeds."""
    media = await media_service.get_media_file(
        db, media_file_id, principal.user_id, include_transcription=True
    )
    if not media:
        raise MediaNotFound(f"Media file {media_file_id} not found")

    return media_service.media_to_response(media, media.transcription)


@router.get(
    "/entries/{entry_id}/media",
    response_model=MediaListResponse,
    summary="List media for an entry",
)
async def list_entry_media(
    entry_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_read),
):
    """List all media attached to an entry, oldest first."""
    await entry_service.require_owned_entry(db, entry_id, principal.user_id)
    media = await media_service.list_for_entry(db, entry_id, principal.user_id)

    return MediaListResponse(
        entry_id=entry_id,
        media=[media_service.media_to_response(m, m.transcription) for m in media],
        total=len(media),
    )


@router.get(
    "/media/{media_file_id}/transcription",
    response_model=TranscriptionResponse,
    summary="Get the transcript of an audio file",
)
async def get_media_transcription(
    media_file_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_read),
):
    """Return the transcript, or 404 while it is pending or if enrichment failed."""
    media = await media_service.get_media_file(db, media_file_id, principal.user_id)
    if not media:
        raise MediaNotFound(f"Media file {media_file_id} not found")

    transcription = await media_service.get_transcription(db, media_file_id)
    if transcription is None or media.enrichment_state != EnrichmentState.SUCCEEDED:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No transcript for media file {media_file_id} "
            f"(enrichment {media.enrichment_state.value})",
        )

    return TranscriptionResponse(
        id=transcription.id,
        media_file_id=transcription.media_file_id,
        text=transcription.text,
        confidence=transcription.confidence,
        language=transcription.language,
        created_at=transcription.created_at,
    )


@router.get(
    "/media/{media_file_id}/content",
    summary="Download the stored file",
    description="Stream the uploaded bytes from local storage, or redirect to a "
    "short-lived presigned URL when blobs live in S3/MinIO.",
    response_class=FileResponse,
)
async def get_media_content(
    media_file_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_read),
    blob_store=Depends(get_blob_store),
):
    """Serve the original upload for the URL stored on the media record."""
    media = await media_service.get_media_file(db, media_file_id, principal.user_id)
    if not media:
        raise MediaNotFound(f"Media file {media_file_id} not found")

    if isinstance(blob_store, LocalStorageService):
        try:
            path = blob_store.local_path(media.storage_key)
        except BlobNotFound:
            logger.error(f"Blob {media.storage_key} for media file {media_file_id} is missing")
            raise MediaNotFound(f"Stored file for media file {media_file_id} is missing")
        return FileResponse(
            path,
            media_type=media.mime_type,
            filename=media.original_name,
            content_disposition_type="inline",
        )

    url = await asyncio.to_thread(
        blob_store.generate_presigned_url,
        media.storage_key,
        settings.presigned_url_expiry_seconds,
    )
    return RedirectResponse(url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@router.post(
    "/media/{media_file_id}/enrich",
    response_model=EnrichRequestResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Retry transcription",
    description="Re-schedule transcription for an audio file that failed or is still pending.",
)
async def retry_enrichment(
    media_file_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_write),
    scheduler: EnrichmentScheduler = Depends(get_enrichment_scheduler),
):
    """Move a failed audio file back to pending and enqueue it again."""
    media = await media_service.get_media_file(db, media_file_id, principal.user_id)
    if not media:
        raise MediaNotFound(f"Media file {media_file_id} not found")

    if media.media_kind != MediaKind.AUDIO:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Only audio files are transcribed",
        )

    if media.enrichment_state == EnrichmentState.FAILED:
        if not await media_service.reset_for_retry(db, media_file_id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Enrichment state changed concurrently; try again",
            )
        await db.commit()
    elif media.enrichment_state != EnrichmentState.PENDING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Transcription already {media.enrichment_state.value}",
        )

    enqueued = True
    try:
        scheduler(EnrichmentJob(media_file_id=media.id, storage_key=media.storage_key))
    except Exception as e:
        logger.error(f"Failed to enqueue enrichment for {media_file_id}: {e}")
        enqueued = False

    return EnrichRequestResponse(
        media_file_id=media_file_id,
        enrichment_state=EnrichmentState.PENDING.value,
        enqueued=enqueued,
    )


@router.delete(
    "/media/{media_file_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a media file",
)
async def delete_media(
    media_file_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_write),
    blob_store=Depends(get_blob_store),
):
    """Delete the record (and its transcript), then the stored bytes."""
    media = await media_service.get_media_file(db, media_file_id, principal.user_id)
    if not media:
        raise MediaNotFound(f"Media file {media_file_id} not found")

    storage_key = await media_service.delete_media_file(db, media)
    await db.commit()

    try:
        await asyncio.to_thread(blob_store.delete, storage_key)
    except Exception as e:
        logger.error(f"Failed to delete blob {storage_key}: {e}")


@router.delete(
    "/entries/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an entry and its media",
)
async def delete_entry(
    entry_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_write),
    blob_store=Depends(get_blob_store),
):
    """Delete an entry; media, transcripts and blobs go with it."""
    await entry_service.delete_entry(db, entry_id, principal.user_id, blob_store)
