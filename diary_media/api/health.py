"""Health check and system info routes."""

import redis
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from diary_media.config import get_settings
from diary_media.db.session import get_db
from diary_media.schemas.schemas import HealthResponse
from diary_media.services.storage import get_blob_store

router = APIRouter(tags=["System"])

settings = get_settings()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health status of the service and its dependencies.",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    blob_store=Depends(get_blob_store),
):
    """
    Health check endpoint.

    Returns the status of:
    - API server
    - Database connection
    - Redis connection (enrichment queue)
    - Blob storage
    """
    # Check Redis
    redis_status = "ok"
    try:
        r = redis.from_url(settings.redis_url, socket_connect_timeout=2)
        r.ping()
    except Exception:
        redis_status = "error"

    # Check storage
    try:
        storage_status = "ok" if blob_store.health_check() else "error"
    except Exception:
        storage_status = "error"

    # Check database
    db_status = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except Exception:
        db_status = "error"

    overall_status = "healthy"
    if any(s == "error" for s in [redis_status, storage_status, db_status]):
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        version="1.0.0",
        database=db_status,
        redis=redis_status,
        storage=storage_status,
    )


@router.get(
    "/v1/info",
    summary="Service information",
    description="Get general information about the service.",
)
async def service_info():
    """Get service information."""
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "environment": settings.app_env,
        "max_upload_bytes": settings.max_upload_bytes,
        "supported_mime_types": sorted(settings.supported_mime_types),
        "transcription_model": settings.transcription_model,
        "default_language": settings.default_language,
        "documentation": "/docs",
    }
