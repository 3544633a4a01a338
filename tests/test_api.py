"""Tests for API endpoints."""

import threading

import boto3
import pytest
from httpx import AsyncClient

from diary_media.config import get_settings
from diary_media.errors import TranscriptionPermanent
from diary_media.main import app
from diary_media.services.enrichment import JobState
from diary_media.services.storage import StorageService, get_blob_store
from tests.helpers import HELLO_WORLD, PNG_HEADER, WEBM_HEADER, StubEngine, make_payload


async def _upload(client, headers, entry_id, payload, mime, name="upload.bin", caption=None):
    data = {"entry_id": entry_id}
    if caption is not None:
        data["caption"] = caption
    return await client.post(
        "/v1/media",
        headers=headers,
        files={"file": (name, payload, mime)},
        data=data,
    )


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test health check endpoint."""
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert "status" in data
    assert data["database"] == "ok"
    assert data["storage"] == "ok"


@pytest.mark.asyncio
async def test_root_endpoint(client: AsyncClient):
    """Test root endpoint."""
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "Diary Media Service"


@pytest.mark.asyncio
async def test_service_info(client: AsyncClient):
    response = await client.get("/v1/info")
    assert response.status_code == 200
    assert "audio/webm" in response.json()["supported_mime_types"]


@pytest.mark.asyncio
async def test_upload_without_auth(client: AsyncClient, entry):
    """Test upload without authentication."""
    response = await _upload(client, {}, entry.id, make_payload(PNG_HEADER, 64), "image/png")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_upload_with_bad_key(client: AsyncClient, entry):
    headers = {"Authorization": "Bearer dmk_" + "0" * 32}
    response = await _upload(client, headers, entry.id, make_payload(PNG_HEADER, 64), "image/png")
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_upload_image(client: AsyncClient, auth_headers: dict, entry, scheduled_jobs):
    """Images are stored and never enriched."""
    response = await _upload(
        client, auth_headers, entry.id, make_payload(PNG_HEADER, 300), "image/png",
        name="sunset.png", caption="Golden hour",
    )

    assert response.status_code == 201
    data = response.json()
    assert data["media_kind"] == "image"
    assert data["enrichment_state"] == "not_applicable"
    assert data["size_bytes"] == 300
    assert data["caption"] == "Golden hour"
    assert data["original_name"] == "sunset.png"
    assert data["url"] == f"/v1/media/{data['id']}/content"
    assert scheduled_jobs == []


@pytest.mark.asyncio
async def test_upload_audio_returns_pending(client: AsyncClient, auth_headers: dict, entry, scheduled_jobs):
    """Audio uploads return immediately with enrichment pending."""
    response = await _upload(
        client, auth_headers, entry.id, make_payload(WEBM_HEADER, 2048), "audio/webm", name="note.webm"
    )

    assert response.status_code == 201
    data = response.json()
    assert data["media_kind"] == "audio"
    assert data["enrichment_state"] == "pending"
    assert data["transcription"] is None
    assert [job.media_file_id for job in scheduled_jobs] == [data["id"]]


@pytest.mark.asyncio
async def test_upload_too_large(client: AsyncClient, auth_headers: dict, entry, monkeypatch):
    monkeypatch.setattr(get_settings(), "max_upload_bytes", 1024)

    response = await _upload(
        client, auth_headers, entry.id, make_payload(PNG_HEADER, 1025), "image/png"
    )

    assert response.status_code == 413
    assert response.json()["code"] == "payload_too_large"


@pytest.mark.asyncio
async def test_upload_unsupported_type(client: AsyncClient, auth_headers: dict, entry):
    response = await _upload(
        client, auth_headers, entry.id, b"%PDF-1.7 ...", "application/pdf", name="doc.pdf"
    )

    assert response.status_code == 415
    assert response.json()["code"] == "unsupported_media_type"


@pytest.mark.asyncio
async def test_upload_to_foreign_entry(client: AsyncClient, auth_headers: dict, db_session, other_user):
    """An entry owned by someone else looks exactly like a missing one."""
    from diary_media.services.entry_service import entry_service

    foreign = await entry_service.create_entry(db_session, other_user.id, "Not yours")
    await db_session.commit()

    response = await _upload(
        client, auth_headers, foreign.id, make_payload(PNG_HEADER, 64), "image/png"
    )

    assert response.status_code == 404
    assert response.json()["code"] == "entry_not_found"


@pytest.mark.asyncio
async def test_transcript_visible_after_enrichment(
    client: AsyncClient, auth_headers: dict, entry, scheduled_jobs, make_worker
):
    upload = await _upload(
        client, auth_headers, entry.id, make_payload(WEBM_HEADER, 2048), "audio/webm", name="note.webm"
    )
    media_id = upload.json()["id"]

    response = await client.get(f"/v1/media/{media_id}/transcription", headers=auth_headers)
    assert response.status_code == 404

    assert await make_worker(StubEngine(HELLO_WORLD)).process(scheduled_jobs[0]) == JobState.SUCCEEDED

    response = await client.get(f"/v1/media/{media_id}", headers=auth_headers)
    data = response.json()
    assert data["enrichment_state"] == "succeeded"
    assert data["duration_seconds"] == 4
    assert data["transcription"]["text"] == "hello world"

    response = await client.get(f"/v1/media/{media_id}/transcription", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["language"] == "en"


@pytest.mark.asyncio
async def test_list_entry_media(client: AsyncClient, auth_headers: dict, entry):
    await _upload(client, auth_headers, entry.id, make_payload(PNG_HEADER, 64), "image/png")
    await _upload(client, auth_headers, entry.id, make_payload(WEBM_HEADER, 64), "audio/webm")

    response = await client.get(f"/v1/entries/{entry.id}/media", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert [m["media_kind"] for m in data["media"]] == ["image", "audio"]


@pytest.mark.asyncio
async def test_retry_failed_enrichment(
    client: AsyncClient, auth_headers: dict, entry, scheduled_jobs, make_worker
):
    upload = await _upload(
        client, auth_headers, entry.id, make_payload(WEBM_HEADER, 2048), "audio/webm"
    )
    media_id = upload.json()["id"]

    # Still pending: re-enqueueing is allowed
    response = await client.post(f"/v1/media/{media_id}/enrich", headers=auth_headers)
    assert response.status_code == 202

    await make_worker(StubEngine(TranscriptionPermanent("corrupt audio"))).process(scheduled_jobs[0])
    response = await client.get(f"/v1/media/{media_id}", headers=auth_headers)
    assert response.json()["enrichment_state"] == "failed"
    assert response.json()["enrichment_error"] == "corrupt audio"

    response = await client.post(f"/v1/media/{media_id}/enrich", headers=auth_headers)
    assert response.status_code == 202
    assert response.json() == {
        "media_file_id": media_id,
        "enrichment_state": "pending",
        "enqueued": True,
    }
    assert len(scheduled_jobs) == 3

    await make_worker(StubEngine(HELLO_WORLD)).process(scheduled_jobs[-1])
    response = await client.post(f"/v1/media/{media_id}/enrich", headers=auth_headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_uploaded_bytes_served_from_media_url(client: AsyncClient, auth_headers: dict, entry):
    payload = make_payload(WEBM_HEADER, 2048)
    upload = await _upload(client, auth_headers, entry.id, payload, "audio/webm", name="note.webm")

    response = await client.get(upload.json()["url"], headers=auth_headers)

    assert response.status_code == 200
    assert response.content == payload
    assert response.headers["content-type"] == "audio/webm"


@pytest.mark.asyncio
async def test_media_content_requires_ownership(
    client: AsyncClient, auth_headers: dict, entry, db_session, other_user
):
    from diary_media.auth.security import create_api_key

    upload = await _upload(client, auth_headers, entry.id, make_payload(PNG_HEADER, 64), "image/png")
    _, other_key = await create_api_key(
        db_session, user_id=other_user.id, name="Other", scopes=["media:read"]
    )
    await db_session.commit()

    response = await client.get(upload.json()["url"], headers={"Authorization": f"Bearer {other_key}"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_media_content_with_missing_blob(client: AsyncClient, auth_headers: dict, entry, blob_store):
    upload = await _upload(client, auth_headers, entry.id, make_payload(PNG_HEADER, 64), "image/png")
    blob_store.delete(upload.json()["storage_key"])

    response = await client.get(upload.json()["url"], headers=auth_headers)

    assert response.status_code == 404
    assert response.json()["code"] == "media_not_found"


@pytest.mark.asyncio
async def test_media_content_redirects_to_presigned_s3_url(client: AsyncClient, auth_headers: dict, entry):
    upload = await _upload(client, auth_headers, entry.id, make_payload(PNG_HEADER, 64), "image/png")
    s3_store = StorageService(bucket="diary-media")
    s3_store._client = boto3.client(
        "s3", region_name="us-east-1", aws_access_key_id="test", aws_secret_access_key="test"
    )
    app.dependency_overrides[get_blob_store] = lambda: s3_store

    response = await client.get(upload.json()["url"], headers=auth_headers)

    assert response.status_code == 307
    location = response.headers["location"]
    assert upload.json()["storage_key"] in location
    assert "diary-media" in location

@pytest.mark.asyncio
async def test_enrich_rejects_images(client: AsyncClient, auth_headers: dict, entry):
    upload = await _upload(client, auth_headers, entry.id, make_payload(PNG_HEADER, 64), "image/png")

    response = await client.post(f"/v1/media/{upload.json()['id']}/enrich", headers=auth_headers)

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_delete_media(client: AsyncClient, auth_headers: dict, entry, blob_store):
    upload = await _upload(client, auth_headers, entry.id, make_payload(PNG_HEADER, 64), "image/png")
    data = upload.json()

    response = await client.delete(f"/v1/media/{data['id']}", headers=auth_headers)
    assert response.status_code == 204
    assert not blob_store.exists(data["storage_key"])

    response = await client.get(f"/v1/media/{data['id']}", headers=auth_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_blob_delete_runs_off_the_event_loop(client: AsyncClient, auth_headers: dict, entry, blob_store, monkeypatch):
    upload = await _upload(client, auth_headers, entry.id, make_payload(PNG_HEADER, 64), "image/png")
    loop_thread = threading.get_ident()
    delete_threads = []
    real_delete = blob_store.delete

    def recording_delete(key):
        delete_threads.append(threading.get_ident())
        real_delete(key)

    monkeypatch.setattr(blob_store, "delete", recording_delete)

    response = await client.delete(f"/v1/media/{upload.json()['id']}", headers=auth_headers)

    assert response.status_code == 204
    assert len(delete_threads) == 1
    assert delete_threads[0] != loop_thread

@pytest.mark.asyncio
async def test_delete_entry_removes_media(client: AsyncClient, auth_headers: dict, entry, blob_store):
    upload = await _upload(client, auth_headers, entry.id, make_payload(WEBM_HEADER, 64), "audio/webm")
    data = upload.json()

    response = await client.delete(f"/v1/entries/{entry.id}", headers=auth_headers)
    assert response.status_code == 204
    assert not blob_store.exists(data["storage_key"])

    response = await client.get(f"/v1/media/{data['id']}", headers=auth_headers)
    assert response.status_code == 404

    response = await client.get(f"/v1/entries/{entry.id}/media", headers=auth_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_other_user_cannot_read_media(
    client: AsyncClient, auth_headers: dict, entry, db_session, other_user
):
    from diary_media.auth.security import create_api_key

    upload = await _upload(client, auth_headers, entry.id, make_payload(PNG_HEADER, 64), "image/png")
    _, other_key = await create_api_key(
        db_session, user_id=other_user.id, name="Other", scopes=["media:read"]
    )
    await db_session.commit()

    response = await client.get(
        f"/v1/media/{upload.json()['id']}",
        headers={"Authorization": f"Bearer {other_key}"},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_read_only_key_cannot_upload(client: AsyncClient, entry, db_session, user):
    from diary_media.auth.security import create_api_key

    _, read_key = await create_api_key(db_session, user_id=user.id, name="Reader", scopes=["media:read"])
    await db_session.commit()

    response = await _upload(
        client, {"X-API-Key": read_key}, entry.id, make_payload(PNG_HEADER, 64), "image/png"
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_creates_api_key(client: AsyncClient):
    response = await client.post(
        "/v1/admin/api-keys",
        headers={"X-Admin-Key": get_settings().secret_key},
        json={"name": "Phone", "username": "new-diarist"},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["api_key"].startswith("dmk_")
    assert data["scopes"] == ["media:read", "media:write"]


@pytest.mark.asyncio
async def test_admin_requires_secret(client: AsyncClient):
    response = await client.post(
        "/v1/admin/api-keys",
        headers={"X-Admin-Key": "wrong"},
        json={"name": "Phone", "username": "new-diarist"},
    )
    assert response.status_code == 403
