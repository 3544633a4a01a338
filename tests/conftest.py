"""Pytest configuration and fixtures."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from diary_media.api.media import get_enrichment_scheduler
from diary_media.db.models import Base, Entry, User
from diary_media.db.session import build_engine, get_db
from diary_media.main import app
from diary_media.middleware.rate_limit import limiter
from diary_media.services.enrichment import BackoffPolicy, EnrichmentWorker
from diary_media.services.entry_service import Principal
from diary_media.services.ingestion import IngestionCoordinator
from diary_media.services.storage import LocalStorageService, get_blob_store


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a per-test SQLite database."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def blob_store(tmp_path) -> LocalStorageService:
    return LocalStorageService(root=str(tmp_path / "blobs"))


@pytest.fixture
def scheduled_jobs() -> list:
    """Jobs handed to the enrichment scheduler during a test."""
    return []


@pytest.fixture
def coordinator(blob_store, scheduled_jobs) -> IngestionCoordinator:
    return IngestionCoordinator(blob_store=blob_store, scheduler=scheduled_jobs.append)


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> User:
    user = User(username="diarist")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    user = User(username="someone-else")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
def principal(user: User) -> Principal:
    return Principal(user_id=user.id)


@pytest_asyncio.fixture
async def entry(db_session: AsyncSession, user: User) -> Entry:
    entry = Entry(user_id=user.id, title="Morning walk")
    db_session.add(entry)
    await db_session.commit()
    return entry


@pytest.fixture
def make_worker(session_maker, blob_store):
    """Build an enrichment worker around a stub engine; sleeps are recorded, not slept."""

    def _make(engine, max_retries: int = 3):
        sleeps: list[float] = []

        async def fake_sleep(seconds: float):
            sleeps.append(seconds)

        worker = EnrichmentWorker(
            session_maker=session_maker,
            blob_store=blob_store,
            engine_client=engine,
            max_retries=max_retries,
            backoff=BackoffPolicy(base_seconds=2, cap_seconds=60, jitter=0.2),
            sleep=fake_sleep,
        )
        worker.sleeps = sleeps
        return worker

    return _make


@pytest_asyncio.fixture
async def client(
    session_maker, blob_store, scheduled_jobs
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_enrichment_scheduler] = lambda: scheduled_jobs.append
    limiter.enabled = False

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
    limiter.enabled = True


@pytest_asyncio.fixture
async def api_key(db_session: AsyncSession, user: User) -> tuple[str, str]:
    """Create a test API key for ``user``."""
    from diary_media.auth.security import create_api_key

    api_key_model, full_key = await create_api_key(
        db_session,
        user_id=user.id,
        name="Test Key",
        scopes=["media:read", "media:write"],
    )
    await db_session.commit()

    return api_key_model.id, full_key


@pytest_asyncio.fixture
async def auth_headers(api_key: tuple[str, str]) -> dict:
    """Get auth headers with test API key."""
    _, full_key = api_key
    return {"Authorization": f"Bearer {full_key}"}
