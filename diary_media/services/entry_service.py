"""Entry lifecycle boundary consumed by the media pipeline."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from diary_media.db.models import Entry, MediaFile
from diary_media.errors import EntryNotFound

logger = logging.getLogger(__name__)

EntryDeletedListener = Callable[[str, list[str]], Awaitable[None] | None]


@dataclass(frozen=True)
class Principal:
    """The user on whose behalf an operation runs."""

    user_id: str


class EntryService:
    """
    Ownership checks and deletion for diary entries.

    Entry CRUD lives elsewhere; the pipeline only needs to know whether an
    entry exists for the acting user, and to hear about deletions.
    """

    def __init__(self):
        self._listeners: list[EntryDeletedListener] = []

    def on_entry_deleted(self, listener: EntryDeletedListener):
        """Register a callback invoked with (entry_id, storage_keys) after a delete commits."""
        self._listeners.append(listener)
        return listener

    async def get_owned_entry(
        self,
        db: AsyncSession,
        entry_id: str,
        user_id: str,
    ) -> Optional[Entry]:
        """Return the entry if it exists and belongs to ``user_id``."""
        result = await db.execute(
            select(Entry).where(Entry.id == entry_id, Entry.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def require_owned_entry(
        self,
        db: AsyncSession,
        entry_id: str,
        user_id: str,
    ) -> Entry:
        entry = await self.get_owned_entry(db, entry_id, user_id)
        if entry is None:
            raise EntryNotFound(f"Entry {entry_id} not found")
        return entry

    async def create_entry(
        self,
        db: AsyncSession,
        user_id: str,
        title: Optional[str] = None,
    ) -> Entry:
        entry = Entry(user_id=user_id, title=title)
        db.add(entry)
        await db.flush()
        return entry

    async def delete_entry(
        self,
        db: AsyncSession,
        entry_id: str,
        user_id: str,
        blob_store=None,
    ) -> list[str]:
        """
        Delete an entry; media and transcripts cascade in the database.

        Blobs are removed after the commit, best-effort. Any enrichment still
        in flight for this entry's media becomes a no-op at the registry.

        Returns:
            Storage keys of the media that belonged to the entry
        """
        entry = await self.require_owned_entry(db, entry_id, user_id)

        result = await db.execute(
            select(MediaFile.storage_key).where(MediaFile.entry_id == entry_id)
        )
        storage_keys = list(result.scalars().all())

        await db.delete(entry)
        await db.commit()
        logger.info(f"Deleted entry {entry_id} with {len(storage_keys)} media file(s)")

        if blob_store is not None:
            for key in storage_keys:
                try:
                    await asyncio.to_thread(blob_store.delete, key)
                except Exception as e:
                    logger.error(f"Failed to delete blob {key} for entry {entry_id}: {e}")

        for listener in self._listeners:
            try:
                outcome = listener(entry_id, storage_keys)
                if outcome is not None:
                    await outcome
            except Exception as e:
                logger.error(f"Entry-deleted listener failed for {entry_id}: {e}")

        return storage_keys


# Singleton instance
entry_service = EntryService()
