"""
One-time transfer of local annotations into the remote store on sign-in.

Runs at most once per user per device: a marker is written to local storage
after the first attempt, whatever its outcome. A kind is only copied when the
user has no remote rows of that kind yet, so existing remote data is never
merged with or overwritten by local data.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List

from local_store import LocalStore
from remote_store import (
    FAVORITES_TABLE,
    HIGHLIGHTS_TABLE,
    NOTES_TABLE,
    RemoteStore,
    RemoteStoreError,
)

logger = logging.getLogger(__name__)


def _favorite_row(f) -> Dict[str, Any]:
    return {"book": f.book, "chapter": f.chapter, "verse": f.verse}


def _note_row(n) -> Dict[str, Any]:
    return {"book": n.book, "chapter": n.chapter, "verse": n.verse,
            "content": n.content, "title": n.title}


def _highlight_row(h) -> Dict[str, Any]:
    return {"book": h.book, "chapter": h.chapter, "verse_start": h.verse_start,
            "verse_end": h.verse_end, "color": h.color}


class MigrationCoordinator:
    """Copies device-local favorites, notes and highlights to a user's remote tables."""

    def __init__(self, local: LocalStore, remote: RemoteStore):
        self.local = local
        self.remote = remote

    async def run(self, user_id: str) -> Dict[str, int]:
        """
        Migrate local data for user_id. Returns the number of rows inserted per table.

        Never raises for remote failures: they are logged, the affected kind is
        skipped, and the marker is still set so migration is not retried.
        """
        markers = self.local.migrations
        if markers.is_migrated(user_id):
            return {}

        collections = [
            (FAVORITES_TABLE, self.local.favorites.get_all(), _favorite_row),
            (NOTES_TABLE, self.local.notes.get_all(), _note_row),
            (HIGHLIGHTS_TABLE, self.local.highlights.get_all(), _highlight_row),
        ]

        if not any(items for _, items, _ in collections):
            markers.mark_migrated(user_id)
            return {}

        try:
            results = await asyncio.gather(*(
                self._migrate_kind(user_id, table, items, to_row)
                for table, items, to_row in collections
            ))
        finally:
            markers.mark_migrated(user_id)

        migrated = {table: count for (table, _, _), count in zip(collections, results)}
        logger.info("Local data migration for %s finished: %s", user_id, migrated)
        return migrated

    async def _migrate_kind(self, user_id: str, table: str, items: List[Any],
                            to_row: Callable[[Any], Dict[str, Any]]) -> int:
        if not items:
            return 0
        try:
            existing = await self.remote.count(table, user_id)
            if existing != 0:
                logger.info("Skipping %s migration: %d remote rows already exist", table, existing)
                return 0
            # Local ids are dropped; the remote store assigns its own.
            await self.remote.insert(table, user_id, [to_row(item) for item in items])
            return len(items)
        except RemoteStoreError as e:
            logger.warning("Migration of %s for %s failed: %s", table, user_id, e)
            return 0
