"""
Storage backends for the annotation services.
Each entity kind has a local backend (device storage) and a remote backend
(Supabase, scoped to one owner). BackendSelector picks one per operation
from the current session: remote when a user is signed in, local otherwise.
"""

from dataclasses import asdict
from typing import Callable, List, Optional

from entities import Favorite, Highlight, Note, ReadingProgress, from_row
from local_store import LocalStore
from remote_store import (
    FAVORITES_TABLE,
    HIGHLIGHTS_TABLE,
    NOTES_TABLE,
    READING_PROGRESS_TABLE,
    RemoteStore,
)


# ========== Favorites ==========

class LocalFavoritesBackend:
    is_remote = False

    def __init__(self, local: LocalStore):
        self.store = local.favorites

    async def list(self) -> List[Favorite]:
        return self.store.get_all()

    async def add(self, favorite: Favorite):
        self.store.insert(favorite)

    async def remove(self, book: int, chapter: int, verse: int):
        self.store.remove(book, chapter, verse)


class RemoteFavoritesBackend:
    is_remote = True

    def __init__(self, remote: RemoteStore, owner_id: str):
        self.remote = remote
        self.owner_id = owner_id

    async def list(self) -> List[Favorite]:
        rows = await self.remote.list(FAVORITES_TABLE, self.owner_id)
        return [from_row(Favorite, r) for r in rows]

    async def add(self, favorite: Favorite):
        await self.remote.insert(FAVORITES_TABLE, self.owner_id, {
            "book": favorite.book, "chapter": favorite.chapter, "verse": favorite.verse,
        })

    async def remove(self, book: int, chapter: int, verse: int):
        await self.remote.delete(FAVORITES_TABLE, self.owner_id,
                                 {"book": book, "chapter": chapter, "verse": verse})


# ========== Highlights ==========

class LocalHighlightsBackend:
    is_remote = False

    def __init__(self, local: LocalStore):
        self.store = local.highlights

    async def list(self) -> List[Highlight]:
        return self.store.get_all()

    async def add(self, highlight: Highlight):
        self.store.insert(highlight)

    async def remove(self, highlight_id: str):
        self.store.remove(highlight_id)


class RemoteHighlightsBackend:
    is_remote = True

    def __init__(self, remote: RemoteStore, owner_id: str):
        self.remote = remote
        self.owner_id = owner_id

    async def list(self) -> List[Highlight]:
        rows = await self.remote.list(HIGHLIGHTS_TABLE, self.owner_id)
        return [from_row(Highlight, r) for r in rows]

    async def add(self, highlight: Highlight):
        """Replace whatever highlight covers the exact same range, then insert."""
        await self.remote.delete(HIGHLIGHTS_TABLE, self.owner_id, {
            "book": highlight.book,
            "chapter": highlight.chapter,
            "verse_start": highlight.verse_start,
            "verse_end": highlight.verse_end,
        })
        row = asdict(highlight)
        del row["created_at"]
        await self.remote.insert(HIGHLIGHTS_TABLE, self.owner_id, row)

    async def remove(self, highlight_id: str):
        await self.remote.delete(HIGHLIGHTS_TABLE, self.owner_id, {"id": highlight_id})


# ========== Notes ==========

class LocalNotesBackend:
    is_remote = False

    def __init__(self, local: LocalStore):
        self.store = local.notes

    async def list(self) -> List[Note]:
        return self.store.get_all()

    async def add(self, note: Note):
        self.store.insert(note)

    async def update(self, note_id: str, content: str, title: Optional[str], updated_at: str):
        self.store.update(note_id, content, title, updated_at=updated_at)

    async def remove(self, note_id: str):
        self.store.remove(note_id)


class RemoteNotesBackend:
    is_remote = True

    def __init__(self, remote: RemoteStore, owner_id: str):
        self.remote = remote
        self.owner_id = owner_id

    async def list(self) -> List[Note]:
        rows = await self.remote.list(NOTES_TABLE, self.owner_id)
        return [from_row(Note, r) for r in rows]

    async def add(self, note: Note):
        row = asdict(note)
        del row["created_at"], row["updated_at"]
        await self.remote.insert(NOTES_TABLE, self.owner_id, row)

    async def update(self, note_id: str, content: str, title: Optional[str], updated_at: str):
        """Edit a note. A None title leaves the stored title untouched."""
        values = {"content": content, "updated_at": updated_at}
        if title is not None:
            values["title"] = title
        await self.remote.update(NOTES_TABLE, self.owner_id, note_id, values)

    async def remove(self, note_id: str):
        await self.remote.delete(NOTES_TABLE, self.owner_id, {"id": note_id})


# ========== Reading progress ==========

class LocalReadingProgressBackend:
    is_remote = False

    def __init__(self, local: LocalStore):
        self.store = local.reading_progress

    async def get(self, plan_id: str) -> Optional[ReadingProgress]:
        return self.store.get(plan_id)

    async def save(self, progress: ReadingProgress):
        self.store.save(progress)


class RemoteReadingProgressBackend:
    is_remote = True

    def __init__(self, remote: RemoteStore, owner_id: str):
        self.remote = remote
        self.owner_id = owner_id

    async def get(self, plan_id: str) -> Optional[ReadingProgress]:
        rows = await self.remote.select(READING_PROGRESS_TABLE, self.owner_id,
                                        {"plan_id": plan_id})
        return from_row(ReadingProgress, rows[0]) if rows else None

    async def save(self, progress: ReadingProgress):
        await self.remote.upsert(READING_PROGRESS_TABLE, self.owner_id, asdict(progress),
                                 on_conflict="user_id,plan_id")


class BackendSelector:
    """
    Chooses local or remote storage for one operation.

    owner_id is a callable returning the signed-in user id (or None); it is
    sampled each time a backend is requested, so an operation keeps the
    backend it started with even if the session changes mid-flight.
    """

    def __init__(self, local: LocalStore, remote: Optional[RemoteStore] = None,
                 owner_id: Callable[[], Optional[str]] = lambda: None):
        self.local = local
        self.remote = remote
        self._owner_id = owner_id

    def owner_id(self) -> Optional[str]:
        if self.remote is None:
            return None
        return self._owner_id()

    def _pick(self, local_cls, remote_cls):
        owner = self.owner_id()
        if owner:
            return remote_cls(self.remote, owner)
        return local_cls(self.local)

    def favorites(self):
        return self._pick(LocalFavoritesBackend, RemoteFavoritesBackend)

    def highlights(self):
        return self._pick(LocalHighlightsBackend, RemoteHighlightsBackend)

    def notes(self):
        return self._pick(LocalNotesBackend, RemoteNotesBackend)

    def reading_progress(self):
        return self._pick(LocalReadingProgressBackend, RemoteReadingProgressBackend)
