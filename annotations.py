"""
Annotation services: the in-memory view of favorites, highlights, notes and
reading progress that the UI reads from and writes through.

Mutations are optimistic. The in-memory collection changes synchronously,
before the first await, so it always reflects the latest call. The durable
write (local or remote, chosen when the call starts) runs afterwards. Remote
failures are logged and swallowed without rolling the in-memory change back;
remote read failures produce an empty collection.
"""

import logging
from dataclasses import replace
from typing import Awaitable, Generic, List, Optional, TypeVar

from backends import BackendSelector
from entities import (
    Favorite,
    Highlight,
    Note,
    ReadingProgress,
    clean_note_text,
    now_iso,
    validate_reference,
)
from remote_store import RemoteStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AnnotationService(Generic[T]):
    """Common load/persist plumbing for one entity kind."""

    kind = ""

    def __init__(self, backends: BackendSelector):
        self.backends = backends
        self._items: List[T] = []
        self.is_loading = False

    def _backend(self):
        raise NotImplementedError

    @property
    def items(self) -> List[T]:
        """Current collection, most recently created first."""
        return list(self._items)

    async def load(self) -> List[T]:
        """(Re)load the collection from the backend for the current session."""
        backend = self._backend()
        self.is_loading = True
        try:
            self._items = await backend.list()
        except RemoteStoreError as e:
            logger.warning("Could not load %s from remote store: %s", self.kind, e)
            self._items = []
        finally:
            self.is_loading = False
        return self.items

    async def _persist(self, operation: Awaitable[None], action: str):
        try:
            await operation
        except RemoteStoreError as e:
            # The optimistic in-memory change is kept.
            logger.error("Failed to %s %s remotely: %s", action, self.kind, e)


# ========== Favorites ==========

class FavoritesService(AnnotationService[Favorite]):
    kind = "favorites"

    def _backend(self):
        return self.backends.favorites()

    def is_favorite(self, book: int, chapter: int, verse: int) -> bool:
        return any(f.matches(book, chapter, verse) for f in self._items)

    def get_for_chapter(self, book: int, chapter: int) -> List[Favorite]:
        return [f for f in self._items if f.book == book and f.chapter == chapter]

    async def add(self, book: int, chapter: int, verse: int) -> Favorite:
        """Mark a verse as favorite. Adding an existing favorite changes nothing."""
        validate_reference(book, chapter, verse)
        for existing in self._items:
            if existing.matches(book, chapter, verse):
                return existing
        backend = self._backend()
        favorite = Favorite(book=book, chapter=chapter, verse=verse)
        self._items.insert(0, favorite)
        await self._persist(backend.add(favorite), "add")
        return favorite

    async def remove(self, book: int, chapter: int, verse: int):
        backend = self._backend()
        self._items = [f for f in self._items if not f.matches(book, chapter, verse)]
        await self._persist(backend.remove(book, chapter, verse), "remove")

    async def toggle(self, book: int, chapter: int, verse: int) -> bool:
        """Flip favorite membership for a verse. Returns the new membership."""
        if self.is_favorite(book, chapter, verse):
            await self.remove(book, chapter, verse)
            return False
        await self.add(book, chapter, verse)
        return True


# ========== Highlights ==========

class HighlightsService(AnnotationService[Highlight]):
    kind = "highlights"

    def _backend(self):
        return self.backends.highlights()

    async def add(self, book: int, chapter: int, verse_start: int, verse_end: int,
                  color: str) -> Highlight:
        """
        Highlight a verse range.

        A highlight over the exact same range is replaced (new id, fresh
        created_at). Overlapping but different ranges are kept side by side.
        """
        highlight = Highlight.create(book, chapter, verse_start, verse_end, color)
        backend = self._backend()
        self._items = [highlight] + [
            h for h in self._items
            if not h.same_range(book, chapter, verse_start, verse_end)
        ]
        await self._persist(backend.add(highlight), "add")
        return highlight

    async def remove(self, highlight_id: str):
        backend = self._backend()
        self._items = [h for h in self._items if h.id != highlight_id]
        await self._persist(backend.remove(highlight_id), "remove")

    def get_for_chapter(self, book: int, chapter: int) -> List[Highlight]:
        return [h for h in self._items if h.book == book and h.chapter == chapter]

    def get_highlight_covering(self, book: int, chapter: int, verse: int) -> Optional[Highlight]:
        """The most recently created highlight whose range contains the verse."""
        for h in self._items:
            if h.covers(book, chapter, verse):
                return h
        return None


# ========== Notes ==========

class NotesService(AnnotationService[Note]):
    kind = "notes"

    def _backend(self):
        return self.backends.notes()

    async def add(self, book: int, chapter: int, verse: int, content: str,
                  title: Optional[str] = None) -> Note:
        """Create a note. Raises ValidationError if content is blank."""
        note = Note.create(book, chapter, verse, content, title)
        backend = self._backend()
        self._items.insert(0, note)
        await self._persist(backend.add(note), "add")
        return note

    async def update(self, note_id: str, content: str,
                     title: Optional[str] = None) -> Optional[Note]:
        """Edit a note's content. The title is kept when none is given."""
        content, title = clean_note_text(content, title)
        backend = self._backend()
        updated_at = now_iso()
        updated = None
        for i, n in enumerate(self._items):
            if n.id == note_id:
                updated = replace(n, content=content, title=title or n.title,
                                  updated_at=updated_at)
                self._items[i] = updated
        stored_title = updated.title if updated else title
        await self._persist(backend.update(note_id, content, stored_title, updated_at), "update")
        return updated

    async def remove(self, note_id: str):
        backend = self._backend()
        self._items = [n for n in self._items if n.id != note_id]
        await self._persist(backend.remove(note_id), "remove")

    def get_for_verse(self, book: int, chapter: int, verse: int) -> List[Note]:
        return [n for n in self._items
                if n.book == book and n.chapter == chapter and n.verse == verse]

    def get_for_chapter(self, book: int, chapter: int) -> List[Note]:
        return [n for n in self._items if n.book == book and n.chapter == chapter]


# ========== Reading progress ==========

class ReadingProgressService:
    """Per-plan reading progress, stored locally or remotely like the annotations."""

    def __init__(self, backends: BackendSelector):
        self.backends = backends
        self._progress = {}

    def get(self, plan_id: str) -> Optional[ReadingProgress]:
        return self._progress.get(plan_id)

    async def load(self, plan_id: str) -> Optional[ReadingProgress]:
        backend = self.backends.reading_progress()
        try:
            progress = await backend.get(plan_id)
        except RemoteStoreError as e:
            logger.warning("Could not load reading progress for %s: %s", plan_id, e)
            progress = None
        if progress is None:
            self._progress.pop(plan_id, None)
        else:
            self._progress[plan_id] = progress
        return progress

    async def save(self, progress: ReadingProgress):
        backend = self.backends.reading_progress()
        self._progress[progress.plan_id] = progress
        try:
            await backend.save(progress)
        except RemoteStoreError as e:
            logger.error("Failed to save reading progress for %s: %s", progress.plan_id, e)

    async def mark_chapter(self, plan_id: str, chapter_key: str,
                           done: bool = True) -> ReadingProgress:
        """Record a chapter of the plan as read (or unread), starting the plan if needed."""
        current = self._progress.get(plan_id) or ReadingProgress(plan_id=plan_id)
        progress = replace(current, completed_chapters={
            **current.completed_chapters, chapter_key: done,
        })
        await self.save(progress)
        return progress
