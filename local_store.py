"""
Local (device-scoped) storage for Biblia.
Holds favorites, notes, highlights, reading progress, reading settings,
search history and migration markers for the signed-out user.

Every key stores a JSON-encoded string, and the whole key space is
persisted as one JSON document with an atomic temp-file + rename write.
Reads never fail: a missing, unreadable or corrupt payload is treated as
an empty collection.
"""

import json
import logging
import os
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from entities import (
    Favorite,
    Highlight,
    Note,
    ReadingProgress,
    ReadingSettings,
    from_row,
    new_id,
    now_iso,
    clean_note_text,
    validate_color,
    validate_reference,
)

logger = logging.getLogger(__name__)

STORAGE_FILENAME = "local_storage.json"

KEYS = {
    "favorites": "biblia_favorites",
    "notes": "biblia_notes",
    "highlights": "biblia_highlights",
    "reading_progress": "biblia_reading_progress",
    "reading_settings": "biblia_reading_settings",
    "search_history": "biblia_search_history",
}

MAX_SEARCH_HISTORY = 10


def migration_key(user_id: str) -> str:
    return f"migrated:{user_id}"


class KeyValueStorage:
    """String key/value storage that survives process restarts."""

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        self.data_file = os.path.join(data_dir, STORAGE_FILENAME)
        self._items: Optional[Dict[str, str]] = None

    def _ensure_dir(self):
        """Ensure data directory exists."""
        if not os.path.exists(self.data_dir):
            os.makedirs(self.data_dir, exist_ok=True)

    def _load(self) -> Dict[str, str]:
        """Load the key space from disk (cached after the first read)."""
        if self._items is not None:
            return self._items

        if not os.path.exists(self.data_file):
            self._items = {}
            return self._items

        try:
            with open(self.data_file, "r", encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, dict):
                raise ValueError("storage document is not an object")
            self._items = {k: v for k, v in raw.items() if isinstance(v, str)}
        except (OSError, ValueError) as e:
            logger.warning("Discarding unreadable local storage %s: %s", self.data_file, e)
            self._items = {}

        return self._items

    def _flush(self):
        """Persist the key space to disk (atomic write)."""
        self._ensure_dir()
        try:
            tmp_path = self.data_file + ".tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._load(), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.data_file)
        except OSError as e:
            logger.error("Error saving local storage: %s", e)

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str):
        self._load()[key] = value
        self._flush()

    def remove_item(self, key: str):
        if self._load().pop(key, None) is not None:
            self._flush()

    def get_json(self, key: str, fallback: Any) -> Any:
        """Decode the JSON value stored at key, or return fallback if absent or corrupt."""
        raw = self.get_item(key)
        if not raw:
            return fallback
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Corrupt payload for %s, using default", key)
            return fallback

    def set_json(self, key: str, value: Any):
        self.set_item(key, json.dumps(value, ensure_ascii=False))


class _EntityListStorage:
    """Shared behaviour for collections stored as a newest-first JSON list."""

    key = ""
    entity_cls: Any = None

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    def get_all(self) -> List[Any]:
        raw = self.storage.get_json(self.key, [])
        if not isinstance(raw, list):
            logger.warning("Expected a list at %s, using empty collection", self.key)
            return []
        try:
            return [from_row(self.entity_cls, item) for item in raw]
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning("Malformed entries at %s, using empty collection: %s", self.key, e)
            return []

    def _save_all(self, items: List[Any]):
        self.storage.set_json(self.key, [asdict(item) for item in items])


class FavoritesStorage(_EntityListStorage):
    key = KEYS["favorites"]
    entity_cls = Favorite

    def add(self, book: int, chapter: int, verse: int) -> Favorite:
        """Add a favorite. Returns the existing entry if the verse is already a favorite."""
        validate_reference(book, chapter, verse)
        return self.insert(Favorite(book=book, chapter=chapter, verse=verse))

    def insert(self, favorite: Favorite) -> Favorite:
        favorites = self.get_all()
        for existing in favorites:
            if existing.matches(favorite.book, favorite.chapter, favorite.verse):
                return existing
        favorites.insert(0, favorite)
        self._save_all(favorites)
        return favorite

    def remove(self, book: int, chapter: int, verse: int):
        self._save_all([f for f in self.get_all() if not f.matches(book, chapter, verse)])

    def is_favorite(self, book: int, chapter: int, verse: int) -> bool:
        return any(f.matches(book, chapter, verse) for f in self.get_all())


class NotesStorage(_EntityListStorage):
    key = KEYS["notes"]
    entity_cls = Note

    def add(self, book: int, chapter: int, verse: int, content: str,
            title: Optional[str] = None) -> Note:
        return self.insert(Note.create(book, chapter, verse, content, title))

    def insert(self, note: Note) -> Note:
        notes = self.get_all()
        notes.insert(0, note)
        self._save_all(notes)
        return note

    def update(self, note_id: str, content: str, title: Optional[str] = None,
               updated_at: Optional[str] = None) -> Optional[Note]:
        """Replace a note's content (and title, if given) and refresh updated_at."""
        content, title = clean_note_text(content, title)
        notes = self.get_all()
        updated = None
        for n in notes:
            if n.id == note_id:
                n.content = content
                if title is not None:
                    n.title = title
                n.updated_at = updated_at or now_iso()
                updated = n
        self._save_all(notes)
        return updated

    def remove(self, note_id: str):
        self._save_all([n for n in self.get_all() if n.id != note_id])

    def get_for_verse(self, book: int, chapter: int, verse: int) -> List[Note]:
        return [n for n in self.get_all()
                if n.book == book and n.chapter == chapter and n.verse == verse]


class HighlightsStorage(_EntityListStorage):
    key = KEYS["highlights"]
    entity_cls = Highlight

    def add(self, book: int, chapter: int, verse_start: int, verse_end: int,
            color: str) -> Highlight:
        return self.insert(Highlight.create(book, chapter, verse_start, verse_end, color))

    def insert(self, highlight: Highlight) -> Highlight:
        """Store a highlight, replacing any highlight over the exact same range."""
        validate_color(highlight.color)
        highlights = [
            h for h in self.get_all()
            if not h.same_range(highlight.book, highlight.chapter,
                                highlight.verse_start, highlight.verse_end)
        ]
        highlights.insert(0, highlight)
        self._save_all(highlights)
        return highlight

    def remove(self, highlight_id: str):
        self._save_all([h for h in self.get_all() if h.id != highlight_id])

    def get_for_chapter(self, book: int, chapter: int) -> List[Highlight]:
        return [h for h in self.get_all() if h.book == book and h.chapter == chapter]


class SearchHistoryStorage:
    """Most recent unique search queries, newest first."""

    key = KEYS["search_history"]

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    def get_all(self) -> List[str]:
        raw = self.storage.get_json(self.key, [])
        if not isinstance(raw, list):
            return []
        return [q for q in raw if isinstance(q, str)]

    def add(self, query: str):
        trimmed = query.strip()
        if not trimmed:
            return
        history = [q for q in self.get_all() if q != trimmed]
        history.insert(0, trimmed)
        self.storage.set_json(self.key, history[:MAX_SEARCH_HISTORY])

    def remove(self, query: str):
        self.storage.set_json(self.key, [q for q in self.get_all() if q != query])

    def clear(self):
        self.storage.set_json(self.key, [])


class ReadingProgressStorage:
    """Reading plan progress, one record per plan id."""

    key = KEYS["reading_progress"]

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    def _get_map(self) -> Dict[str, Any]:
        raw = self.storage.get_json(self.key, {})
        return raw if isinstance(raw, dict) else {}

    def get(self, plan_id: str) -> Optional[ReadingProgress]:
        raw = self._get_map().get(plan_id)
        if raw is None:
            return None
        try:
            return from_row(ReadingProgress, raw)
        except (TypeError, AttributeError) as e:
            logger.warning("Malformed reading progress for plan %s: %s", plan_id, e)
            return None

    def save(self, progress: ReadingProgress):
        all_progress = self._get_map()
        all_progress[progress.plan_id] = asdict(progress)
        self.storage.set_json(self.key, all_progress)


class ReadingSettingsStorage:
    key = KEYS["reading_settings"]

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    def get(self) -> ReadingSettings:
        raw = self.storage.get_json(self.key, None)
        if not isinstance(raw, dict):
            return ReadingSettings()
        try:
            return from_row(ReadingSettings, raw)
        except (TypeError, ValueError) as e:
            logger.warning("Malformed reading settings, using defaults: %s", e)
            return ReadingSettings()

    def save(self, settings: ReadingSettings):
        self.storage.set_json(self.key, asdict(settings))


class MigrationMarkers:
    """Per-user flags recording that local data was already pushed to the remote store."""

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    def is_migrated(self, user_id: str) -> bool:
        return bool(self.storage.get_item(migration_key(user_id)))

    def mark_migrated(self, user_id: str):
        self.storage.set_item(migration_key(user_id), "1")


class LocalStore:
    """All device-scoped collections backed by one KeyValueStorage."""

    def __init__(self, data_dir: str):
        self.storage = KeyValueStorage(data_dir)
        self.favorites = FavoritesStorage(self.storage)
        self.notes = NotesStorage(self.storage)
        self.highlights = HighlightsStorage(self.storage)
        self.search_history = SearchHistoryStorage(self.storage)
        self.reading_progress = ReadingProgressStorage(self.storage)
        self.reading_settings = ReadingSettingsStorage(self.storage)
        self.migrations = MigrationMarkers(self.storage)
