"""
User annotation entities for Biblia.
Favorites, highlights, notes, reading progress and reading settings,
plus the validation rules shared by the local and remote stores.
"""

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

BOOK_COUNT = 66
HIGHLIGHT_COLORS = ("white", "gray", "black", "blue")
READING_LAYOUTS = ("verse", "paragraph")


class ValidationError(ValueError):
    """Invalid user input. The message is meant to be shown to the user."""


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    """Generate a unique entity ID."""
    return str(uuid.uuid4())


def from_row(cls, row: Dict[str, Any]):
    """Build a dataclass from a stored dict, ignoring unknown keys (e.g. user_id)."""
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in row.items() if k in known})


def validate_reference(book: int, chapter: int, verse: Optional[int] = None):
    """Check that a verse reference points inside the canon."""
    if not isinstance(book, int) or not 1 <= book <= BOOK_COUNT:
        raise ValidationError(f"Book must be between 1 and {BOOK_COUNT}")
    if not isinstance(chapter, int) or chapter < 1:
        raise ValidationError("Chapter must be 1 or greater")
    if verse is not None and (not isinstance(verse, int) or verse < 1):
        raise ValidationError("Verse must be 1 or greater")


def validate_color(color: str) -> None:
    if color not in HIGHLIGHT_COLORS:
        raise ValidationError(
            f"Invalid highlight color '{color}'. Use one of: {', '.join(HIGHLIGHT_COLORS)}"
        )


def clean_note_text(content: str, title: Optional[str] = None) -> Tuple[str, Optional[str]]:
    """Trim note content and title. Empty content is rejected, empty title becomes None."""
    content = (content or "").strip()
    if not content:
        raise ValidationError("Note content cannot be empty")
    title = (title or "").strip() or None
    return content, title


@dataclass
class Favorite:
    """A single verse the user marked as favorite."""
    book: int
    chapter: int
    verse: int
    created_at: str = field(default_factory=now_iso)

    def matches(self, book: int, chapter: int, verse: int) -> bool:
        return self.book == book and self.chapter == chapter and self.verse == verse


@dataclass
class Highlight:
    """A colored marking over an inclusive verse range within one chapter."""
    id: str
    book: int
    chapter: int
    verse_start: int
    verse_end: int
    color: str  # white, gray, black, blue
    created_at: str = field(default_factory=now_iso)

    @classmethod
    def create(cls, book: int, chapter: int, verse_start: int, verse_end: int,
               color: str) -> "Highlight":
        """Validate input and build a highlight with a fresh id and timestamp."""
        validate_reference(book, chapter, verse_start)
        validate_reference(book, chapter, verse_end)
        if verse_start > verse_end:
            raise ValidationError("Highlight start verse must not be after its end verse")
        validate_color(color)
        return cls(id=new_id(), book=book, chapter=chapter,
                   verse_start=verse_start, verse_end=verse_end, color=color)

    def same_range(self, book: int, chapter: int, verse_start: int, verse_end: int) -> bool:
        return (self.book == book and self.chapter == chapter
                and self.verse_start == verse_start and self.verse_end == verse_end)

    def covers(self, book: int, chapter: int, verse: int) -> bool:
        return (self.book == book and self.chapter == chapter
                and self.verse_start <= verse <= self.verse_end)


@dataclass
class Note:
    """A free-text note attached to one verse."""
    id: str
    book: int
    chapter: int
    verse: int
    content: str
    title: Optional[str] = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    @classmethod
    def create(cls, book: int, chapter: int, verse: int, content: str,
               title: Optional[str] = None) -> "Note":
        validate_reference(book, chapter, verse)
        content, title = clean_note_text(content, title)
        created = now_iso()
        return cls(id=new_id(), book=book, chapter=chapter, verse=verse,
                   content=content, title=title, created_at=created, updated_at=created)


@dataclass
class ReadingProgress:
    """Progress through one reading plan."""
    plan_id: str
    current_day: int = 1
    completed_chapters: Dict[str, bool] = field(default_factory=dict)
    started_at: str = field(default_factory=now_iso)
    finished_at: Optional[str] = None


@dataclass
class ReadingSettings:
    """Typography preferences for the reading view."""
    font_size: float = 1.05
    line_height: float = 1.85
    max_width: int = 68
    layout: str = "paragraph"  # verse or paragraph

    def __post_init__(self):
        if self.layout not in READING_LAYOUTS:
            raise ValidationError(f"Invalid layout '{self.layout}'")
