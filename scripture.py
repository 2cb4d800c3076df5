"""
Scripture content for Biblia.
Book catalogue, chapter fetching, verse lookup and plain-text search over
the static JSON content served alongside the app:

    /data/bible/<book>/<chapter>.json   list of verse strings
    /data/bible_data.json               [{abbrev, name, chapters: [[verse, ...], ...]}, ...]
"""

import logging
import unicodedata
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx

from reading_plan import day_of_year

logger = logging.getLogger(__name__)


class ContentError(Exception):
    """Static content could not be fetched."""


@dataclass
class Book:
    id: int
    name: str
    abbreviation: str
    chapters: int
    testament: str  # old or new


@dataclass
class Verse:
    verse: int
    text: str


@dataclass
class Chapter:
    book: int
    chapter: int
    verses: List[Verse]


@dataclass
class SearchResult:
    book_id: int
    book_name: str
    chapter: int
    verse: int
    text: str


_CANON = [
    ("Genesis", "Gen", 50), ("Exodus", "Exod", 40), ("Leviticus", "Lev", 27),
    ("Numbers", "Num", 36), ("Deuteronomy", "Deut", 34), ("Joshua", "Josh", 24),
    ("Judges", "Judg", 21), ("Ruth", "Ruth", 4), ("1 Samuel", "1Sam", 31),
    ("2 Samuel", "2Sam", 24), ("1 Kings", "1Kgs", 22), ("2 Kings", "2Kgs", 25),
    ("1 Chronicles", "1Chr", 29), ("2 Chronicles", "2Chr", 36), ("Ezra", "Ezra", 10),
    ("Nehemiah", "Neh", 13), ("Esther", "Esth", 10), ("Job", "Job", 42),
    ("Psalms", "Ps", 150), ("Proverbs", "Prov", 31), ("Ecclesiastes", "Eccl", 12),
    ("Song of Songs", "Song", 8), ("Isaiah", "Isa", 66), ("Jeremiah", "Jer", 52),
    ("Lamentations", "Lam", 5), ("Ezekiel", "Ezek", 48), ("Daniel", "Dan", 12),
    ("Hosea", "Hos", 14), ("Joel", "Joel", 3), ("Amos", "Amos", 9),
    ("Obadiah", "Obad", 1), ("Jonah", "Jonah", 4), ("Micah", "Mic", 7),
    ("Nahum", "Nah", 3), ("Habakkuk", "Hab", 3), ("Zephaniah", "Zeph", 3),
    ("Haggai", "Hag", 2), ("Zechariah", "Zech", 14), ("Malachi", "Mal", 4),
    ("Matthew", "Matt", 28), ("Mark", "Mark", 16), ("Luke", "Luke", 24),
    ("John", "John", 21), ("Acts", "Acts", 28), ("Romans", "Rom", 16),
    ("1 Corinthians", "1Cor", 16), ("2 Corinthians", "2Cor", 13), ("Galatians", "Gal", 6),
    ("Ephesians", "Eph", 6), ("Philippians", "Phil", 4), ("Colossians", "Col", 4),
    ("1 Thessalonians", "1Thess", 5), ("2 Thessalonians", "2Thess", 3), ("1 Timothy", "1Tim", 6),
    ("2 Timothy", "2Tim", 4), ("Titus", "Titus", 3), ("Philemon", "Phlm", 1),
    ("Hebrews", "Heb", 13), ("James", "Jas", 5), ("1 Peter", "1Pet", 5),
    ("2 Peter", "2Pet", 3), ("1 John", "1John", 5), ("2 John", "2John", 1),
    ("3 John", "3John", 1), ("Jude", "Jude", 1), ("Revelation", "Rev", 22),
]

BOOKS: List[Book] = [
    Book(id=i, name=name, abbreviation=abbrev, chapters=chapters,
         testament="old" if i <= 39 else "new")
    for i, (name, abbrev, chapters) in enumerate(_CANON, start=1)
]

# Popular verses, picked by day of year
VERSES_OF_THE_DAY = [
    (43, 3, 16), (19, 23, 1), (20, 3, 5), (45, 8, 28), (50, 4, 13),
    (23, 41, 10), (24, 29, 11), (19, 46, 1), (58, 11, 1), (19, 119, 105),
]


def get_book_by_id(book_id: int) -> Optional[Book]:
    if 1 <= book_id <= len(BOOKS):
        return BOOKS[book_id - 1]
    return None


def get_book_by_name(name: str) -> Optional[Book]:
    wanted = normalize(name)
    for book in BOOKS:
        if normalize(book.name) == wanted or normalize(book.abbreviation) == wanted:
            return book
    return None


def get_books_by_testament(testament: str) -> List[Book]:
    return [b for b in BOOKS if b.testament == testament]


def normalize(text: str) -> str:
    """Lowercase and strip accents for accent-insensitive matching."""
    decomposed = unicodedata.normalize("NFD", text.lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


class ScriptureClient:
    """
    Fetches scripture JSON from the content server.
    Reuses a persistent httpx.AsyncClient; successful chapters are cached.
    """

    def __init__(self, base_url: str, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._chapters: Dict[str, Chapter] = {}
        self._bible_data: Optional[List[Dict[str, Any]]] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Return a persistent httpx client (connection pooling)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            )
        return self._client

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch_json(self, path: str) -> Any:
        """GET a JSON document. Returns None on 404, raises ContentError on other failures."""
        client = await self._get_client()
        try:
            response = await client.get(path)
        except httpx.HTTPError as e:
            raise ContentError(f"Failed to fetch {path}: {e}") from e
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise ContentError(f"Failed to fetch {path} ({response.status_code})")
        try:
            return response.json()
        except ValueError as e:
            raise ContentError(f"Invalid JSON at {path}") from e

    async def get_chapter(self, book_id: int, chapter: int) -> Optional[Chapter]:
        """A chapter's verses, or None if the chapter does not exist or cannot be fetched."""
        book = get_book_by_id(book_id)
        if book is None or not 1 <= chapter <= book.chapters:
            return None

        key = f"{book_id}:{chapter}"
        if key in self._chapters:
            return self._chapters[key]

        try:
            verses = await self.fetch_json(f"/data/bible/{book_id}/{chapter}.json")
        except ContentError as e:
            logger.warning("Chapter %s unavailable: %s", key, e)
            return None
        if not isinstance(verses, list):
            return None

        result = Chapter(
            book=book_id,
            chapter=chapter,
            verses=[Verse(verse=i, text=text) for i, text in enumerate(verses, start=1)],
        )
        self._chapters[key] = result
        return result

    async def get_verse_text(self, book_id: int, chapter: int, verse: int) -> Optional[str]:
        ch = await self.get_chapter(book_id, chapter)
        if ch is None:
            return None
        for v in ch.verses:
            if v.verse == verse:
                return v.text
        return None

    async def _load_bible_data(self) -> List[Dict[str, Any]]:
        if self._bible_data is None:
            data = await self.fetch_json("/data/bible_data.json")
            if not isinstance(data, list):
                raise ContentError("bible_data.json is missing or malformed")
            self._bible_data = data
        return self._bible_data

    async def search(self, query: str, limit: int = 50) -> List[SearchResult]:
        """Case- and accent-insensitive substring search across the whole Bible."""
        needle = normalize(query.strip())
        if not needle:
            return []

        try:
            all_books = await self._load_bible_data()
        except ContentError as e:
            logger.warning("Search unavailable: %s", e)
            return []

        results: List[SearchResult] = []
        for book, book_data in zip(BOOKS, all_books):
            for chapter_num, verses in enumerate(book_data.get("chapters", []), start=1):
                for verse_num, text in enumerate(verses, start=1):
                    if needle in normalize(text):
                        results.append(SearchResult(
                            book_id=book.id, book_name=book.name,
                            chapter=chapter_num, verse=verse_num, text=text,
                        ))
                        if len(results) >= limit:
                            return results
        return results

    async def get_verse_of_the_day(
            self, now: Optional[datetime] = None) -> Optional[Tuple[Book, int, Verse]]:
        """(book, chapter, Verse) for today's featured verse, or None if unavailable."""
        book_id, chapter, verse_num = VERSES_OF_THE_DAY[day_of_year(now) % len(VERSES_OF_THE_DAY)]
        text = await self.get_verse_text(book_id, chapter, verse_num)
        if text is None:
            return None
        return get_book_by_id(book_id), chapter, Verse(verse=verse_num, text=text)
