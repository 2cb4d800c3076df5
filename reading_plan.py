"""
Daily reading plan for Biblia.
The current plan day is derived from the calendar date; no state is stored.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

TOTAL_DAYS = 365
MS_PER_DAY = 86_400_000
PLAN_PATH = "/data/bibleInOneYear.json"


@dataclass
class ReadingProgressSummary:
    current_day: int
    total_days: int
    percentage: int


@dataclass
class PlannedChapter:
    book_abbrev: str
    book_name: str
    chapter: int


@dataclass
class ReadingDay:
    day: int
    chapters: List[PlannedChapter] = field(default_factory=list)


@dataclass
class ReadingPlan:
    id: str
    title: str
    description: str
    total_days: int
    days: List[ReadingDay] = field(default_factory=list)

    def get_day(self, day: int) -> Optional[ReadingDay]:
        for d in self.days:
            if d.day == day:
                return d
        return None


def day_of_year(now: Optional[datetime] = None) -> int:
    """Whole days elapsed since local midnight on January 1st (Jan 1 is day 0)."""
    now = now or datetime.now()
    start_of_year = datetime(now.year, 1, 1, tzinfo=now.tzinfo)
    elapsed_ms = (now - start_of_year).total_seconds() * 1000
    return math.floor(elapsed_ms / MS_PER_DAY)


def get_reading_progress(now: Optional[datetime] = None) -> ReadingProgressSummary:
    """How far through the year-long plan today is."""
    current_day = day_of_year(now)
    # Round half up
    percentage = math.floor(current_day / TOTAL_DAYS * 100 + 0.5)
    return ReadingProgressSummary(
        current_day=current_day, total_days=TOTAL_DAYS, percentage=percentage
    )


def parse_reading_plan(raw: Dict[str, Any]) -> ReadingPlan:
    """Build a ReadingPlan from the bibleInOneYear.json payload."""
    return ReadingPlan(
        id=raw["id"],
        title=raw.get("title", ""),
        description=raw.get("description", ""),
        total_days=raw.get("totalDays", TOTAL_DAYS),
        days=[
            ReadingDay(
                day=d["day"],
                chapters=[
                    PlannedChapter(
                        book_abbrev=c["bookAbbrev"],
                        book_name=c["bookName"],
                        chapter=c["chapter"],
                    )
                    for c in d.get("chapters", [])
                ],
            )
            for d in raw.get("days", [])
        ],
    )


class ReadingPlanClient:
    """Loads the reading plan once through a content client (anything with fetch_json)."""

    def __init__(self, content):
        self.content = content
        self._plan: Optional[ReadingPlan] = None

    async def get_plan(self) -> ReadingPlan:
        """The reading plan. Raises if it cannot be loaded; a failed load is retried next call."""
        if self._plan is None:
            raw = await self.content.fetch_json(PLAN_PATH)
            if not isinstance(raw, dict):
                raise ValueError("Reading plan not found")
            self._plan = parse_reading_plan(raw)
        return self._plan

    async def get_reading_for_day(self, day: int) -> Optional[ReadingDay]:
        plan = await self.get_plan()
        return plan.get_day(day)

    async def get_today_reading(self, now: Optional[datetime] = None) -> Optional[ReadingDay]:
        """Today's entry. Plan days are numbered from 1, so Jan 1 is day 1."""
        return await self.get_reading_for_day(day_of_year(now) + 1)
