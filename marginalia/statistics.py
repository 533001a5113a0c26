"""Reading statistics aggregation for Marginalia.

Raw KOReader sessions (``PageStat``) are grouped into logical days and
reduced to per-book ``StatisticsRecord`` buckets. ``aggregate_statistics``
runs the whole chain in a fixed order:

1. day-boundary normalization (``bucket_by_day``)
2. threshold filtering (``filter_stats``)
3. scope filtering (``filter_to_library``), only when library hashes are given
4. completion derivation (``populate_completions``)
5. content-type tagging (``tag_content_types``)

Every step returns new objects; the input data is left untouched.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import AbstractSet, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .logging_config import get_logger
from .models import ContentType, LibraryItem
from .time_config import TimeConfig

logger = get_logger(__name__)

DayKey = Tuple[int, date]


class StatBook(BaseModel):
    """Row of KOReader's ``book`` table."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str = ""
    authors: str = ""
    md5: Optional[str] = None
    pages: Optional[int] = None
    notes: int = 0
    highlights: int = 0
    last_open: Optional[int] = None
    total_read_time: int = 0
    total_read_pages: int = 0
    series: Optional[str] = None
    language: Optional[str] = None


class PageStat(BaseModel):
    """One reading session on one page (unix seconds)."""

    model_config = ConfigDict(frozen=True)

    book_id: int
    md5: Optional[str] = None
    page: int
    start_time: int
    duration: int
    total_pages: Optional[int] = None


class StatisticsRecord(BaseModel):
    """Reading done on one book during one logical day."""

    model_config = ConfigDict(frozen=True)

    content_hash: Optional[str]
    date: date
    pages_read: int
    duration_seconds: int


class CompletionEvent(BaseModel):
    """A span of days during which every page of a book was read."""

    model_config = ConfigDict(frozen=True)

    start_date: date
    end_date: date
    reading_time: int
    session_days: int

    @property
    def calendar_days(self) -> int:
        return (self.end_date - self.start_date).days + 1


class BookStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    book: StatBook
    days: List[StatisticsRecord] = []
    completions: List[CompletionEvent] = []
    content_type: Optional[ContentType] = None

    @property
    def md5(self) -> Optional[str]:
        return self.book.md5

    @property
    def completion_count(self) -> int:
        return len(self.completions)


class StatisticsData(BaseModel):
    model_config = ConfigDict(frozen=True)

    books: List[BookStatistics] = []
    page_stats: List[PageStat] = []

    @property
    def total_read_time(self) -> int:
        return sum(entry.book.total_read_time for entry in self.books)

    @property
    def total_pages_read(self) -> int:
        return sum(entry.book.total_read_pages for entry in self.books)

    def get_book(self, md5: str) -> Optional[BookStatistics]:
        md5 = md5.lower()
        return next((entry for entry in self.books if entry.md5 == md5), None)

    def daily_totals(self) -> Dict[date, Tuple[int, int]]:
        """Map each logical day to (pages read, seconds) across all books."""
        totals: Dict[date, Tuple[int, int]] = {}
        for entry in self.books:
            for record in entry.days:
                pages, seconds = totals.get(record.date, (0, 0))
                totals[record.date] = (pages + record.pages_read, seconds + record.duration_seconds)
        return dict(sorted(totals.items()))


def bucket_by_day(page_stats: Iterable[PageStat], time_config: TimeConfig) -> Dict[DayKey, List[PageStat]]:
    """Group sessions by (book id, logical date), preserving session order."""
    buckets: Dict[DayKey, List[PageStat]] = defaultdict(list)
    for stat in page_stats:
        buckets[(stat.book_id, time_config.logical_date(stat.start_time))].append(stat)
    return dict(buckets)


def _distinct_pages(stats: Iterable[PageStat]) -> int:
    return len({stat.page for stat in stats})


def _recompute_totals(books: List[BookStatistics], page_stats: List[PageStat]) -> List[BookStatistics]:
    by_book: Dict[int, List[PageStat]] = defaultdict(list)
    for stat in page_stats:
        by_book[stat.book_id].append(stat)

    updated = []
    for entry in books:
        stats = by_book.get(entry.book.id, [])
        book = entry.book.model_copy(
            update={
                "total_read_time": sum(stat.duration for stat in stats),
                "total_read_pages": _distinct_pages(stats),
            }
        )
        updated.append(entry.model_copy(update={"book": book}))
    return updated


def filter_stats(
    data: StatisticsData,
    time_config: TimeConfig,
    min_pages_per_day: Optional[int] = None,
    min_time_per_day: Optional[int] = None,
) -> StatisticsData:
    """Drop every session of a (book, logical day) below the minimums.

    A day survives only when it has at least ``min_pages_per_day`` distinct
    pages and at least ``min_time_per_day`` seconds. Book totals are
    recomputed from the surviving sessions.
    """
    if min_pages_per_day is None and min_time_per_day is None:
        return data

    kept: List[PageStat] = []
    dropped_days = 0
    for stats in bucket_by_day(data.page_stats, time_config).values():
        if min_pages_per_day is not None and _distinct_pages(stats) < min_pages_per_day:
            dropped_days += 1
            continue
        if min_time_per_day is not None and sum(stat.duration for stat in stats) < min_time_per_day:
            dropped_days += 1
            continue
        kept.extend(stats)

    kept.sort(key=lambda stat: (stat.start_time, stat.book_id, stat.page))
    logger.debug(f"Threshold filter dropped {dropped_days} book-days")
    return StatisticsData(books=_recompute_totals(data.books, kept), page_stats=kept)


def filter_to_library(data: StatisticsData, library_hashes: AbstractSet[str]) -> StatisticsData:
    """Keep only books (and their sessions) whose md5 belongs to the library."""
    books = [entry for entry in data.books if entry.md5 and entry.md5 in library_hashes]
    book_ids = {entry.book.id for entry in books}
    page_stats = [stat for stat in data.page_stats if stat.book_id in book_ids]
    logger.debug(f"Library scope kept {len(books)} of {len(data.books)} books")
    return StatisticsData(books=books, page_stats=page_stats)


def build_day_records(data: StatisticsData, time_config: TimeConfig) -> StatisticsData:
    """Attach one StatisticsRecord per logical day to every book."""
    hashes = {entry.book.id: entry.md5 for entry in data.books}
    days: Dict[int, List[StatisticsRecord]] = defaultdict(list)
    for (book_id, day), stats in sorted(bucket_by_day(data.page_stats, time_config).items()):
        days[book_id].append(
            StatisticsRecord(
                content_hash=hashes.get(book_id),
                date=day,
                pages_read=_distinct_pages(stats),
                duration_seconds=sum(stat.duration for stat in stats),
            )
        )
    books = [entry.model_copy(update={"days": days.get(entry.book.id, [])}) for entry in data.books]
    return data.model_copy(update={"books": books})


def _completion_target(book: StatBook, stats: List[PageStat]) -> Optional[int]:
    if book.pages:
        return book.pages
    totals = [stat.total_pages for stat in stats if stat.total_pages]
    return totals[-1] if totals else None


def find_completions(book: StatBook, stats: List[PageStat], time_config: TimeConfig) -> List[CompletionEvent]:
    """Walk the book's days in order and emit an event each time every page was read.

    The page accumulator resets after each event so re-reads are counted again.
    """
    target = _completion_target(book, stats)
    if not target:
        return []

    per_day: Dict[date, List[PageStat]] = defaultdict(list)
    for stat in stats:
        per_day[time_config.logical_date(stat.start_time)].append(stat)

    events: List[CompletionEvent] = []
    seen_pages: set[int] = set()
    cycle_start: Optional[date] = None
    reading_time = 0
    session_days = 0

    for day in sorted(per_day):
        day_stats = per_day[day]
        if cycle_start is None:
            cycle_start = day
        seen_pages.update(stat.page for stat in day_stats)
        reading_time += sum(stat.duration for stat in day_stats)
        session_days += 1

        if len(seen_pages) >= target:
            events.append(
                CompletionEvent(
                    start_date=cycle_start,
                    end_date=day,
                    reading_time=reading_time,
                    session_days=session_days,
                )
            )
            seen_pages = set()
            cycle_start = None
            reading_time = 0
            session_days = 0

    return events


def populate_completions(data: StatisticsData, time_config: TimeConfig) -> StatisticsData:
    by_book: Dict[int, List[PageStat]] = defaultdict(list)
    for stat in data.page_stats:
        by_book[stat.book_id].append(stat)

    books = []
    for entry in data.books:
        completions = find_completions(entry.book, by_book.get(entry.book.id, []), time_config)
        books.append(entry.model_copy(update={"completions": completions}))
    return data.model_copy(update={"books": books})


def tag_content_types(data: StatisticsData, items: Iterable[LibraryItem]) -> StatisticsData:
    """Tag each book as book/comic by joining its md5 against the items' identities."""
    content_types = {item.partial_md5: item.content_type for item in items if item.partial_md5}
    books = [
        entry.model_copy(update={"content_type": content_types.get(entry.md5) if entry.md5 else None})
        for entry in data.books
    ]
    return data.model_copy(update={"books": books})


def aggregate_statistics(
    data: StatisticsData,
    time_config: TimeConfig,
    *,
    min_pages_per_day: Optional[int] = None,
    min_time_per_day: Optional[int] = None,
    library_hashes: Optional[AbstractSet[str]] = None,
    items: Iterable[LibraryItem] = (),
) -> StatisticsData:
    """Run the full aggregation chain and return a new StatisticsData.

    :param library_hashes: When given, restrict statistics to these md5s.
    :param items: Scanned library items, used for content-type tagging.
    """
    result = filter_stats(data, time_config, min_pages_per_day, min_time_per_day)
    if library_hashes is not None:
        result = filter_to_library(result, library_hashes)
    result = build_day_records(result, time_config)
    result = populate_completions(result, time_config)
    return tag_content_types(result, items)
