"""Tests for the statistics store and aggregation."""

from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

from marginalia.models import BookInfo, ContentType, LibraryItem, LibraryItemFormat
from marginalia.repository import load_statistics, rescale_page
from marginalia.statistics import (
    aggregate_statistics,
    bucket_by_day,
    filter_stats,
    filter_to_library,
)
from marginalia.time_config import TimeConfig, parse_day_start

UTC_MIDNIGHT = TimeConfig(timezone=timezone.utc, day_start_minutes=0)
BOOK_MD5 = "a" * 32
OTHER_MD5 = "b" * 32


def ts(year, month, day, hour=12, minute=0, tz=timezone.utc) -> int:
    return int(datetime(year, month, day, hour, minute, tzinfo=tz).timestamp())


def _read_pages(db, book_id, day: datetime, pages, total_pages, seconds=60):
    start = int(day.timestamp())
    for offset, page in enumerate(pages):
        db.add_session(book_id, page, start + offset * seconds, seconds, total_pages)


def _item(md5: str, fmt: LibraryItemFormat) -> LibraryItem:
    return LibraryItem(
        id="x",
        book_info=BookInfo(title="x"),
        file_path=Path(f"/lib/x.{fmt.value}"),
        format=fmt,
        partial_md5=md5,
    )


# ---------------------------------------------------------------------------
# Logical day
# ---------------------------------------------------------------------------


def test_session_before_day_start_belongs_to_previous_day():
    config = TimeConfig(timezone=timezone.utc, day_start_minutes=4 * 60)
    assert config.logical_date(ts(2024, 3, 10, 0, 30)) == date(2024, 3, 9)
    assert config.logical_date(ts(2024, 3, 10, 4, 0)) == date(2024, 3, 10)


def test_logical_date_uses_timezone():
    plus_two = timezone(timedelta(hours=2))
    config = TimeConfig(timezone=plus_two, day_start_minutes=0)
    # 23:30 UTC is 01:30 the next day at UTC+2
    assert config.logical_date(ts(2024, 3, 10, 23, 30)) == date(2024, 3, 11)


def test_parse_day_start():
    assert parse_day_start("04:00") == 240
    assert parse_day_start("4") == 240
    assert parse_day_start("23:59") == 23 * 60 + 59
    for bad in ("24:00", "12:60", "noon", ""):
        with pytest.raises(ValueError):
            parse_day_start(bad)


def test_from_strings():
    config = TimeConfig.from_strings(None, "04:30")
    assert config.day_start_minutes == 270
    assert config.timezone is not None
    with pytest.raises(ValueError):
        TimeConfig.from_strings("Not/A_Zone", None)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


def test_missing_store_returns_none(tmp_path):
    assert load_statistics(tmp_path / "statistics.sqlite3") is None


def test_corrupt_store_returns_none(tmp_path):
    path = tmp_path / "statistics.sqlite3"
    path.write_bytes(b"this is not a sqlite database" * 100)
    assert load_statistics(path) is None


def test_store_without_tables_returns_none(tmp_path):
    import sqlite3

    path = tmp_path / "statistics.sqlite3"
    sqlite3.connect(path).close()
    assert load_statistics(path) is None


def test_load_statistics_reads_books_and_sessions(stats_db):
    book_id = stats_db.add_book("Dune", BOOK_MD5.upper(), pages=10)
    stats_db.add_session(book_id, 2, ts(2024, 1, 2), 30, 10)
    stats_db.add_session(book_id, 1, ts(2024, 1, 1), 60, 10)

    data = load_statistics(stats_db.path)

    assert [entry.book.title for entry in data.books] == ["Dune"]
    assert data.books[0].md5 == BOOK_MD5
    assert [(s.page, s.duration) for s in data.page_stats] == [(1, 60), (2, 30)]
    assert all(s.md5 == BOOK_MD5 for s in data.page_stats)


def test_pages_are_rescaled_to_current_pagination(stats_db):
    book_id = stats_db.add_book("Rescaled", BOOK_MD5, pages=100)
    stats_db.add_session(book_id, 10, ts(2024, 1, 1), 120, 50)

    data = load_statistics(stats_db.path)

    assert [(s.page, s.duration) for s in data.page_stats] == [(19, 60), (20, 60)]


def test_rescale_page():
    assert list(rescale_page(5, 100, 100)) == [5]
    assert list(rescale_page(5, None, 100)) == [5]
    assert list(rescale_page(10, 50, 100)) == [19, 20]
    # Shrinking pagination never yields an empty span
    assert list(rescale_page(3, 100, 10)) == [1]


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def test_bucket_by_day_groups_per_book_and_day(stats_db):
    book_id = stats_db.add_book("Dune", BOOK_MD5, pages=10)
    stats_db.add_session(book_id, 1, ts(2024, 1, 1, 10), 60, 10)
    stats_db.add_session(book_id, 2, ts(2024, 1, 1, 22), 60, 10)
    stats_db.add_session(book_id, 3, ts(2024, 1, 2, 1), 60, 10)

    buckets = bucket_by_day(load_statistics(stats_db.path).page_stats, UTC_MIDNIGHT)

    assert sorted((day, len(stats)) for (_, day), stats in buckets.items()) == [
        (date(2024, 1, 1), 2),
        (date(2024, 1, 2), 1),
    ]


def test_threshold_drops_short_days(stats_db):
    book_id = stats_db.add_book("Dune", BOOK_MD5, pages=100)
    _read_pages(stats_db, book_id, datetime(2024, 1, 1, 20, tzinfo=timezone.utc), range(1, 6), 100)
    _read_pages(stats_db, book_id, datetime(2024, 1, 2, 20, tzinfo=timezone.utc), range(6, 18), 100)
    data = load_statistics(stats_db.path)

    filtered = filter_stats(data, UTC_MIDNIGHT, min_pages_per_day=10)

    assert {s.page for s in filtered.page_stats} == set(range(6, 18))
    assert filtered.books[0].book.total_read_pages == 12
    assert filtered.books[0].book.total_read_time == 12 * 60


def test_threshold_on_time(stats_db):
    book_id = stats_db.add_book("Dune", BOOK_MD5, pages=100)
    _read_pages(stats_db, book_id, datetime(2024, 1, 1, 20, tzinfo=timezone.utc), range(1, 4), 100, seconds=10)
    _read_pages(stats_db, book_id, datetime(2024, 1, 2, 20, tzinfo=timezone.utc), range(4, 7), 100, seconds=300)
    data = load_statistics(stats_db.path)

    filtered = filter_stats(data, UTC_MIDNIGHT, min_time_per_day=15 * 60)
    assert {s.page for s in filtered.page_stats} == {4, 5, 6}


def test_dropped_day_never_appears_in_completions(stats_db):
    book_id = stats_db.add_book("Short", BOOK_MD5, pages=15)
    _read_pages(stats_db, book_id, datetime(2024, 1, 1, 20, tzinfo=timezone.utc), range(1, 6), 15)
    _read_pages(stats_db, book_id, datetime(2024, 1, 2, 20, tzinfo=timezone.utc), range(1, 16), 15)
    data = load_statistics(stats_db.path)

    result = aggregate_statistics(data, UTC_MIDNIGHT, min_pages_per_day=10)

    book = result.books[0]
    assert [record.date for record in book.days] == [date(2024, 1, 2)]
    assert len(book.completions) == 1
    assert book.completions[0].start_date == date(2024, 1, 2)
    assert book.completions[0].end_date == date(2024, 1, 2)


def test_completions_span_days_and_support_rereads(stats_db):
    book_id = stats_db.add_book("Dune", BOOK_MD5, pages=10)
    _read_pages(stats_db, book_id, datetime(2024, 1, 1, 20, tzinfo=timezone.utc), range(1, 6), 10)
    _read_pages(stats_db, book_id, datetime(2024, 1, 3, 20, tzinfo=timezone.utc), range(6, 11), 10)
    # Re-read months later in one sitting
    _read_pages(stats_db, book_id, datetime(2024, 6, 1, 9, tzinfo=timezone.utc), range(1, 11), 10)
    # Started a third time, unfinished
    _read_pages(stats_db, book_id, datetime(2024, 9, 1, 9, tzinfo=timezone.utc), range(1, 3), 10)
    data = load_statistics(stats_db.path)

    result = aggregate_statistics(data, UTC_MIDNIGHT)

    first, second = result.books[0].completions
    assert (first.start_date, first.end_date) == (date(2024, 1, 1), date(2024, 1, 3))
    assert first.session_days == 2
    assert first.calendar_days == 3
    assert first.reading_time == 10 * 60
    assert (second.start_date, second.end_date) == (date(2024, 6, 1), date(2024, 6, 1))
    assert second.session_days == 1

    entry = result.get_book(BOOK_MD5.upper())
    assert entry is not None
    assert entry.completion_count == 2
    assert result.get_book(OTHER_MD5) is None


def test_day_records(stats_db):
    book_id = stats_db.add_book("Dune", BOOK_MD5, pages=10)
    _read_pages(stats_db, book_id, datetime(2024, 1, 1, 20, tzinfo=timezone.utc), [1, 2, 2, 3], 10)
    data = load_statistics(stats_db.path)

    result = aggregate_statistics(data, UTC_MIDNIGHT)

    (record,) = result.books[0].days
    assert record.content_hash == BOOK_MD5
    assert record.date == date(2024, 1, 1)
    assert record.pages_read == 3
    assert record.duration_seconds == 4 * 60
    assert result.daily_totals() == {date(2024, 1, 1): (3, 240)}


def test_library_scope(stats_db):
    in_library = stats_db.add_book("Owned", BOOK_MD5, pages=10)
    elsewhere = stats_db.add_book("Borrowed", OTHER_MD5, pages=10)
    stats_db.add_session(in_library, 1, ts(2024, 1, 1), 60, 10)
    stats_db.add_session(elsewhere, 1, ts(2024, 1, 1), 60, 10)
    data = load_statistics(stats_db.path)

    scoped = aggregate_statistics(data, UTC_MIDNIGHT, library_hashes=frozenset({BOOK_MD5}))
    assert [entry.book.title for entry in scoped.books] == ["Owned"]
    assert {s.book_id for s in scoped.page_stats} == {in_library}

    unscoped = aggregate_statistics(data, UTC_MIDNIGHT, library_hashes=None)
    assert [entry.book.title for entry in unscoped.books] == ["Owned", "Borrowed"]

    assert filter_to_library(data, frozenset()).books == []


def test_content_type_tagging(stats_db):
    book_id = stats_db.add_book("Novel", BOOK_MD5, pages=10)
    comic_id = stats_db.add_book("Comic", OTHER_MD5, pages=10)
    stranger = stats_db.add_book("Unknown", "c" * 32, pages=10)
    for book in (book_id, comic_id, stranger):
        stats_db.add_session(book, 1, ts(2024, 1, 1), 60, 10)
    data = load_statistics(stats_db.path)

    items = [_item(BOOK_MD5, LibraryItemFormat.EPUB), _item(OTHER_MD5, LibraryItemFormat.CBZ)]
    result = aggregate_statistics(data, UTC_MIDNIGHT, items=items)

    types = {entry.book.title: entry.content_type for entry in result.books}
    assert types == {"Novel": ContentType.BOOK, "Comic": ContentType.COMIC, "Unknown": None}


def test_aggregation_does_not_mutate_input(stats_db):
    book_id = stats_db.add_book("Dune", BOOK_MD5, pages=2)
    _read_pages(stats_db, book_id, datetime(2024, 1, 1, 20, tzinfo=timezone.utc), [1, 2], 2)
    data = load_statistics(stats_db.path)
    before = data.model_dump()

    aggregate_statistics(data, UTC_MIDNIGHT, min_pages_per_day=1, library_hashes=frozenset())

    assert data.model_dump() == before
