"""Statistics store for Marginalia.

Reads KOReader's ``book`` and ``page_stat_data`` tables once, fully, and
returns raw ``StatisticsData``. Page numbers are rescaled to each book's
current pagination the same way KOReader's ``page_stat`` view does.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .database import PageStatRow, StatBookRow, readonly_session
from .logging_config import get_logger
from .statistics import BookStatistics, PageStat, StatBook, StatisticsData

logger = get_logger(__name__)


def rescale_page(page: int, total_pages: Optional[int], pages: Optional[int]) -> range:
    """Map a page recorded under ``total_pages`` onto the book's current ``pages``.

    Returns the (inclusive) span of current pages covered by the recorded page.
    """
    if not total_pages or not pages or total_pages == pages:
        return range(page, page + 1)
    first_page = ((page - 1) * pages) // total_pages + 1
    last_page = max(first_page, (page * pages) // total_pages)
    return range(first_page, last_page + 1)


class StatisticsRepository:
    """Data access layer over an open statistics session."""

    def __init__(self, session: Session):
        self.session = session

    def get_books(self) -> List[StatBook]:
        rows = self.session.exec(select(StatBookRow).order_by(StatBookRow.id)).all()
        return [
            StatBook(
                id=row.id,
                title=row.title or "",
                authors=row.authors or "",
                md5=(row.md5 or "").strip().lower() or None,
                pages=row.pages,
                notes=row.notes or 0,
                highlights=row.highlights or 0,
                last_open=row.last_open,
                total_read_time=row.total_read_time or 0,
                total_read_pages=row.total_read_pages or 0,
                series=row.series,
                language=row.language,
            )
            for row in rows
        ]

    def get_page_stats(self, books: Dict[int, StatBook]) -> List[PageStat]:
        """Return sessions for known books, rescaled and sorted by start time."""
        statement = select(PageStatRow).order_by(PageStatRow.start_time, PageStatRow.id_book, PageStatRow.page)
        stats: List[PageStat] = []
        orphans = 0
        for row in self.session.exec(statement):
            book = books.get(row.id_book)
            if book is None:
                orphans += 1
                continue
            span = rescale_page(row.page, row.total_pages, book.pages)
            # Split the session evenly across the pages it covers
            duration = (row.duration or 0) // len(span)
            for page in span:
                stats.append(
                    PageStat(
                        book_id=row.id_book,
                        md5=book.md5,
                        page=page,
                        start_time=row.start_time,
                        duration=duration,
                        total_pages=row.total_pages,
                    )
                )
        if orphans:
            logger.debug(f"Ignored {orphans} page stats without a matching book")
        return stats


def load_statistics(db_path: Path) -> Optional[StatisticsData]:
    """Read the statistics database at ``db_path``.

    Returns None (logged) when the file is missing or not a readable
    KOReader statistics database.
    """
    db_path = Path(db_path).expanduser()
    if not db_path.is_file():
        logger.info(f"Statistics database not found: {db_path}")
        return None

    try:
        with readonly_session(db_path) as session:
            repo = StatisticsRepository(session)
            books = repo.get_books()
            page_stats = repo.get_page_stats({book.id: book for book in books})
    except SQLAlchemyError as exc:
        logger.error(f"✗ {db_path.name} - UNREADABLE: {exc}")
        return None

    logger.info(f"Loaded statistics: {len(books)} books, {len(page_stats)} page sessions")
    return StatisticsData(
        books=[BookStatistics(book=book) for book in books],
        page_stats=page_stats,
    )
