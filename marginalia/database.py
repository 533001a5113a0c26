"""Read-only access to the KOReader statistics database using SQLModel.

KOReader's ``statistics.sqlite3`` is owned by the reader; Marginalia opens it
with ``mode=ro`` and never writes to it or creates tables.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, create_engine


class StatBookRow(SQLModel, table=True):
    __tablename__ = "book"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: Optional[str] = None
    authors: Optional[str] = None
    notes: Optional[int] = None
    last_open: Optional[int] = None
    highlights: Optional[int] = None
    pages: Optional[int] = None
    series: Optional[str] = None
    language: Optional[str] = None
    md5: Optional[str] = None
    total_read_time: Optional[int] = None
    total_read_pages: Optional[int] = None


class PageStatRow(SQLModel, table=True):
    # page_stat_data has no primary key; (id_book, page, start_time) is unique in practice
    __tablename__ = "page_stat_data"

    id_book: int = Field(primary_key=True)
    page: int = Field(default=0, primary_key=True)
    start_time: int = Field(default=0, primary_key=True)
    duration: Optional[int] = None
    total_pages: Optional[int] = None


def get_readonly_engine(db_path: Path) -> Engine:
    """Return an engine that opens ``db_path`` read-only."""
    uri = f"{Path(db_path).resolve().as_uri()}?mode=ro"
    return create_engine(
        "sqlite://",
        creator=lambda: sqlite3.connect(uri, uri=True, check_same_thread=False),
    )


@contextmanager
def readonly_session(db_path: Path) -> Iterator[Session]:
    """Context manager yielding a session on the statistics database. Disposes on exit."""
    engine = get_readonly_engine(db_path)
    try:
        with Session(engine) as session:
            yield session
    finally:
        engine.dispose()
