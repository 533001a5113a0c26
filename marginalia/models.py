"""Library data models for Marginalia.

Everything here is built once per scan and never mutated afterwards,
so the pydantic models are frozen.
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from .sidecar import Annotation, BookStatus, SidecarMetadata


class ContentType(str, enum.Enum):
    BOOK = "book"
    COMIC = "comic"

    def __str__(self) -> str:
        return self.value


class LibraryItemFormat(str, enum.Enum):
    EPUB = "epub"
    FB2 = "fb2"
    MOBI = "mobi"
    CBZ = "cbz"
    CBR = "cbr"

    def __str__(self) -> str:
        return self.value

    @property
    def metadata_filename(self) -> str:
        """Name of the KOReader sidecar file for this format."""
        return f"metadata.{self.value}.lua"

    @property
    def content_type(self) -> ContentType:
        if self in (LibraryItemFormat.CBZ, LibraryItemFormat.CBR):
            return ContentType.COMIC
        return ContentType.BOOK


METADATA_FILENAMES = frozenset(fmt.metadata_filename for fmt in LibraryItemFormat)


def is_metadata_file(filename: str) -> bool:
    return filename in METADATA_FILENAMES


_SCHEME_LABELS = {
    "isbn": "ISBN",
    "google": "Google Books",
    "amazon": "Amazon",
    "asin": "Amazon",
    "mobi-asin": "Amazon",
    "goodreads": "Goodreads",
    "doi": "DOI",
    "kobo": "Kobo",
    "oclc": "WorldCat",
    "lccn": "Library of Congress",
    "hardcover": "Hardcover",
    "hardcover-slug": "Hardcover",
    "hardcover-edition": "Hardcover Edition",
}

_SCHEME_URLS = {
    "isbn": "https://www.worldcat.org/isbn/{}",
    "google": "https://books.google.com/books?id={}",
    "amazon": "https://www.amazon.com/dp/{}",
    "asin": "https://www.amazon.com/dp/{}",
    "mobi-asin": "https://www.amazon.com/dp/{}",
    "goodreads": "https://www.goodreads.com/book/show/{}",
    "doi": "https://doi.org/{}",
    "kobo": "https://www.kobo.com/ebook/{}",
    "oclc": "https://www.worldcat.org/oclc/{}",
    "lccn": "https://lccn.loc.gov/{}",
    "hardcover": "https://hardcover.app/books/{}",
    "hardcover-edition": "https://hardcover.app/books/{}",
}


class Identifier(BaseModel):
    model_config = ConfigDict(frozen=True)

    scheme: str
    value: str

    @property
    def display_scheme(self) -> str:
        return _SCHEME_LABELS.get(self.scheme.lower(), self.scheme)

    @property
    def url(self) -> Optional[str]:
        template = _SCHEME_URLS.get(self.scheme.lower())
        return template.format(self.value) if template else None

    @property
    def is_linkable(self) -> bool:
        return self.url is not None


class BookInfo(BaseModel):
    """Descriptive facts read from the book container itself."""

    model_config = ConfigDict(frozen=True)

    title: str
    authors: List[str] = []
    description: Optional[str] = None
    language: Optional[str] = None
    publisher: Optional[str] = None
    identifiers: List[Identifier] = []
    subjects: List[str] = []
    series: Optional[str] = None
    series_number: Optional[str] = None
    pages: Optional[int] = None
    cover_data: Optional[bytes] = None
    cover_mime_type: Optional[str] = None


class LibraryItem(BaseModel):
    """A library file joined with its KOReader sidecar (if any)."""

    model_config = ConfigDict(frozen=True)

    id: str
    book_info: BookInfo
    metadata: Optional[SidecarMetadata] = None
    file_path: Path
    format: LibraryItemFormat
    partial_md5: Optional[str] = None

    @property
    def status(self) -> BookStatus:
        if self.metadata and self.metadata.summary:
            return self.metadata.summary.status
        return BookStatus.UNKNOWN

    @property
    def rating(self) -> Optional[int]:
        if self.metadata and self.metadata.summary:
            return self.metadata.summary.rating
        return None

    @property
    def review_note(self) -> Optional[str]:
        if self.metadata and self.metadata.summary:
            return self.metadata.summary.note
        return None

    @property
    def progress_percentage(self) -> Optional[float]:
        return self.metadata.percent_finished if self.metadata else None

    @property
    def progress_percentage_display(self) -> int:
        pct = self.progress_percentage
        return round(pct * 100) if pct is not None else 0

    @property
    def annotations(self) -> List[Annotation]:
        return self.metadata.annotations if self.metadata else []

    @property
    def annotation_count(self) -> int:
        return len(self.annotations)

    @property
    def bookmark_count(self) -> int:
        return sum(1 for a in self.annotations if a.is_bookmark)

    @property
    def highlight_count(self) -> int:
        return sum(1 for a in self.annotations if a.is_highlight)

    @property
    def note_count(self) -> int:
        if self.metadata and self.metadata.stats and self.metadata.stats.notes:
            return self.metadata.stats.notes
        return 0

    @property
    def doc_pages(self) -> Optional[int]:
        if self.metadata and self.metadata.doc_pages is not None:
            return self.metadata.doc_pages
        return self.book_info.pages

    @property
    def language(self) -> Optional[str]:
        if self.book_info.language:
            return self.book_info.language
        return self.metadata.text_lang if self.metadata else None

    @property
    def series_display(self) -> Optional[str]:
        series, number = self.book_info.series, self.book_info.series_number
        if series and number:
            return f"{series} #{number}"
        return series

    @property
    def content_type(self) -> ContentType:
        return self.format.content_type

    @property
    def is_comic(self) -> bool:
        return self.content_type is ContentType.COMIC

    @property
    def is_book(self) -> bool:
        return self.content_type is ContentType.BOOK
