"""Comic archive parser (CBZ, and CBR when RAR support is installed)."""

from __future__ import annotations

from pathlib import Path

from ..archive import IMAGE_CONTENT_TYPES, get_archive
from ..models import BookInfo, Identifier
from ..utils import image_mime_type
from .base import FormatParseError, dedupe
from .comicinfo import read_comicinfo


def parse_comic(path: Path) -> BookInfo:
    """Extract BookInfo from a comic archive.

    The first image in natural order is the cover; page count is the
    number of images unless ComicInfo.xml says otherwise.
    """
    with get_archive(path) as archive:
        images = archive.list_images()
        if not images:
            raise FormatParseError(f"No images found in archive {path.name}")
        cover_name = images[0]
        cover_data = archive.read(cover_name)
        info = read_comicinfo(archive)

    declared_mime = IMAGE_CONTENT_TYPES.get(Path(cover_name).suffix.lower())
    cover_mime = image_mime_type(cover_data, fallback=declared_mime)

    if info is None:
        return BookInfo(
            title=path.stem,
            pages=len(images),
            cover_data=cover_data,
            cover_mime_type=cover_mime,
        )

    identifiers = []
    if info.gtin:
        identifiers.append(Identifier(scheme="isbn", value=info.gtin))
    if info.web:
        identifiers.append(Identifier(scheme="url", value=info.web))

    return BookInfo(
        title=info.title or path.stem,
        authors=dedupe(info.authors),
        description=info.summary,
        language=info.language_iso,
        publisher=info.publisher,
        identifiers=identifiers,
        subjects=dedupe(info.subjects),
        series=info.series,
        series_number=info.number,
        pages=info.page_count or len(images),
        cover_data=cover_data,
        cover_mime_type=cover_mime,
    )
