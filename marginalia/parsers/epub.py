"""EPUB parser using ebooklib."""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import ebooklib
from ebooklib import epub

from ..logging_config import get_logger
from ..models import BookInfo, Identifier
from ..utils import image_mime_type
from .base import FormatParseError, clean_text, dedupe

logger = get_logger(__name__)

OPF_SCHEME = "{http://www.idpf.org/2007/opf}scheme"

MetaEntry = Tuple[Optional[str], Dict[str, str]]


def _meta_values(book: epub.EpubBook, namespace: str, name: str) -> List[MetaEntry]:
    namespace = epub.NAMESPACES.get(namespace, namespace)
    return book.metadata.get(namespace, {}).get(name, [])


def _dc(book: epub.EpubBook, name: str) -> List[str]:
    return [value for value, _ in _meta_values(book, "DC", name) if value]


def _iter_meta(book: epub.EpubBook) -> Iterator[MetaEntry]:
    """Yield every (value, attributes) pair across all namespaces."""
    for tags in book.metadata.values():
        for entries in tags.values():
            for value, attrs in entries:
                yield value, attrs or {}


def _identifiers(book: epub.EpubBook) -> List[Identifier]:
    identifiers: List[Identifier] = []
    for value, attrs in _meta_values(book, "DC", "identifier"):
        if not value:
            continue
        value = value.strip()
        attrs = attrs or {}
        scheme = attrs.get(OPF_SCHEME) or attrs.get("scheme")
        if not scheme:
            parts = value.split(":")
            if parts[0].lower() == "urn" and len(parts) >= 3:
                scheme, value = parts[1], ":".join(parts[2:])
            elif len(parts) >= 2 and not value.lower().startswith("http"):
                scheme, value = parts[0], ":".join(parts[1:])
        if scheme and value:
            identifiers.append(Identifier(scheme=scheme.strip().lower(), value=value.strip()))
    return identifiers


def _series(book: epub.EpubBook) -> Tuple[Optional[str], Optional[str]]:
    """Read calibre series metadata, falling back to EPUB3 collections."""
    series: Optional[str] = None
    number: Optional[str] = None
    collections: Dict[str, str] = {}
    positions: Dict[str, str] = {}

    for value, attrs in _iter_meta(book):
        name = attrs.get("name")
        prop = attrs.get("property")
        if name == "calibre:series" and attrs.get("content"):
            series = attrs["content"].strip()
        elif name == "calibre:series_index" and attrs.get("content"):
            number = attrs["content"].strip()
        elif prop == "belongs-to-collection" and value:
            collections[attrs.get("id", "")] = value.strip()
        elif prop == "group-position" and value:
            positions[attrs.get("refines", "").lstrip("#")] = value.strip()

    if series is None and collections:
        coll_id, series = next(iter(collections.items()))
        number = positions.get(coll_id, number)

    if number and number.endswith(".0"):
        number = number[:-2]
    return series, number


def _find_cover_item(book: epub.EpubBook) -> Optional[Any]:
    items = list(book.get_items_of_type(ebooklib.ITEM_COVER))
    if items:
        return items[0]

    for value, attrs in _meta_values(book, "OPF", "cover"):
        cover_id = attrs.get("content") if attrs else None
        if cover_id:
            item = book.get_item_with_id(cover_id)
            if item is not None:
                return item

    for item in book.get_items_of_type(ebooklib.ITEM_IMAGE):
        name = item.get_name().lower()
        if "cover" in name or "couv" in name:
            return item
    return None


def _cover(book: epub.EpubBook) -> Tuple[Optional[bytes], Optional[str]]:
    item = _find_cover_item(book)
    if item is None:
        return None, None
    data = item.get_content()
    if not data:
        return None, None
    return data, image_mime_type(data, fallback=getattr(item, "media_type", None))


def parse_epub(path: Path) -> BookInfo:
    """Extract BookInfo from an EPUB container."""
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            book = epub.read_epub(str(path), options={"ignore_ncx": True})
    except Exception as exc:
        raise FormatParseError(f"Failed to read EPUB {path.name}: {exc}") from exc

    titles = _dc(book, "title")
    descriptions = _dc(book, "description")
    languages = _dc(book, "language")
    publishers = _dc(book, "publisher")
    series, series_number = _series(book)
    cover_data, cover_mime = _cover(book)
    if cover_data is None:
        logger.debug(f"No cover found in {path.name}")

    return BookInfo(
        title=(clean_text(titles[0]) if titles else None) or path.stem,
        authors=dedupe(_dc(book, "creator")),
        description=descriptions[0].strip() if descriptions else None,
        language=clean_text(languages[0]) if languages else None,
        publisher=clean_text(publishers[0]) if publishers else None,
        identifiers=_identifiers(book),
        subjects=dedupe(_dc(book, "subject")),
        series=series,
        series_number=series_number,
        cover_data=cover_data,
        cover_mime_type=cover_mime,
    )
