"""ComicInfo.xml parsing for Marginalia.

Reads ComicInfo.xml from inside CBZ/CBR archives and extracts metadata.
Tag names are matched case-insensitively and without namespace.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import List, Optional

from pydantic import BaseModel

from ..archive import Archive

# ComicInfo tag names (lowercased) -> model fields
TAG_MAP = {
    "title": "title",
    "series": "series",
    "number": "number",
    "count": "count",
    "writer": "writer",
    "penciller": "penciller",
    "summary": "summary",
    "publisher": "publisher",
    "genre": "genre",
    "tags": "tags",
    "languageiso": "language_iso",
    "web": "web",
    "pagecount": "page_count",
    "year": "year",
    "gtin": "gtin",
}

INT_FIELDS = ("count", "page_count", "year")


class ComicInfoParsed(BaseModel):
    """Metadata parsed from ComicInfo.xml (all optional)."""

    model_config = {"extra": "ignore"}

    title: Optional[str] = None
    series: Optional[str] = None
    number: Optional[str] = None
    count: Optional[int] = None
    writer: Optional[str] = None
    penciller: Optional[str] = None
    summary: Optional[str] = None
    publisher: Optional[str] = None
    genre: Optional[str] = None
    tags: Optional[str] = None
    language_iso: Optional[str] = None
    web: Optional[str] = None
    page_count: Optional[int] = None
    year: Optional[int] = None
    gtin: Optional[str] = None

    @property
    def authors(self) -> List[str]:
        names: List[str] = []
        for field in (self.writer, self.penciller):
            names.extend(_split_list(field))
        return names

    @property
    def subjects(self) -> List[str]:
        return _split_list(self.genre) + _split_list(self.tags)


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _text(elem: Optional[ET.Element]) -> Optional[str]:
    if elem is None or elem.text is None:
        return None
    t = elem.text.strip()
    return t or None


def _int_or_none(s: Optional[str]) -> Optional[int]:
    if s is None:
        return None
    try:
        return int(s.strip())
    except ValueError:
        return None


def _local_name(tag: str) -> str:
    """Return tag without namespace (e.g. '{http://...}Issue' -> 'issue')."""
    return tag.split("}")[-1].lower() if "}" in tag else tag.lower()


def parse_comicinfo_xml(xml_bytes: bytes) -> ComicInfoParsed:
    """Parse ComicInfo.xml content into a validated Pydantic model."""
    raw: dict[str, object] = {}
    try:
        root = ET.fromstring(xml_bytes)
    except ET.ParseError:
        return ComicInfoParsed()

    by_lower = {_local_name(elem.tag): elem for elem in root}

    for xml_tag_lower, our_key in TAG_MAP.items():
        text = _text(by_lower.get(xml_tag_lower))
        if text is None:
            continue
        if our_key in INT_FIELDS:
            val = _int_or_none(text)
            if val is not None:
                raw[our_key] = val
        else:
            raw[our_key] = text

    return ComicInfoParsed.model_validate(raw)


def read_comicinfo(archive: Archive) -> Optional[ComicInfoParsed]:
    """Read ComicInfo.xml from an open archive, or None when absent/empty."""
    name = next(
        (n for n in archive.list_names() if n.rsplit("/", 1)[-1].lower() == "comicinfo.xml"),
        None,
    )
    if name is None:
        return None
    raw = archive.read(name)
    if not raw.strip():
        return None
    return parse_comicinfo_xml(raw)
