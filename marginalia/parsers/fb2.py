"""FictionBook 2 parser (plain .fb2 and zipped .fb2.zip)."""

from __future__ import annotations

import base64
import binascii
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List, Optional

from ..archive import get_archive
from ..models import BookInfo, Identifier
from ..utils import image_mime_type
from .base import FormatParseError, clean_text, dedupe


def _local_name(tag: str) -> str:
    """Return tag without namespace (e.g. '{http://...}title-info' -> 'title-info')."""
    return tag.split("}")[-1] if "}" in tag else tag


def _child(elem: Optional[ET.Element], name: str) -> Optional[ET.Element]:
    if elem is None:
        return None
    return next((c for c in elem if _local_name(c.tag) == name), None)


def _children(elem: Optional[ET.Element], name: str) -> List[ET.Element]:
    if elem is None:
        return []
    return [c for c in elem if _local_name(c.tag) == name]


def _text(elem: Optional[ET.Element]) -> Optional[str]:
    if elem is None:
        return None
    return clean_text("".join(elem.itertext()))


def _href(elem: ET.Element) -> Optional[str]:
    for key, value in elem.attrib.items():
        if _local_name(key) == "href":
            return value
    return None


def _author_name(author: ET.Element) -> Optional[str]:
    parts = [
        _text(_child(author, part))
        for part in ("first-name", "middle-name", "last-name")
    ]
    name = " ".join(p for p in parts if p)
    return name or _text(_child(author, "nickname"))


def read_fb2_bytes(path: Path) -> bytes:
    """Return the FB2 document bytes, unpacking .fb2.zip archives."""
    if path.name.lower().endswith(".zip"):
        with get_archive(path) as archive:
            member = next(
                (n for n in archive.list_names() if n.lower().endswith(".fb2")),
                None,
            )
            if member is None:
                raise FormatParseError(f"No .fb2 document inside {path.name}")
            return archive.read(member)
    return path.read_bytes()


def parse_fb2_document(data: bytes, fallback_title: str) -> BookInfo:
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise FormatParseError(f"XML parse error: {exc}") from exc

    description = _child(root, "description")
    title_info = _child(description, "title-info")
    publish_info = _child(description, "publish-info")
    document_info = _child(description, "document-info")
    if title_info is None:
        raise FormatParseError("Missing <title-info>")

    identifiers = []
    isbn = _text(_child(publish_info, "isbn"))
    if isbn:
        identifiers.append(Identifier(scheme="isbn", value=isbn))
    doc_id = _text(_child(document_info, "id"))
    if doc_id:
        identifiers.append(Identifier(scheme="fb2-id", value=doc_id))

    series = series_number = None
    sequence = _child(title_info, "sequence")
    if sequence is not None:
        series = clean_text(sequence.get("name"))
        series_number = clean_text(sequence.get("number"))

    cover_data = cover_mime = None
    cover_image = _child(_child(title_info, "coverpage"), "image")
    if cover_image is not None:
        cover_id = (_href(cover_image) or "").lstrip("#")
        for binary in _children(root, "binary"):
            if binary.get("id") == cover_id and binary.text:
                try:
                    cover_data = base64.b64decode("".join(binary.text.split()))
                except (binascii.Error, ValueError):
                    cover_data = None
                if cover_data:
                    cover_mime = image_mime_type(cover_data, fallback=binary.get("content-type"))
                break

    annotation = _child(title_info, "annotation")

    return BookInfo(
        title=_text(_child(title_info, "book-title")) or fallback_title,
        authors=dedupe(_author_name(a) for a in _children(title_info, "author")),
        description=clean_text(" ".join(annotation.itertext())) if annotation is not None else None,
        language=_text(_child(title_info, "lang")),
        publisher=_text(_child(publish_info, "publisher")),
        identifiers=identifiers,
        subjects=dedupe(_text(g) for g in _children(title_info, "genre")),
        series=series,
        series_number=series_number,
        cover_data=cover_data,
        cover_mime_type=cover_mime,
    )


def parse_fb2(path: Path) -> BookInfo:
    """Extract BookInfo from a .fb2 or .fb2.zip file."""
    fallback_title = path.stem
    if path.name.lower().endswith(".fb2.zip"):
        fallback_title = path.name[: -len(".fb2.zip")]
    return parse_fb2_document(read_fb2_bytes(path), fallback_title)
