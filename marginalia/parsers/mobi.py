"""MOBI parser reading PalmDB, MOBI and EXTH headers directly.

Only the metadata records are decoded; text records are never decompressed.

Layout reference:
- PalmDB header: 78 bytes, record count at 76, then 8-byte record entries
- record 0: 16-byte PalmDOC header, then the MOBI header ("MOBI" magic)
- EXTH block follows the MOBI header when flag 0x40 is set
"""

from __future__ import annotations

import struct
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..models import BookInfo, Identifier
from ..utils import image_mime_type
from .base import FormatParseError, clean_text, dedupe

PDB_HEADER_SIZE = 78
MOBI_MAGIC = b"MOBI"
EXTH_MAGIC = b"EXTH"
EXTH_FLAG = 0x40
NULL_INDEX = 0xFFFFFFFF

EXTH_AUTHOR = 100
EXTH_PUBLISHER = 101
EXTH_DESCRIPTION = 103
EXTH_ISBN = 104
EXTH_SUBJECT = 105
EXTH_ASIN = 113
EXTH_COVER_OFFSET = 201
EXTH_THUMB_OFFSET = 202
EXTH_ASIN_ALT = 504
EXTH_UPDATED_TITLE = 503
EXTH_LANGUAGE = 524

# Low byte of the Windows LCID stored in the MOBI header
_LOCALE_LANGUAGES = {
    0x04: "zh",
    0x05: "cs",
    0x06: "da",
    0x07: "de",
    0x08: "el",
    0x09: "en",
    0x0A: "es",
    0x0B: "fi",
    0x0C: "fr",
    0x0E: "hu",
    0x10: "it",
    0x11: "ja",
    0x12: "ko",
    0x13: "nl",
    0x14: "no",
    0x15: "pl",
    0x16: "pt",
    0x19: "ru",
    0x1D: "sv",
    0x1F: "tr",
    0x22: "uk",
}


def _records(data: bytes) -> List[Tuple[int, int]]:
    """Return (start, end) byte ranges for every PalmDB record."""
    if len(data) < PDB_HEADER_SIZE:
        raise FormatParseError("File too small for a PalmDB header")
    (count,) = struct.unpack_from(">H", data, 76)
    table_end = PDB_HEADER_SIZE + 8 * count
    if count == 0 or len(data) < table_end:
        raise FormatParseError("Truncated PalmDB record table")
    offsets = [struct.unpack_from(">I", data, PDB_HEADER_SIZE + 8 * i)[0] for i in range(count)]
    offsets.append(len(data))
    ranges = []
    for start, end in zip(offsets, offsets[1:]):
        if start > end or end > len(data):
            raise FormatParseError("Corrupt PalmDB record offsets")
        ranges.append((start, end))
    return ranges


def _parse_exth(block: bytes) -> Dict[int, List[bytes]]:
    records: Dict[int, List[bytes]] = {}
    if len(block) < 12 or block[:4] != EXTH_MAGIC:
        return records
    _, count = struct.unpack_from(">II", block, 4)
    pos = 12
    for _ in range(count):
        if pos + 8 > len(block):
            break
        rec_type, rec_len = struct.unpack_from(">II", block, pos)
        if rec_len < 8 or pos + rec_len > len(block):
            break
        records.setdefault(rec_type, []).append(block[pos + 8:pos + rec_len])
        pos += rec_len
    return records


def _decode(value: bytes, encoding: str) -> Optional[str]:
    return clean_text(value.decode(encoding, errors="replace").replace("\x00", ""))


def parse_mobi_bytes(data: bytes, fallback_title: str) -> BookInfo:
    ranges = _records(data)
    rec0_start, rec0_end = ranges[0]
    rec0 = data[rec0_start:rec0_end]

    pdb_name = data[:32].split(b"\x00", 1)[0].decode("latin-1", errors="replace")

    if len(rec0) < 24 or rec0[16:20] != MOBI_MAGIC:
        # Plain PalmDOC without a MOBI header: only the database name is known
        if data[60:68] != b"TEXtREAd":
            raise FormatParseError("Missing MOBI header")
        return BookInfo(title=clean_text(pdb_name.replace("_", " ")) or fallback_title)

    (header_length,) = struct.unpack_from(">I", rec0, 20)
    (text_encoding,) = struct.unpack_from(">I", rec0, 28)
    encoding = "utf-8" if text_encoding == 65001 else "cp1252"

    def header_u32(offset: int) -> Optional[int]:
        if offset + 4 > 16 + header_length or offset + 4 > len(rec0):
            return None
        return struct.unpack_from(">I", rec0, offset)[0]

    title = None
    name_offset, name_length = header_u32(84), header_u32(88)
    if name_offset is not None and name_length:
        title = _decode(rec0[name_offset:name_offset + name_length], encoding)

    language = None
    locale = header_u32(92)
    if locale is not None:
        language = _LOCALE_LANGUAGES.get(locale & 0xFF)

    first_image = header_u32(108)
    exth_flags = header_u32(128) or 0

    exth: Dict[int, List[bytes]] = {}
    if exth_flags & EXTH_FLAG:
        exth = _parse_exth(rec0[16 + header_length:])

    def exth_texts(rec_type: int) -> List[str]:
        return [t for t in (_decode(v, encoding) for v in exth.get(rec_type, [])) if t]

    def exth_first(rec_type: int) -> Optional[str]:
        values = exth_texts(rec_type)
        return values[0] if values else None

    title = exth_first(EXTH_UPDATED_TITLE) or title or clean_text(pdb_name.replace("_", " "))

    identifiers = []
    isbn = exth_first(EXTH_ISBN)
    if isbn:
        identifiers.append(Identifier(scheme="isbn", value=isbn))
    asin = exth_first(EXTH_ASIN) or exth_first(EXTH_ASIN_ALT)
    if asin:
        identifiers.append(Identifier(scheme="mobi-asin", value=asin))

    cover_data = cover_mime = None
    if first_image is not None and first_image != NULL_INDEX:
        for rec_type in (EXTH_COVER_OFFSET, EXTH_THUMB_OFFSET):
            raw = exth.get(rec_type)
            if not raw or len(raw[0]) < 4:
                continue
            (offset,) = struct.unpack_from(">I", raw[0], 0)
            index = first_image + offset
            if offset == NULL_INDEX or index >= len(ranges):
                continue
            start, end = ranges[index]
            candidate = data[start:end]
            mime = image_mime_type(candidate)
            if mime:
                cover_data, cover_mime = candidate, mime
                break

    return BookInfo(
        title=title or fallback_title,
        authors=dedupe(exth_texts(EXTH_AUTHOR)),
        description=exth_first(EXTH_DESCRIPTION),
        language=exth_first(EXTH_LANGUAGE) or language,
        publisher=exth_first(EXTH_PUBLISHER),
        identifiers=identifiers,
        subjects=dedupe(exth_texts(EXTH_SUBJECT)),
        cover_data=cover_data,
        cover_mime_type=cover_mime,
    )


def parse_mobi(path: Path) -> BookInfo:
    """Extract BookInfo from a MOBI file."""
    return parse_mobi_bytes(path.read_bytes(), path.stem)
