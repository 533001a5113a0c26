"""Per-format BookInfo extraction.

The format set is closed: ``PARSERS`` maps every ``LibraryItemFormat`` to
exactly one parse function.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict

from ..models import BookInfo, LibraryItemFormat
from .base import FormatParseError
from .comic import parse_comic
from .epub import parse_epub
from .fb2 import parse_fb2
from .mobi import parse_mobi

PARSERS: Dict[LibraryItemFormat, Callable[[Path], BookInfo]] = {
    LibraryItemFormat.EPUB: parse_epub,
    LibraryItemFormat.FB2: parse_fb2,
    LibraryItemFormat.MOBI: parse_mobi,
    LibraryItemFormat.CBZ: parse_comic,
    LibraryItemFormat.CBR: parse_comic,
}


def parse_book_info(fmt: LibraryItemFormat, path: Path) -> BookInfo:
    """Run the parser for ``fmt``. Any failure surfaces as FormatParseError."""
    parser = PARSERS[fmt]
    try:
        return parser(path)
    except FormatParseError:
        raise
    except Exception as exc:
        raise FormatParseError(f"{path.name}: {exc}") from exc


__all__ = ["PARSERS", "FormatParseError", "parse_book_info"]
