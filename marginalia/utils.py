"""Utility functions for Marginalia."""

from __future__ import annotations

import re
import unicodedata
from io import BytesIO
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError


def short_path(path: Path) -> str:
    """Return abbreviated path showing only parent folder + filename.

    Example: /very/long/path/to/folder/book.epub -> folder/book.epub
    """
    return f"{path.parent.name}/{path.name}"


def generate_book_id(title: str) -> str:
    """Return a URL-friendly id derived from the title.

    Different books with the same title share an id; callers accept that.
    """
    normalized = unicodedata.normalize("NFKD", title)
    ascii_title = normalized.encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_title.lower()).strip("-")
    return slug or "untitled"


def image_mime_type(data: bytes, fallback: Optional[str] = None) -> Optional[str]:
    """Detect the MIME type of image bytes with Pillow.

    Returns ``fallback`` when the bytes are not a recognizable image.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            return Image.MIME.get(img.format or "", fallback)
    except (UnidentifiedImageError, OSError, ValueError):
        return fallback
