"""Archive handling utilities for Marginalia.

Provides a unified interface for reading CBZ (Zip) and CBR (Rar) archives,
and zipped FB2 books, with format fallback detection.

CBR support depends on the optional ``rarfile`` package (and an ``unrar``
backend on the host). When it is missing, ``CBR_AVAILABLE`` is False and
``.cbr`` files are not classified as library items.
"""

from __future__ import annotations

import re
import zipfile
from pathlib import Path
from typing import List, Protocol

try:
    import rarfile
except ImportError:
    rarfile = None


CBR_AVAILABLE = rarfile is not None

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}

IMAGE_CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
}


def is_image(filename: str) -> bool:
    return Path(filename).suffix.lower() in IMAGE_EXTENSIONS


def natural_sort_key(name: str):
    """Sort key for image names so 1, 2, 10 order correctly (not 1, 10, 2)."""
    parts = re.split(r"(\d+)", name)
    return [
        int(part) if part.isdigit() else part.lower()
        for part in parts
    ]


class Archive(Protocol):
    def list_images(self) -> List[str]:
        ...

    def list_names(self) -> List[str]:
        """List all file names in the archive (for finding ComicInfo.xml etc.)."""
        ...

    def read(self, filename: str) -> bytes:
        ...

    def close(self) -> None:
        ...

    def __enter__(self) -> "Archive":
        ...

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        ...


class ZipArchiveWrapper:
    def __init__(self, path: Path):
        self.zf = zipfile.ZipFile(path, mode="r")

    def list_images(self) -> List[str]:
        return sorted(
            (n for n in self.zf.namelist() if is_image(n) and not n.endswith("/")),
            key=natural_sort_key,
        )

    def list_names(self) -> List[str]:
        return self.zf.namelist()

    def read(self, filename: str) -> bytes:
        return self.zf.read(filename)

    def close(self) -> None:
        self.zf.close()

    def __enter__(self) -> "ZipArchiveWrapper":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class RarArchiveWrapper:
    def __init__(self, path: Path):
        if rarfile is None:
            raise ImportError("rarfile module not installed")
        self.rf = rarfile.RarFile(path, mode="r")

    def list_images(self) -> List[str]:
        return sorted(
            (n for n in self.rf.namelist() if is_image(n)),
            key=natural_sort_key,
        )

    def list_names(self) -> List[str]:
        return self.rf.namelist()

    def read(self, filename: str) -> bytes:
        return self.rf.read(filename)

    def close(self) -> None:
        self.rf.close()

    def __enter__(self) -> "RarArchiveWrapper":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def get_archive(path: Path) -> Archive:
    """Open an archive, detecting format by extension with fallback.

    Tries the expected format first (cbz/zip→zip, cbr→rar).
    If that fails, tries the other format (handles misnamed files).
    """
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    suffix = path.suffix.lower()
    if suffix in (".cbz", ".zip"):
        primary, fallback = ZipArchiveWrapper, RarArchiveWrapper
    elif suffix == ".cbr":
        primary, fallback = RarArchiveWrapper, ZipArchiveWrapper
    else:
        raise ValueError(f"Unsupported archive format: {suffix}")

    try:
        return primary(path)
    except Exception as primary_exc:
        try:
            return fallback(path)
        except Exception:
            raise primary_exc
