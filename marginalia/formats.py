"""File classification for Marginalia.

Maps a path to a ``LibraryItemFormat`` or ``None`` for files that are not
library items. ``.fb2.zip`` is checked before the generic extension match so
zipped FB2 books are never treated as plain zip files.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .archive import CBR_AVAILABLE
from .models import LibraryItemFormat

_EXTENSION_FORMATS = {
    ".epub": LibraryItemFormat.EPUB,
    ".fb2": LibraryItemFormat.FB2,
    ".mobi": LibraryItemFormat.MOBI,
    ".cbz": LibraryItemFormat.CBZ,
    ".cbr": LibraryItemFormat.CBR,
}


def classify(path: Path, cbr_enabled: Optional[bool] = None) -> Optional[LibraryItemFormat]:
    """Return the library format of ``path``, or None when unsupported.

    ``cbr_enabled`` defaults to whether RAR support is installed.
    """
    if cbr_enabled is None:
        cbr_enabled = CBR_AVAILABLE

    name = Path(path).name.lower()
    if name.endswith(".fb2.zip"):
        return LibraryItemFormat.FB2

    fmt = _EXTENSION_FORMATS.get(Path(name).suffix)
    if fmt is LibraryItemFormat.CBR and not cbr_enabled:
        return None
    return fmt


def is_library_file(path: Path, cbr_enabled: Optional[bool] = None) -> bool:
    return classify(path, cbr_enabled) is not None
