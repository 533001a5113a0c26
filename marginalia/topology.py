"""Sidecar location for Marginalia.

KOReader keeps per-book metadata in one of three places, chosen by the
user once per device:

- InBookFolder: ``<dir>/<book name>.sdr/metadata.<fmt>.lua`` next to the book
- DocSettings: ``<root>/.../<stem>.sdr/metadata.<fmt>.lua``, matched by book
  filename (``<stem>.epub`` or ``<stem>.fb2``)
- HashDocSettings: ``<root>/<xx>/<partial md5>.sdr/metadata.<fmt>.lua``

Each policy builds its lookup table once (``build_index``) and then resolves
books with ``locate``. Indexes are plain dicts, never shared between policies.
"""

from __future__ import annotations

import dataclasses
import os
import re
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

from .fingerprint import FingerprintError, partial_md5
from .logging_config import get_logger
from .models import LibraryItemFormat

logger = get_logger(__name__)

SDR_SUFFIX = ".sdr"
HASH_INDEX_MAX_DEPTH = 3

_HASH_RE = re.compile(r"[0-9a-fA-F]{32}")

# (sidecar path, partial md5 computed while locating)
LocateResult = Tuple[Optional[Path], Optional[str]]


class IndexBuildError(Exception):
    """Raised when a sidecar index maps one key to several sidecars."""


def _log_walk_error(exc: OSError) -> None:
    logger.warning(f"Failed to read entry {exc.filename}: {exc.strerror}")


def _walk_sdr_dirs(root: Path, max_depth: Optional[int] = None) -> Iterator[Tuple[Path, int]]:
    """Yield (sdr_dir, depth) for directories named ``*.sdr`` under root.

    Depth counts path components below root. Unreadable directories are
    logged and skipped.
    """
    root = Path(root)
    for dirpath, dirnames, _ in os.walk(root, onerror=_log_walk_error):
        dir_path = Path(dirpath)
        depth = len(dir_path.relative_to(root).parts)
        if max_depth is not None and depth >= max_depth:
            dirnames[:] = []
        else:
            dirnames.sort()
        if depth > 0 and dir_path.name.endswith(SDR_SUFFIX):
            yield dir_path, depth


def _first_metadata_file(sdr_dir: Path) -> Optional[Path]:
    """Return metadata.epub.lua if present, else the first metadata.*.lua."""
    preferred = sdr_dir / LibraryItemFormat.EPUB.metadata_filename
    if preferred.is_file():
        return preferred
    try:
        names = sorted(os.listdir(sdr_dir))
    except OSError as exc:
        _log_walk_error(exc)
        return None
    for name in names:
        if name.startswith("metadata.") and name.endswith(".lua"):
            return sdr_dir / name
    return None


def build_docsettings_index(root: Path) -> Dict[str, Path]:
    """Map ``<stem>.epub`` / ``<stem>.fb2`` to the sidecar under ``root``.

    Raises IndexBuildError when two sidecars claim the same book filename.
    """
    logger.info(f"Scanning docsettings folder: {root}")
    index: Dict[str, Path] = {}
    duplicates: List[str] = []

    for sdr_dir, _ in _walk_sdr_dirs(root):
        stem = sdr_dir.name[: -len(SDR_SUFFIX)]
        for fmt in (LibraryItemFormat.EPUB, LibraryItemFormat.FB2):
            metadata_path = sdr_dir / fmt.metadata_filename
            if metadata_path.is_file():
                key = f"{stem}.{fmt.value}"
                if key in index:
                    duplicates.append(key)
                else:
                    index[key] = metadata_path
                break

    if duplicates:
        raise IndexBuildError(f"Duplicate books in docsettings: {sorted(set(duplicates))}")
    logger.debug(f"Indexed {len(index)} docsettings sidecars")
    return index


def build_hashdocsettings_index(root: Path) -> Dict[str, Path]:
    """Map lowercase partial md5 to the sidecar under ``root`` (depth <= 3).

    Directory names that are not exactly 32 hex characters are ignored.
    Raises IndexBuildError when a hash appears more than once.
    """
    logger.info(f"Scanning hashdocsettings folder: {root}")
    index: Dict[str, Path] = {}
    duplicates: List[str] = []

    for sdr_dir, _ in _walk_sdr_dirs(root, max_depth=HASH_INDEX_MAX_DEPTH):
        name = sdr_dir.name[: -len(SDR_SUFFIX)]
        if not _HASH_RE.fullmatch(name):
            continue
        metadata_path = _first_metadata_file(sdr_dir)
        if metadata_path is None:
            continue
        key = name.lower()
        if key in index:
            duplicates.append(key)
        else:
            index[key] = metadata_path

    if duplicates:
        raise IndexBuildError(f"Duplicate hashes in hashdocsettings: {sorted(set(duplicates))}")
    logger.debug(f"Indexed {len(index)} hashdocsettings sidecars")
    return index


@dataclasses.dataclass(frozen=True)
class InBookFolder:
    """Sidecars live in a ``.sdr`` folder beside each book."""

    def build_index(self) -> None:
        return None

    def sidecar_candidates(self, path: Path, fmt: LibraryItemFormat) -> List[Path]:
        sdr_dir = path.parent / f"{path.stem}{SDR_SUFFIX}"
        names = [fmt.metadata_filename]
        # KOReader names the file after the real suffix (metadata.zip.lua for .fb2.zip)
        real_suffix = path.suffix.lower().lstrip(".")
        if real_suffix and real_suffix != fmt.value:
            names.append(f"metadata.{real_suffix}.lua")
        return [sdr_dir / name for name in names]

    def locate(self, path: Path, fmt: LibraryItemFormat, index: None = None) -> LocateResult:
        for candidate in self.sidecar_candidates(path, fmt):
            if candidate.is_file():
                return candidate, None
        return None, None


@dataclasses.dataclass(frozen=True)
class DocSettings:
    """Sidecars live under a central docsettings tree, keyed by book filename."""

    root: Path

    def build_index(self) -> Dict[str, Path]:
        return build_docsettings_index(self.root)

    def locate(self, path: Path, fmt: LibraryItemFormat, index: Dict[str, Path]) -> LocateResult:
        return index.get(path.name), None


@dataclasses.dataclass(frozen=True)
class HashDocSettings:
    """Sidecars live under a hashdocsettings tree, keyed by partial md5."""

    root: Path

    def build_index(self) -> Dict[str, Path]:
        return build_hashdocsettings_index(self.root)

    def locate(self, path: Path, fmt: LibraryItemFormat, index: Dict[str, Path]) -> LocateResult:
        try:
            book_md5 = partial_md5(path)
        except FingerprintError as exc:
            logger.warning(f"Cannot fingerprint {path.name}: {exc}")
            return None, None
        return index.get(book_md5), book_md5


TopologyPolicy = Union[InBookFolder, DocSettings, HashDocSettings]


class SidecarLocator:
    """Binds a policy to its index, built once when the locator is created."""

    def __init__(self, policy: TopologyPolicy):
        self.policy = policy
        self.index = policy.build_index()

    def locate(self, path: Path, fmt: LibraryItemFormat) -> LocateResult:
        return self.policy.locate(path, fmt, self.index)
