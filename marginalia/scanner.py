"""Filesystem scanner for Marginalia.

Walks the library roots and turns every supported file into a LibraryItem:

- classify by filename
- parse container metadata (files that fail are skipped)
- locate and parse the KOReader sidecar under the active topology
- resolve the item's partial md5 and collect it into the content hash set

The sidecar index is built before any file is visited, so a fatal
``IndexBuildError`` aborts the scan without producing items.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import FrozenSet, Iterable, Iterator, List, NamedTuple, Optional, Tuple

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from .fingerprint import FingerprintError, partial_md5
from .formats import classify
from .logging_config import get_logger
from .models import LibraryItem, LibraryItemFormat
from .parsers import FormatParseError, parse_book_info
from .sidecar import SidecarMetadata, parse_sidecar
from .topology import InBookFolder, SidecarLocator, TopologyPolicy
from .utils import generate_book_id, short_path

logger = get_logger(__name__)

DEFAULT_IGNORE_PATTERNS: Tuple[str, ...] = (".DS_Store", "Thumbs.db", "@eaDir")


class ScanResult(NamedTuple):
    items: List[LibraryItem]
    content_hashes: FrozenSet[str]


def _should_ignore(name: str, ignore_patterns: Iterable[str]) -> bool:
    """Check if file/folder should be ignored based on patterns or macOS temp files."""
    if name.startswith("._"):
        return True
    return name in ignore_patterns


def _log_walk_error(exc: OSError) -> None:
    logger.warning(f"Failed to read directory {exc.filename}: {exc.strerror}")


def walk_library(
    root: Path,
    ignore_patterns: Tuple[str, ...],
    cbr_enabled: Optional[bool] = None,
) -> Iterator[Tuple[Path, LibraryItemFormat]]:
    """Yield (file, format) for every library file under root, in sorted order."""
    for dirpath, dirnames, filenames in os.walk(root, onerror=_log_walk_error):
        dir_path = Path(dirpath)

        # Sidecar folders never hold library files
        dirnames[:] = sorted(
            d for d in dirnames
            if not _should_ignore(d, ignore_patterns) and not d.endswith(".sdr")
        )

        for name in sorted(filenames):
            if _should_ignore(name, ignore_patterns):
                continue
            file_path = dir_path / name
            fmt = classify(file_path, cbr_enabled)
            if fmt is not None:
                yield file_path, fmt


def resolve_partial_md5(
    path: Path,
    metadata: Optional[SidecarMetadata],
    located_hash: Optional[str],
) -> Optional[str]:
    """Pick the item's identity: sidecar checksum, then locator hash, then a fresh hash."""
    if metadata is not None and metadata.partial_md5_checksum:
        return metadata.partial_md5_checksum
    if located_hash:
        return located_hash
    try:
        return partial_md5(path)
    except FingerprintError as exc:
        logger.warning(f"✗ {path.name} - identity unknown: {exc}")
        return None


def process_file(path: Path, fmt: LibraryItemFormat, locator: SidecarLocator) -> Optional[LibraryItem]:
    """Build the LibraryItem for one file, or None when its container is unreadable."""
    try:
        book_info = parse_book_info(fmt, path)
    except FormatParseError as exc:
        logger.warning(f"✗ {short_path(path)} - SKIPPED: {exc}")
        return None

    sidecar_path, located_hash = locator.locate(path, fmt)
    metadata = parse_sidecar(sidecar_path) if sidecar_path is not None else None

    item = LibraryItem(
        id=generate_book_id(book_info.title),
        book_info=book_info,
        metadata=metadata,
        file_path=path,
        format=fmt,
        partial_md5=resolve_partial_md5(path, metadata, located_hash),
    )

    sidecar_status = "✓" if metadata is not None else "-"
    logger.debug(f"{sidecar_status} {short_path(path)} [{fmt}]")
    return item


def scan_library(
    roots: Iterable[Path],
    policy: Optional[TopologyPolicy] = None,
    ignore_patterns: Tuple[str, ...] = DEFAULT_IGNORE_PATTERNS,
    cbr_enabled: Optional[bool] = None,
    console: Optional[Console] = None,
) -> ScanResult:
    """Scan the library roots and return the items plus their content hashes.

    :param roots: Library directories to walk recursively.
    :param policy: Sidecar topology; defaults to InBookFolder.
    :param ignore_patterns: File and folder names to skip.
    :param cbr_enabled: Override for CBR support (defaults to rarfile availability).
    :raises IndexBuildError: when the topology index is ambiguous.
    """
    locator = SidecarLocator(policy if policy is not None else InBookFolder())

    items: List[LibraryItem] = []
    hashes: set[str] = set()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console or Console(stderr=True),
        transient=True,
    ) as progress:
        task = progress.add_task("Scanning library... 0 items found", total=None)

        for root in roots:
            root = Path(root).expanduser()
            if not root.is_dir():
                logger.warning(f"Library path does not exist: {root}")
                continue

            logger.info(f"[SCAN] {root}")
            for file_path, fmt in walk_library(root, ignore_patterns, cbr_enabled):
                item = process_file(file_path, fmt, locator)
                if item is None:
                    continue
                items.append(item)
                if item.partial_md5:
                    hashes.add(item.partial_md5)
                progress.update(task, description=f"Scanning library... {len(items)} items found")

    with_sidecar = sum(1 for item in items if item.metadata is not None)
    logger.info(f"Scan complete: {len(items)} items ({with_sidecar} with KOReader metadata)")
    return ScanResult(items=items, content_hashes=frozenset(hashes))
