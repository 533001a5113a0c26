"""Run-level orchestration: scan the library, then load and aggregate statistics."""

from __future__ import annotations

from pathlib import Path
from typing import FrozenSet, List, NamedTuple, Optional

from .config import MarginaliaConfig
from .logging_config import get_logger
from .models import LibraryItem
from .repository import load_statistics
from .scanner import scan_library
from .statistics import StatisticsData, aggregate_statistics

logger = get_logger(__name__)


class LibraryContext(NamedTuple):
    items: List[LibraryItem]
    books: List[LibraryItem]
    comics: List[LibraryItem]
    content_hashes: FrozenSet[str]
    statistics: Optional[StatisticsData]


def is_unread(item: LibraryItem) -> bool:
    """True when KOReader has never opened the item (no sidecar found)."""
    return item.metadata is None


def build_statistics(
    config: MarginaliaConfig,
    items: List[LibraryItem],
    content_hashes: FrozenSet[str],
) -> Optional[StatisticsData]:
    """Load and aggregate statistics, scoped to the library unless it holds no items."""
    db_path: Optional[Path] = config.statistics.db_path
    if db_path is None:
        return None

    raw = load_statistics(db_path)
    if raw is None:
        return None

    scoped = bool(items) and not config.statistics.include_all_stats
    return aggregate_statistics(
        raw,
        config.time_config(),
        min_pages_per_day=config.statistics.min_pages_per_day,
        min_time_per_day=config.statistics.min_time_per_day,
        library_hashes=content_hashes if scoped else None,
        items=items,
    )


def build_library_context(config: MarginaliaConfig) -> LibraryContext:
    """Scan the configured library and aggregate its reading statistics.

    :raises ConfigError: for invalid settings.
    :raises IndexBuildError: when the sidecar index is ambiguous.
    """
    config.validate()

    items: List[LibraryItem] = []
    content_hashes: FrozenSet[str] = frozenset()
    if config.library_paths:
        items, content_hashes = scan_library(
            config.library_paths,
            policy=config.topology_policy(),
            ignore_patterns=config.scanner.ignore_patterns,
            cbr_enabled=config.cbr_enabled,
        )
        if not config.library.include_unread:
            before = len(items)
            items = [item for item in items if not is_unread(item)]
            logger.info(f"Skipped {before - len(items)} unread items")

    statistics = build_statistics(config, items, content_hashes)

    return LibraryContext(
        items=items,
        books=[item for item in items if item.is_book],
        comics=[item for item in items if item.is_comic],
        content_hashes=content_hashes,
        statistics=statistics,
    )
