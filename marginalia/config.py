"""Config management for Marginalia.

Reads `config.ini` from DATA_DIR (defaults to the project root beside main.py).
"""

from __future__ import annotations

import configparser
import dataclasses
import os
import pathlib
import re
from typing import Optional

from .archive import CBR_AVAILABLE
from .logging_config import get_logger
from .time_config import TimeConfig, parse_day_start
from .topology import DocSettings, HashDocSettings, InBookFolder, TopologyPolicy

logger = get_logger(__name__)

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]

# DATA_DIR holds config.ini and the log file.
# Set via env var for Docker; defaults to PROJECT_ROOT for standalone use.
DATA_DIR = pathlib.Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"

METADATA_LOCATIONS = ("in_book_folder", "docsettings", "hashdocsettings")

_DURATION_RE = re.compile(r"(\d+)\s*(h|min|m|s)", re.IGNORECASE)


class ConfigError(ValueError):
    """Raised when config.ini holds an invalid combination of settings."""


def parse_time_to_seconds(value: str) -> Optional[int]:
    """Parse a duration like ``1h30m``, ``15min`` or ``45s`` into seconds.

    ``auto`` returns None. Zero or unparseable durations raise ValueError.
    """
    text = value.strip().lower()
    if text == "auto":
        return None
    if text.isdigit():
        seconds = int(text)
    else:
        matches = list(_DURATION_RE.finditer(text))
        if not matches or _DURATION_RE.sub("", text).strip():
            raise ValueError(f"Invalid duration: {value!r} (expected e.g. 1h30m, 15m, 45s)")
        seconds = 0
        for match in matches:
            amount, unit = int(match.group(1)), match.group(2).lower()
            if unit == "h":
                seconds += amount * 3600
            elif unit in ("m", "min"):
                seconds += amount * 60
            else:
                seconds += amount
    if seconds == 0:
        raise ValueError(f"Duration must be greater than zero: {value!r}")
    return seconds


@dataclasses.dataclass
class LibraryConfig:
    paths: tuple[pathlib.Path, ...] = ()
    include_unread: bool = False


@dataclasses.dataclass
class MetadataConfig:
    location: str = "in_book_folder"
    path: Optional[pathlib.Path] = None


@dataclasses.dataclass
class StatisticsConfig:
    db_path: Optional[pathlib.Path] = None
    timezone: Optional[str] = None
    day_start_time: str = "00:00"
    min_pages_per_day: Optional[int] = None
    min_time_per_day: Optional[int] = None
    include_all_stats: bool = False


@dataclasses.dataclass
class ScannerConfig:
    ignore_patterns: tuple[str, ...] = (".DS_Store", "Thumbs.db", "@eaDir")
    enable_cbr: bool = True


@dataclasses.dataclass
class MarginaliaConfig:
    library: LibraryConfig
    metadata: MetadataConfig
    statistics: StatisticsConfig
    scanner: ScannerConfig

    @property
    def library_paths(self) -> tuple[pathlib.Path, ...]:
        return self.library.paths

    @property
    def cbr_enabled(self) -> bool:
        return self.scanner.enable_cbr and CBR_AVAILABLE

    def topology_policy(self) -> TopologyPolicy:
        """Build the sidecar topology selected by ``[metadata] location``."""
        if self.metadata.location == "docsettings":
            return DocSettings(root=self.metadata.path)
        if self.metadata.location == "hashdocsettings":
            return HashDocSettings(root=self.metadata.path)
        return InBookFolder()

    def time_config(self) -> TimeConfig:
        return TimeConfig.from_strings(self.statistics.timezone, self.statistics.day_start_time)

    def validate(self) -> None:
        """Raise ConfigError for setting combinations the scanner cannot honor."""
        location = self.metadata.location
        if location not in METADATA_LOCATIONS:
            raise ConfigError(
                f"[metadata] location must be one of {', '.join(METADATA_LOCATIONS)}, got {location!r}"
            )
        if location != "in_book_folder":
            if self.metadata.path is None:
                raise ConfigError(f"[metadata] path is required when location = {location}")
            if not self.library.paths:
                raise ConfigError(f"[metadata] location = {location} requires [library] paths")
        if not self.library.paths and self.statistics.db_path is None:
            raise ConfigError("Either [library] paths or [statistics] db_path must be set")
        if self.statistics.min_pages_per_day is not None and self.statistics.min_pages_per_day <= 0:
            raise ConfigError("[statistics] min_pages_per_day must be greater than zero")
        try:
            self.time_config()
        except ValueError as exc:
            raise ConfigError(f"[statistics] {exc}") from exc


def _parse_bool(value: str, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in value.split(",") if p.strip())


def _optional_path(value: Optional[str]) -> Optional[pathlib.Path]:
    if value is None or not value.strip():
        return None
    return pathlib.Path(value.strip()).expanduser()


def load_config(config_path: Optional[pathlib.Path] = None) -> MarginaliaConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in DATA_DIR.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path, encoding="utf-8")
    logger.debug(f"Loaded config from {path}")

    library = LibraryConfig(
        paths=tuple(
            pathlib.Path(p).expanduser()
            for p in _parse_list(parser.get("library", "paths", fallback=""))
        ),
        include_unread=_parse_bool(parser.get("library", "include_unread", fallback="false"), False),
    )

    metadata = MetadataConfig(
        location=parser.get("metadata", "location", fallback="in_book_folder").strip().lower(),
        path=_optional_path(parser.get("metadata", "path", fallback=None)),
    )

    min_pages = parser.get("statistics", "min_pages_per_day", fallback="").strip()
    min_time = parser.get("statistics", "min_time_per_day", fallback="").strip()
    statistics = StatisticsConfig(
        db_path=_optional_path(parser.get("statistics", "db_path", fallback=None)),
        timezone=parser.get("statistics", "timezone", fallback="").strip() or None,
        day_start_time=parser.get("statistics", "day_start_time", fallback="00:00").strip() or "00:00",
        min_pages_per_day=int(min_pages) if min_pages else None,
        min_time_per_day=parse_time_to_seconds(min_time) if min_time else None,
        include_all_stats=_parse_bool(parser.get("statistics", "include_all_stats", fallback="false"), False),
    )
    # Fail early on a malformed day start
    parse_day_start(statistics.day_start_time)

    scanner = ScannerConfig(
        ignore_patterns=_parse_list(
            parser.get("scanner", "ignore_patterns", fallback=".DS_Store,Thumbs.db,@eaDir")
        ),
        enable_cbr=_parse_bool(parser.get("scanner", "enable_cbr", fallback="true"), True),
    )

    return MarginaliaConfig(
        library=library,
        metadata=metadata,
        statistics=statistics,
        scanner=scanner,
    )


_cached_config: Optional[MarginaliaConfig] = None


def get_config() -> MarginaliaConfig:
    """Return the cached config singleton. Loads from disk on first call."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reset_config_cache() -> None:
    """Clear the cached config (useful for tests)."""
    global _cached_config
    _cached_config = None
