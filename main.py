"""Marginalia CLI entry point."""

from __future__ import annotations

import configparser
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from marginalia.config import (
    DEFAULT_CONFIG_PATH,
    METADATA_LOCATIONS,
    ConfigError,
    MarginaliaConfig,
    get_config,
    load_config,
)
from marginalia.logging_config import setup_logging
from marginalia.pipeline import build_library_context
from marginalia.topology import IndexBuildError


__version__ = "0.1.0"

app = typer.Typer(add_completion=False, help="Marginalia KOReader library CLI")
logger = logging.getLogger("marginalia")
console = Console()


def _ensure_config(config_path: Optional[Path]) -> MarginaliaConfig:
    try:
        return load_config(config_path) if config_path else get_config()
    except FileNotFoundError:
        typer.echo("[ERROR] config.ini not found. Run: marginalia init --library /path/to/books")
        raise typer.Exit(code=1)
    except ValueError as exc:
        typer.echo(f"[ERROR] Invalid config: {exc}")
        raise typer.Exit(code=1)


def _write_config(
    config_path: Path,
    library_path: Path,
    metadata_location: str,
    metadata_path: Optional[Path],
    stats_db: Optional[Path],
) -> None:
    parser = configparser.ConfigParser()

    parser["library"] = {
        "paths": str(library_path.expanduser()),
        "include_unread": "false",
    }
    parser["metadata"] = {
        "location": metadata_location,
        "path": str(metadata_path.expanduser()) if metadata_path else "",
    }
    parser["statistics"] = {
        "db_path": str(stats_db.expanduser()) if stats_db else "",
        "timezone": "",
        "day_start_time": "00:00",
        "min_pages_per_day": "",
        "min_time_per_day": "",
        "include_all_stats": "false",
    }
    parser["scanner"] = {
        "ignore_patterns": ".DS_Store,Thumbs.db,@eaDir",
        "enable_cbr": "true",
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        parser.write(handle)


def _format_duration(seconds: int) -> str:
    hours, remainder = divmod(seconds, 3600)
    minutes = remainder // 60
    if hours:
        return f"{hours}h {minutes:02d}m"
    return f"{minutes}m"


def _load_context(config_path: Optional[Path]):
    config = _ensure_config(config_path)
    try:
        return build_library_context(config)
    except (ConfigError, IndexBuildError) as exc:
        logger.error(f"✗ {exc}")
        raise typer.Exit(code=1)


@app.command()
def init(
    library: Path = typer.Option(..., "--library", help="Path to your books folder"),
    metadata_location: str = typer.Option(
        "in_book_folder", "--metadata-location", help=f"One of: {', '.join(METADATA_LOCATIONS)}"
    ),
    metadata_path: Optional[Path] = typer.Option(
        None, "--metadata-path", help="KOReader docsettings/hashdocsettings folder"
    ),
    stats_db: Optional[Path] = typer.Option(None, "--stats-db", help="Path to KOReader statistics.sqlite3"),
) -> None:
    """Initialize config.ini with default settings."""
    if metadata_location not in METADATA_LOCATIONS:
        typer.echo(f"[ERROR] --metadata-location must be one of: {', '.join(METADATA_LOCATIONS)}")
        raise typer.Exit(code=1)
    config_path = DEFAULT_CONFIG_PATH
    _write_config(config_path, library, metadata_location, metadata_path, stats_db)
    typer.echo(f"[OK] Config created at {config_path}")


@app.command()
def scan(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config.ini"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every file"),
) -> None:
    """Scan the library and print a summary of every item."""
    setup_logging("DEBUG" if verbose else "INFO")
    ctx = _load_context(config_path)

    table = Table(title=f"Library ({len(ctx.books)} books, {len(ctx.comics)} comics)")
    table.add_column("Title")
    table.add_column("Authors")
    table.add_column("Format")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Highlights", justify="right")
    table.add_column("Partial MD5")

    for item in sorted(ctx.items, key=lambda i: i.book_info.title.lower()):
        table.add_row(
            item.book_info.title,
            ", ".join(item.book_info.authors),
            str(item.format),
            str(item.status.value),
            f"{item.progress_percentage_display}%",
            str(item.highlight_count),
            item.partial_md5 or "-",
        )

    console.print(table)
    typer.echo(f"✓ Scan completed: {len(ctx.items)} items, {len(ctx.content_hashes)} identities resolved.")


@app.command()
def stats(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config.ini"),
    days: int = typer.Option(14, "--days", help="Number of recent days to show"),
) -> None:
    """Show aggregated reading statistics."""
    setup_logging()
    ctx = _load_context(config_path)

    if ctx.statistics is None:
        typer.echo("[INFO] No statistics available (check [statistics] db_path).")
        raise typer.Exit(code=0)

    data = ctx.statistics

    books_table = Table(title="Reading Statistics")
    books_table.add_column("Title")
    books_table.add_column("Type")
    books_table.add_column("Time", justify="right")
    books_table.add_column("Pages", justify="right")
    books_table.add_column("Days", justify="right")
    books_table.add_column("Completions")

    for entry in sorted(data.books, key=lambda b: b.book.total_read_time, reverse=True):
        completions = ", ".join(
            f"{c.start_date.isoformat()} → {c.end_date.isoformat()}" for c in entry.completions
        )
        books_table.add_row(
            entry.book.title or "(untitled)",
            entry.content_type.value if entry.content_type else "-",
            _format_duration(entry.book.total_read_time),
            str(entry.book.total_read_pages),
            str(len(entry.days)),
            completions or "-",
        )
    console.print(books_table)

    daily = list(data.daily_totals().items())[-days:]
    if daily:
        days_table = Table(title=f"Last {len(daily)} reading days")
        days_table.add_column("Date")
        days_table.add_column("Pages", justify="right")
        days_table.add_column("Time", justify="right")
        for day, (pages, seconds) in daily:
            days_table.add_row(day.strftime("%a %Y-%m-%d"), str(pages), _format_duration(seconds))
        console.print(days_table)

    typer.echo(
        f"Total: {_format_duration(data.total_read_time)} across {len(data.books)} books, "
        f"{data.total_pages_read} pages. Generated {datetime.now():%Y-%m-%d %H:%M}."
    )


if __name__ == "__main__":
    app()
