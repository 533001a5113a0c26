"""Marginalia core package.

Modules:
- formats: file classification into library formats
- fingerprint: KOReader-compatible partial MD5
- topology: sidecar location (book folder, docsettings, hashdocsettings)
- sidecar: KOReader metadata.lua parsing
- parsers: per-format BookInfo extraction
- archive: zip/rar access for comics and zipped FB2
- scanner: library walk producing items and the content hash set
- repository / database: read-only access to statistics.sqlite3
- statistics: day buckets, thresholds, scoping, completions
- time_config: logical day boundaries
- pipeline: scan + statistics for one run
- config: INI parsing and config object
"""
