"""KOReader-compatible partial MD5 fingerprint.

KOReader identifies documents by hashing 1 KiB samples taken at
exponentially spaced offsets instead of the whole file. The resulting
value is embedded in hashdocsettings directory names, in
``partial_md5_checksum`` of sidecars and in the statistics database,
so the sampling below must match ``util.partialMD5`` byte for byte.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterator

STEP = 1024
SAMPLE_SIZE = 1024


class FingerprintError(Exception):
    """Raised when a file cannot be read for hashing."""


def sample_offsets() -> Iterator[int]:
    """Yield the sampled offsets: 0, then 1024 << 2*i for i in 0..10."""
    # LuaJIT's lshift(1024, -2) wraps to 0
    yield 0
    for i in range(0, 11):
        yield STEP << (2 * i)


def partial_md5(path: Path) -> str:
    """Return the lowercase hex partial MD5 of ``path``.

    Raises FingerprintError if the file cannot be opened or read.
    """
    digest = hashlib.md5()
    try:
        with open(path, "rb") as handle:
            for offset in sample_offsets():
                handle.seek(offset)
                sample = handle.read(SAMPLE_SIZE)
                if not sample:
                    break
                digest.update(sample)
    except OSError as exc:
        raise FingerprintError(f"Unable to hash {path}: {exc}") from exc
    return digest.hexdigest()
