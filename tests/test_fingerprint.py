"""Tests for the KOReader partial MD5."""

import hashlib

import pytest

from marginalia.fingerprint import FingerprintError, partial_md5, sample_offsets


def test_sample_offsets():
    offsets = list(sample_offsets())
    assert offsets[:4] == [0, 1024, 4096, 16384]
    assert offsets[-1] == 1024 << 20
    assert len(offsets) == 12


def test_small_file_hashes_whole_content(tmp_path):
    path = tmp_path / "small.epub"
    path.write_bytes(b"hello world")
    # Only the first sample exists
    assert partial_md5(path) == hashlib.md5(b"hello world").hexdigest()


def _pattern(size: int) -> bytes:
    return bytes(i % 251 for i in range(size))


# Digests produced by KOReader's util.partialMD5 over the same byte patterns
@pytest.mark.parametrize(
    "size, expected",
    [
        (300_000, "c43e7af7c64be64ff8765e78ee771294"),
        # Past 1 MiB, so the 1024 << 20 sample is read in full
        (1_200_000, "da96d9df9e3ed2a4e922f3641ba40600"),
    ],
)
def test_matches_koreader_digest(tmp_path, size, expected):
    path = tmp_path / "book.epub"
    path.write_bytes(_pattern(size))
    assert partial_md5(path) == expected


def test_identical_files_share_fingerprint(tmp_path):
    data = bytes(range(256)) * 100
    a = tmp_path / "a.epub"
    b = tmp_path / "b.epub"
    a.write_bytes(data)
    b.write_bytes(data)
    assert partial_md5(a) == partial_md5(b)


def test_change_in_sampled_region_changes_fingerprint(tmp_path):
    data = bytearray(b"\x00" * 20_000)
    a = tmp_path / "a.epub"
    a.write_bytes(bytes(data))
    data[4096] = 0xFF
    b = tmp_path / "b.epub"
    b.write_bytes(bytes(data))
    assert partial_md5(a) != partial_md5(b)


def test_change_outside_samples_keeps_fingerprint(tmp_path):
    data = bytearray(b"\x00" * 20_000)
    a = tmp_path / "a.epub"
    a.write_bytes(bytes(data))
    data[3000] = 0xFF  # between the 1 KiB and 4 KiB samples
    b = tmp_path / "b.epub"
    b.write_bytes(bytes(data))
    assert partial_md5(a) == partial_md5(b)


def test_unreadable_file_raises(tmp_path):
    with pytest.raises(FingerprintError):
        partial_md5(tmp_path / "missing.epub")
