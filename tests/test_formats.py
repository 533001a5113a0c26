"""Tests for file classification."""

from pathlib import Path

import pytest

from marginalia.formats import classify, is_library_file
from marginalia.models import ContentType, LibraryItemFormat


def test_fb2_zip_is_fb2_not_zip():
    assert classify(Path("a.fb2.zip")) is LibraryItemFormat.FB2
    assert classify(Path("/books/War And Peace.FB2.ZIP")) is LibraryItemFormat.FB2


def test_plain_zip_is_not_a_library_file():
    assert classify(Path("archive.zip")) is None


@pytest.mark.parametrize(
    "name, expected",
    [
        ("book.epub", LibraryItemFormat.EPUB),
        ("BOOK.EPUB", LibraryItemFormat.EPUB),
        ("book.fb2", LibraryItemFormat.FB2),
        ("book.mobi", LibraryItemFormat.MOBI),
        ("issue.cbz", LibraryItemFormat.CBZ),
        ("notes.txt", None),
        ("metadata.epub.lua", None),
        ("no_extension", None),
    ],
)
def test_extension_matching(name, expected):
    assert classify(Path(name)) is expected


def test_cbr_is_a_capability_flag():
    assert classify(Path("issue.cbr"), cbr_enabled=True) is LibraryItemFormat.CBR
    assert classify(Path("issue.cbr"), cbr_enabled=False) is None
    assert not is_library_file(Path("issue.cbr"), cbr_enabled=False)


def test_format_knows_sidecar_name_and_content_type():
    assert LibraryItemFormat.EPUB.metadata_filename == "metadata.epub.lua"
    assert LibraryItemFormat.CBZ.metadata_filename == "metadata.cbz.lua"
    assert LibraryItemFormat.MOBI.content_type is ContentType.BOOK
    assert LibraryItemFormat.CBR.content_type is ContentType.COMIC
