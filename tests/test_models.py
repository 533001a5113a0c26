"""Tests for library models and helpers."""

from pathlib import Path

from conftest import png_bytes
from marginalia.models import BookInfo, Identifier, LibraryItem, LibraryItemFormat, is_metadata_file
from marginalia.sidecar import BookStatus, parse_sidecar_text
from marginalia.utils import generate_book_id, image_mime_type


def test_identifier_links():
    isbn = Identifier(scheme="ISBN", value="9780441478125")
    assert isbn.display_scheme == "ISBN"
    assert isbn.url == "https://www.worldcat.org/isbn/9780441478125"
    assert isbn.is_linkable

    custom = Identifier(scheme="calibre", value="1234")
    assert custom.display_scheme == "calibre"
    assert custom.url is None
    assert not custom.is_linkable


def test_generate_book_id():
    assert generate_book_id("The Left Hand of Darkness") == "the-left-hand-of-darkness"
    assert generate_book_id("Café au Lait!") == "cafe-au-lait"
    assert generate_book_id("Пикник") == "untitled"


def test_image_mime_type():
    assert image_mime_type(png_bytes()) == "image/png"
    assert image_mime_type(b"not an image", fallback="image/jpeg") == "image/jpeg"
    assert image_mime_type(b"not an image") is None


def test_metadata_file_names():
    assert is_metadata_file("metadata.epub.lua")
    assert not is_metadata_file("metadata.pdf.lua")


def test_library_item_helpers():
    metadata = parse_sidecar_text(
        """return {
            ["annotations"] = {
                { ["drawer"] = "lighten", ["text"] = "a" },
                { ["pos0"] = "x", ["text"] = "b" },
                { ["page"] = 3 },
            },
            ["doc_pages"] = 250,
            ["percent_finished"] = 0.333,
            ["summary"] = { ["status"] = "abandoned", ["rating"] = 2, ["note"] = "meh" },
            ["stats"] = { ["notes"] = 4 },
            ["text_lang"] = "fr",
        }"""
    )
    item = LibraryItem(
        id="book",
        book_info=BookInfo(title="Book", series="Saga", series_number="2", pages=100),
        metadata=metadata,
        file_path=Path("/lib/book.epub"),
        format=LibraryItemFormat.EPUB,
    )
    assert item.status is BookStatus.ABANDONED
    assert item.rating == 2
    assert item.review_note == "meh"
    assert item.progress_percentage_display == 33
    assert item.annotation_count == 3
    assert item.highlight_count == 2
    assert item.bookmark_count == 1
    assert item.note_count == 4
    assert item.doc_pages == 250
    assert item.language == "fr"
    assert item.series_display == "Saga #2"
    assert item.is_book and not item.is_comic


def test_library_item_without_metadata():
    item = LibraryItem(
        id="comic",
        book_info=BookInfo(title="Comic", language="en", pages=24),
        file_path=Path("/lib/comic.cbz"),
        format=LibraryItemFormat.CBZ,
    )
    assert item.status is BookStatus.UNKNOWN
    assert item.progress_percentage is None
    assert item.progress_percentage_display == 0
    assert item.annotations == []
    assert item.doc_pages == 24
    assert item.language == "en"
    assert item.is_comic
