"""Shared fixtures: tiny EPUB/CBZ/FB2 files, sidecars and KOReader statistics databases."""

import io
import sqlite3
import zipfile
from pathlib import Path
from typing import Iterable, Optional

import pytest
from PIL import Image

from marginalia.logging_config import reset_logging


@pytest.fixture(autouse=True)
def _clean_logging():
    yield
    reset_logging()


def png_bytes(color: str = "red", size=(10, 10)) -> bytes:
    img = Image.new("RGB", size, color=color)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

CHAPTER_XHTML = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml"><head><title>One</title></head>
<body><p>It was a dark and stormy night.</p></body></html>
"""


def create_epub(
    path: Path,
    title: str = "The Test Book",
    authors: Iterable[str] = ("Jane Doe",),
    identifier: Optional[str] = "urn:isbn:9780000000001",
    language: str = "en",
    description: Optional[str] = None,
    series: Optional[str] = None,
    series_index: Optional[str] = None,
    with_cover: bool = True,
) -> Path:
    """Write a minimal EPUB 2 container by hand."""
    meta = [f"<dc:title>{title}</dc:title>", f"<dc:language>{language}</dc:language>"]
    meta += [f'<dc:creator opf:role="aut">{a}</dc:creator>' for a in authors]
    if identifier:
        meta.append(f'<dc:identifier id="bookid">{identifier}</dc:identifier>')
    if description:
        meta.append(f"<dc:description>{description}</dc:description>")
    if series:
        meta.append(f'<meta name="calibre:series" content="{series}"/>')
    if series_index:
        meta.append(f'<meta name="calibre:series_index" content="{series_index}"/>')

    manifest = ['<item id="chap1" href="chap1.xhtml" media-type="application/xhtml+xml"/>']
    if with_cover:
        meta.append('<meta name="cover" content="cover-img"/>')
        manifest.append('<item id="cover-img" href="images/cover.png" media-type="image/png"/>')

    opf = f"""<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="2.0" unique-identifier="bookid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
    {"".join(meta)}
  </metadata>
  <manifest>{"".join(manifest)}</manifest>
  <spine><itemref idref="chap1"/></spine>
</package>
"""
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr(zipfile.ZipInfo("mimetype"), "application/epub+zip")
        zf.writestr("META-INF/container.xml", CONTAINER_XML)
        zf.writestr("OEBPS/content.opf", opf)
        zf.writestr("OEBPS/chap1.xhtml", CHAPTER_XHTML)
        if with_cover:
            zf.writestr("OEBPS/images/cover.png", png_bytes())
    return path


def create_cbz(path: Path, pages: int = 3, comicinfo: Optional[str] = None) -> Path:
    """Write a CBZ with ``pages`` PNG images named out of natural order."""
    with zipfile.ZipFile(path, "w") as zf:
        for i in reversed(range(1, pages + 1)):
            zf.writestr(f"page{i}.png", png_bytes(color="blue" if i == 1 else "red"))
        if comicinfo is not None:
            zf.writestr("ComicInfo.xml", comicinfo)
    return path


FB2_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<FictionBook xmlns="http://www.gribuser.ru/xml/fictionbook/2.0" xmlns:l="http://www.w3.org/1999/xlink">
  <description>
    <title-info>
      <genre>sf</genre>
      <author><first-name>Arkady</first-name><last-name>Strugatsky</last-name></author>
      <author><first-name>Boris</first-name><last-name>Strugatsky</last-name></author>
      <book-title>{title}</book-title>
      <annotation><p>First paragraph.</p><p>Second paragraph.</p></annotation>
      <coverpage><image l:href="#cover.png"/></coverpage>
      <lang>ru</lang>
      <sequence name="Noon Universe" number="3"/>
    </title-info>
    <document-info><id>fb2-doc-42</id></document-info>
    <publish-info><publisher>Detskaya Literatura</publisher><isbn>978-5-00-000000-0</isbn></publish-info>
  </description>
  <body><section><p>Text</p></section></body>
  <binary id="cover.png" content-type="image/png">{cover}</binary>
</FictionBook>
"""


def fb2_document(title: str = "Roadside Picnic") -> bytes:
    import base64

    cover = base64.b64encode(png_bytes()).decode("ascii")
    return FB2_TEMPLATE.format(title=title, cover=cover).encode("utf-8")


def write_sidecar(book_path: Path, body: str, fmt: str = "epub") -> Path:
    """Write ``<stem>.sdr/metadata.<fmt>.lua`` beside ``book_path``."""
    sdr = book_path.parent / f"{book_path.stem}.sdr"
    sdr.mkdir(parents=True, exist_ok=True)
    sidecar = sdr / f"metadata.{fmt}.lua"
    sidecar.write_text(body, encoding="utf-8")
    return sidecar


KOREADER_SCHEMA = """
CREATE TABLE book (
    id integer PRIMARY KEY autoincrement,
    title text,
    authors text,
    notes integer,
    last_open integer,
    highlights integer,
    pages integer,
    series text,
    language text,
    md5 text,
    total_read_time integer,
    total_read_pages integer
);
CREATE TABLE page_stat_data (
    id_book integer,
    page integer NOT NULL DEFAULT 0,
    start_time integer NOT NULL DEFAULT 0,
    duration integer NOT NULL DEFAULT 0,
    total_pages integer NOT NULL DEFAULT 0,
    UNIQUE (id_book, page, start_time),
    FOREIGN KEY (id_book) REFERENCES book (id)
);
"""


class StatsDB:
    """Builder for a KOReader statistics.sqlite3 file."""

    def __init__(self, path: Path):
        self.path = path
        self.conn = sqlite3.connect(path)
        self.conn.executescript(KOREADER_SCHEMA)

    def add_book(self, title: str, md5: str, pages: int, authors: str = "Someone") -> int:
        cur = self.conn.execute(
            "INSERT INTO book (title, authors, notes, last_open, highlights, pages, series, language,"
            " md5, total_read_time, total_read_pages) VALUES (?, ?, 0, 0, 0, ?, NULL, 'en', ?, 0, 0)",
            (title, authors, pages, md5),
        )
        self.conn.commit()
        return cur.lastrowid

    def add_session(self, book_id: int, page: int, start_time: int, duration: int, total_pages: int) -> None:
        self.conn.execute(
            "INSERT INTO page_stat_data (id_book, page, start_time, duration, total_pages) VALUES (?, ?, ?, ?, ?)",
            (book_id, page, start_time, duration, total_pages),
        )
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()


@pytest.fixture
def stats_db(tmp_path):
    db = StatsDB(tmp_path / "statistics.sqlite3")
    yield db
    db.close()
