"""KOReader sidecar (metadata.*.lua) parsing for Marginalia.

KOReader serializes per-document state as a Lua table literal:

    -- we can read Lua syntax here!
    return {
        ["percent_finished"] = 0.42,
        ["summary"] = {
            ["status"] = "reading",
        },
    }

The file layout drifted across KOReader releases (``bookmarks`` became
``annotations``, ``summary`` may be missing, numbers are sometimes strings),
so every field is optional and unknown keys are ignored.
"""

from __future__ import annotations

import enum
import math
import re
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, field_validator, model_validator

from .logging_config import get_logger

logger = get_logger(__name__)


class LuaParseError(ValueError):
    """Raised for malformed Lua table literals."""


_NUMBER_RE = re.compile(
    r"0[xX][0-9a-fA-F]+"
    r"|(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?"
)
_DECIMAL_ESCAPE_RE = re.compile(r"[0-9]{1,3}")
_DIGITS = frozenset("0123456789")
MAX_CODE_POINT = 0x10FFFF
_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_LONG_BRACKET_RE = re.compile(r"\[(=*)\[")
_PLAIN_RUN_RE = re.compile(r"[^\\\"'\n]+")
_NAME_ASSIGN_RE = re.compile(r"\s*=(?!=)")

_SIMPLE_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    "\\": "\\",
    '"': '"',
    "'": "'",
    "\n": "\n",
}

_KEYWORDS = {"true": True, "false": False, "nil": None}


class _LuaReader:
    """Recursive descent reader for the Lua literal subset KOReader writes."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def error(self, message: str) -> LuaParseError:
        line = self.text.count("\n", 0, self.pos) + 1
        return LuaParseError(f"{message} (line {line})")

    def peek(self, length: int = 1) -> str:
        return self.text[self.pos:self.pos + length]

    def skip_whitespace(self) -> None:
        text = self.text
        while self.pos < len(text):
            char = text[self.pos]
            if char.isspace():
                self.pos += 1
            elif text.startswith("--", self.pos):
                self._skip_comment()
            else:
                break

    def _skip_comment(self) -> None:
        self.pos += 2
        match = _LONG_BRACKET_RE.match(self.text, self.pos)
        if match:
            self._read_long_bracket(match)
            return
        end = self.text.find("\n", self.pos)
        self.pos = len(self.text) if end == -1 else end + 1

    def _read_long_bracket(self, match: "re.Match[str]") -> str:
        closing = "]" + match.group(1) + "]"
        start = match.end()
        end = self.text.find(closing, start)
        if end == -1:
            raise self.error("Unfinished long string or comment")
        self.pos = end + len(closing)
        content = self.text[start:end]
        # A newline right after the opening bracket is not part of the string
        if content.startswith("\r\n"):
            return content[2:]
        if content.startswith("\n"):
            return content[1:]
        return content

    def parse_document(self) -> Any:
        self.skip_whitespace()
        match = _NAME_RE.match(self.text, self.pos)
        if match and match.group(0) == "return":
            self.pos = match.end()
        value = self.parse_value()
        self.skip_whitespace()
        if self.peek() == ";":
            self.pos += 1
            self.skip_whitespace()
        if self.pos != len(self.text):
            raise self.error("Unexpected trailing content")
        return value

    def parse_value(self) -> Any:
        self.skip_whitespace()
        char = self.peek()
        if not char:
            raise self.error("Unexpected end of input")
        if char == "{":
            return self._parse_table()
        if char in "\"'":
            return self._parse_quoted_string()
        if char == "[":
            match = _LONG_BRACKET_RE.match(self.text, self.pos)
            if match:
                return self._read_long_bracket(match)
            raise self.error("Unexpected '['")
        if char == "-":
            self.pos += 1
            self.skip_whitespace()
            value = self.parse_value()
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise self.error("Unary minus applied to a non-number")
            return -value
        if char in _DIGITS or (char == "." and self.peek(2)[1:] in _DIGITS):
            return self._parse_number()
        match = _NAME_RE.match(self.text, self.pos)
        if match and match.group(0) in _KEYWORDS:
            self.pos = match.end()
            return _KEYWORDS[match.group(0)]
        raise self.error(f"Unexpected character {char!r}")

    def _parse_number(self) -> Union[int, float]:
        match = _NUMBER_RE.match(self.text, self.pos)
        if not match:
            raise self.error("Malformed number")
        self.pos = match.end()
        literal = match.group(0)
        if literal[:2].lower() == "0x":
            return int(literal, 16)
        if any(c in literal for c in ".eE"):
            return float(literal)
        return int(literal)

    def _parse_quoted_string(self) -> str:
        quote = self.text[self.pos]
        self.pos += 1
        out = bytearray()
        text = self.text
        while True:
            if self.pos >= len(text):
                raise self.error("Unfinished string")
            char = text[self.pos]
            if char == quote:
                self.pos += 1
                break
            if char == "\n":
                raise self.error("Unfinished string")
            if char == "\\":
                self._parse_escape(out)
                continue
            match = _PLAIN_RUN_RE.match(text, self.pos)
            if match:
                out += match.group(0).encode("utf-8", errors="surrogatepass")
                self.pos = match.end()
            else:
                out += char.encode("utf-8")
                self.pos += 1
        return out.decode("utf-8", errors="replace")

    def _parse_escape(self, out: bytearray) -> None:
        text = self.text
        self.pos += 1
        if self.pos >= len(text):
            raise self.error("Unfinished escape sequence")
        char = text[self.pos]
        if char in _SIMPLE_ESCAPES:
            out += _SIMPLE_ESCAPES[char].encode("utf-8")
            self.pos += 1
        elif char == "\r":
            out += b"\n"
            self.pos += 2 if text.startswith("\r\n", self.pos) else 1
        elif char == "z":
            self.pos += 1
            while self.pos < len(text) and text[self.pos].isspace():
                self.pos += 1
        elif char == "x":
            digits = text[self.pos + 1:self.pos + 3]
            try:
                out.append(int(digits, 16))
            except ValueError:
                raise self.error("Invalid hexadecimal escape") from None
            self.pos += 3
        elif char == "u":
            match = re.match(r"u\{([0-9a-fA-F]+)\}", text[self.pos:self.pos + 12])
            if not match:
                raise self.error("Invalid unicode escape")
            code_point = int(match.group(1), 16)
            if code_point > MAX_CODE_POINT:
                raise self.error("Unicode escape out of range")
            out += chr(code_point).encode("utf-8", errors="surrogatepass")
            self.pos += match.end()
        elif char in _DIGITS:
            match = _DECIMAL_ESCAPE_RE.match(text, self.pos)
            value = int(match.group(0))
            if value > 255:
                raise self.error("Decimal escape too large")
            out.append(value)
            self.pos = match.end()
        else:
            raise self.error(f"Invalid escape sequence \\{char}")

    def _parse_table(self) -> Union[Dict[Any, Any], List[Any]]:
        self.pos += 1
        entries: Dict[Any, Any] = {}
        next_index = 1
        while True:
            self.skip_whitespace()
            char = self.peek()
            if char == "}":
                self.pos += 1
                break
            if not char:
                raise self.error("Unfinished table")

            if char == "[" and not _LONG_BRACKET_RE.match(self.text, self.pos):
                self.pos += 1
                key = self.parse_value()
                self._expect("]")
                self._expect("=")
                value = self.parse_value()
            else:
                key, value = None, None
                match = _NAME_RE.match(self.text, self.pos)
                if match and match.group(0) not in _KEYWORDS:
                    assign = _NAME_ASSIGN_RE.match(self.text, match.end())
                    if assign:
                        self.pos = assign.end()
                        key = match.group(0)
                        value = self.parse_value()
                if key is None:
                    key = next_index
                    next_index += 1
                    value = self.parse_value()

            if value is not None:
                entries[key] = value

            self.skip_whitespace()
            char = self.peek()
            if char in (",", ";"):
                self.pos += 1
            elif char != "}":
                raise self.error("Expected ',' or '}' in table")

        return _table_to_python(entries)

    def _expect(self, token: str) -> None:
        self.skip_whitespace()
        if not self.text.startswith(token, self.pos):
            raise self.error(f"Expected {token!r}")
        self.pos += len(token)


def _table_to_python(entries: Dict[Any, Any]) -> Union[Dict[Any, Any], List[Any]]:
    """Turn a table whose keys are exactly 1..n into a list."""
    if entries and all(isinstance(k, int) and not isinstance(k, bool) for k in entries):
        if sorted(entries) == list(range(1, len(entries) + 1)):
            return [entries[i] for i in range(1, len(entries) + 1)]
    return entries


def parse_lua_table(text: str) -> Any:
    """Parse a Lua literal document (``return {...}``) into Python values."""
    return _LuaReader(text).parse_document()


# ---------------------------------------------------------------------------
# Lenient scalar coercion: producer versions disagree on types
# ---------------------------------------------------------------------------


def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    return None


def _float_or_none(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _str_or_none(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return None


LenientInt = Annotated[Optional[int], BeforeValidator(_int_or_none)]
LenientFloat = Annotated[Optional[float], BeforeValidator(_float_or_none)]
LenientStr = Annotated[Optional[str], BeforeValidator(_str_or_none)]


class BookStatus(str, enum.Enum):
    READING = "reading"
    COMPLETE = "complete"
    ABANDONED = "abandoned"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def _missing_(cls, value: object) -> "BookStatus":
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return cls.UNKNOWN


class _SidecarModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class Annotation(_SidecarModel):
    chapter: LenientStr = None
    datetime: LenientStr = None
    datetime_updated: LenientStr = None
    drawer: LenientStr = None
    color: LenientStr = None
    note: LenientStr = None
    text: LenientStr = None
    pageno: LenientInt = None
    # xpointer strings for reflowable documents, {page, x, y} tables otherwise
    page: Optional[Any] = None
    pos0: Optional[Any] = None
    pos1: Optional[Any] = None

    @property
    def is_highlight(self) -> bool:
        return self.drawer is not None or self.pos0 is not None

    @property
    def is_bookmark(self) -> bool:
        return not self.is_highlight


class Summary(_SidecarModel):
    status: BookStatus = BookStatus.UNKNOWN
    rating: LenientInt = None
    note: LenientStr = None
    modified: LenientStr = None

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> BookStatus:
        return BookStatus(value) if isinstance(value, str) else BookStatus.UNKNOWN


class SidecarStats(_SidecarModel):
    notes: LenientInt = None
    highlights: LenientInt = None
    pages: LenientInt = None
    title: LenientStr = None
    authors: LenientStr = None
    language: LenientStr = None
    series: LenientStr = None


class DocProps(_SidecarModel):
    title: LenientStr = None
    authors: LenientStr = None
    language: LenientStr = None
    series: LenientStr = None
    description: LenientStr = None


def _table_values(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return [value[k] for k in sorted(value, key=lambda k: (not isinstance(k, int), str(k)))]
    return []


def _legacy_bookmark_to_annotation(bookmark: Dict[str, Any]) -> Dict[str, Any]:
    """Map a pre-annotations ``bookmarks`` entry onto the annotation shape."""
    annotation = {
        "chapter": bookmark.get("chapter"),
        "datetime": bookmark.get("datetime"),
        "page": bookmark.get("page"),
    }
    if bookmark.get("highlighted"):
        highlighted_text = bookmark.get("notes")
        user_text = bookmark.get("text")
        annotation.update(
            text=highlighted_text,
            pos0=bookmark.get("pos0"),
            pos1=bookmark.get("pos1"),
            drawer=bookmark.get("drawer"),
        )
        if isinstance(user_text, str) and user_text != highlighted_text:
            annotation["note"] = user_text
    else:
        annotation["text"] = bookmark.get("notes")
    return annotation


class SidecarMetadata(_SidecarModel):
    """Reader-generated state from a KOReader sidecar."""

    annotations: List[Annotation] = []
    summary: Optional[Summary] = None
    percent_finished: LenientFloat = None
    doc_pages: LenientInt = None
    partial_md5_checksum: LenientStr = None
    text_lang: LenientStr = None
    stats: Optional[SidecarStats] = None
    doc_props: Optional[DocProps] = None

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy_layout(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "annotations" not in data and "bookmarks" in data:
            data["annotations"] = [
                _legacy_bookmark_to_annotation(b)
                for b in _table_values(data["bookmarks"])
                if isinstance(b, dict)
            ]
        for key in ("summary", "stats", "doc_props"):
            if key in data and not isinstance(data[key], dict):
                data[key] = None
        return data

    @field_validator("annotations", mode="before")
    @classmethod
    def _coerce_annotations(cls, value: Any) -> List[Any]:
        return [a for a in _table_values(value) if isinstance(a, dict)]

    @field_validator("partial_md5_checksum", mode="after")
    @classmethod
    def _normalize_checksum(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().lower()
        return value or None


def parse_sidecar_text(text: str) -> SidecarMetadata:
    """Parse sidecar contents. Raises LuaParseError or ValidationError."""
    data = parse_lua_table(text)
    if not isinstance(data, dict):
        raise LuaParseError("Sidecar does not return a key/value table")
    return SidecarMetadata.model_validate(data)


def parse_sidecar(path: Path) -> Optional[SidecarMetadata]:
    """Read a metadata.*.lua file. Returns None when it cannot be parsed."""
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
        return parse_sidecar_text(text)
    except (OSError, ValueError, OverflowError) as exc:
        logger.warning(f"Ignoring unreadable sidecar {path}: {exc}")
        return None
