"""Per-format content extraction for uploaded files."""

from __future__ import annotations

import logging
import re
from io import BytesIO
from itertools import islice
from pathlib import Path
from typing import Any, Callable, Iterable, List, Sequence

import openpyxl
import xlrd
from docx import Document
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from .config import (
    HWP_TEXT_LIMIT,
    SHEET_COLUMN_LIMIT,
    SHEET_LIMIT,
    SHEET_ROW_LIMIT,
)
from .encoding import looks_readable, recover_text
from .models import (
    ExtractedContent,
    NativePdfPages,
    PlainText,
    RawRasterBytes,
    RenderFailure,
)

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".tif", ".webp"}
SPREADSHEET_EXTENSIONS = {".xlsx", ".xls"}
HTML_EXTENSIONS = {".html", ".htm"}
HWP_EXTENSIONS = {".hwp", ".hwpx"}

LEGACY_CODEPAGE = "cp949"
ZIP_MAGIC = b"PK\x03\x04"


def _read_pdf(path: Path) -> NativePdfPages | RenderFailure:
    """Open a PDF and return its pages, reporting corrupt or locked files."""
    try:
        reader = PdfReader(BytesIO(path.read_bytes()))
        if reader.is_encrypted and not reader.decrypt(""):
            return RenderFailure("PDF is encrypted")
        return NativePdfPages(pages=list(reader.pages))
    except PdfReadError:
        return RenderFailure("PDF appears to be corrupted or unreadable.")


def _read_docx(path: Path) -> PlainText | RenderFailure:
    """Extract paragraph and table text from a DOCX file."""
    try:
        document = Document(str(path))
        parts: List[str] = [paragraph.text for paragraph in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                parts.append(" | ".join(cell.text.strip() for cell in row.cells))
    except Exception as error:  # noqa: BLE001
        logger.warning("DOCX extraction failed for %s: %s", path.name, error)
        return RenderFailure("Cannot read the DOCX document.")
    text = "\n".join(part for part in parts if part.strip())
    return PlainText(text or "The document has no readable content.", "Word document")


# Spreadsheets -----------------------------------------------------------------


def _format_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


class _OpenpyxlSheet:
    """Row and cell access over an openpyxl worksheet."""

    def __init__(self, worksheet) -> None:
        self.name = worksheet.title
        self._worksheet = worksheet

    @property
    def row_count(self) -> int:
        return self._worksheet.max_row or 0

    def rows(self) -> Iterable[Sequence[Any]]:
        return self._worksheet.iter_rows(values_only=True)

    def cell(self, row: int, column: int) -> Any:
        return self._worksheet.cell(row=row + 1, column=column + 1).value


class _XlrdSheet:
    """Row and cell access over an xlrd sheet."""

    def __init__(self, sheet) -> None:
        self.name = sheet.name
        self._sheet = sheet

    @property
    def row_count(self) -> int:
        return self._sheet.nrows

    def rows(self) -> Iterable[Sequence[Any]]:
        return (self._sheet.row_values(index) for index in range(self._sheet.nrows))

    def cell(self, row: int, column: int) -> Any:
        if row >= self._sheet.nrows or column >= self._sheet.ncols:
            return None
        return self._sheet.cell_value(row, column)


def _workbook_strategies(path: Path) -> List[Callable[[], List[Any]]]:
    """
    Return the workbook loaders to try, from strictest to loosest.

    Zip containers go through openpyxl, everything else through xlrd, so a
    mislabelled extension still opens with the right reader.
    """
    with path.open("rb") as handle:
        is_zip = handle.read(4) == ZIP_MAGIC
    if is_zip:
        def _sheets(workbook) -> List[Any]:
            return [_OpenpyxlSheet(sheet) for sheet in workbook.worksheets]

        return [
            lambda: _sheets(openpyxl.load_workbook(str(path), data_only=True)),
            lambda: _sheets(openpyxl.load_workbook(str(path))),
            lambda: _sheets(openpyxl.load_workbook(BytesIO(path.read_bytes()), data_only=True)),
        ]

    def _books(book) -> List[Any]:
        return [_XlrdSheet(sheet) for sheet in book.sheets()]

    return [
        lambda: _books(xlrd.open_workbook(str(path), encoding_override=LEGACY_CODEPAGE)),
        lambda: _books(xlrd.open_workbook(str(path))),
        lambda: _books(xlrd.open_workbook(file_contents=path.read_bytes())),
    ]


def open_workbook_sheets(path: Path) -> List[Any]:
    """Open a workbook, falling back through looser loaders; raise the last error."""
    last_error: Exception | None = None
    for strategy in _workbook_strategies(path):
        try:
            return strategy()
        except Exception as error:  # noqa: BLE001
            logger.debug("Workbook loader failed for %s: %s", path.name, error)
            last_error = error
    raise ValueError(str(last_error) if last_error else "Workbook could not be opened")


def _sheet_rows_as_text(sheet) -> List[str]:
    """Serialize the first rows of a sheet as bar-separated lines."""
    lines: List[str] = []
    for row in islice(sheet.rows(), SHEET_ROW_LIMIT):
        cells = [_format_cell(value) for value in row]
        if any(cells):
            lines.append("|".join(cells))
    return lines


def _sheet_cells_as_text(sheet) -> List[str]:
    """Read a bounded window of cells one at a time."""
    lines: List[str] = []
    for row in range(min(sheet.row_count, SHEET_ROW_LIMIT)):
        cells = [_format_cell(sheet.cell(row, column)) for column in range(SHEET_COLUMN_LIMIT)]
        if any(cells):
            lines.append(" | ".join(cells))
    return lines


def sheets_to_text(sheets: Sequence[Any]) -> str:
    """Flatten the first sheets of a workbook into a text block."""
    blocks: List[str] = []
    for sheet in sheets[:SHEET_LIMIT]:
        lines = [f"[{sheet.name}]"]
        try:
            lines.extend(_sheet_rows_as_text(sheet))
        except Exception as error:  # noqa: BLE001
            logger.debug("Row serialization failed for sheet %s: %s", sheet.name, error)
            lines.extend(_sheet_cells_as_text(sheet))
        if sheet.row_count > SHEET_ROW_LIMIT:
            lines.append("... (more rows available)")
        blocks.append("\n".join(lines) + "\n")
    text = "\n".join(blocks)
    if len(sheets) > SHEET_LIMIT:
        text += f"\n... and {len(sheets) - SHEET_LIMIT} more sheets."
    return text


def workbook_to_text(path: Path) -> str:
    """Open a spreadsheet and return its text rendering."""
    text = sheets_to_text(open_workbook_sheets(path))
    if not text.strip():
        return "No data could be extracted from the spreadsheet."
    return text


def _read_spreadsheet(path: Path) -> PlainText | RenderFailure:
    try:
        return PlainText(workbook_to_text(path), "Excel document")
    except Exception as error:  # noqa: BLE001
        logger.warning("Spreadsheet extraction failed for %s: %s", path.name, error)
        return RenderFailure(f"Excel processing error: {error}")


# HTML -------------------------------------------------------------------------

_SCRIPT_BLOCK = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_STYLE_BLOCK = re.compile(r"<style[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]+>")
_NAMED_ENTITIES = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&amp;", "&"),
)
_NUMERIC_ENTITY = re.compile(r"&#(x[0-9a-fA-F]+|\d+);")
_WHITESPACE = re.compile(r"\s+")


def _numeric_entity(match: re.Match) -> str:
    value = match.group(1)
    try:
        code = int(value[1:], 16) if value[0] in "xX" else int(value)
        return chr(code)
    except (ValueError, OverflowError):
        return match.group(0)


def html_to_text(markup: str) -> str:
    """Strip scripts, styles and tags, decode common entities, collapse whitespace."""
    text = _SCRIPT_BLOCK.sub("", markup)
    text = _STYLE_BLOCK.sub("", text)
    text = _TAG.sub(" ", text)
    for entity, replacement in _NAMED_ENTITIES:
        text = text.replace(entity, replacement)
    text = _NUMERIC_ENTITY.sub(_numeric_entity, text)
    return _WHITESPACE.sub(" ", text).strip()


def _read_text(path: Path, label: str, is_html: bool = False) -> PlainText | RenderFailure:
    try:
        data = path.read_bytes()
    except OSError as error:
        logger.warning("Cannot read %s: %s", path.name, error)
        return RenderFailure("Cannot read the HTML file." if is_html else "Cannot read the text file.")
    text = recover_text(data, path.name)
    return PlainText(html_to_text(text) if is_html else text, label)


# HWP salvage -----------------------------------------------------------------

HWP_DECODINGS = ("utf-8", "euc-kr", "cp949", "utf-16-le")
_HANGUL_RUN = re.compile(r"[가-힣][가-힣\s]{2,}")
_BINARY_HANGUL_RUN = re.compile(r"[\uAC00-\uD7AF\s]{3,}")
_MIXED_RUN = re.compile(r"[A-Za-z0-9\s.,!?가-힣]{4,}")
_LETTER = re.compile(r"[가-힣A-Za-z]")
_CONTROL = re.compile(r"[\x00-\x1F\x7F-\x9F]")
MIXED_RUN_LIMIT = 10
MIN_SALVAGE_CHARS = 10


def _hwp_info_message(filename: str, size_bytes: int) -> str:
    return (
        "HWP file information:\n"
        f"File name: {filename}\n"
        f"File size: {round(size_bytes / 1024)} KB\n\n"
        "This file uses the Hancom HWP format.\n"
        "Text extraction may be limited.\n\n"
        "For a complete conversion:\n"
        "1. Open the file in Hancom Office\n"
        "2. Save it as plain text (.txt) and upload it again\n"
        "3. Or save it as Word (.docx) and upload it again"
    )


def salvage_hwp_text(data: bytes, filename: str) -> str:
    """
    Mine readable text out of an HWP/HWPX buffer without parsing it.

    Each candidate decoding contributes its Hangul runs, then the raw
    single-byte view contributes Hangul runs and the first mixed
    ASCII/Hangul runs. The result is lossy guesswork; short results are
    replaced by an informational message.

    The single-byte view only holds code points up to U+00FF, so its Hangul
    pattern matches whitespace at most and those runs are dropped. Hangul
    is recovered through the multi-byte decodings alone.
    """
    pieces: List[str] = []
    for encoding in HWP_DECODINGS:
        matches = _HANGUL_RUN.findall(data.decode(encoding, errors="replace"))
        if matches:
            pieces.append(" ".join(matches))

    binary = data.decode("latin-1")
    hangul = [match for match in _BINARY_HANGUL_RUN.findall(binary) if match.strip()]
    if hangul:
        pieces.append(" ".join(hangul))
    mixed = [
        match
        for match in _MIXED_RUN.findall(binary)
        if match.strip() and _LETTER.search(match)
    ][:MIXED_RUN_LIMIT]
    if mixed:
        pieces.append(" ".join(mixed))

    salvaged = _CONTROL.sub("", _WHITESPACE.sub(" ", "\n".join(pieces))).strip()
    if len(salvaged) < MIN_SALVAGE_CHARS:
        return _hwp_info_message(filename, len(data))
    suffix = "\n\n... (text truncated)" if len(salvaged) > HWP_TEXT_LIMIT else ""
    return f"Text extracted from HWP document:\n\n{salvaged[:HWP_TEXT_LIMIT]}{suffix}"


def _read_hwp(path: Path, display_name: str) -> PlainText | RenderFailure:
    try:
        data = path.read_bytes()
    except OSError as error:
        logger.warning("Cannot read %s: %s", path.name, error)
        return RenderFailure(f"HWP processing error: {error}")
    logger.info("Salvaging text from HWP file %s", display_name)
    return PlainText(salvage_hwp_text(data, display_name), "HWP document")


def _read_unknown(path: Path, extension: str) -> PlainText | RenderFailure:
    shown = extension or "(no extension)"
    try:
        data = path.read_bytes()
    except OSError:
        return RenderFailure(f"Cannot read file: {shown}")
    text = recover_text(data, path.name)
    if not looks_readable(text):
        return RenderFailure(f"Unsupported file format: {shown}")
    return PlainText(text, f"{shown.lstrip('.').upper()} file")


def dispatch(
    path: Path,
    declared_type: str | None = None,
    display_name: str | None = None,
) -> ExtractedContent | RenderFailure:
    """
    Route a stored file to its extraction branch by extension.

    The declared MIME type is informational only; browsers report HWP files
    with arbitrary types. Content problems come back as ``RenderFailure``.
    """
    extension = path.suffix.lower()
    name = display_name or path.name
    logger.debug("Dispatching %s (extension %r, declared %s)", name, extension, declared_type)
    if extension in IMAGE_EXTENSIONS:
        return RawRasterBytes(path.read_bytes())
    if extension == ".pdf":
        return _read_pdf(path)
    if extension == ".docx":
        return _read_docx(path)
    if extension in SPREADSHEET_EXTENSIONS:
        return _read_spreadsheet(path)
    if extension == ".txt":
        return _read_text(path, "Text file")
    if extension in HTML_EXTENSIONS:
        return _read_text(path, "HTML document", is_html=True)
    if extension in HWP_EXTENSIONS:
        return _read_hwp(path, name)
    return _read_unknown(path, extension)
