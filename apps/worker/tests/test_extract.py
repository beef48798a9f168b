from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

from docx import Document
from openpyxl import Workbook, load_workbook
from PIL import Image
from pypdf import PdfWriter

from packpdf_worker.extract import (
    _BINARY_HANGUL_RUN,
    dispatch,
    html_to_text,
    salvage_hwp_text,
    workbook_to_text,
)
from packpdf_worker.models import NativePdfPages, PlainText, RawRasterBytes, RenderFailure


def _make_pdf(path: Path, pages: int) -> None:
    """Create a blank PDF with the given number of pages."""
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=300, height=300)
    with path.open("wb") as handle:
        writer.write(handle)


def _make_workbook(path: Path, sheets: int, rows: int) -> None:
    """Create an XLSX workbook with numbered sheets and rows."""
    workbook = Workbook()
    workbook.remove(workbook.active)
    for sheet_index in range(1, sheets + 1):
        sheet = workbook.create_sheet(f"Sheet{sheet_index}")
        for row in range(1, rows + 1):
            sheet.append([f"r{row}", row, row * 2])
    workbook.save(path)


def test_dispatch_text_file() -> None:
    """Plain text goes through encoding recovery."""
    with TemporaryDirectory() as temp:
        path = Path(temp) / "note.txt"
        path.write_bytes("Hello world".encode("utf-8"))
        content = dispatch(path, "text/plain")
        assert isinstance(content, PlainText)
        assert content.text == "Hello world"
        assert content.label == "Text file"


def test_dispatch_is_case_insensitive() -> None:
    """Extensions are matched regardless of case."""
    with TemporaryDirectory() as temp:
        path = Path(temp) / "NOTE.TXT"
        path.write_bytes(b"Upper case")
        assert isinstance(dispatch(path), PlainText)


def test_dispatch_image_passes_bytes_through() -> None:
    """Images are handed on as raw raster bytes."""
    with TemporaryDirectory() as temp:
        path = Path(temp) / "photo.png"
        Image.new("RGB", (20, 20), color=(10, 20, 30)).save(path)
        content = dispatch(path, "image/png")
        assert isinstance(content, RawRasterBytes)
        assert content.data == path.read_bytes()


def test_dispatch_pdf_returns_pages() -> None:
    """PDF input yields its pages in order."""
    with TemporaryDirectory() as temp:
        path = Path(temp) / "doc.pdf"
        _make_pdf(path, 3)
        content = dispatch(path, "application/pdf")
        assert isinstance(content, NativePdfPages)
        assert len(content.pages) == 3


def test_dispatch_corrupt_pdf() -> None:
    """An unreadable PDF becomes a diagnostic."""
    with TemporaryDirectory() as temp:
        path = Path(temp) / "broken.pdf"
        path.write_bytes(b"this is not a pdf")
        content = dispatch(path, "application/pdf")
        assert isinstance(content, RenderFailure)


def test_dispatch_docx() -> None:
    """DOCX paragraphs and tables are extracted as text."""
    with TemporaryDirectory() as temp:
        path = Path(temp) / "letter.docx"
        document = Document()
        document.add_paragraph("Dear reader")
        table = document.add_table(rows=1, cols=2)
        table.rows[0].cells[0].text = "left"
        table.rows[0].cells[1].text = "right"
        document.save(path)

        content = dispatch(path)
        assert isinstance(content, PlainText)
        assert content.label == "Word document"
        assert "Dear reader" in content.text
        assert "left | right" in content.text


def test_dispatch_corrupt_docx() -> None:
    """A DOCX that cannot be opened yields the fixed diagnostic."""
    with TemporaryDirectory() as temp:
        path = Path(temp) / "broken.docx"
        path.write_bytes(b"\x00garbage")
        content = dispatch(path)
        assert isinstance(content, RenderFailure)
        assert content.message == "Cannot read the DOCX document."


def test_workbook_limits_sheets_and_rows() -> None:
    """Only three sheets of at most twenty rows are serialized."""
    with TemporaryDirectory() as temp:
        path = Path(temp) / "book.xlsx"
        _make_workbook(path, sheets=5, rows=30)
        text = workbook_to_text(path)

    headers = [line for line in text.splitlines() if line.startswith("[Sheet")]
    assert headers == ["[Sheet1]", "[Sheet2]", "[Sheet3]"]
    assert text.count("... and 2 more sheets.") == 1
    assert text.count("... (more rows available)") == 3
    for block in text.split("\n\n")[:3]:
        data_rows = [line for line in block.splitlines() if line.startswith("r")]
        assert len(data_rows) == 20
    assert "r1|1|2" in text
    assert "r21|" not in text


def test_workbook_cell_fallback() -> None:
    """A row serialization failure falls back to cell-by-cell reads."""
    with TemporaryDirectory() as temp:
        path = Path(temp) / "book.xlsx"
        _make_workbook(path, sheets=1, rows=3)
        with patch(
            "packpdf_worker.extract._sheet_rows_as_text",
            side_effect=RuntimeError("bad rows"),
        ):
            text = workbook_to_text(path)
    assert "[Sheet1]" in text
    assert "r1 | 1 | 2 |" in text


def test_dispatch_unreadable_spreadsheet() -> None:
    """A spreadsheet no loader can open becomes a diagnostic."""
    with TemporaryDirectory() as temp:
        path = Path(temp) / "legacy.xls"
        path.write_bytes(b"definitely not a workbook")
        content = dispatch(path)
        assert isinstance(content, RenderFailure)
        assert content.message.startswith("Excel processing error")


def test_html_to_text() -> None:
    """Scripts, styles and tags are removed and entities decoded."""
    markup = (
        "<html><head><style>p { color: red; }</style>"
        "<script type='text/javascript'>alert('x');</script></head>"
        "<body><h1>Title</h1><p>Fish &amp; chips&nbsp;&lt;3 &#65;&#x42;</p></body></html>"
    )
    assert html_to_text(markup) == "Title Fish & chips <3 AB"


def test_dispatch_html() -> None:
    """HTML files are decoded and flattened."""
    with TemporaryDirectory() as temp:
        path = Path(temp) / "page.htm"
        body = "안녕하세요 반갑습니다 오늘은 날씨가 좋습니다 " * 6
        path.write_bytes(f"<p>{body}<b>world</b></p>".encode("euc-kr"))
        content = dispatch(path, "text/html")
        assert isinstance(content, PlainText)
        assert content.label == "HTML document"
        assert content.text.startswith("안녕하세요 반갑습니다")
        assert content.text.endswith("world")


def test_salvage_hwp_finds_hangul() -> None:
    """Hangul runs embedded in binary noise are recovered (best effort)."""
    data = b"\x00\x01HW" + "안녕하세요 반갑습니다".encode("utf-16-le") + b"\x00\xff"
    text = salvage_hwp_text(data, "report.hwp")
    assert text.startswith("Text extracted from HWP document:")
    assert "안녕하세요" in text


def test_salvage_hwp_short_result_gives_info() -> None:
    """Too little salvage produces the informational message."""
    text = salvage_hwp_text(b"\x00\x01\x02\x03" * 10, "scan.hwp")
    assert text.startswith("HWP file information:")
    assert "scan.hwp" in text
    assert ".docx" in text


def test_salvage_hwp_truncates_long_text() -> None:
    """Salvaged text is capped and marked as truncated."""
    text = salvage_hwp_text(b"Sample text " * 400, "long.hwp")
    assert text.endswith("... (text truncated)")


def test_dispatch_hwp_uses_display_name() -> None:
    """HWP salvage reports the original file name."""
    with TemporaryDirectory() as temp:
        path = Path(temp) / "123-stored.hwp"
        path.write_bytes(b"\x00" * 32)
        content = dispatch(path, "application/octet-stream", "원본.hwp")
        assert isinstance(content, PlainText)
        assert content.label == "HWP document"
        assert "원본.hwp" in content.text


def test_dispatch_unknown_text_extension() -> None:
    """Unknown extensions holding text are rendered as text."""
    with TemporaryDirectory() as temp:
        path = Path(temp) / "data.csv"
        path.write_bytes(b"a,b,c\n1,2,3\n")
        content = dispatch(path)
        assert isinstance(content, PlainText)
        assert content.label == "CSV file"


def test_dispatch_unknown_binary_extension() -> None:
    """Unknown extensions without readable text are reported as unsupported."""
    with TemporaryDirectory() as temp:
        path = Path(temp) / "blob.bin"
        path.write_bytes(b"\x00\x01\x02\x03")
        content = dispatch(path)
        assert isinstance(content, RenderFailure)
        assert content.message == "Unsupported file format: .bin"


def test_salvage_hwp_keeps_first_ten_mixed_runs() -> None:
    """Only the first ten mixed text runs are kept."""
    data = b"\x00".join(b"word%02d" % index for index in range(15))
    text = salvage_hwp_text(data, "runs.hwp")
    assert text.startswith("Text extracted from HWP document:")
    assert "word00" in text
    assert "word09" in text
    assert "word10" not in text


def test_salvage_hwp_single_byte_view_has_no_hangul() -> None:
    """The single-byte view can only yield whitespace for the Hangul pattern."""
    binary = bytes(range(256)).decode("latin-1")
    assert all(not match.strip() for match in _BINARY_HANGUL_RUN.findall(binary))


def test_workbook_falls_back_to_looser_loader() -> None:
    """A failing first loader is followed by the next strategy."""
    with TemporaryDirectory() as temp:
        path = Path(temp) / "book.xlsx"
        _make_workbook(path, sheets=1, rows=2)
        calls = []

        def _flaky_load(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise OSError("locked")
            return load_workbook(*args, **kwargs)

        with patch(
            "packpdf_worker.extract.openpyxl.load_workbook", side_effect=_flaky_load
        ) as loader:
            text = workbook_to_text(path)

    assert loader.call_count == 2
    assert text.startswith("[Sheet1]")
    assert "r1|1|2" in text
    assert "r2|2|4" in text
