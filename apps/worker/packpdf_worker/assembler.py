"""Merge a batch of uploads into a single PDF."""

from __future__ import annotations

import logging
import os
from io import BytesIO
from pathlib import Path
from typing import List, Sequence

import img2pdf
from fpdf import FPDF
from pypdf import PageObject, PdfReader, PdfWriter

from .config import PAGE_HEIGHT, PAGE_WIDTH
from .exceptions import AssemblyError
from .extract import dispatch
from .layout import layout_text
from .models import (
    CompressionPlan,
    ConversionResult,
    FileDescriptor,
    NativePdfPages,
    PlainText,
    RawRasterBytes,
    RenderFailure,
)
from .render import reencode_image, render_error_page, render_text_page
from .storage import UploadStore

logger = logging.getLogger(__name__)

UNICODE_FONT_PATHS = (
    Path(__file__).resolve().parent / "assets" / "DejaVuSans.ttf",
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
    Path("/usr/share/fonts/DejaVuSans.ttf"),
)


def _resolve_unicode_font_path() -> Path | None:
    """
    Locate a Unicode-compatible TrueType font file if one is available.

    Checks the PACKPDF_TTF_PATH environment variable first, then falls back to known candidate paths.
    """
    env_path = os.getenv("PACKPDF_TTF_PATH")
    if env_path:
        candidate = Path(env_path)
        if candidate.is_file():
            return candidate
    for candidate in UNICODE_FONT_PATHS:
        if candidate.is_file():
            return candidate
    return None


def _set_banner_font(pdf: FPDF, size: int) -> bool:
    """Select DejaVu Sans when available, else Helvetica; return True for Unicode."""
    font_path = _resolve_unicode_font_path()
    if font_path:
        pdf.add_font("DejaVuSans", fname=str(font_path))
        pdf.set_font("DejaVuSans", size=size)
        return True
    pdf.set_font("Helvetica", size=size)
    return False


def _pdf_bytes(pdf: FPDF) -> bytes:
    output = pdf.output()
    if isinstance(output, str):
        return output.encode("latin-1")
    return bytes(output)


def build_error_banner(filename: str, message: str) -> PageObject:
    """
    Draw a page-sized banner naming the file and the error with fpdf2.

    Without a Unicode font, characters outside Latin-1 are replaced so the
    banner itself never fails on exotic file names.
    """
    pdf = FPDF(orientation="P", unit="pt", format=(PAGE_WIDTH, PAGE_HEIGHT))
    pdf.set_margins(50, 50, 50)
    pdf.set_auto_page_break(auto=False)
    pdf.add_page()
    unicode_font = _set_banner_font(pdf, 16)

    def _safe(value: str) -> str:
        if unicode_font:
            return value
        return value.encode("latin-1", errors="replace").decode("latin-1")

    pdf.text(50, PAGE_HEIGHT - 750, _safe(f"Error processing: {filename}"))
    pdf.set_font_size(12)
    pdf.set_xy(50, PAGE_HEIGHT - 735)
    pdf.multi_cell(PAGE_WIDTH - 100, 16, _safe(f"Error: {message}"))
    return PdfReader(BytesIO(_pdf_bytes(pdf))).pages[0]


def image_page(jpeg: bytes) -> PageObject:
    """Place a JPEG on a fixed 595x842 page, shrunk to fit and centred."""
    layout = img2pdf.get_layout_fun((PAGE_WIDTH, PAGE_HEIGHT), fit=img2pdf.FitMode.shrink)
    pdf_bytes = img2pdf.convert(jpeg, layout_fun=layout)
    if pdf_bytes is None:
        raise ValueError("Failed to render image to PDF")
    return PdfReader(BytesIO(pdf_bytes)).pages[0]


class OutputDocument:
    """The PDF being assembled for one request; owned by a single ``assemble`` call."""

    def __init__(self) -> None:
        self.writer = PdfWriter()

    @property
    def page_count(self) -> int:
        return len(self.writer.pages)

    def add_native_pages(self, pages: Sequence[PageObject]) -> None:
        for page in pages:
            self.writer.add_page(page)

    def add_raster_page(self, jpeg: bytes) -> None:
        self.writer.add_page(image_page(jpeg))

    def add_error_page(self, filename: str, message: str) -> None:
        self.writer.add_page(build_error_banner(filename, message))

    def serialize(self) -> bytes:
        buffer = BytesIO()
        self.writer.write(buffer)
        return buffer.getvalue()


def render_content(
    content: PlainText | RawRasterBytes | RenderFailure,
    plan: CompressionPlan,
    scale: float = 1.0,
) -> bytes:
    """Turn non-PDF extraction output into a JPEG page at the plan's quality."""
    if isinstance(content, RawRasterBytes):
        return reencode_image(content.data, plan.quality)
    if isinstance(content, PlainText):
        page = layout_text(content.text, content.label)
        return render_text_page(page, plan.quality, scale)
    return render_error_page(content.message, plan.quality, scale)


def _add_descriptor(
    document: OutputDocument,
    descriptor: FileDescriptor,
    plan: CompressionPlan,
    scale: float,
) -> None:
    """Append the page(s) for one file; failures become an error banner."""
    try:
        content = dispatch(
            descriptor.storage_ref, descriptor.mime_type, descriptor.original_name
        )
        if isinstance(content, NativePdfPages):
            document.add_native_pages(content.pages)
            return
        if isinstance(content, RenderFailure):
            logger.info("Rendering diagnostic page for %s: %s", descriptor.original_name, content.message)
        document.add_raster_page(render_content(content, plan, scale))
    except Exception as error:  # noqa: BLE001
        logger.exception("Error processing file %s", descriptor.original_name)
        document.add_error_page(descriptor.original_name, str(error) or type(error).__name__)


def savings_percent(original_bytes: int, compressed_kb: int) -> int:
    """Return the rounded size reduction, never negative."""
    original_kb = original_bytes / 1024
    if original_kb <= 0:
        return 0
    return max(0, round((1 - compressed_kb / original_kb) * 100))


def assemble(
    descriptors: Sequence[FileDescriptor],
    plan: CompressionPlan,
    store: UploadStore,
    render_scale: float = 1.0,
    cleanup: bool = True,
) -> ConversionResult:
    """
    Convert ``descriptors`` in order into one PDF written to the store's output directory.

    PDF inputs contribute their pages unchanged; everything else becomes one
    raster page at ``plan.quality``. Missing sources are skipped. Only a
    failure to serialize or write the result raises (``AssemblyError``).
    Source uploads are removed afterwards unless ``cleanup`` is False.
    """
    document = OutputDocument()
    total_bytes = sum(descriptor.size_bytes for descriptor in descriptors)
    try:
        for descriptor in descriptors:
            if not descriptor.storage_ref.exists():
                logger.warning("File not found, skipping: %s", descriptor.storage_ref)
                continue
            _add_descriptor(document, descriptor, plan, render_scale)

        try:
            output = document.serialize()
            output_path = store.new_output_path()
            try:
                output_path.write_bytes(output)
            except OSError:
                output_path.unlink(missing_ok=True)
                raise
        except Exception as error:  # noqa: BLE001
            raise AssemblyError(str(error) or type(error).__name__) from error
    finally:
        if cleanup:
            removed: List[str] = [d.identifier for d in descriptors if store.remove(d.identifier)]
            logger.debug("Cleaned up %d source uploads", len(removed))

    compressed_kb = round(len(output) / 1024)
    return ConversionResult(
        output_path=output_path,
        output_bytes=output,
        original_size_kb=round(total_bytes / 1024),
        compressed_size_kb=compressed_kb,
        savings_percent=savings_percent(total_bytes, compressed_kb),
        page_count=document.page_count,
    )
