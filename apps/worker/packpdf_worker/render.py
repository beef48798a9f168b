"""Rasterize text and error pages, and re-encode input images."""

from __future__ import annotations

import html
import logging
from io import BytesIO
from typing import List

import fitz
from PIL import Image, ImageOps

from .config import PAGE_HEIGHT, PAGE_WIDTH
from .layout import clean_text, display_lines, wrap_tokens
from .models import LayoutPage

logger = logging.getLogger(__name__)

FONT_FAMILY = "Arial, sans-serif"
LINE_TOP = 90
LINE_SPACING = 18
ERROR_LINE_CHARS = 60
ERROR_MAX_LINES = 20


def _escape(value: str) -> str:
    """Escape user text for inclusion in SVG markup."""
    return html.escape(value, quote=True)


def _svg_document(body: str) -> str:
    """Wrap drawing instructions in a page-sized, white, bordered SVG canvas."""
    return (
        f'<svg width="{PAGE_WIDTH}" height="{PAGE_HEIGHT}" '
        f'viewBox="0 0 {PAGE_WIDTH} {PAGE_HEIGHT}" xmlns="http://www.w3.org/2000/svg">\n'
        f'  <rect width="{PAGE_WIDTH}" height="{PAGE_HEIGHT}" fill="white"/>\n'
        f'  <rect x="20" y="20" width="{PAGE_WIDTH - 40}" height="{PAGE_HEIGHT - 40}" '
        'fill="none" stroke="#cccccc" stroke-width="1"/>\n'
        f"{body}</svg>\n"
    )


def _svg_text(x: int, y: int, text: str, size: int, fill: str = "black", bold: bool = False) -> str:
    weight = ' font-weight="bold"' if bold else ""
    return (
        f'  <text x="{x}" y="{y}" font-family="{FONT_FAMILY}" font-size="{size}"'
        f'{weight} fill="{fill}">{_escape(text)}</text>\n'
    )


def text_page_svg(page: LayoutPage) -> str:
    """Compose the SVG description of a text page."""
    parts: List[str] = [
        _svg_text(30, 50, page.title, 16, bold=True),
        f'  <line x1="30" y1="65" x2="{PAGE_WIDTH - 30}" y2="65" stroke="black" '
        'stroke-width="1" stroke-dasharray="2,2"/>\n',
    ]
    for index, line in enumerate(page.lines):
        parts.append(_svg_text(30, LINE_TOP + index * LINE_SPACING, line, 14))
    if len(display_lines(page)) > len(page.lines):
        marker_y = LINE_TOP + len(page.lines) * LINE_SPACING + 10
        parts.append(_svg_text(30, marker_y, display_lines(page)[-1], 12, fill="gray"))
    return _svg_document("".join(parts))


def error_page_svg(message: str) -> str:
    """Compose the SVG description of a conversion error placeholder."""
    lines = wrap_tokens(clean_text(message), ERROR_LINE_CHARS)[:ERROR_MAX_LINES] or [""]
    parts: List[str] = [_svg_text(50, 300, "Conversion error", 18, fill="#e74c3c", bold=True)]
    for index, line in enumerate(lines):
        parts.append(_svg_text(50, 350 + index * 20, line, 14))
    note_y = 350 + len(lines) * 20 + 30
    parts.append(
        _svg_text(50, note_y, "This page was generated as an error placeholder.", 12, fill="gray")
    )
    return _svg_document("".join(parts))


def _encode_jpeg(image: Image.Image, quality: int, dpi: float) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format="JPEG", quality=quality, dpi=(dpi, dpi))
    return buffer.getvalue()


def blank_page(quality: int, scale: float = 1.0) -> bytes:
    """Return a plain white page-sized JPEG."""
    size = (round(PAGE_WIDTH * scale), round(PAGE_HEIGHT * scale))
    return _encode_jpeg(Image.new("RGB", size, "white"), quality, 72 * scale)


def rasterize_svg(svg: str, quality: int, scale: float = 1.0) -> bytes:
    """
    Rasterize an SVG page description into a JPEG at the requested quality.

    The SVG is rendered by PyMuPDF into a lossless PNG intermediate which
    Pillow re-encodes. The JPEG's DPI is set so that the image maps back onto
    a 595x842 point page. Any rendering failure yields a blank page instead.
    """
    try:
        with fitz.open(stream=svg.encode("utf-8"), filetype="svg") as document:
            pixmap = document.load_page(0).get_pixmap(
                matrix=fitz.Matrix(scale, scale), alpha=False
            )
            intermediate = pixmap.tobytes("png")
        with Image.open(BytesIO(intermediate)) as image:
            return _encode_jpeg(image.convert("RGB"), quality, 72 * scale)
    except Exception as error:  # noqa: BLE001
        logger.warning("SVG rasterization failed, using blank page: %s", error)
        return blank_page(quality, scale)


def render_text_page(page: LayoutPage, quality: int = 95, scale: float = 1.0) -> bytes:
    """Render a laid-out text page to JPEG bytes."""
    return rasterize_svg(text_page_svg(page), quality, scale)


def render_error_page(message: str, quality: int = 95, scale: float = 1.0) -> bytes:
    """Render an error placeholder page to JPEG bytes."""
    return rasterize_svg(error_page_svg(message), quality, scale)


def _flatten(image: Image.Image) -> Image.Image:
    """Convert to RGB, compositing any transparency onto white."""
    has_alpha = image.mode in ("RGBA", "LA") or (
        image.mode == "P" and "transparency" in image.info
    )
    if not has_alpha:
        return image.convert("RGB")
    rgba = image.convert("RGBA")
    background = Image.new("RGB", rgba.size, "white")
    background.paste(rgba, mask=rgba.getchannel("A"))
    return background


def reencode_image(data: bytes, quality: int) -> bytes:
    """
    Re-encode any Pillow-readable raster to JPEG at ``quality``.

    Only the first frame of animated or multi-page images is kept. The output
    is tagged 72 DPI so one pixel maps to one PDF point.
    """
    with Image.open(BytesIO(data)) as image:
        image.seek(0)
        oriented = ImageOps.exif_transpose(image)
        return _encode_jpeg(_flatten(oriented), quality, 72)
