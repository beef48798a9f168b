"""Fixed-width line wrapping for single-page text renderings."""

from __future__ import annotations

import re
from typing import List

from .config import MAX_LINE_CHARS, MAX_LINES, MAX_TEXT_CHARS
from .models import LayoutPage

EMPTY_TEXT = "The document is empty."
TRUNCATION_MARKER = "... (more content truncated)"

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


def clean_text(text: str, limit: int = MAX_TEXT_CHARS) -> str:
    """Cut text to ``limit`` characters and drop control characters."""
    return _CONTROL_CHARS.sub("", text[:limit])


def wrap_tokens(text: str, max_line_chars: int = MAX_LINE_CHARS) -> List[str]:
    """
    Greedily pack whitespace-separated tokens into lines of at most ``max_line_chars``.

    A token longer than the budget is split into budget-sized chunks; the last
    chunk starts the next line so nothing is dropped.
    """
    lines: List[str] = []
    current = ""
    for token in text.split():
        candidate = f"{current} {token}" if current else token
        if len(candidate) <= max_line_chars:
            current = candidate
            continue
        if current:
            lines.append(current)
        while len(token) > max_line_chars:
            lines.append(token[:max_line_chars])
            token = token[max_line_chars:]
        current = token
    if current:
        lines.append(current)
    return lines


def layout_text(
    text: str,
    title: str,
    max_lines: int = MAX_LINES,
    max_line_chars: int = MAX_LINE_CHARS,
) -> LayoutPage:
    """Lay out ``text`` under ``title`` as one page, truncating past ``max_lines``."""
    cleaned = clean_text(text)
    if not cleaned.strip():
        cleaned = EMPTY_TEXT
    lines = wrap_tokens(cleaned, max_line_chars)
    return LayoutPage(
        title=title,
        lines=lines[:max_lines],
        truncated=len(lines) > max_lines,
    )


def display_lines(page: LayoutPage) -> List[str]:
    """Return the lines to draw, including the truncation marker when needed."""
    if page.truncated:
        return [*page.lines, TRUNCATION_MARKER]
    return list(page.lines)
