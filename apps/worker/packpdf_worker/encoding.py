"""Best-effort decoding of byte buffers whose encoding is unknown."""

from __future__ import annotations

import codecs
import logging
import re
from typing import Iterator, List, Tuple

import chardet

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "utf-8"
DETECTION_SAMPLE_BYTES = 256 * 1024
FALLBACK_ENCODINGS = ("utf-8", "euc-kr", "cp949", "iso2022_kr")

# Single-byte Western guesses that chardet returns for EUC-KR input.
MISDETECTED_WESTERN = {"cp1252", "iso8859-1"}

HANGUL_PATTERN = re.compile("[가-힣]")
ASCII_ALNUM_PATTERN = re.compile("[A-Za-z0-9]")


def _normalize_label(label: str | None) -> str | None:
    """Return the codec's canonical name, or None when Python has no such codec."""
    if not label:
        return None
    try:
        return codecs.lookup(label).name
    except LookupError:
        return None


def looks_readable(text: str) -> bool:
    """Return True when the text holds a Hangul syllable or an ASCII alphanumeric."""
    return bool(HANGUL_PATTERN.search(text) or ASCII_ALNUM_PATTERN.search(text))


def detect_encoding(data: bytes) -> str | None:
    """Guess an encoding label for the buffer, remapping known misdetections."""
    guess = _normalize_label(chardet.detect(data[:DETECTION_SAMPLE_BYTES]).get("encoding"))
    if guess in MISDETECTED_WESTERN:
        return "euc_kr"
    return guess


def candidate_encodings(data: bytes) -> List[str]:
    """Return the ordered, de-duplicated encodings to try for ``data``."""
    candidates: List[str] = []
    for label in (detect_encoding(data), *FALLBACK_ENCODINGS):
        name = _normalize_label(label)
        if name and name not in candidates:
            candidates.append(name)
    return candidates


def _decode_attempts(data: bytes, encodings: List[str]) -> Iterator[Tuple[str, str | None]]:
    """Yield ``(encoding, text)`` lazily; text is None when the strict decode fails."""
    for encoding in encodings:
        try:
            yield encoding, data.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            yield encoding, None


def recover_text(data: bytes, source: str = "<buffer>") -> str:
    """
    Decode ``data`` into the most plausible text.

    Encodings are tried in order (detector guess, UTF-8, EUC-KR, CP949,
    ISO-2022-KR) and the first strict decode that looks readable wins. When
    none qualifies the buffer is decoded as UTF-8 with replacement characters,
    so this never raises.
    """
    if not data:
        return ""
    for encoding, text in _decode_attempts(data, candidate_encodings(data)):
        if text is not None and looks_readable(text):
            logger.debug("Decoded %s with encoding %s", source, encoding)
            return text
    logger.debug("No candidate encoding accepted for %s; using lenient UTF-8", source)
    return data.decode(DEFAULT_ENCODING, errors="replace")
