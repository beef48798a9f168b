"""Data carried through a single conversion request."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Union

from pypdf import PageObject


@dataclass(frozen=True)
class FileDescriptor:
    """An uploaded file as handed over by the upload collaborator."""

    identifier: str
    original_name: str
    size_bytes: int
    mime_type: str
    storage_ref: Path

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], upload_dir: Path) -> "FileDescriptor":
        """
        Build a descriptor from a request payload entry.

        The stored name (``filename``) is resolved inside ``upload_dir`` and only
        its final path component is used, so payloads cannot point elsewhere.
        """
        identifier = Path(str(payload.get("filename") or "")).name
        if not identifier:
            raise ValueError("File entry is missing its stored filename")
        try:
            size = int(payload.get("size") or 0)
        except (TypeError, ValueError):
            size = 0
        return cls(
            identifier=identifier,
            original_name=str(payload.get("originalname") or identifier),
            size_bytes=max(size, 0),
            mime_type=str(payload.get("mimetype") or "application/octet-stream"),
            storage_ref=upload_dir / identifier,
        )

    def to_payload(self) -> Dict[str, Any]:
        """Return the JSON shape used by the upload collaborator."""
        return {
            "filename": self.identifier,
            "originalname": self.original_name,
            "size": self.size_bytes,
            "mimetype": self.mime_type,
            "path": str(self.storage_ref),
        }


@dataclass
class NativePdfPages:
    """Pages of an input that already is a PDF, in source order."""

    pages: List[PageObject]


@dataclass
class PlainText:
    """Text extracted from a document together with the page title to use."""

    text: str
    label: str


@dataclass
class RawRasterBytes:
    """An input image passed through for re-encoding."""

    data: bytes


@dataclass
class RenderFailure:
    """Diagnostic produced when a format branch cannot read its input."""

    message: str


ExtractedContent = Union[NativePdfPages, PlainText, RawRasterBytes]


@dataclass
class LayoutPage:
    """One fixed-size text page: a title and wrapped display lines."""

    title: str
    lines: List[str] = field(default_factory=list)
    truncated: bool = False


@dataclass(frozen=True)
class CompressionPlan:
    """Raster quality applied to every synthesized page of a request."""

    quality: int
    ratio: float


@dataclass
class ConversionResult:
    """Outcome of assembling a batch into one PDF."""

    output_path: Path
    output_bytes: bytes
    original_size_kb: int
    compressed_size_kb: int
    savings_percent: int
    page_count: int

    def to_response(self) -> Dict[str, Any]:
        """Return the response payload reported to the caller."""
        filename = self.output_path.name
        return {
            "success": True,
            "filename": filename,
            "downloadUrl": f"/output/{filename}",
            "originalSizeKB": self.original_size_kb,
            "compressedSizeKB": self.compressed_size_kb,
            "compressionRatio": self.savings_percent,
            "message": "PDF converted successfully",
        }
