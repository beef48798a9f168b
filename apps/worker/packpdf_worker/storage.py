"""Upload and output storage on the local filesystem."""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import BinaryIO, Callable, Tuple

from .models import FileDescriptor

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9.\-_가-힣]")


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def sanitize_filename(name: str) -> str:
    """Replace characters outside letters, digits, ``.-_`` and Hangul with ``_``."""
    return _UNSAFE_NAME_CHARS.sub("_", Path(name).name) or "upload"


def _open_exclusive(directory: Path, name_for: Callable[[int], str]) -> Tuple[Path, BinaryIO]:
    """Create the first free ``name_for(attempt)`` in ``directory`` and return it open for writing."""
    attempt = 0
    while True:
        path = directory / name_for(attempt)
        try:
            return path, path.open("xb")
        except FileExistsError:
            attempt += 1


class UploadStore:
    """Stores uploads under ``upload_dir`` and conversion outputs under ``output_dir``."""

    def __init__(self, upload_dir: Path, output_dir: Path) -> None:
        self.upload_dir = Path(upload_dir)
        self.output_dir = Path(output_dir)

    def ensure_dirs(self) -> None:
        """Create the storage directories if missing."""
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def save(
        self,
        original_name: str,
        data: bytes,
        mime_type: str = "application/octet-stream",
    ) -> FileDescriptor:
        """Persist an upload as ``<millis>-<sanitized name>`` and describe it."""
        self.ensure_dirs()
        safe_name = sanitize_filename(original_name)
        stamp = _timestamp_ms()
        target, handle = _open_exclusive(
            self.upload_dir,
            lambda attempt: f"{stamp}-{safe_name}" if attempt == 0 else f"{stamp}-{attempt}-{safe_name}",
        )
        with handle:
            handle.write(data)
        return FileDescriptor(
            identifier=target.name,
            original_name=original_name,
            size_bytes=len(data),
            mime_type=mime_type,
            storage_ref=target,
        )

    def resolve(self, identifier: str) -> Path:
        """Return the storage path for an identifier, confined to the upload directory."""
        return self.upload_dir / Path(identifier).name

    def remove(self, identifier: str) -> bool:
        """Delete a stored upload; returns False when it was already gone."""
        path = self.resolve(identifier)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug("Removed upload %s", identifier)
        return True

    def new_output_path(self) -> Path:
        """
        Claim a fresh ``converted-<millis>.pdf`` in the output directory.

        The file is created empty so concurrent callers never receive the
        same path.
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        stamp = _timestamp_ms()
        path, handle = _open_exclusive(
            self.output_dir,
            lambda attempt: f"converted-{stamp}.pdf" if attempt == 0 else f"converted-{stamp}-{attempt}.pdf",
        )
        handle.close()
        return path
