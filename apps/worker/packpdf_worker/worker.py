"""Worker runtime for converting uploaded batches into one PDF."""

from __future__ import annotations

import argparse
import json
import logging
import mimetypes
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Sequence

from .assembler import assemble
from .config import WorkerSettings
from .exceptions import AdmissionError, AssemblyError
from .models import FileDescriptor
from .planner import plan_compression
from .storage import UploadStore

logger = logging.getLogger(__name__)

COMPRESSION_CHOICES = ("low", "medium", "high", "custom")


def _parse_optional_float(value: Any) -> float | None:
    """Parse an optional number, treating blanks and garbage as absent."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _failure(message: str) -> Dict[str, Any]:
    return {"success": False, "error": message}


class PackPdfWorker:
    """Admit conversion requests, run the pipeline and shape the responses."""

    def __init__(self, settings: WorkerSettings | None = None) -> None:
        """Initialize the worker with filesystem settings."""
        self.settings = settings or WorkerSettings.from_env()
        self.store = UploadStore(self.settings.upload_dir, self.settings.output_dir)

    def admit(self, files: Any) -> List[FileDescriptor]:
        """
        Validate the request's file list and build descriptors.

        Raises:
            AdmissionError: When no files are given, too many files are given, or
                a file exceeds the size limit.
        """
        if not files:
            raise AdmissionError("No files provided for conversion")
        if not isinstance(files, list):
            raise AdmissionError("Files must be a list")
        if len(files) > self.settings.max_files:
            raise AdmissionError(
                f"Too many files. Maximum is {self.settings.max_files} files."
            )
        descriptors: List[FileDescriptor] = []
        for item in files:
            if not isinstance(item, dict):
                raise AdmissionError("Invalid file entry")
            try:
                descriptor = FileDescriptor.from_payload(item, self.store.upload_dir)
            except ValueError as error:
                raise AdmissionError(str(error)) from error
            if descriptor.size_bytes > self.settings.max_file_bytes:
                limit_mb = self.settings.max_file_bytes // (1024 * 1024)
                raise AdmissionError(f"File too large. Maximum size is {limit_mb}MB.")
            descriptors.append(descriptor)
        return descriptors

    def convert(self, request: Dict[str, Any], cleanup: bool = True) -> Dict[str, Any]:
        """Process a conversion request and return the response payload."""
        try:
            descriptors = self.admit(request.get("files"))
        except AdmissionError as error:
            return _failure(error.message)

        total_bytes = sum(descriptor.size_bytes for descriptor in descriptors)
        plan = plan_compression(
            request.get("compression") or "medium",
            total_bytes,
            target_size_kb=_parse_optional_float(request.get("targetSizeKB")),
            ratio=_parse_optional_float(request.get("compressionRatio")),
        )
        logger.info(
            "Converting %d file(s), %d bytes, quality %d",
            len(descriptors),
            total_bytes,
            plan.quality,
        )
        try:
            result = assemble(
                descriptors,
                plan,
                self.store,
                render_scale=self.settings.render_scale,
                cleanup=cleanup,
            )
        except AssemblyError as error:
            logger.error("Conversion failed: %s", error.message)
            return _failure(f"Failed to convert PDF: {error.message}")
        except Exception as error:  # noqa: BLE001
            logger.exception("Conversion failed")
            return _failure(f"Failed to convert PDF: {error}")
        logger.info(
            "Wrote %s (%d pages, %d KB)",
            result.output_path.name,
            result.page_count,
            result.compressed_size_kb,
        )
        return result.to_response()

    def delete(self, identifier: str) -> Dict[str, Any]:
        """Remove a stored upload; removing a missing file still succeeds."""
        removed = self.store.remove(identifier)
        message = "File deleted successfully" if removed else "File already removed"
        return {"success": True, "message": message}


def build_parser() -> argparse.ArgumentParser:
    """Create and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="packpdf-worker",
        description="Convert a batch of documents into one size-budgeted PDF.",
    )
    parser.add_argument("inputs", nargs="+", type=Path, help="Files to convert, in page order")
    parser.add_argument(
        "-c", "--compression", choices=COMPRESSION_CHOICES, default="medium"
    )
    parser.add_argument("--target-size-kb", type=float, help="Target size for the custom tier")
    parser.add_argument("--ratio", type=float, help="Size ratio (0-1) for the custom tier")
    parser.add_argument("-o", "--output-dir", type=Path, help="Directory for the merged PDF")
    parser.add_argument("--upload-dir", type=Path, help="Staging directory for inputs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entrypoint: stage the given files, convert them and print the JSON response."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    settings = WorkerSettings.from_env()
    overrides: Dict[str, Any] = {}
    if args.output_dir:
        overrides["output_dir"] = args.output_dir
    if args.upload_dir:
        overrides["upload_dir"] = args.upload_dir
    if overrides:
        settings = replace(settings, **overrides)
    worker = PackPdfWorker(settings)

    missing = [path for path in args.inputs if not path.is_file()]
    if missing:
        print(json.dumps(_failure(f"File not found: {missing[0]}")))
        return 1

    files: List[Dict[str, Any]] = []
    for path in args.inputs:
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        descriptor = worker.store.save(path.name, path.read_bytes(), mime_type)
        files.append(descriptor.to_payload())

    response = worker.convert(
        {
            "files": files,
            "compression": args.compression,
            "targetSizeKB": args.target_size_kb,
            "compressionRatio": args.ratio,
        }
    )
    if not response.get("success"):
        for item in files:
            worker.delete(item["filename"])
    else:
        response["outputPath"] = str(worker.store.output_dir / response["filename"])
    print(json.dumps(response, ensure_ascii=False, indent=2))
    return 0 if response.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
