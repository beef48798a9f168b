"""Runtime configuration and fixed pipeline budgets."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Tuple

PAGE_WIDTH = 595
PAGE_HEIGHT = 842

MAX_LINES = 40
MAX_LINE_CHARS = 70
MAX_TEXT_CHARS = 3000

MAX_FILES = 20
MAX_FILE_BYTES = 50 * 1024 * 1024

SHEET_LIMIT = 3
SHEET_ROW_LIMIT = 20
SHEET_COLUMN_LIMIT = 11

HWP_TEXT_LIMIT = 2000

TIER_SETTINGS: Dict[str, Tuple[int, float]] = {
    "low": (95, 0.9),
    "medium": (80, 0.7),
    "high": (60, 0.5),
}
DEFAULT_TIER = "medium"

# (ratio strictly above, quality), checked top to bottom
RATIO_QUALITY_STEPS: Tuple[Tuple[float, int], ...] = (
    (0.9, 95),
    (0.7, 85),
    (0.5, 70),
    (0.3, 55),
)
RATIO_QUALITY_FLOOR = 40

MIN_QUALITY = 10
MAX_QUALITY = 100


def _parse_int(value: Any, default: int) -> int:
    """Parse an integer with a safe fallback."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _parse_float(value: Any, default: float) -> float:
    """Parse a float with a safe fallback."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class WorkerSettings:
    """Filesystem locations and admission limits for a worker process."""

    upload_dir: Path = Path("/tmp/uploads")
    output_dir: Path = Path("/tmp/output")
    max_file_bytes: int = MAX_FILE_BYTES
    max_files: int = MAX_FILES
    render_scale: float = 2.0

    @classmethod
    def from_env(cls) -> "WorkerSettings":
        """Build settings from ``PACKPDF_*`` environment variables."""
        scale = _parse_float(os.environ.get("PACKPDF_RENDER_SCALE"), 2.0)
        return cls(
            upload_dir=Path(os.environ.get("PACKPDF_UPLOAD_DIR") or "/tmp/uploads"),
            output_dir=Path(os.environ.get("PACKPDF_OUTPUT_DIR") or "/tmp/output"),
            max_file_bytes=_parse_int(
                os.environ.get("PACKPDF_MAX_FILE_BYTES"), MAX_FILE_BYTES
            ),
            max_files=_parse_int(os.environ.get("PACKPDF_MAX_FILES"), MAX_FILES),
            render_scale=min(max(scale, 0.5), 4.0),
        )
