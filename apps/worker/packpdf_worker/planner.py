"""Map a compression selection onto a raster quality."""

from __future__ import annotations

import logging

from .config import (
    DEFAULT_TIER,
    MAX_QUALITY,
    MIN_QUALITY,
    RATIO_QUALITY_FLOOR,
    RATIO_QUALITY_STEPS,
    TIER_SETTINGS,
)
from .models import CompressionPlan

logger = logging.getLogger(__name__)

MIN_RATIO = 0.01
CUSTOM_DEFAULT_QUALITY = 80


def _clamp_quality(quality: int) -> int:
    return max(MIN_QUALITY, min(MAX_QUALITY, int(quality)))


def _clamp_ratio(ratio: float) -> float:
    return max(MIN_RATIO, min(1.0, float(ratio)))


def quality_for_ratio(ratio: float) -> int:
    """Return the JPEG quality bucket for a size ratio."""
    for threshold, quality in RATIO_QUALITY_STEPS:
        if ratio > threshold:
            return quality
    return RATIO_QUALITY_FLOOR


def plan_compression(
    tier: str | None,
    aggregate_bytes: int,
    target_size_kb: float | None = None,
    ratio: float | None = None,
) -> CompressionPlan:
    """
    Compute the plan for one request.

    Named tiers map to fixed pairs. The ``custom`` tier derives a ratio from
    ``target_size_kb`` against the aggregate input size when given, otherwise
    uses ``ratio`` directly; the ratio then selects a quality bucket. Unknown
    tiers behave like ``medium``.
    """
    name = (tier or DEFAULT_TIER).strip().lower()
    if name != "custom":
        if name not in TIER_SETTINGS:
            logger.warning("Unknown compression tier %r, using %s", tier, DEFAULT_TIER)
            name = DEFAULT_TIER
        quality, tier_ratio = TIER_SETTINGS[name]
        return CompressionPlan(quality=_clamp_quality(quality), ratio=tier_ratio)

    if target_size_kb:
        if aggregate_bytes > 0:
            derived = min(1.0, (float(target_size_kb) * 1024) / aggregate_bytes)
        else:
            derived = 1.0
    elif ratio is not None:
        derived = float(ratio)
    else:
        return CompressionPlan(quality=CUSTOM_DEFAULT_QUALITY, ratio=1.0)

    clamped = _clamp_ratio(derived)
    return CompressionPlan(quality=_clamp_quality(quality_for_ratio(clamped)), ratio=clamped)
