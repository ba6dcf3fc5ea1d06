"""
Quality resolution for lossy encoders.

Turns a named preset or an explicit number into an encoder quality in
[1, 100]. An explicit number always wins; with neither, the High preset is
used.
"""

import math
from enum import Enum
from typing import Optional, Union


class QualityPreset(str, Enum):
    """Named encoder quality shorthands."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["QualityPreset"]:
        """Return the matching preset, or None for missing/unknown names."""
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


QUALITY_BY_PRESET = {
    QualityPreset.HIGH: 90,
    QualityPreset.MEDIUM: 80,
    QualityPreset.LOW: 65,
}

MIN_QUALITY = 1
MAX_QUALITY = 100
DEFAULT_PRESET = QualityPreset.HIGH


def resolve_quality(
    preset: Optional[Union[QualityPreset, str]] = None,
    quality: Optional[float] = None
) -> int:
    """
    Resolve an encoder quality.

    Args:
        preset: Named preset (enum member or its string value)
        quality: Explicit quality; used when it is a finite number

    Returns:
        Integer quality clamped to [1, 100]
    """
    if _is_finite_number(quality):
        # Round half up: 2.5 -> 3
        return _clamp(math.floor(quality + 0.5), MIN_QUALITY, MAX_QUALITY)

    if isinstance(preset, str) and not isinstance(preset, QualityPreset):
        preset = QualityPreset.parse(preset)
    if preset in QUALITY_BY_PRESET:
        return QUALITY_BY_PRESET[preset]

    return QUALITY_BY_PRESET[DEFAULT_PRESET]


def _is_finite_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _clamp(value: int, low: int, high: int) -> int:
    return min(max(value, low), high)
