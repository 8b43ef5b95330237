"""
Level scales and CEFR labels.

Calibration arithmetic runs on the coarse 1.0-5.0 scale. Learner profiles
store a fine 0-100 level. These functions are the only bridge between the
two.
"""

from __future__ import annotations

from .errors import InvalidInputError

MIN_LEVEL = 1.0
MAX_LEVEL = 5.0
FINE_MAX = 100

# (upper bound exclusive, label) on the coarse scale
_COARSE_LABELS = (
    (1.5, "A1"),
    (2.0, "A1+"),
    (2.5, "A2"),
    (3.0, "A2+"),
    (3.5, "B1"),
    (4.0, "B1+"),
    (4.5, "B2"),
    (5.0, "B2+"),
)

# (upper bound inclusive, label) on the fine scale
_FINE_LABELS = (
    (20, "A1"),
    (40, "A2"),
    (60, "B1"),
    (80, "B2"),
    (90, "C1"),
)


def clamp_level(level: float) -> float:
    """Clamp a coarse level to [1, 5]."""
    return max(MIN_LEVEL, min(MAX_LEVEL, level))


def fine_to_coarse(fine_level: float) -> float:
    """
    Convert a 0-100 level to the 1-5 scale.

    0 maps to 1.0 and 100 maps to 5.0, linearly.
    """
    if not 0 <= fine_level <= FINE_MAX:
        raise InvalidInputError(f"fine level must be within [0, 100], got {fine_level}")
    return MIN_LEVEL + fine_level / 25.0


def coarse_to_fine(level: float) -> int:
    """Convert a 1-5 level to the 0-100 scale, rounded half up."""
    if not MIN_LEVEL <= level <= MAX_LEVEL:
        raise InvalidInputError(f"level must be within [1, 5], got {level}")
    return int((level - MIN_LEVEL) * 25.0 + 0.5)


def level_to_cefr_label(level: float) -> str:
    """Human-readable CEFR label for a 1-5 level."""
    for bound, label in _COARSE_LABELS:
        if level < bound:
            return label
    return "C1"


def fine_level_to_cefr(fine_level: float) -> str:
    """CEFR band for a 0-100 level."""
    for bound, label in _FINE_LABELS:
        if fine_level <= bound:
            return label
    return "C2"


def generation_cefr(target_level: float) -> str:
    """CEFR band requested from the content generator for a target level."""
    if target_level <= 2:
        return "A1"
    if target_level <= 3:
        return "A2"
    if target_level <= 4:
        return "B1"
    return "B2"
