"""
Confidence bands.
Thresholds and band assignment for score confidence levels (1-5).
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ecotrust.models import ScoreMetadata


class ConfidenceBand(Enum):
    """Coarse confidence grouping used by filters and reports."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class ConfidenceThresholds:
    """Level boundaries for bands."""
    LOW_MAX: int = 2     # 1-2 = low
    MEDIUM: int = 3      # exactly 3 = medium
    HIGH_MIN: int = 4    # 4-5 = high


def effective_confidence(metadata: Optional[ScoreMetadata]) -> int:
    """Confidence level, treating missing metadata as level 1."""
    if metadata is None:
        return 1
    return metadata.confidence_level or 1


def get_band(level: int) -> ConfidenceBand:
    """
    Determine the band for a confidence level.

    Args:
        level: Confidence level (1-5)

    Returns:
        ConfidenceBand enum value
    """
    if level >= ConfidenceThresholds.HIGH_MIN:
        return ConfidenceBand.HIGH
    elif level == ConfidenceThresholds.MEDIUM:
        return ConfidenceBand.MEDIUM
    return ConfidenceBand.LOW


def get_band_color(band: ConfidenceBand) -> str:
    """ANSI color code for terminal output."""
    colors = {
        ConfidenceBand.HIGH: "\033[92m",    # Bright Green
        ConfidenceBand.MEDIUM: "\033[93m",  # Yellow
        ConfidenceBand.LOW: "\033[91m",     # Red
    }
    return colors.get(band, "\033[0m")
