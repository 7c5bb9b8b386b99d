"""Domain layer - pure business logic, no infrastructure dependencies."""
from .confidence import ConfidenceBand, ConfidenceThresholds, get_band, effective_confidence
from .filter_engine import (
    FilterCriteria, FilterEngine, parse_criteria, matches,
    LOW_CONFIDENCE, NEVER_PROCESSED,
)
from .score_calculator import apply_success, apply_failure

__all__ = [
    'ConfidenceBand', 'ConfidenceThresholds', 'get_band', 'effective_confidence',
    'FilterCriteria', 'FilterEngine', 'parse_criteria', 'matches',
    'LOW_CONFIDENCE', 'NEVER_PROCESSED',
    'apply_success', 'apply_failure',
]
