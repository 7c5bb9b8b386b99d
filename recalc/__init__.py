"""
Eco-Score Recalculation
Select listings, re-score them through the oracle, write results back.
"""
from .domain.filter_engine import FilterCriteria, FilterEngine, parse_criteria
from .infrastructure.orchestrator import RecalculationOrchestrator, BatchReport

__all__ = [
    'FilterCriteria', 'FilterEngine', 'parse_criteria',
    'RecalculationOrchestrator', 'BatchReport',
]
