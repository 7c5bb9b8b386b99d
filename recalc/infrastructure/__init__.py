"""Infrastructure layer - batch processing and orchestration."""
from .batch_processor import BatchProcessor, BatchResult
from .orchestrator import RecalculationOrchestrator, BatchReport, ItemOutcome

__all__ = [
    'BatchProcessor', 'BatchResult',
    'RecalculationOrchestrator', 'BatchReport', 'ItemOutcome',
]
