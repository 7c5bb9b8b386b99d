"""
Filtered Mode
Recalculate every listing selected by the current filter, optionally
narrowed to low-confidence or never-processed listings.
Calls the scoring oracle once per listing.
"""
from typing import Mapping, Optional

from ecotrust.clock import Clock
from ecotrust.database import TrustDB
from ecotrust.oracle.backend import HttpScoreOracle, ScoreOracle
from ecotrust.stores import ScoreMetadataStore

from ..domain.filter_engine import parse_criteria
from ..infrastructure.orchestrator import BatchReport, RecalculationOrchestrator

MODES = ('filtered', 'low-confidence', 'never')


def print_report(report: BatchReport, verbose: bool = False):
    """Human summary of a batch."""
    print(f"\n[=] Summary:")
    print(f"   Targeted: {len(report.target_ids)}")
    print(f"   Processed: {report.total_processed}")
    print(f"   Successful: {report.successful}")
    print(f"   Failed: {report.failed}")
    print(f"   Rate: {report.rate:.1f}/sec")
    if report.cancelled:
        print(f"   [!] Cancelled: {len(report.target_ids) - report.total_processed} listings not started")

    if report.errors:
        shown = sorted(report.errors.items()) if verbose else sorted(report.errors.items())[:10]
        print(f"\n[!] Failures:")
        for listing_id, reason in shown:
            print(f"   {listing_id}: {reason}")
        if len(shown) < len(report.errors):
            print(f"   ... and {len(report.errors) - len(shown)} more (use -v)")


def recalculate_filtered_mode(
    db_path: str,
    criteria: Optional[Mapping] = None,
    mode: str = 'filtered',
    concurrency: int = None,
    oracle: ScoreOracle = None,
    clock: Clock = None,
    verbose: bool = False,
) -> BatchReport:
    """
    Recalculate listings picked by the filter.

    Args:
        db_path: Path to database
        criteria: e.g. {"confidence": "low", "has_external_ref": "yes"}
        mode: 'filtered', 'low-confidence' or 'never'
        concurrency: Worker count (default RECALC_CONCURRENCY)
        oracle: Scoring oracle (default HttpScoreOracle)
        verbose: Print every failure

    Returns:
        BatchReport with statistics

    Raises:
        InvalidFilterError: bad criteria (nothing attempted)
        StorageError: database unreachable (nothing attempted)
    """
    if mode not in MODES:
        raise ValueError(f"Unknown mode: {mode}")

    # Reject bad criteria before opening anything
    parsed = parse_criteria(criteria)

    print(f"[*] Recalculation: {mode}")
    print(f"   Database: {db_path}")
    print(f"   Filter: {parsed.describe()}")

    oracle = oracle or HttpScoreOracle()
    print(f"   Oracle: {oracle.name}")
    print()

    with TrustDB(db_path) as db:
        orchestrator = RecalculationOrchestrator(
            ScoreMetadataStore(db),
            oracle,
            clock=clock,
            show_progress=True,
        )
        kwargs = {}
        if concurrency is not None:
            kwargs['concurrency_limit'] = concurrency

        if mode == 'low-confidence':
            report = orchestrator.run_low_confidence(parsed, **kwargs)
        elif mode == 'never':
            report = orchestrator.run_never_processed(parsed, **kwargs)
        else:
            report = orchestrator.run_filtered(parsed, **kwargs)

    if not report.target_ids:
        print("Nothing matched the filter")
    print_report(report, verbose=verbose)
    return report
