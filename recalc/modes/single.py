"""
Single Mode
Recalculate one listing by id (the "Recalculate" button on a listing).
"""
from ecotrust.clock import Clock
from ecotrust.database import TrustDB
from ecotrust.oracle.backend import HttpScoreOracle, ScoreOracle
from ecotrust.stores import ScoreMetadataStore

from ..domain.confidence import get_band, get_band_color
from ..infrastructure.orchestrator import BatchReport, RecalculationOrchestrator
from .filtered import print_report

RESET = "\033[0m"


def recalculate_single_mode(
    db_path: str,
    listing_id: str,
    oracle: ScoreOracle = None,
    clock: Clock = None,
    verbose: bool = False,
) -> BatchReport:
    """Recalculate one listing and print its new scores."""
    print(f"[*] Recalculation: single listing {listing_id}")
    print(f"   Database: {db_path}")

    oracle = oracle or HttpScoreOracle()
    print(f"   Oracle: {oracle.name}")
    print()

    with TrustDB(db_path) as db:
        store = ScoreMetadataStore(db)
        orchestrator = RecalculationOrchestrator(store, oracle, clock=clock)
        report = orchestrator.run_single(listing_id)

        if report.successful:
            listing, _ = store.get(listing_id)
            meta = listing.score_metadata
            band = get_band(meta.confidence_level)
            print(f"[OK] {listing.name or listing.id}")
            for name, value in listing.category_scores.items():
                print(f"   {name:28} {value:.1f}")
            if listing.overall_rating is not None:
                print(f"   {'overall':28} {listing.overall_rating:.2f}")
            print(
                f"   Confidence: {get_band_color(band)}{meta.confidence_level} "
                f"({band.value}){RESET}, {meta.reviews_analyzed} reviews, "
                f"{meta.keyword_matches} keyword matches"
            )

    print_report(report, verbose=verbose)
    return report
