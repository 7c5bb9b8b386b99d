"""
Score Calculator
Turn an oracle outcome into the listing state to persist.

Pure functions: they take the listing as read from the store and return
the listing to write back. Nothing here touches storage or the oracle.
"""
from dataclasses import replace
from datetime import datetime

from ecotrust.models import Listing, ScoreMetadata, overall_rating
from ecotrust.oracle.client import OracleResult


def apply_success(listing: Listing, result: OracleResult, now: datetime) -> Listing:
    """
    Listing after a successful recalculation.

    Category scores are overwritten in the listing's canonical order
    (absent categories stay absent), overall_rating is the mean of the
    present scores, and metadata is replaced wholesale with the oracle's
    provenance.
    """
    scores = {name: result.category_scores.get(name) for name in listing.categories}
    scores = {name: value for name, value in scores.items() if value is not None}

    return replace(
        listing,
        category_scores=scores,
        overall_rating=overall_rating(scores),
        score_metadata=ScoreMetadata(
            confidence_level=result.confidence_level,
            last_calculated=now,
            reviews_analyzed=result.reviews_analyzed,
            keyword_matches=result.keyword_matches,
            is_default=False,
            last_error=None,
        ),
    )


def apply_failure(listing: Listing, error_message: str) -> Listing:
    """
    Listing after a failed recalculation.

    Scores, confidence and last_calculated are kept exactly as they were;
    only last_error changes.
    """
    return replace(
        listing,
        score_metadata=replace(listing.score_metadata, last_error=error_message),
    )
