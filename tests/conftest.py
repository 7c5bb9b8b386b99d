"""
Pytest fixtures for EcoTrust tests.

Provides:
- Temporary SQLite database per test (TrustDB + both stores)
- FixedClock pinned to 2024-06-01 12:00 UTC
- FakeOracle: scripted ScoreOracle that records every call
- Factories for listings and moderated entities
"""
import sys
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

# Project root on PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from ecotrust.clock import FixedClock
from ecotrust.config import ACCOMMODATION_CATEGORIES
from ecotrust.database import TrustDB
from ecotrust.models import Listing, ListingKind, ModeratedEntity, ScoreMetadata
from ecotrust.oracle.backend import ScoreOracle
from ecotrust.oracle.client import OracleResult
from ecotrust.stores import ModerationStore, ScoreMetadataStore

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# FAKE ORACLE
# =============================================================================

def oracle_result(score: float = 4.0, confidence: int = 4, reviews: int = 40, keywords: int = 12,
                  categories: tuple = None) -> OracleResult:
    """OracleResult with the same score for every category."""
    categories = categories or ACCOMMODATION_CATEGORIES
    return OracleResult(
        category_scores={name: score for name in categories},
        confidence_level=confidence,
        reviews_analyzed=reviews,
        keyword_matches=keywords,
    )


class FakeOracle(ScoreOracle):
    """
    Scripted oracle.

    `script` maps external_place_ref -> OracleResult or Exception instance.
    Unscripted refs get `default`. Every call is recorded in `calls`.
    """

    def __init__(self, script: dict = None, default: OracleResult = None, delay: float = 0.0):
        self.script = script or {}
        self.default = default or oracle_result()
        self.delay = delay
        self.calls = []
        self.timeouts = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "fake"

    def compute(self, external_place_ref: str, categories: tuple, timeout: float) -> OracleResult:
        with self._lock:
            self.calls.append(external_place_ref)
            self.timeouts.append(timeout)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            outcome = self.script.get(external_place_ref, self.default)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            with self._lock:
                self.active -= 1


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "ecotrust_test.db")


@pytest.fixture
def db(db_path):
    trust_db = TrustDB(db_path)
    yield trust_db
    trust_db.close()


@pytest.fixture
def score_store(db):
    return ScoreMetadataStore(db)


@pytest.fixture
def moderation_store(db):
    return ModerationStore(db)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def fake_oracle():
    return FakeOracle()


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def make_listing(score_store):
    """Insert a listing and return it."""
    counter = [0]

    def _make(
        listing_id: str = None,
        ref: Optional[str] = "place-ref",
        confidence: int = 2,
        last_calculated: Optional[datetime] = None,
        scores: dict = None,
        kind: ListingKind = ListingKind.ACCOMMODATION,
        listing_type: str = "hotel",
        is_default: bool = False,
        last_error: str = None,
    ) -> Listing:
        counter[0] += 1
        listing_id = listing_id or f"acc-{counter[0]}"
        if scores is None:
            scores = {"energy_efficiency": 3.0, "waste_management": 2.0}
        listing = Listing(
            id=listing_id,
            kind=kind,
            name=f"Listing {listing_id}",
            listing_type=listing_type,
            external_place_ref=ref if ref != "place-ref" else f"ref-{listing_id}",
            category_scores=scores,
            overall_rating=(sum(scores.values()) / len(scores)) if scores else None,
            score_metadata=ScoreMetadata(
                confidence_level=confidence,
                last_calculated=last_calculated,
                reviews_analyzed=5,
                keyword_matches=1,
                is_default=is_default,
                last_error=last_error,
            ),
        )
        score_store.add_listing(listing)
        return listing

    return _make


@pytest.fixture
def make_entity(moderation_store):
    """Insert a moderated entity in its initial state and return its id."""

    def _make(entity_id: str, entity_type: str = "review",
              start_date: datetime = None, end_date: datetime = None) -> str:
        moderation_store.add_entity(ModeratedEntity(
            id=entity_id,
            entity_type=entity_type,
            state="Pending",
            start_date=start_date,
            end_date=end_date,
        ))
        return entity_id

    return _make


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)
