"""
Tests for recalc/domain/filter_engine.py.

Selection is pure: listings + criteria + now -> ids, in input order.
"""
from datetime import timedelta

import pytest

from conftest import NOW, days_ago
from ecotrust.clock import FixedClock
from ecotrust.errors import InvalidFilterError
from ecotrust.models import Listing, ScoreMetadata
from recalc.domain.confidence import ConfidenceBand, get_band
from recalc.domain.filter_engine import (
    FilterCriteria,
    FilterEngine,
    LOW_CONFIDENCE,
    NEVER_PROCESSED,
    parse_criteria,
)


def listing(listing_id, confidence=1, ref="ref", last_calculated=None):
    return Listing(
        id=listing_id,
        external_place_ref=ref,
        score_metadata=ScoreMetadata(confidence_level=confidence, last_calculated=last_calculated),
    )


@pytest.fixture
def engine():
    return FilterEngine(FixedClock(NOW))


@pytest.fixture
def listings():
    return [
        listing("a", confidence=1, ref=None),
        listing("b", confidence=2, last_calculated=days_ago(40)),
        listing("c", confidence=3, last_calculated=days_ago(3)),
        listing("d", confidence=4, ref=None, last_calculated=days_ago(10)),
        listing("e", confidence=5, last_calculated=days_ago(7)),
    ]


class TestConfidenceBands:

    @pytest.mark.parametrize("level,band", [
        (1, ConfidenceBand.LOW),
        (2, ConfidenceBand.LOW),
        (3, ConfidenceBand.MEDIUM),
        (4, ConfidenceBand.HIGH),
        (5, ConfidenceBand.HIGH),
    ])
    def test_band_boundaries(self, level, band):
        assert get_band(level) == band

    def test_missing_metadata_counts_as_level_one(self, engine):
        bare = Listing(id="x", score_metadata=None)
        assert engine.select([bare], {"confidence": "low"}) == ["x"]


class TestSelect:

    def test_no_criteria_selects_all(self, engine, listings):
        assert engine.select(listings) == ["a", "b", "c", "d", "e"]
        assert engine.select(listings, {}) == ["a", "b", "c", "d", "e"]

    def test_all_values_mean_no_constraint(self, engine, listings):
        criteria = {"confidence": "all", "hasExternalRef": "all", "lastCalculated": "all"}
        assert engine.select(listings, criteria) == ["a", "b", "c", "d", "e"]

    @pytest.mark.parametrize("band,expected", [
        ("low", ["a", "b"]),
        ("medium", ["c"]),
        ("high", ["d", "e"]),
    ])
    def test_confidence(self, engine, listings, band, expected):
        assert engine.select(listings, {"confidence": band}) == expected

    def test_external_ref(self, engine, listings):
        assert engine.select(listings, {"has_external_ref": "yes"}) == ["b", "c", "e"]
        assert engine.select(listings, {"has_external_ref": "no"}) == ["a", "d"]

    def test_never_matches_only_absent_last_calculated(self, engine, listings):
        assert engine.select(listings, {"last_calculated": "never"}) == ["a"]

    def test_day_window_is_exclusive(self, engine, listings):
        """Exactly 7 days old is not older than 7 days."""
        assert engine.select(listings, {"last_calculated": "week"}) == ["b", "d"]
        assert engine.select(listings, {"older_than_days": 6}) == ["b", "d", "e"]

    def test_day_window_skips_never_calculated(self, engine, listings):
        assert "a" not in engine.select(listings, {"older_than_days": 0})

    def test_month_alias(self, engine, listings):
        assert engine.select(listings, {"lastCalculated": "month"}) == ["b"]

    def test_numeric_string_days(self, engine, listings):
        assert engine.select(listings, {"last_calculated": "9"}) == ["b", "d"]

    def test_criteria_are_and_combined(self, engine, listings):
        criteria = {"confidence": "high", "has_external_ref": "yes", "older_than_days": 5}
        assert engine.select(listings, criteria) == ["e"]

    def test_select_all_intersects_criteria_sets(self, engine, listings):
        ids = engine.select_all(listings, [{"has_external_ref": "yes"}, LOW_CONFIDENCE])
        assert ids == ["b"]
        assert engine.select_all(listings, [None, NEVER_PROCESSED]) == ["a"]

    def test_explicit_now_overrides_clock(self, engine, listings):
        later = NOW + timedelta(days=30)
        assert engine.select(listings, {"older_than_days": 30}, now=later) == ["b", "c", "d", "e"]

    def test_pure_and_repeatable(self, engine, listings):
        criteria = {"confidence": "low", "older_than_days": 1}
        first = engine.select(listings, criteria)
        engine.clock.advance(days=100)
        again = engine.select(listings, criteria, now=NOW)
        assert first == again == ["b"]

    def test_preserves_input_order(self, engine, listings):
        assert engine.select(list(reversed(listings)), {"confidence": "low"}) == ["b", "a"]


class TestParseCriteria:

    def test_camel_case_keys(self):
        criteria = parse_criteria({"confidenceLevel": "medium", "hasGooglePlaceId": "no"})
        assert criteria == FilterCriteria(confidence=ConfidenceBand.MEDIUM, has_external_ref=False)

    def test_passthrough(self):
        assert parse_criteria(LOW_CONFIDENCE) is LOW_CONFIDENCE
        assert parse_criteria(None).is_empty

    @pytest.mark.parametrize("raw", [
        {"confidence": "very-low"},
        {"has_external_ref": "maybe"},
        {"last_calculated": "fortnight"},
        {"last_calculated": -3},
        {"older_than_days": "never"},
        {"rating": "high"},
        {"last_calculated": "week", "older_than_days": 3},
        {"confidence": "low", "confidenceLevel": "high"},
        ["confidence", "low"],
    ])
    def test_invalid_criteria_rejected(self, raw):
        with pytest.raises(InvalidFilterError):
            parse_criteria(raw)

    def test_never_and_day_window_conflict(self):
        with pytest.raises(InvalidFilterError):
            FilterCriteria(never_calculated=True, older_than_days=7)

    def test_invalid_criteria_fail_even_with_no_listings(self, engine):
        with pytest.raises(InvalidFilterError):
            engine.select([], {"confidence": "bogus"})

    def test_describe(self):
        criteria = parse_criteria({"confidence": "low", "has_external_ref": "yes", "last_calculated": "month"})
        assert criteria.describe() == "confidence=low, has_external_ref=yes, older_than_days=30"
        assert FilterCriteria().describe() == "all"
