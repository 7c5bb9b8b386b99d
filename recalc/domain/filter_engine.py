"""
Filter Engine
Declarative selection of listings for recalculation.

Criteria are AND-combined:
    confidence        all | low (<=2) | medium (==3) | high (>=4)
    has_external_ref  all | yes | no
    last_calculated   all | never | week | month | <days>   (stale window)

No criteria selects everything. Anything unrecognized raises
InvalidFilterError instead of silently matching.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Mapping, Optional, Union

from ecotrust.clock import Clock, SystemClock
from ecotrust.config import STALENESS_ALIASES
from ecotrust.errors import InvalidFilterError
from ecotrust.models import Listing

from .confidence import ConfidenceBand, effective_confidence, get_band

ALL = "all"

# Accepted spellings for each criterion (admin UI uses camelCase)
_KEY_ALIASES = {
    'confidence': 'confidence',
    'confidence_level': 'confidence',
    'confidenceLevel': 'confidence',
    'has_external_ref': 'has_external_ref',
    'hasExternalRef': 'has_external_ref',
    'hasGooglePlaceId': 'has_external_ref',
    'last_calculated': 'last_calculated',
    'lastCalculated': 'last_calculated',
    'older_than_days': 'older_than_days',
    'olderThanDays': 'older_than_days',
}


@dataclass(frozen=True)
class FilterCriteria:
    """Parsed selection criteria. None means 'no constraint'."""
    confidence: Optional[ConfidenceBand] = None
    has_external_ref: Optional[bool] = None
    never_calculated: bool = False
    older_than_days: Optional[int] = None

    def __post_init__(self):
        if self.never_calculated and self.older_than_days is not None:
            raise InvalidFilterError("Staleness filter must be either 'never' or a day window, not both")
        if self.older_than_days is not None and (
            isinstance(self.older_than_days, bool)
            or not isinstance(self.older_than_days, int)
            or self.older_than_days < 0
        ):
            raise InvalidFilterError(f"older_than_days must be a non-negative integer: {self.older_than_days!r}")

    @property
    def is_empty(self) -> bool:
        return (
            self.confidence is None
            and self.has_external_ref is None
            and not self.never_calculated
            and self.older_than_days is None
        )

    def describe(self) -> str:
        """Short human-readable form for logs."""
        parts = []
        if self.confidence is not None:
            parts.append(f"confidence={self.confidence.value}")
        if self.has_external_ref is not None:
            parts.append(f"has_external_ref={'yes' if self.has_external_ref else 'no'}")
        if self.never_calculated:
            parts.append("last_calculated=never")
        if self.older_than_days is not None:
            parts.append(f"older_than_days={self.older_than_days}")
        return ', '.join(parts) or 'all'


LOW_CONFIDENCE = FilterCriteria(confidence=ConfidenceBand.LOW)
NEVER_PROCESSED = FilterCriteria(never_calculated=True)


def _parse_confidence(value) -> Optional[ConfidenceBand]:
    if value is None or value == ALL:
        return None
    if isinstance(value, ConfidenceBand):
        return value
    try:
        return ConfidenceBand(str(value).lower())
    except ValueError:
        raise InvalidFilterError(f"Unknown confidence band: {value!r}") from None


def _parse_external_ref(value) -> Optional[bool]:
    if value is None or value == ALL:
        return None
    if isinstance(value, bool):
        return value
    if value in ('yes', 'no'):
        return value == 'yes'
    raise InvalidFilterError(f"has_external_ref must be yes, no or all: {value!r}")


def _parse_staleness(value) -> tuple[bool, Optional[int]]:
    """Returns (never_calculated, older_than_days)."""
    if value is None or value == ALL:
        return False, None
    if value == 'never':
        return True, None
    if isinstance(value, str) and value in STALENESS_ALIASES:
        return False, STALENESS_ALIASES[value]
    if isinstance(value, int) and not isinstance(value, bool):
        return False, value
    if isinstance(value, str) and value.isdigit():
        return False, int(value)
    raise InvalidFilterError(f"Unknown last_calculated value: {value!r}")


def parse_criteria(raw: Union[None, Mapping, FilterCriteria]) -> FilterCriteria:
    """
    Build FilterCriteria from a dict of request parameters.

    Args:
        raw: e.g. {"confidence": "low", "hasExternalRef": "yes", "lastCalculated": "month"}

    Raises:
        InvalidFilterError: unknown key or value
    """
    if raw is None:
        return FilterCriteria()
    if isinstance(raw, FilterCriteria):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidFilterError(f"Criteria must be a mapping, got {type(raw).__name__}")

    normalized = {}
    for key, value in raw.items():
        canonical = _KEY_ALIASES.get(key)
        if canonical is None:
            raise InvalidFilterError(f"Unknown filter criterion: {key!r}")
        if canonical in normalized:
            raise InvalidFilterError(f"Filter criterion given twice: {canonical}")
        normalized[canonical] = value

    never, older_than = _parse_staleness(normalized.get('last_calculated'))
    if 'older_than_days' in normalized:
        if never or older_than is not None:
            raise InvalidFilterError("Use either last_calculated or older_than_days, not both")
        _, older_than = _parse_staleness(normalized['older_than_days'])
        if older_than is None:
            raise InvalidFilterError(f"Invalid older_than_days: {normalized['older_than_days']!r}")

    return FilterCriteria(
        confidence=_parse_confidence(normalized.get('confidence')),
        has_external_ref=_parse_external_ref(normalized.get('has_external_ref')),
        never_calculated=never,
        older_than_days=older_than,
    )


def matches(listing: Listing, criteria: FilterCriteria, now: datetime) -> bool:
    """True if one listing satisfies every criterion."""
    metadata = listing.score_metadata

    if criteria.confidence is not None:
        if get_band(effective_confidence(metadata)) != criteria.confidence:
            return False

    if criteria.has_external_ref is not None:
        if listing.has_external_ref != criteria.has_external_ref:
            return False

    last_calculated = metadata.last_calculated if metadata else None

    if criteria.never_calculated and last_calculated is not None:
        return False

    if criteria.older_than_days is not None:
        # Never-calculated listings have no age, so a day window skips them
        if last_calculated is None:
            return False
        if now - last_calculated <= timedelta(days=criteria.older_than_days):
            return False

    return True


class FilterEngine:
    """
    Pure selection over a listing collection.

    `now` is an explicit input: the same listings, criteria and `now`
    always give the same ids, in input order.
    """

    def __init__(self, clock: Clock = None):
        self.clock = clock or SystemClock()

    def select(
        self,
        listings: Iterable[Listing],
        criteria: Union[None, Mapping, FilterCriteria] = None,
        now: datetime = None,
    ) -> list[str]:
        return self.select_all(listings, [criteria], now=now)

    def select_all(
        self,
        listings: Iterable[Listing],
        criteria_list: Iterable[Union[None, Mapping, FilterCriteria]],
        now: datetime = None,
    ) -> list[str]:
        """Ids matching every criteria set (AND of the sets)."""
        parsed = [parse_criteria(criteria) for criteria in criteria_list]
        if now is None:
            now = self.clock.now()
        return [
            listing.id for listing in listings
            if all(matches(listing, criteria, now) for criteria in parsed)
        ]
