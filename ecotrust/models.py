"""
Data model for scored listings.

Listing rows are created by the CRUD layer; this package only ever
rewrites category_scores, overall_rating and score_metadata.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from ecotrust.config import ACCOMMODATION_CATEGORIES, RESTAURANT_CATEGORIES

MIN_SCORE = 1.0
MAX_SCORE = 5.0
MIN_CONFIDENCE = 1
MAX_CONFIDENCE = 5


class ListingKind(str, Enum):
    """What kind of venue a listing is."""
    ACCOMMODATION = "accommodation"
    RESTAURANT = "restaurant"


def categories_for(kind) -> tuple:
    """Ordered category names for a listing kind."""
    if ListingKind(kind) == ListingKind.RESTAURANT:
        return RESTAURANT_CATEGORIES
    return ACCOMMODATION_CATEGORIES


def confidence_label(level: int) -> str:
    """Human label for a confidence level (1-5)."""
    if level >= 4:
        return "High"
    elif level >= 3:
        return "Medium"
    elif level >= 2:
        return "Low"
    return "Very Low"


@dataclass
class ScoreMetadata:
    """Provenance of a listing's scores."""
    confidence_level: int = 1
    last_calculated: Optional[datetime] = None  # None = never calculated
    reviews_analyzed: int = 0
    keyword_matches: int = 0
    is_default: bool = False
    last_error: Optional[str] = None

    def __post_init__(self):
        self.confidence_level = max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, int(self.confidence_level)))
        self.reviews_analyzed = max(0, int(self.reviews_analyzed or 0))
        self.keyword_matches = max(0, int(self.keyword_matches or 0))
        # Placeholder scores never carry more than minimal confidence
        if self.is_default:
            self.confidence_level = MIN_CONFIDENCE

    @property
    def never_calculated(self) -> bool:
        return self.last_calculated is None


@dataclass
class Listing:
    """An accommodation or restaurant, as seen by the scoring core."""
    id: str
    kind: ListingKind = ListingKind.ACCOMMODATION
    name: str = ""
    listing_type: str = "hotel"
    external_place_ref: Optional[str] = None
    category_scores: dict = field(default_factory=dict)
    overall_rating: Optional[float] = None
    score_metadata: ScoreMetadata = field(default_factory=ScoreMetadata)

    def __post_init__(self):
        self.kind = ListingKind(self.kind)
        if self.external_place_ref is not None and not str(self.external_place_ref).strip():
            self.external_place_ref = None

    @property
    def has_external_ref(self) -> bool:
        return self.external_place_ref is not None

    @property
    def categories(self) -> tuple:
        return categories_for(self.kind)


@dataclass(frozen=True)
class AuditEntry:
    """One committed moderation action. Never edited once written."""
    action: str
    actor_id: str
    timestamp: datetime
    from_state: str
    to_state: str
    reason: Optional[str] = None


@dataclass
class ModeratedEntity:
    """A review or itinerary under moderation."""
    id: str
    entity_type: str
    state: str
    audit_trail: tuple = ()
    # Itinerary dates, used only for the read-time phase projection
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


def overall_rating(category_scores: dict) -> Optional[float]:
    """Mean of the present category scores; None when there are none."""
    present = [v for v in category_scores.values() if v is not None]
    if not present:
        return None
    return sum(present) / len(present)
