"""Read-time display status. Never written back to the store."""
from datetime import datetime

from ecotrust.models import ModeratedEntity

from .states import EntityType, ItineraryPhase, ModerationState

# Moderation states that win over the date-derived phase
OVERRIDES = frozenset({
    ModerationState.FLAGGED,
    ModerationState.HIDDEN,
    ModerationState.DELETED,
    ModerationState.REJECTED,
})


def itinerary_phase(start_date: datetime, end_date: datetime, now: datetime) -> ItineraryPhase:
    """Draft without both dates, else Upcoming / Ongoing / Completed relative to now."""
    if start_date is None or end_date is None:
        return ItineraryPhase.DRAFT
    if now < start_date:
        return ItineraryPhase.UPCOMING
    if now <= end_date:
        return ItineraryPhase.ONGOING
    return ItineraryPhase.COMPLETED


def display_status(entity: ModeratedEntity, now: datetime) -> str:
    state = ModerationState(entity.state)
    if state in OVERRIDES:
        return state.value
    if EntityType(entity.entity_type) == EntityType.ITINERARY:
        return itinerary_phase(entity.start_date, entity.end_date, now).value
    return state.value
