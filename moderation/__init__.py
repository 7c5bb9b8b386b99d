"""
Review and itinerary moderation.
Explicit transition table, versioned writes, append-only audit trail.
"""
from .states import (
    EntityType, ModerationState, ModerationAction, ItineraryPhase,
    Transition, TransitionTable, TRANSITIONS, INITIAL_STATES,
)
from .state_machine import ModerationStateMachine
from .projection import itinerary_phase, display_status

__all__ = [
    'EntityType', 'ModerationState', 'ModerationAction', 'ItineraryPhase',
    'Transition', 'TransitionTable', 'TRANSITIONS', 'INITIAL_STATES',
    'ModerationStateMachine',
    'itinerary_phase', 'display_status',
]
